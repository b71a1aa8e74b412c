"""
Almacenamiento de PDFs (exámenes y laudos) vía Uploadcare.

Recibe {buffer, filename, mimetype, size} y devuelve una URL durable en el CDN.
Sin credenciales configuradas opera en modo simulación (solo desarrollo).

Docs: https://uploadcare.com/api-refs/upload-api/
"""

import logging
import uuid
from dataclasses import dataclass
from functools import lru_cache

import httpx

from laudofy.config import Settings, get_settings

logger = logging.getLogger(__name__)

PLACEHOLDER_KEYS = {"", "your-uploadcare-public-key", "your-uploadcare-secret-key"}


class StorageError(Exception):
    """Error de comunicación con el proveedor de almacenamiento."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


@dataclass(frozen=True)
class FileUpload:
    buffer: bytes
    filename: str
    mimetype: str = "application/pdf"

    @property
    def size(self) -> int:
        return len(self.buffer)


class UploadcareStorage:
    def __init__(self, settings: Settings):
        self.public_key = settings.UPLOADCARE_PUBLIC_KEY
        self.secret_key = settings.UPLOADCARE_SECRET_KEY
        self.upload_url = settings.UPLOADCARE_UPLOAD_URL
        self.cdn_url = settings.UPLOADCARE_CDN_URL.rstrip("/")

    @property
    def simulated(self) -> bool:
        return self.public_key in PLACEHOLDER_KEYS or self.secret_key in PLACEHOLDER_KEYS

    async def upload(self, file: FileUpload) -> str:
        """Sube el archivo y devuelve su URL pública."""
        if file.size == 0:
            raise StorageError("Archivo vacío")

        # ── Modo simulación (sin credenciales) ───────
        if self.simulated:
            logger.warning("Uploadcare credentials no configuradas, simulando subida")
            return f"{self.cdn_url}/simulated-{uuid.uuid4()}/{file.filename}"

        try:
            async with httpx.AsyncClient(timeout=30.0) as client:
                response = await client.post(
                    self.upload_url,
                    data={"UPLOADCARE_PUB_KEY": self.public_key, "UPLOADCARE_STORE": "1"},
                    files={"file": (file.filename, file.buffer, file.mimetype)},
                )
        except httpx.RequestError as exc:
            logger.error("Error de conexión con Uploadcare: %s", exc)
            raise StorageError(f"Error de conexión con Uploadcare: {exc}") from exc

        if response.status_code != 200:
            logger.error("Uploadcare respondió %s: %s", response.status_code, response.text[:200])
            raise StorageError(f"Uploadcare respondió con status {response.status_code}")

        file_id = response.json().get("file")
        if not file_id:
            raise StorageError("Uploadcare no devolvió identificador de archivo")

        url = f"{self.cdn_url}/{file_id}/{file.filename}"
        logger.info("Archivo subido a Uploadcare: %s (%d bytes)", file_id, file.size)
        return url


@lru_cache
def get_storage() -> UploadcareStorage:
    return UploadcareStorage(get_settings())

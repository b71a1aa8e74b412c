"""
Cifrado simétrico de campos sensibles (Fernet / MultiFernet).

Fernet = AES-128-CBC + HMAC-SHA256 con IV aleatorio por llamada: cifrar dos
veces el mismo texto produce tokens distintos. Por eso ningún campo cifrado
admite búsqueda por igualdad directa en la base; para el CPF se mantiene un
índice ciego (HMAC-SHA256 determinístico) en una columna aparte.

La clave no vive en un global: `CipherConfig` se construye al arranque desde
Settings y se inyecta en `FieldCipher`, que se pasa explícitamente a los
servicios.
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from laudofy.config import FERNET_KEY_PLACEHOLDER, Settings, get_settings

logger = logging.getLogger(__name__)

# Todo token Fernet empieza con el byte de versión 0x80 seguido del timestamp
# de 64 bits, cuyos primeros bytes son cero hasta el año 2106.
CIPHERTEXT_MARKER = "gAAAAA"


class CipherConfigError(RuntimeError):
    """La clave de cifrado no está configurada o es inválida."""


@dataclass(frozen=True)
class CipherConfig:
    """Material de claves para el cifrado de campos."""

    key: str
    previous_keys: tuple[str, ...] = field(default_factory=tuple)
    blind_index_key: str = ""

    @classmethod
    def from_settings(cls, settings: Settings) -> "CipherConfig":
        return cls(
            key=settings.FERNET_KEY,
            previous_keys=tuple(settings.FERNET_PREVIOUS_KEYS),
            blind_index_key=settings.BLIND_INDEX_KEY,
        )


class FieldCipher:
    """
    Cifra y descifra strings.

    `decrypt` nunca lanza: si el valor no es un token válido (dato legado en
    texto plano, token de otra clave) registra un warning y devuelve el valor
    original tal cual.
    """

    def __init__(self, config: CipherConfig):
        if not config.key or config.key == FERNET_KEY_PLACEHOLDER:
            raise CipherConfigError(
                "FERNET_KEY no configurada. Genera una con: "
                'python -c "from cryptography.fernet import Fernet; '
                'print(Fernet.generate_key().decode())" y ponla en .env'
            )
        try:
            fernets = [Fernet(k.encode()) for k in (config.key, *config.previous_keys)]
        except ValueError as exc:
            raise CipherConfigError(
                "FERNET_KEY inválida: debe ser una clave base64 url-safe de 32 bytes"
            ) from exc

        # La primera clave cifra; todas se aceptan al descifrar (rotación).
        self._fernet = MultiFernet(fernets)
        self._blind_key = (config.blind_index_key or config.key).encode()

    @staticmethod
    def is_ciphertext(value: str | None) -> bool:
        return isinstance(value, str) and value.startswith(CIPHERTEXT_MARKER)

    def encrypt(self, plaintext: str) -> str:
        """Cifra un string. Cada llamada usa un IV nuevo."""
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str, *, field_name: str | None = None) -> str:
        """Descifra un token; ante un token inválido devuelve la entrada sin cambios."""
        if not ciphertext:
            return ciphertext
        try:
            return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError):
            logger.warning(
                "No se pudo descifrar el campo %s; se devuelve el valor almacenado",
                field_name or "<desconocido>",
            )
            return ciphertext

    def rotate(self, ciphertext: str) -> str:
        """Re-cifra un token con la clave actual."""
        return self._fernet.rotate(ciphertext.encode("ascii")).decode("ascii")

    def blind_index(self, value: str) -> str:
        """HMAC-SHA256 determinístico para búsquedas de igualdad sin descifrar."""
        return hmac.new(self._blind_key, value.encode("utf-8"), hashlib.sha256).hexdigest()


def build_cipher(settings: Settings) -> FieldCipher:
    return FieldCipher(CipherConfig.from_settings(settings))


@lru_cache
def get_cipher() -> FieldCipher:
    """Dependency de FastAPI: cipher del proceso, construido una sola vez."""
    return build_cipher(get_settings())

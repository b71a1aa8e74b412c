"""
Fase 2 del laudo: generación del PDF fuera del request.

El laudo se persiste primero; el documento se renderiza después en una tarea
Celery que sube el PDF al storage. Si el render o la subida fallan, el laudo
queda en "Erro ao gerar PDF" en lugar de deshacer la creación.
"""

import logging
from functools import lru_cache
from typing import Protocol
from uuid import UUID

import httpx
from kombu.exceptions import OperationalError
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from laudofy.config import Settings, get_settings
from laudofy.core.crypto import FieldCipher
from laudofy.core.fields import EXAM_FIELDS, PATIENT_FIELDS, REPORT_FIELDS
from laudofy.models.audit_log import AuditAction, AuditStatus
from laudofy.models.exam import Exam
from laudofy.models.medical_report import HistoryAction, MedicalReport, ReportStatus
from laudofy.services.audit_service import AuditEvent, AuditTrailWriter
from laudofy.services.patient_service import compute_age
from laudofy.services.report_history import append_history
from laudofy.services.storage_service import FileUpload, StorageError, UploadcareStorage

logger = logging.getLogger(__name__)

# Estados en los que el documento ya no se regenera
_CLOSED_STATUSES = (ReportStatus.REDONE, ReportStatus.INVALIDATED)

COLLECTION = "medical_reports"


class RenderError(Exception):
    """Error del servicio de renderizado de PDF."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class PdfDispatchError(Exception):
    """No se pudo encolar la generación del documento."""


# ── Renderizador ─────────────────────────────────────


def _pdf_escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def build_placeholder_pdf(lines: list[str]) -> bytes:
    """PDF mínimo de una página con texto plano (modo simulación)."""
    content = ["BT", "/F1 11 Tf", "50 800 Td", "14 TL"]
    for line in lines:
        ascii_line = line.encode("latin-1", "replace").decode("latin-1")
        content.append(f"({_pdf_escape(ascii_line)}) Tj T*")
    content.append("ET")
    stream = "\n".join(content).encode("latin-1")

    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 595 842] "
        b"/Contents 4 0 R /Resources << /Font << /F1 5 0 R >> >> >>",
        b"<< /Length " + str(len(stream)).encode() + b" >>\nstream\n" + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += f"{number} 0 obj\n".encode() + body + b"\nendobj\n"
    xref_at = len(out)
    out += f"xref\n0 {len(objects) + 1}\n0000000000 65535 f \n".encode()
    for offset in offsets:
        out += f"{offset:010d} 00000 n \n".encode()
    out += (
        f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\n"
        f"startxref\n{xref_at}\n%%EOF\n"
    ).encode()
    return bytes(out)


class PdfRenderer:
    """Cliente del servicio de renderizado. Sin URL configurada, simula."""

    def __init__(self, settings: Settings):
        self.url = settings.PDF_RENDER_URL
        self.token = settings.PDF_RENDER_TOKEN

    @property
    def simulated(self) -> bool:
        return not self.url

    async def render(self, document: dict) -> bytes:
        if self.simulated:
            logger.warning("PDF_RENDER_URL no configurada, generando PDF simulado")
            return build_placeholder_pdf(
                [f"{key}: {value}" for key, value in document.items() if value is not None]
            )

        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            async with httpx.AsyncClient(timeout=60.0) as client:
                response = await client.post(self.url, json=document, headers=headers)
        except httpx.RequestError as exc:
            logger.error("Error de conexión con el renderizador: %s", exc)
            raise RenderError(f"Error de conexión con el renderizador: {exc}") from exc

        if response.status_code != 200:
            logger.error("Renderizador respondió %s", response.status_code)
            raise RenderError(f"Renderizador respondió con status {response.status_code}")
        return response.content


@lru_cache
def get_renderer() -> PdfRenderer:
    return PdfRenderer(get_settings())


# ── Documento ────────────────────────────────────────


def build_document(report: MedicalReport, cipher: FieldCipher) -> dict:
    """Datos descifrados que van al PDF."""
    exam = report.exam
    patient = exam.patient
    report_data = REPORT_FIELDS.read(report, cipher)
    birth_date = PATIENT_FIELDS.open(cipher, "birth_date", patient.birth_date)
    return {
        "report_id": str(report.id),
        "version": report.version,
        "patient_name": patient.name,
        "patient_age": compute_age(birth_date),
        "exam_type": EXAM_FIELDS.open(cipher, "exam_type", exam.exam_type),
        "exam_date": exam.created_at.date().isoformat() if exam.created_at else None,
        "physician_name": report_data["physician_name"],
        "conclusion": report_data["conclusion"],
        "public_link": report_data["public_link"],
    }


async def _set_status_unless_closed(db: AsyncSession, report_id: UUID, status: ReportStatus) -> bool:
    """UPDATE condicional: no pisa un laudo rehecho o cancelado entretanto."""
    result = await db.execute(
        update(MedicalReport)
        .where(MedicalReport.id == report_id, MedicalReport.status.not_in(_CLOSED_STATUSES))
        .values(status=status)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


async def _record_outcome(
    audit: AuditTrailWriter | None,
    report_id: UUID,
    status: ReportStatus,
    *,
    failed: bool = False,
    detail: str | None = None,
) -> None:
    if audit is None:
        return
    await audit.record(
        AuditEvent(
            action=AuditAction.UPDATE,
            collection=COLLECTION,
            document_id=str(report_id),
            after={"status": status},
            status=AuditStatus.FAILED if failed else AuditStatus.OK,
            detail=detail,
        )
    )


async def generate_report_document(
    db: AsyncSession,
    cipher: FieldCipher,
    storage: UploadcareStorage,
    renderer: PdfRenderer,
    report_id: UUID,
    audit: AuditTrailWriter | None = None,
) -> ReportStatus | None:
    """
    Renderiza y sube el PDF del laudo. Devuelve el estado final, o None si el
    laudo no existe o ya fue sustituido/cancelado. Los errores de render o
    storage dejan el laudo en PDF_ERROR y se propagan para que la tarea reintente.

    Cada cambio de estado deja su entrada en el historial; con `audit` también
    queda registrado el resultado de la fase (el worker no tiene actor).
    """
    result = await db.execute(
        select(MedicalReport)
        .options(selectinload(MedicalReport.exam).selectinload(Exam.patient))
        .where(MedicalReport.id == report_id)
    )
    report = result.scalar_one_or_none()
    if report is None:
        logger.error("Laudo %s no encontrado para generar PDF", report_id)
        return None

    if not await _set_status_unless_closed(db, report_id, ReportStatus.PROCESSING):
        logger.info("Laudo %s en estado %s; no se genera PDF", report_id, report.status.value)
        await db.rollback()
        return None
    await db.refresh(report, ["status", "history"])
    append_history(report, cipher, HistoryAction.UPDATED, detail="PDF do laudo em processamento")
    await db.commit()

    try:
        pdf = await renderer.render(build_document(report, cipher))
        url = await storage.upload(
            FileUpload(buffer=pdf, filename=f"laudo-{report.id}-v{report.version}.pdf")
        )
    except (RenderError, StorageError) as exc:
        logger.error("Error generando PDF del laudo %s: %s", report_id, exc)
        detail = f"Erro ao gerar PDF: {exc}"
        if await _set_status_unless_closed(db, report_id, ReportStatus.PDF_ERROR):
            await db.refresh(report, ["status", "history"])
            append_history(report, cipher, HistoryAction.UPDATED, detail=detail)
        await db.commit()
        await _record_outcome(audit, report_id, ReportStatus.PDF_ERROR, failed=True, detail=detail)
        raise

    # El laudo pudo cerrarse mientras se renderizaba
    await db.refresh(report)
    if report.status in _CLOSED_STATUSES:
        return None

    REPORT_FIELDS.write(report, cipher, {"original_file_url": url})
    report.status = ReportStatus.SIGNED if report.signed_at else ReportStatus.ISSUED
    append_history(report, cipher, HistoryAction.UPDATED, detail="PDF do laudo gerado")
    await db.commit()
    logger.info("PDF del laudo %s generado (%s)", report_id, report.status.value)
    await _record_outcome(audit, report_id, report.status, detail="PDF do laudo gerado")
    return report.status


# ── Despacho a Celery ────────────────────────────────


class PdfDispatcher(Protocol):
    def dispatch(self, report_id: UUID) -> None: ...


class CeleryPdfDispatcher:
    def dispatch(self, report_id: UUID) -> None:
        from laudofy.tasks.report_tasks import generate_report_pdf

        try:
            generate_report_pdf.delay(str(report_id))
        except OperationalError as exc:
            raise PdfDispatchError(str(exc)) from exc


@lru_cache
def get_pdf_dispatcher() -> PdfDispatcher:
    return CeleryPdfDispatcher()

"""
Tareas Celery de laudos: fase 2 (render + subida del PDF) y reencolado de
laudos que quedaron con error de generación.
"""

import asyncio
import logging
from uuid import UUID

from laudofy.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    name="reports.generate_report_pdf",
)
def generate_report_pdf(self, report_id: str):
    """
    Renderiza el PDF del laudo y lo sube al storage.
    Se reintenta hasta 3 veces con 60s de espera; entre intentos el laudo
    queda en "Erro ao gerar PDF".
    """

    async def _generate():
        from laudofy.config import get_settings
        from laudofy.core.crypto import get_cipher
        from laudofy.database import async_session_factory
        from laudofy.services.audit_service import AuditTrailWriter
        from laudofy.services.report_document import generate_report_document, get_renderer
        from laudofy.services.storage_service import get_storage

        settings = get_settings()
        audit = AuditTrailWriter(
            async_session_factory,
            attempts=settings.AUDIT_WRITE_ATTEMPTS,
            retry_delay=settings.AUDIT_RETRY_DELAY_SECONDS,
        )
        async with async_session_factory() as db:
            return await generate_report_document(
                db, get_cipher(), get_storage(), get_renderer(), UUID(report_id), audit
            )

    try:
        status = asyncio.run(_generate())
    except Exception as exc:
        logger.error("Error generando PDF del laudo %s: %s", report_id, exc)
        raise self.retry(exc=exc)

    if status is not None:
        logger.info("Laudo %s: %s", report_id, status.value)
    return status.value if status is not None else None


@celery_app.task(name="reports.retry_failed_pdfs")
def retry_failed_pdfs():
    """
    Task periódico: reencola laudos en "Erro ao gerar PDF" o que quedaron en
    "Rascunho" sin documento (broker caído al crearlos).
    """

    async def _collect():
        from sqlalchemy import select

        from laudofy.database import async_session_factory
        from laudofy.models.medical_report import MedicalReport, ReportStatus

        async with async_session_factory() as db:
            result = await db.execute(
                select(MedicalReport.id).where(
                    MedicalReport.status.in_([ReportStatus.PDF_ERROR, ReportStatus.DRAFT]),
                    MedicalReport.original_file_url.is_(None),
                ).limit(50)
            )
            return [str(row[0]) for row in result.all()]

    report_ids = asyncio.run(_collect())
    for report_id in report_ids:
        generate_report_pdf.delay(report_id)

    logger.info("Reencolados %d laudos sin PDF", len(report_ids))

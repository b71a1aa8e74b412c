"""
Endpoints de laudos: creación, firma, rehecho, invalidación, envío por
e-mail y consultas de la cadena de versiones.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from laudofy.api.v1.exams import read_pdf_upload
from laudofy.auth.dependencies import get_current_user, get_network_info, require_permission
from laudofy.core.crypto import FieldCipher, get_cipher
from laudofy.core.exceptions import ValidationException
from laudofy.database import get_db
from laudofy.models.medical_report import ReportStatus
from laudofy.models.user import User, UserRole
from laudofy.schemas.medical_report import (
    ReportCreate,
    ReportDetailResponse,
    ReportInvalidate,
    ReportListResponse,
    ReportProcessingStatus,
    ReportRedo,
    ReportResponse,
    ReportStatusCount,
    ReportVersionHistory,
)
from laudofy.services import medical_report_service
from laudofy.services.audit_service import AuditTrailWriter, NetworkInfo, get_audit_writer
from laudofy.services.email_service import SendGridMailer, get_mailer
from laudofy.services.report_document import PdfDispatcher, get_pdf_dispatcher
from laudofy.services.storage_service import UploadcareStorage, get_storage

router = APIRouter()


@router.get("", response_model=ReportListResponse)
async def list_reports(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    exam_id: UUID | None = Query(None),
    patient_id: UUID | None = Query(None),
    physician_id: UUID | None = Query(None),
    status: ReportStatus | None = Query(None),
    valid: bool | None = Query(None, description="Solo válidos / inválidos"),
    physician_name: str | None = Query(None, description="Nombre del médico (búsqueda aproximada)"),
    user: User = Depends(require_permission("report", "read")),
    db: AsyncSession = Depends(get_db),
    cipher: FieldCipher = Depends(get_cipher),
):
    return await medical_report_service.list_reports(
        db,
        cipher,
        page=page,
        size=size,
        exam_id=exam_id,
        patient_id=patient_id,
        physician_id=physician_id,
        status=status,
        valid=valid,
        physician_name=physician_name,
    )


@router.get("/status-counts", response_model=list[ReportStatusCount])
async def count_by_status(
    user: User = Depends(require_permission("report", "read")),
    db: AsyncSession = Depends(get_db),
):
    """Totales por estado. Un médico ve solo los suyos."""
    physician_id = user.id if user.role == UserRole.PHYSICIAN else None
    return await medical_report_service.count_by_status(db, physician_id)


@router.post("", response_model=ReportResponse, status_code=201)
async def create_report(
    exam_id: UUID = Form(...),
    conclusion: str = Form(...),
    file: UploadFile | None = File(None, description="PDF firmado (solo en el flujo signed_on_create)"),
    network: NetworkInfo = Depends(get_network_info),
    user: User = Depends(require_permission("report", "create")),
    db: AsyncSession = Depends(get_db),
    cipher: FieldCipher = Depends(get_cipher),
    audit: AuditTrailWriter = Depends(get_audit_writer),
    storage: UploadcareStorage = Depends(get_storage),
    dispatcher: PdfDispatcher = Depends(get_pdf_dispatcher),
):
    """
    Crea el laudo de un examen. El PDF se genera en segundo plano;
    consultar `/reports/{id}/status` para saber cuándo está listo.
    """
    try:
        data = ReportCreate(exam_id=exam_id, conclusion=conclusion)
    except ValidationError as exc:
        raise ValidationException(str(exc)) from exc
    upload = await read_pdf_upload(file) if file is not None else None
    return await medical_report_service.create_report(
        db, cipher, audit, storage, dispatcher, user, data, network, signed_upload=upload
    )


@router.get("/{report_id}", response_model=ReportDetailResponse)
async def get_report(
    report_id: UUID,
    user: User = Depends(require_permission("report", "read")),
    db: AsyncSession = Depends(get_db),
    cipher: FieldCipher = Depends(get_cipher),
):
    return await medical_report_service.get_report(db, cipher, report_id)


@router.get("/{report_id}/status", response_model=ReportProcessingStatus)
async def get_processing_status(
    report_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await medical_report_service.get_processing_status(db, report_id)


@router.get("/{report_id}/history", response_model=ReportVersionHistory)
async def get_version_history(
    report_id: UUID,
    user: User = Depends(require_permission("report", "read")),
    db: AsyncSession = Depends(get_db),
    cipher: FieldCipher = Depends(get_cipher),
):
    """Todas las versiones de la cadena y sus eventos, más recientes primero."""
    return await medical_report_service.get_version_history(db, cipher, report_id)


@router.post("/{report_id}/sign", response_model=ReportResponse)
async def sign_report(
    report_id: UUID,
    file: UploadFile = File(..., description="PDF firmado"),
    network: NetworkInfo = Depends(get_network_info),
    user: User = Depends(require_permission("report", "sign")),
    db: AsyncSession = Depends(get_db),
    cipher: FieldCipher = Depends(get_cipher),
    audit: AuditTrailWriter = Depends(get_audit_writer),
    storage: UploadcareStorage = Depends(get_storage),
):
    upload = await read_pdf_upload(file)
    return await medical_report_service.sign_report(
        db, cipher, audit, storage, user, report_id, upload, network
    )


@router.post("/{report_id}/redo", response_model=ReportResponse, status_code=201)
async def redo_report(
    report_id: UUID,
    data: ReportRedo,
    network: NetworkInfo = Depends(get_network_info),
    user: User = Depends(require_permission("report", "redo")),
    db: AsyncSession = Depends(get_db),
    cipher: FieldCipher = Depends(get_cipher),
    audit: AuditTrailWriter = Depends(get_audit_writer),
    dispatcher: PdfDispatcher = Depends(get_pdf_dispatcher),
):
    """Crea una nueva versión del laudo; la actual queda como "Laudo refeito"."""
    return await medical_report_service.redo_report(
        db, cipher, audit, dispatcher, user, report_id, data, network
    )


@router.post("/{report_id}/invalidate", response_model=ReportResponse)
async def invalidate_report(
    report_id: UUID,
    data: ReportInvalidate,
    network: NetworkInfo = Depends(get_network_info),
    user: User = Depends(require_permission("report", "invalidate")),
    db: AsyncSession = Depends(get_db),
    cipher: FieldCipher = Depends(get_cipher),
    audit: AuditTrailWriter = Depends(get_audit_writer),
):
    return await medical_report_service.invalidate_report(
        db, cipher, audit, user, report_id, data, network
    )


@router.post("/{report_id}/send-email", response_model=ReportResponse)
async def send_report_email(
    report_id: UUID,
    network: NetworkInfo = Depends(get_network_info),
    user: User = Depends(require_permission("report", "send")),
    db: AsyncSession = Depends(get_db),
    cipher: FieldCipher = Depends(get_cipher),
    audit: AuditTrailWriter = Depends(get_audit_writer),
    mailer: SendGridMailer = Depends(get_mailer),
):
    """Envía al paciente el link público y el código de acceso del laudo firmado."""
    return await medical_report_service.send_report_email(
        db, cipher, audit, mailer, user, report_id, network
    )

"""
Endpoints de exámenes. La creación es multipart: PDF del examen + campos.
"""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from laudofy.auth.dependencies import get_network_info, require_permission
from laudofy.core.crypto import FieldCipher, get_cipher
from laudofy.core.exceptions import ValidationException
from laudofy.database import get_db
from laudofy.models.user import User
from laudofy.schemas.exam import ExamCreate, ExamListResponse, ExamResponse, ExamStatistics, ExamUpdate
from laudofy.services import exam_service
from laudofy.services.audit_service import AuditTrailWriter, NetworkInfo, get_audit_writer
from laudofy.services.storage_service import FileUpload, UploadcareStorage, get_storage

router = APIRouter()

PDF_MIMETYPES = {"application/pdf", "application/x-pdf"}


async def read_pdf_upload(file: UploadFile) -> FileUpload:
    """Lee el archivo subido; solo se aceptan PDFs no vacíos."""
    if file.content_type not in PDF_MIMETYPES:
        raise ValidationException("El archivo debe ser un PDF")
    buffer = await file.read()
    if not buffer:
        raise ValidationException("El archivo está vacío")
    return FileUpload(
        buffer=buffer,
        filename=file.filename or "documento.pdf",
        mimetype=file.content_type,
    )


@router.get("", response_model=ExamListResponse)
async def list_exams(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    patient_id: UUID | None = Query(None),
    patient_name: str | None = Query(None, description="Nombre del paciente (parcial)"),
    technician_id: UUID | None = Query(None),
    exam_type: str | None = Query(None, description="Tipo de examen (búsqueda aproximada)"),
    status: str | None = Query(None, description="Estado (búsqueda aproximada)"),
    user: User = Depends(require_permission("exam", "read")),
    db: AsyncSession = Depends(get_db),
    cipher: FieldCipher = Depends(get_cipher),
):
    """
    Lista exámenes. Tipo y estado están cifrados: el filtro descifra los
    candidatos en memoria, por eso conviene acotar antes por paciente o técnico.
    """
    return await exam_service.list_exams(
        db,
        cipher,
        page=page,
        size=size,
        patient_id=patient_id,
        patient_name=patient_name,
        technician_id=technician_id,
        exam_type=exam_type,
        status=status,
    )


@router.get("/without-report", response_model=ExamListResponse)
async def list_exams_without_report(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    patient_name: str | None = Query(None),
    exam_type: str | None = Query(None),
    user: User = Depends(require_permission("exam", "read")),
    db: AsyncSession = Depends(get_db),
    cipher: FieldCipher = Depends(get_cipher),
):
    """Exámenes pendientes de laudo (sin laudo vigente)."""
    return await exam_service.list_exams(
        db,
        cipher,
        page=page,
        size=size,
        patient_name=patient_name,
        exam_type=exam_type,
        without_report=True,
    )


@router.get("/statistics", response_model=ExamStatistics)
async def exam_statistics(
    start: date | None = Query(None, description="Subidos desde (YYYY-MM-DD)"),
    end: date | None = Query(None, description="Subidos hasta (YYYY-MM-DD)"),
    user: User = Depends(require_permission("exam", "statistics")),
    db: AsyncSession = Depends(get_db),
    cipher: FieldCipher = Depends(get_cipher),
):
    """Totales por estado y tipo, evolución mensual y tiempo medio de respuesta."""
    if start and end and start > end:
        raise ValidationException("La fecha inicial es posterior a la final")
    return await exam_service.exam_statistics(db, cipher, start=start, end=end)


@router.get("/{exam_id}", response_model=ExamResponse)
async def get_exam(
    exam_id: UUID,
    user: User = Depends(require_permission("exam", "read")),
    db: AsyncSession = Depends(get_db),
    cipher: FieldCipher = Depends(get_cipher),
):
    return await exam_service.get_exam(db, cipher, exam_id)


@router.post("", response_model=ExamResponse, status_code=201)
async def create_exam(
    file: UploadFile = File(..., description="PDF del examen"),
    patient_id: UUID = Form(...),
    exam_type: str = Form(...),
    status: str = Form("Pendente"),
    pr_segment: float | None = Form(None),
    heart_rate: float | None = Form(None),
    qrs_duration: float | None = Form(None),
    qrs_axis: float | None = Form(None),
    height: float | None = Form(None),
    weight: float | None = Form(None),
    age: int | None = Form(None),
    symptoms: str | None = Form(None),
    network: NetworkInfo = Depends(get_network_info),
    user: User = Depends(require_permission("exam", "create")),
    db: AsyncSession = Depends(get_db),
    cipher: FieldCipher = Depends(get_cipher),
    audit: AuditTrailWriter = Depends(get_audit_writer),
    storage: UploadcareStorage = Depends(get_storage),
):
    """El técnico sube el PDF del examen con sus lecturas clínicas."""
    try:
        data = ExamCreate(
            patient_id=patient_id,
            exam_type=exam_type,
            status=status,
            pr_segment=pr_segment,
            heart_rate=heart_rate,
            qrs_duration=qrs_duration,
            qrs_axis=qrs_axis,
            height=height,
            weight=weight,
            age=age,
            symptoms=symptoms,
        )
    except ValidationError as exc:
        raise ValidationException(str(exc)) from exc
    upload = await read_pdf_upload(file)
    return await exam_service.create_exam(db, cipher, audit, storage, user, data, upload, network)


@router.put("/{exam_id}", response_model=ExamResponse)
async def update_exam(
    exam_id: UUID,
    data: ExamUpdate,
    network: NetworkInfo = Depends(get_network_info),
    user: User = Depends(require_permission("exam", "update")),
    db: AsyncSession = Depends(get_db),
    cipher: FieldCipher = Depends(get_cipher),
    audit: AuditTrailWriter = Depends(get_audit_writer),
):
    """Actualiza lecturas y estado. El estado solo avanza."""
    return await exam_service.update_exam(db, cipher, audit, user, exam_id, data, network)


@router.delete("/{exam_id}", status_code=204)
async def delete_exam(
    exam_id: UUID,
    network: NetworkInfo = Depends(get_network_info),
    user: User = Depends(require_permission("exam", "delete")),
    db: AsyncSession = Depends(get_db),
    cipher: FieldCipher = Depends(get_cipher),
    audit: AuditTrailWriter = Depends(get_audit_writer),
):
    await exam_service.delete_exam(db, cipher, audit, user, exam_id, network)

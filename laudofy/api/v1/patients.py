"""
Endpoints CRUD de pacientes.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from laudofy.auth.dependencies import get_network_info, require_permission
from laudofy.core.crypto import FieldCipher, get_cipher
from laudofy.database import get_db
from laudofy.models.user import User
from laudofy.schemas.medical_report import ReportResponse
from laudofy.schemas.patient import (
    PatientCreate,
    PatientListResponse,
    PatientResponse,
    PatientUpdate,
)
from laudofy.services import medical_report_service, patient_service
from laudofy.services.audit_service import AuditTrailWriter, NetworkInfo, get_audit_writer

router = APIRouter()


@router.get("", response_model=PatientListResponse)
async def list_patients(
    page: int = Query(1, ge=1, description="Número de página"),
    size: int = Query(20, ge=1, le=100, description="Tamaño de página"),
    search: str | None = Query(None, description="Nombre o CPF completo"),
    user: User = Depends(require_permission("patient", "read")),
    db: AsyncSession = Depends(get_db),
    cipher: FieldCipher = Depends(get_cipher),
):
    return await patient_service.list_patients(db, cipher, page=page, size=size, search=search)


@router.get("/search", response_model=PatientResponse | None)
async def search_by_cpf(
    cpf: str = Query(..., min_length=11, description="CPF con o sin puntuación"),
    user: User = Depends(require_permission("patient", "read")),
    db: AsyncSession = Depends(get_db),
    cipher: FieldCipher = Depends(get_cipher),
):
    """Busca un paciente por CPF. Retorna null si no existe."""
    return await patient_service.find_by_cpf(db, cipher, cpf)


@router.get("/{patient_id}", response_model=PatientResponse)
async def get_patient(
    patient_id: UUID,
    user: User = Depends(require_permission("patient", "read")),
    db: AsyncSession = Depends(get_db),
    cipher: FieldCipher = Depends(get_cipher),
):
    return await patient_service.get_patient(db, cipher, patient_id)


@router.post("", response_model=PatientResponse, status_code=201)
async def create_patient(
    data: PatientCreate,
    network: NetworkInfo = Depends(get_network_info),
    user: User = Depends(require_permission("patient", "create")),
    db: AsyncSession = Depends(get_db),
    cipher: FieldCipher = Depends(get_cipher),
    audit: AuditTrailWriter = Depends(get_audit_writer),
):
    """
    Crea un nuevo paciente.
    CPF, fecha de nacimiento, dirección y teléfono se cifran automáticamente.
    """
    return await patient_service.create_patient(db, cipher, audit, user, data, network)


@router.put("/{patient_id}", response_model=PatientResponse)
async def update_patient(
    patient_id: UUID,
    data: PatientUpdate,
    network: NetworkInfo = Depends(get_network_info),
    user: User = Depends(require_permission("patient", "update")),
    db: AsyncSession = Depends(get_db),
    cipher: FieldCipher = Depends(get_cipher),
    audit: AuditTrailWriter = Depends(get_audit_writer),
):
    """
    Actualiza un paciente existente.
    Solo se actualizan los campos enviados; CPF y fecha de nacimiento son inmutables.
    """
    return await patient_service.update_patient(db, cipher, audit, user, patient_id, data, network)


@router.delete("/{patient_id}", status_code=204)
async def delete_patient(
    patient_id: UUID,
    network: NetworkInfo = Depends(get_network_info),
    user: User = Depends(require_permission("patient", "delete")),
    db: AsyncSession = Depends(get_db),
    cipher: FieldCipher = Depends(get_cipher),
    audit: AuditTrailWriter = Depends(get_audit_writer),
):
    await patient_service.delete_patient(db, cipher, audit, user, patient_id, network)


@router.get("/{patient_id}/reports", response_model=list[ReportResponse])
async def list_patient_reports(
    patient_id: UUID,
    user: User = Depends(require_permission("report", "read")),
    db: AsyncSession = Depends(get_db),
    cipher: FieldCipher = Depends(get_cipher),
):
    """Todos los laudos (todas las versiones) de los exámenes del paciente."""
    await patient_service.get_patient_model(db, patient_id)
    return await medical_report_service.list_by_patient(db, cipher, patient_id)

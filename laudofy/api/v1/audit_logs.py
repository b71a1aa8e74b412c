"""
Consulta del audit log (solo administradores). Sin endpoints de escritura.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from laudofy.auth.dependencies import require_permission
from laudofy.core.exceptions import NotFoundException
from laudofy.database import get_db
from laudofy.models.audit_log import AuditAction, AuditLog, AuditStatus
from laudofy.models.user import User
from laudofy.schemas.audit_log import AuditLogListResponse, AuditLogResponse
from laudofy.services import audit_service

router = APIRouter()


def _to_response(entry: AuditLog, masked: bool) -> AuditLogResponse:
    response = AuditLogResponse.model_validate(entry)
    if masked:
        response.before_data = audit_service.mask_snapshot(response.before_data)
        response.after_data = audit_service.mask_snapshot(response.after_data)
    return response


@router.get("", response_model=AuditLogListResponse)
async def list_audit_logs(
    page: int = Query(1, ge=1, description="Número de página"),
    size: int = Query(20, ge=1, le=100, description="Registros por página"),
    action: AuditAction | None = Query(None, description="Filtrar por acción"),
    collection: str | None = Query(None, description="Filtrar por colección"),
    user_id: UUID | None = Query(None),
    document_id: str | None = Query(None),
    status: AuditStatus | None = Query(None),
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
    masked: bool = Query(False, description="Redactar campos sensibles de los snapshots"),
    user: User = Depends(require_permission("audit_log", "read")),
    db: AsyncSession = Depends(get_db),
):
    """Registro de auditoría paginado, más recientes primero."""
    page_data = await audit_service.get_audit_logs(
        db,
        page=page,
        size=size,
        action=action,
        collection=collection,
        user_id=user_id,
        document_id=document_id,
        status=status,
        date_from=date_from,
        date_to=date_to,
    )
    page_data["items"] = [_to_response(e, masked) for e in page_data["items"]]
    return page_data


@router.get("/{log_id}", response_model=AuditLogResponse)
async def get_audit_log(
    log_id: UUID,
    masked: bool = Query(False),
    user: User = Depends(require_permission("audit_log", "read")),
    db: AsyncSession = Depends(get_db),
):
    entry = await audit_service.get_audit_log(db, log_id)
    if entry is None:
        raise NotFoundException("Registro de auditoría")
    return _to_response(entry, masked)

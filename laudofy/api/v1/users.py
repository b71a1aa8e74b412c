"""
Endpoints de gestión de usuarios (solo administradores).
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from laudofy.auth.dependencies import get_network_info, require_permission
from laudofy.database import get_db
from laudofy.models.user import User, UserRole
from laudofy.schemas.user import UserCreate, UserListResponse, UserResponse, UserUpdate
from laudofy.services import user_service
from laudofy.services.audit_service import AuditTrailWriter, NetworkInfo, get_audit_writer

router = APIRouter()


@router.get("", response_model=UserListResponse)
async def list_users(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    role: UserRole | None = Query(None, description="Filtrar por rol"),
    is_active: bool | None = Query(None),
    search: str | None = Query(None, description="Nombre o email"),
    user: User = Depends(require_permission("user", "read")),
    db: AsyncSession = Depends(get_db),
):
    return await user_service.list_users(
        db, page=page, size=size, role=role, is_active=is_active, search=search
    )


@router.post("", response_model=UserResponse, status_code=201)
async def create_user(
    data: UserCreate,
    network: NetworkInfo = Depends(get_network_info),
    user: User = Depends(require_permission("user", "create")),
    db: AsyncSession = Depends(get_db),
    audit: AuditTrailWriter = Depends(get_audit_writer),
):
    """Registra un médico, técnico o administrador."""
    return await user_service.create_user(db, audit, user, data, network)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: UUID,
    user: User = Depends(require_permission("user", "read")),
    db: AsyncSession = Depends(get_db),
):
    return await user_service.get_user(db, user_id)


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: UUID,
    data: UserUpdate,
    network: NetworkInfo = Depends(get_network_info),
    user: User = Depends(require_permission("user", "update")),
    db: AsyncSession = Depends(get_db),
    audit: AuditTrailWriter = Depends(get_audit_writer),
):
    return await user_service.update_user(db, audit, user, user_id, data, network)


@router.delete("/{user_id}", status_code=204)
async def deactivate_user(
    user_id: UUID,
    network: NetworkInfo = Depends(get_network_info),
    user: User = Depends(require_permission("user", "delete")),
    db: AsyncSession = Depends(get_db),
    audit: AuditTrailWriter = Depends(get_audit_writer),
):
    """Desactiva el usuario; no se elimina."""
    await user_service.deactivate_user(db, audit, user, user_id, network)

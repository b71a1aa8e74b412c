"""
Servicio de usuarios: CRUD administrativo (médicos, técnicos, administradores).
"""

import math
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from laudofy.core.exceptions import ConflictException, NotFoundException, ValidationException
from laudofy.core.security import hash_password
from laudofy.models.audit_log import AuditAction
from laudofy.models.user import User, UserRole
from laudofy.schemas.user import UserCreate, UserListResponse, UserResponse, UserUpdate
from laudofy.services.audit_service import Actor, AuditTrailWriter, NetworkInfo

COLLECTION = "users"


def _snapshot(user: User) -> dict:
    return {
        "email": user.email,
        "name": user.name,
        "role": user.role.value,
        "crm": user.crm,
        "is_active": user.is_active,
    }


async def _get_user(db: AsyncSession, user_id: UUID) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise NotFoundException("Usuario")
    return user


async def create_user(
    db: AsyncSession,
    audit: AuditTrailWriter,
    admin: User,
    data: UserCreate,
    network: NetworkInfo,
) -> UserResponse:
    async with audit.track(
        db,
        action=AuditAction.CREATE,
        collection=COLLECTION,
        actor=Actor.from_user(admin),
        network=network,
    ) as trail:
        email = data.email.lower()
        existing = await db.execute(select(User.id).where(User.email == email))
        if existing.scalar_one_or_none():
            raise ConflictException("Ya existe un usuario con ese email")

        user = User(
            email=email,
            name=data.name.strip(),
            role=data.role,
            crm=data.crm.strip() if data.crm else None,
            hashed_password=hash_password(data.password),
        )
        db.add(user)
        await db.flush()

        trail.document_id = user.id
        trail.after = _snapshot(user)

    return UserResponse.model_validate(user)


async def list_users(
    db: AsyncSession,
    *,
    page: int = 1,
    size: int = 20,
    role: UserRole | None = None,
    is_active: bool | None = None,
    search: str | None = None,
) -> UserListResponse:
    query = select(User)
    if role:
        query = query.where(User.role == role)
    if is_active is not None:
        query = query.where(User.is_active == is_active)
    if search:
        term = search.strip()
        query = query.where(
            User.name.icontains(term, autoescape=True) | User.email.icontains(term, autoescape=True)
        )

    total_result = await db.execute(select(func.count()).select_from(query.subquery()))
    total = total_result.scalar() or 0

    result = await db.execute(
        query.order_by(User.name).offset((page - 1) * size).limit(size)
    )
    users = result.scalars().all()

    return UserListResponse(
        items=[UserResponse.model_validate(u) for u in users],
        total=total,
        page=page,
        size=size,
        pages=math.ceil(total / size) if total > 0 else 0,
    )


async def get_user(db: AsyncSession, user_id: UUID) -> UserResponse:
    return UserResponse.model_validate(await _get_user(db, user_id))


async def update_user(
    db: AsyncSession,
    audit: AuditTrailWriter,
    admin: User,
    user_id: UUID,
    data: UserUpdate,
    network: NetworkInfo,
) -> UserResponse:
    async with audit.track(
        db,
        action=AuditAction.UPDATE,
        collection=COLLECTION,
        actor=Actor.from_user(admin),
        network=network,
        document_id=user_id,
    ) as trail:
        user = await _get_user(db, user_id)
        trail.before = _snapshot(user)

        update_data = data.model_dump(exclude_unset=True)
        password = update_data.pop("password", None)
        for field, value in update_data.items():
            if value is not None:
                setattr(user, field, value)
        if password:
            user.hashed_password = hash_password(password)
            user.refresh_token_hash = None

        if user.role == UserRole.PHYSICIAN and not user.crm:
            raise ValidationException("El CRM es obligatorio para médicos")
        if user.id == admin.id and not user.is_active:
            raise ValidationException("No puede desactivar su propio usuario")

        await db.flush()
        trail.after = _snapshot(user)

    return UserResponse.model_validate(user)


async def deactivate_user(
    db: AsyncSession,
    audit: AuditTrailWriter,
    admin: User,
    user_id: UUID,
    network: NetworkInfo,
) -> None:
    """Los usuarios no se eliminan: quedan referenciados por laudos y auditoría."""
    async with audit.track(
        db,
        action=AuditAction.DELETE,
        collection=COLLECTION,
        actor=Actor.from_user(admin),
        network=network,
        document_id=user_id,
    ) as trail:
        if user_id == admin.id:
            raise ValidationException("No puede desactivar su propio usuario")
        user = await _get_user(db, user_id)
        trail.before = _snapshot(user)
        user.is_active = False
        user.refresh_token_hash = None
        await db.flush()
        trail.after = _snapshot(user)

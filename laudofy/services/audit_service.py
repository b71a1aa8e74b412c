"""
Servicio de Audit Log — registra todas las operaciones que mutan estado.
INSERT-only, nunca se modifica ni elimina.

Cada operación produce exactamente una entrada: `ok` si la escritura
principal se confirmó, `failed` si lanzó. La entrada se escribe en una sesión
propia después del commit (o rollback) de la operación, con reintentos; un
fallo al auditar se registra en el log y nunca altera el resultado de la
operación.

    async with audit.track(db, action=AuditAction.CREATE, collection="patients",
                           actor=actor, network=network) as trail:
        ...
        trail.document_id = patient.id
        trail.after = snapshot
"""

import asyncio
import logging
import math
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, AsyncIterator
from uuid import UUID

from fastapi import Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from laudofy.config import get_settings
from laudofy.core.exceptions import ConflictException
from laudofy.database import get_session_factory
from laudofy.models.audit_log import AuditAction, AuditLog, AuditStatus
from laudofy.models.user import User

logger = logging.getLogger(__name__)

MASK = "***"


# ── Tipos del evento ─────────────────────────────────


@dataclass(frozen=True)
class Actor:
    """Quién ejecuta la acción. Se copia al inicio para no depender de la sesión."""
    id: UUID | None
    name: str | None = None
    role: str | None = None

    @classmethod
    def from_user(cls, user: User | None) -> "Actor | None":
        if user is None:
            return None
        return cls(id=user.id, name=user.name, role=user.role.value)


@dataclass(frozen=True)
class NetworkInfo:
    ip: str | None = None
    user_agent: str | None = None


class AuditEvent(BaseModel):
    """Entrada a registrar. `action` fuera del enum falla al construir el evento."""

    actor_id: UUID | None = None
    actor_name: str | None = None
    action: AuditAction
    collection: str
    document_id: str | None = None
    before: dict | None = None
    after: dict | None = None
    ip: str | None = None
    user_agent: str | None = None
    status: AuditStatus = AuditStatus.OK
    detail: str | None = None


def _sanitize_for_json(data: Any) -> Any:
    """Convierte tipos no serializables (date, datetime, UUID, Decimal, Enum) a JSON."""
    if data is None:
        return None
    if isinstance(data, dict):
        return {str(k): _sanitize_for_json(v) for k, v in data.items()}
    if isinstance(data, (list, tuple, set)):
        return [_sanitize_for_json(item) for item in data]
    if isinstance(data, (date, datetime)):
        return data.isoformat()
    if isinstance(data, UUID):
        return str(data)
    if isinstance(data, Decimal):
        return float(data)
    if isinstance(data, Enum):
        return data.value
    return data


def mask_snapshot(data: Any, masked_fields: list[str] | None = None) -> Any:
    """Redacta los atributos configurados. Solo para visualización/exportación."""
    fields_ = {f.lower() for f in (masked_fields if masked_fields is not None else get_settings().AUDIT_MASKED_FIELDS)}
    if isinstance(data, dict):
        return {
            k: (MASK if str(k).lower() in fields_ and v not in (None, "") else mask_snapshot(v, list(fields_)))
            for k, v in data.items()
        }
    if isinstance(data, list):
        return [mask_snapshot(item, list(fields_)) for item in data]
    return data


def _describe_failure(exc: BaseException) -> str:
    if isinstance(exc, HTTPException):
        return f"{exc.status_code}: {exc.detail}"
    return f"{type(exc).__name__}: {exc}"


# ── Operación en curso ───────────────────────────────


@dataclass
class PendingAudit:
    """Datos que la operación completa mientras se ejecuta."""
    action: AuditAction
    collection: str
    actor: Actor | None
    network: NetworkInfo
    failure_action: AuditAction | None = None
    document_id: Any = None
    before: dict | None = None
    after: dict | None = None
    detail: str | None = None

    def to_event(self, status: AuditStatus, detail: str | None = None) -> AuditEvent:
        action = self.action
        if status == AuditStatus.FAILED and self.failure_action is not None:
            action = self.failure_action
        return AuditEvent(
            actor_id=self.actor.id if self.actor else None,
            actor_name=self.actor.name if self.actor else None,
            action=action,
            collection=self.collection,
            document_id=str(self.document_id) if self.document_id else None,
            before=self.before,
            after=self.after,
            ip=self.network.ip,
            user_agent=self.network.user_agent,
            status=status,
            detail=detail if detail is not None else self.detail,
        )


# ── Writer ───────────────────────────────────────────


class AuditTrailWriter:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        attempts: int = 3,
        retry_delay: float = 0.2,
    ):
        self._session_factory = session_factory
        self._attempts = max(1, attempts)
        self._retry_delay = retry_delay

    async def record(self, event: AuditEvent) -> AuditLog | None:
        """
        Inserta la entrada en una sesión propia. Reintenta ante fallos
        transitorios; si se agotan los intentos, lo registra y devuelve None.
        """
        for attempt in range(1, self._attempts + 1):
            try:
                async with self._session_factory() as session:
                    entry = AuditLog(
                        user_id=event.actor_id,
                        user_name=event.actor_name,
                        action=event.action,
                        collection=event.collection,
                        document_id=event.document_id,
                        status=event.status,
                        detail=event.detail,
                        before_data=_sanitize_for_json(event.before),
                        after_data=_sanitize_for_json(event.after),
                        ip_address=event.ip,
                        user_agent=event.user_agent,
                    )
                    session.add(entry)
                    await session.commit()
                    return entry
            except Exception:
                if attempt == self._attempts:
                    logger.exception(
                        "No se pudo registrar la auditoría %s/%s tras %d intentos",
                        event.collection, event.action.value, attempt,
                    )
                    return None
                logger.warning(
                    "Fallo al registrar auditoría (intento %d/%d), reintentando",
                    attempt, self._attempts,
                )
                await asyncio.sleep(self._retry_delay * attempt)
        return None

    @asynccontextmanager
    async def track(
        self,
        db: AsyncSession,
        *,
        action: AuditAction,
        collection: str,
        actor: Actor | None,
        network: NetworkInfo,
        failure_action: AuditAction | None = None,
        document_id: Any = None,
        before: dict | None = None,
    ) -> AsyncIterator[PendingAudit]:
        """
        Envuelve una operación mutante: commit + entrada `ok` al terminar,
        rollback + entrada `failed` si lanza. La excepción se propaga.
        """
        pending = PendingAudit(
            action=action,
            collection=collection,
            actor=actor,
            network=network,
            failure_action=failure_action,
            document_id=document_id,
            before=before,
        )
        try:
            yield pending
            await db.commit()
        except IntegrityError as exc:
            await db.rollback()
            await self.record(pending.to_event(AuditStatus.FAILED, _describe_failure(exc)))
            raise ConflictException("La operación viola una restricción de unicidad") from exc
        except Exception as exc:
            await db.rollback()
            await self.record(pending.to_event(AuditStatus.FAILED, _describe_failure(exc)))
            raise
        await self.record(pending.to_event(AuditStatus.OK))


def get_audit_writer(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> AuditTrailWriter:
    settings = get_settings()
    return AuditTrailWriter(
        session_factory,
        attempts=settings.AUDIT_WRITE_ATTEMPTS,
        retry_delay=settings.AUDIT_RETRY_DELAY_SECONDS,
    )


# ── Consultas ────────────────────────────────────────


async def get_audit_logs(
    db: AsyncSession,
    *,
    page: int = 1,
    size: int = 20,
    action: AuditAction | None = None,
    collection: str | None = None,
    user_id: UUID | None = None,
    document_id: str | None = None,
    status: AuditStatus | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
) -> dict:
    """Consulta paginada del audit log, más recientes primero."""
    conditions = []
    if action:
        conditions.append(AuditLog.action == action)
    if collection:
        conditions.append(AuditLog.collection == collection)
    if user_id:
        conditions.append(AuditLog.user_id == user_id)
    if document_id:
        conditions.append(AuditLog.document_id == document_id)
    if status:
        conditions.append(AuditLog.status == status)
    if date_from:
        conditions.append(AuditLog.created_at >= date_from)
    if date_to:
        conditions.append(AuditLog.created_at <= date_to)

    total_result = await db.execute(select(func.count(AuditLog.id)).where(*conditions))
    total = total_result.scalar() or 0

    offset = (page - 1) * size
    result = await db.execute(
        select(AuditLog)
        .where(*conditions)
        .order_by(AuditLog.created_at.desc())
        .offset(offset)
        .limit(size)
    )
    items = result.scalars().all()

    return {
        "items": items,
        "total": total,
        "page": page,
        "size": size,
        "pages": math.ceil(total / size) if total > 0 else 0,
    }


async def get_audit_log(db: AsyncSession, log_id: UUID) -> AuditLog | None:
    result = await db.execute(select(AuditLog).where(AuditLog.id == log_id))
    return result.scalar_one_or_none()

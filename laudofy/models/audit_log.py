"""
Modelo AuditLog — Registro de auditoría INMUTABLE.
INSERT-only: se registra cada intento de mutación, exitoso o fallido.
Los snapshots before/after se guardan ya descifrados; el enmascarado
se aplica solo al mostrarlos.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from laudofy.database import Base, JSONType, utcnow


class AuditAction(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    LOGIN = "login"
    LOGOUT = "logout"
    OTHER = "other"
    LOGIN_FAILED = "login_failed"
    REFRESH_TOKEN = "refresh_token"
    REFRESH_TOKEN_FAILED = "refresh_token_failed"
    CREATE_FAILED = "create_failed"
    UPLOAD_SIGNED = "upload_signed"
    RECREATE = "recreate"
    FORGOT_PASSWORD = "forgot_password"
    FORGOT_PASSWORD_FAILED = "forgot_password_failed"
    FORGOT_PASSWORD_REQUEST = "forgot_password_request"
    RESET_PASSWORD = "reset_password"
    PASSWORD_RESET_FAILED = "password_reset_failed"
    PASSWORD_RESET_INVALID_TOKEN = "password_reset_invalid_token"
    PASSWORD_RESET_SUCCESS = "password_reset_success"


class AuditStatus(str, enum.Enum):
    OK = "ok"
    FAILED = "failed"


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id"), index=True,
        comment="Null en intentos no autenticados"
    )
    user_name: Mapped[str | None] = mapped_column(String(200))

    # ── Datos del evento ─────────────────────────────
    action: Mapped[AuditAction] = mapped_column(
        Enum(AuditAction, values_callable=lambda e: [x.value for x in e], native_enum=False, length=40),
        nullable=False, index=True,
    )
    collection: Mapped[str] = mapped_column(
        String(50), nullable=False, index=True,
        comment="Tabla afectada: patients, exams, medical_reports, etc."
    )
    document_id: Mapped[str | None] = mapped_column(
        String(36), index=True, comment="UUID del registro afectado"
    )
    status: Mapped[AuditStatus] = mapped_column(
        Enum(AuditStatus, values_callable=lambda e: [x.value for x in e], native_enum=False, length=10),
        nullable=False, default=AuditStatus.OK,
    )
    detail: Mapped[str | None] = mapped_column(Text)

    # ── Datos del cambio ─────────────────────────────
    before_data: Mapped[dict | None] = mapped_column(
        JSONType, comment="Snapshot descifrado antes del cambio"
    )
    after_data: Mapped[dict | None] = mapped_column(
        JSONType, comment="Snapshot descifrado después del cambio"
    )

    # ── Metadata de la request ───────────────────────
    ip_address: Mapped[str | None] = mapped_column(String(45))
    user_agent: Mapped[str | None] = mapped_column(Text)

    # ── Timestamp inmutable ──────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<AuditLog {self.action.value} on {self.collection} {self.document_id}>"


Index("idx_audit_log_created_at_desc", AuditLog.created_at.desc())

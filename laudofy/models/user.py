"""
Modelo User — Usuarios del sistema con roles RBAC.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from laudofy.database import Base, utcnow


class UserRole(str, enum.Enum):
    """Roles del sistema."""
    ADMIN = "admin"
    PHYSICIAN = "medico"
    TECHNICIAN = "tecnico"


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )

    # ── Datos de acceso ──────────────────────────────
    email: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole), nullable=False, default=UserRole.TECHNICIAN
    )

    # ── Datos profesionales ──────────────────────────
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    crm: Mapped[str | None] = mapped_column(
        String(20), comment="Registro en el Conselho Regional de Medicina"
    )

    # ── Tokens (solo hashes SHA-256) ─────────────────
    refresh_token_hash: Mapped[str | None] = mapped_column(String(64), index=True)
    reset_token_hash: Mapped[str | None] = mapped_column(String(64), index=True)
    reset_token_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # ── Estado ───────────────────────────────────────
    is_active: Mapped[bool] = mapped_column(default=True)
    last_login: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    @property
    def is_physician(self) -> bool:
        return self.role == UserRole.PHYSICIAN

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role.value})>"

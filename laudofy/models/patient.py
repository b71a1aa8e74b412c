"""
Modelo Patient — Pacientes.
CPF, fecha de nacimiento, dirección y teléfono se guardan cifrados (Fernet);
la unicidad del CPF se garantiza sobre su índice ciego (HMAC).
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from laudofy.database import Base, utcnow


class Patient(Base):
    __tablename__ = "patients"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )

    # ── Identidad ────────────────────────────────────
    name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    cpf: Mapped[str] = mapped_column(
        Text, nullable=False, comment="CPF (solo dígitos) cifrado con Fernet"
    )
    cpf_hash: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True, index=True,
        comment="HMAC-SHA256 del CPF normalizado para unicidad y búsqueda"
    )
    birth_date: Mapped[str] = mapped_column(
        Text, nullable=False, comment="YYYY-MM-DD cifrado"
    )

    # ── Contacto ─────────────────────────────────────
    address: Mapped[str | None] = mapped_column(Text, comment="Cifrado con Fernet")
    phone: Mapped[str | None] = mapped_column(Text, comment="Cifrado con Fernet")
    email: Mapped[str | None] = mapped_column(String(255))

    created_by_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    # ── Relaciones ───────────────────────────────────
    exams: Mapped[list["Exam"]] = relationship(  # noqa: F821
        "Exam", back_populates="patient"
    )

    def __repr__(self) -> str:
        return f"<Patient {self.name}>"

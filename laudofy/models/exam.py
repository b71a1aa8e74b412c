"""
Modelo Exam — Solicitudes de examen subidas por técnicos.
Tipo, estado, lecturas clínicas y URLs de archivo se guardan cifrados
individualmente; cada lectura es opcional.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from laudofy.database import Base, utcnow

# Orden de avance del estado del examen (nunca retrocede)
EXAM_STATUS_RANK = {
    "Pendente": 0,
    "Concluído": 1,
    "Laudo realizado": 2,
}


class Exam(Base):
    __tablename__ = "exams"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("patients.id"), nullable=False, index=True
    )
    technician_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )

    # ── Campos cifrados ──────────────────────────────
    exam_type: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    file_url: Mapped[str] = mapped_column(Text, nullable=False)
    thumbnail_url: Mapped[str | None] = mapped_column(Text)

    # ── Lecturas clínicas ────────────────────────────
    pr_segment: Mapped[str | None] = mapped_column(Text, comment="Segmento PR (ms)")
    heart_rate: Mapped[str | None] = mapped_column(Text, comment="Frecuencia cardíaca (bpm)")
    qrs_duration: Mapped[str | None] = mapped_column(Text, comment="Duración QRS (ms)")
    qrs_axis: Mapped[str | None] = mapped_column(Text, comment="Eje medio QRS (grados)")
    height: Mapped[str | None] = mapped_column(Text, comment="Altura (cm)")
    weight: Mapped[str | None] = mapped_column(Text, comment="Peso (kg)")
    age: Mapped[str | None] = mapped_column(Text, comment="Edad declarada al examen")
    symptoms: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    # ── Relaciones ───────────────────────────────────
    patient: Mapped["Patient"] = relationship(  # noqa: F821
        "Patient", back_populates="exams"
    )
    technician: Mapped["User"] = relationship("User")  # noqa: F821

    def __repr__(self) -> str:
        return f"<Exam {self.id}>"

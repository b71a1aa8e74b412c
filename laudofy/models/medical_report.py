"""
Modelo MedicalReport — Laudo médico versionado.

Cada rehecho crea una nueva versión enlazada en ambos sentidos
(previous_report_id / replacement_report_id). Como máximo un laudo por examen
puede estar válido: lo garantiza un índice único parcial sobre
(exam_id) WHERE valid.

El historial de eventos vive embebido en una columna JSON; las entradas se
agregan reasignando la lista, nunca se eliminan ni se reordenan.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from laudofy.database import Base, JSONType, utcnow


class ReportStatus(str, enum.Enum):
    DRAFT = "Rascunho"
    PROCESSING = "Laudo em processamento"
    ISSUED = "Laudo realizado"
    SIGNED = "Laudo assinado"
    REDONE = "Laudo refeito"
    INVALIDATED = "Cancelado"
    PDF_ERROR = "Erro ao gerar PDF"
    SEND_ERROR = "Erro no envio"


class HistoryAction(str, enum.Enum):
    CREATED = "Criação"
    UPDATED = "Atualização"
    SIGNED = "Assinatura"
    EMAIL_SENT = "EnvioEmail"
    REDONE = "Refação"
    INVALIDATED = "Cancelamento"
    FINANCIAL_TRANSACTION = "TransacaoFinanceira"


class SendStatus(str, enum.Enum):
    PENDING = "Pendente"
    SENT = "Enviado"
    FAILED = "Falha"


class MedicalReport(Base):
    __tablename__ = "medical_reports"
    __table_args__ = (
        Index(
            "uq_medical_reports_exam_valid",
            "exam_id",
            unique=True,
            postgresql_where=text("valid = true"),
            sqlite_where=text("valid = 1"),
        ),
        Index("ix_medical_reports_signed_at", "signed_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    exam_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("exams.id"), nullable=False, index=True
    )
    physician_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )

    # ── Contenido (cifrado) ──────────────────────────
    physician_name: Mapped[str] = mapped_column(Text, nullable=False)
    conclusion: Mapped[str] = mapped_column(Text, nullable=False)
    original_file_url: Mapped[str | None] = mapped_column(Text)
    signed_file_url: Mapped[str | None] = mapped_column(Text)

    # ── Estado y versionado ──────────────────────────
    status: Mapped[ReportStatus] = mapped_column(
        Enum(
            ReportStatus,
            name="report_status",
            values_callable=lambda e: [x.value for x in e],
            native_enum=False,
            length=40,
        ),
        nullable=False,
        default=ReportStatus.DRAFT,
        index=True,
    )
    valid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    previous_report_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("medical_reports.id"), nullable=True
    )
    replacement_report_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("medical_reports.id"), nullable=True
    )
    redo_reason: Mapped[str | None] = mapped_column(Text, comment="Motivo del rehecho (cifrado)")
    replacement_reason: Mapped[str | None] = mapped_column(
        Text, comment="Motivo por el que esta versión fue sustituida (cifrado)"
    )
    invalidation_reason: Mapped[str | None] = mapped_column(Text)

    # ── Historial embebido ───────────────────────────
    history: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    # ── Autoría (cifrado) ────────────────────────────
    created_by_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id"))
    created_by_name: Mapped[str | None] = mapped_column(Text)
    updated_by_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id"))
    updated_by_name: Mapped[str | None] = mapped_column(Text)

    # ── Firma, envío y acceso público ────────────────
    signed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    email_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    email_recipient: Mapped[str | None] = mapped_column(Text)
    public_link: Mapped[str | None] = mapped_column(Text)
    access_code: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    # ── Relaciones ───────────────────────────────────
    exam: Mapped["Exam"] = relationship("Exam")  # noqa: F821

    @property
    def is_current_version(self) -> bool:
        return self.replacement_report_id is None

    def __repr__(self) -> str:
        return f"<MedicalReport {self.id} v{self.version} ({self.status.value})>"

"""
Modelos FinancialConfig + FinancialTransaction — Honorarios por laudo.

Cada médico tiene una configuración activa (precio por tipo de examen y
porcentaje de comisión). Al firmarse un laudo se genera exactamente una
transacción con el reparto médico/clínica.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from laudofy.database import Base, JSONType, utcnow


class PaymentStatus(str, enum.Enum):
    """Estado de pago de una transacción."""
    PENDING = "pendente"
    PAID = "pago"
    CANCELLED = "cancelado"


class FinancialConfig(Base):
    __tablename__ = "financial_configs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    physician_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )
    prices_by_exam_type: Mapped[dict] = mapped_column(
        JSONType, nullable=False, default=dict,
        comment='Precio base por tipo de examen: {"ECG": 80.0, "HOLTER": 150.0}'
    )
    commission_percent: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), nullable=False,
        comment="Porcentaje (0-100) que corresponde al médico"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_by_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id"))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    physician: Mapped["User"] = relationship("User", foreign_keys=[physician_id])  # noqa: F821

    __table_args__ = (
        Index("idx_financial_config_physician_active", "physician_id", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<FinancialConfig {self.physician_id} {self.commission_percent}%>"


class FinancialTransaction(Base):
    __tablename__ = "financial_transactions"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    report_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("medical_reports.id"), nullable=False, unique=True
    )
    exam_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("exams.id"), nullable=False
    )
    physician_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    exam_type: Mapped[str] = mapped_column(String(20), nullable=False)

    base_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    commission_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    physician_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    clinic_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, values_callable=lambda e: [x.value for x in e]),
        nullable=False, default=PaymentStatus.PENDING
    )
    report_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    payment_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    physician: Mapped["User"] = relationship("User", foreign_keys=[physician_id])  # noqa: F821

    __table_args__ = (
        Index("idx_financial_tx_physician_date", "physician_id", "report_date"),
        Index("idx_financial_tx_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<FinancialTransaction {self.id} {self.base_value} ({self.status.value})>"

"""
Modelo Invoice + InvoiceItem — Fatura mensal de honorarios del médico.

Una fatura agrupa las transacciones no canceladas de un médico en un mes
calendario; cada ítem referencia una transacción y su valor para el médico.
"""

import enum
import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from laudofy.database import Base, utcnow


class InvoiceStatus(str, enum.Enum):
    """Estado de la fatura."""
    PENDING = "pendente"
    PAID = "paga"
    CANCELLED = "cancelada"


class Invoice(Base):
    __tablename__ = "invoices"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    physician_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    created_by_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id"))

    # ── Período ──────────────────────────────────────
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(
        Date, nullable=False,
        comment="Último día del mes facturado (inclusive)"
    )

    # ── Montos ───────────────────────────────────────
    total_value: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False,
        comment="Suma del valor del médico de los ítems"
    )

    status: Mapped[InvoiceStatus] = mapped_column(
        Enum(InvoiceStatus, values_callable=lambda e: [x.value for x in e]),
        nullable=False, default=InvoiceStatus.PENDING
    )
    payment_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    notes: Mapped[str | None] = mapped_column(Text)

    # ── Timestamps ───────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    # ── Relaciones ───────────────────────────────────
    physician: Mapped["User"] = relationship("User", foreign_keys=[physician_id])  # noqa: F821
    items: Mapped[list["InvoiceItem"]] = relationship(
        "InvoiceItem", back_populates="invoice", lazy="selectin", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("idx_invoice_physician_period", "physician_id", "period_start"),
    )

    def __repr__(self) -> str:
        return f"<Invoice {self.physician_id} {self.period_start:%m/%Y} R${self.total_value}>"


class InvoiceItem(Base):
    __tablename__ = "invoice_items"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False
    )
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("financial_transactions.id"), nullable=False
    )
    exam_type: Mapped[str] = mapped_column(String(20), nullable=False)
    value: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False,
        comment="Valor del médico en la transacción"
    )

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="items")

    def __repr__(self) -> str:
        return f"<InvoiceItem {self.transaction_id} R${self.value}>"

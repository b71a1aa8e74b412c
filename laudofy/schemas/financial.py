"""
Schemas financieros: configuración por médico, transacciones, reporte,
fatura mensal y dashboard.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from laudofy.core.fields import EXAM_TYPES
from laudofy.models.financial import PaymentStatus
from laudofy.models.invoice import InvoiceStatus


class FinancialConfigCreate(BaseModel):
    physician_id: UUID
    prices_by_exam_type: dict[str, Decimal] = Field(
        default_factory=dict, description='Ej: {"ECG": 80.00, "HOLTER": 150.00}'
    )
    commission_percent: Decimal = Field(..., ge=0, le=100)

    @field_validator("prices_by_exam_type")
    @classmethod
    def validate_exam_types(cls, v: dict[str, Decimal]) -> dict[str, Decimal]:
        normalized = {}
        for exam_type, price in v.items():
            key = exam_type.strip().upper()
            if key not in EXAM_TYPES:
                raise ValueError(
                    f"Tipo de examen inválido: {exam_type}. Permitidos: {', '.join(EXAM_TYPES)}"
                )
            if price < 0:
                raise ValueError(f"Precio negativo para {key}")
            normalized[key] = price
        return normalized


class FinancialConfigResponse(BaseModel):
    id: UUID
    physician_id: UUID
    prices_by_exam_type: dict[str, float]
    commission_percent: Decimal
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class TransactionResponse(BaseModel):
    id: UUID
    report_id: UUID
    exam_id: UUID
    physician_id: UUID
    exam_type: str
    base_value: Decimal
    commission_percent: Decimal
    physician_value: Decimal
    clinic_value: Decimal
    status: PaymentStatus
    report_date: datetime
    payment_date: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class PaymentStatusUpdate(BaseModel):
    status: PaymentStatus


class FinancialTotals(BaseModel):
    count: int
    base_value: Decimal
    physician_value: Decimal
    clinic_value: Decimal
    paid: Decimal
    pending: Decimal


class FinancialReportResponse(BaseModel):
    period: Literal["dia", "semana", "mes", "intervalo"]
    start: date
    end: date
    totals: FinancialTotals
    by_exam_type: dict[str, FinancialTotals]
    items: list[TransactionResponse]


class TransactionListResponse(BaseModel):
    items: list[TransactionResponse]
    total: int
    page: int
    size: int
    pages: int


# ── Fatura mensal ────────────────────────────────────


class InvoiceGenerate(BaseModel):
    physician_id: UUID
    year: int = Field(..., ge=2000, le=2100)
    month: int = Field(..., ge=1, le=12)
    notes: str | None = Field(None, max_length=2000)


class InvoiceItemResponse(BaseModel):
    transaction_id: UUID
    exam_type: str
    value: Decimal

    model_config = {"from_attributes": True}


class InvoiceResponse(BaseModel):
    id: UUID
    physician_id: UUID
    period_start: date
    period_end: date
    total_value: Decimal
    status: InvoiceStatus
    payment_date: datetime | None = None
    notes: str | None = None
    created_by_id: UUID | None = None
    items: list[InvoiceItemResponse]
    created_at: datetime

    model_config = {"from_attributes": True}


class InvoiceStatusUpdate(BaseModel):
    status: InvoiceStatus


# ── Dashboard ────────────────────────────────────────


class PhysicianRanking(BaseModel):
    physician_id: UUID
    physician_name: str | None = None
    physician_value: Decimal
    count: int


class MonthlyFinancialTotals(BaseModel):
    month: str = Field(..., description="YYYY-MM")
    count: int
    base_value: Decimal
    physician_value: Decimal
    clinic_value: Decimal


class FinancialDashboard(BaseModel):
    month_start: date
    month_totals: FinancialTotals
    top_physicians: list[PhysicianRanking]
    recent_transactions: list[TransactionResponse]
    monthly: list[MonthlyFinancialTotals]

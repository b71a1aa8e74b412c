"""
Endpoints financieros: configuración de honorarios, transacciones, reporte,
faturas mensuales y dashboard.
"""

from datetime import date
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from laudofy.auth.dependencies import get_network_info, require_permission
from laudofy.database import get_db
from laudofy.models.financial import PaymentStatus
from laudofy.models.invoice import InvoiceStatus
from laudofy.models.user import User
from laudofy.schemas.financial import (
    FinancialConfigCreate,
    FinancialConfigResponse,
    FinancialDashboard,
    FinancialReportResponse,
    InvoiceGenerate,
    InvoiceResponse,
    InvoiceStatusUpdate,
    PaymentStatusUpdate,
    TransactionListResponse,
    TransactionResponse,
)
from laudofy.services import financial_service
from laudofy.services.audit_service import AuditTrailWriter, NetworkInfo, get_audit_writer

router = APIRouter()


@router.post("/configs", response_model=FinancialConfigResponse, status_code=201)
async def create_config(
    data: FinancialConfigCreate,
    network: NetworkInfo = Depends(get_network_info),
    user: User = Depends(require_permission("financial", "configure")),
    db: AsyncSession = Depends(get_db),
    audit: AuditTrailWriter = Depends(get_audit_writer),
):
    """Nueva configuración de precios y comisión; reemplaza la vigente."""
    return await financial_service.create_config(db, audit, user, data, network)


@router.get("/configs/{physician_id}", response_model=list[FinancialConfigResponse])
async def list_configs(
    physician_id: UUID,
    user: User = Depends(require_permission("financial", "configure")),
    db: AsyncSession = Depends(get_db),
):
    """Historial de configuraciones del médico, la vigente primero."""
    return await financial_service.list_configs(db, physician_id)


@router.get("/transactions", response_model=TransactionListResponse)
async def list_transactions(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    physician_id: UUID | None = Query(None),
    status: PaymentStatus | None = Query(None),
    user: User = Depends(require_permission("financial", "read")),
    db: AsyncSession = Depends(get_db),
):
    return await financial_service.list_transactions(
        db, user, page=page, size=size, physician_id=physician_id, status=status
    )


@router.patch("/transactions/{transaction_id}", response_model=TransactionResponse)
async def update_payment_status(
    transaction_id: UUID,
    data: PaymentStatusUpdate,
    network: NetworkInfo = Depends(get_network_info),
    user: User = Depends(require_permission("financial", "update")),
    db: AsyncSession = Depends(get_db),
    audit: AuditTrailWriter = Depends(get_audit_writer),
):
    return await financial_service.update_payment_status(
        db, audit, user, transaction_id, data.status, network
    )


@router.get("/report", response_model=FinancialReportResponse)
async def financial_report(
    period: Literal["dia", "semana", "mes"] | None = Query(
        None, description="Período predefinido. Por defecto: mes actual"
    ),
    start: date | None = Query(None, description="Desde (YYYY-MM-DD)"),
    end: date | None = Query(None, description="Hasta (YYYY-MM-DD)"),
    physician_id: UUID | None = Query(None),
    exam_type: str | None = Query(None),
    status: PaymentStatus | None = Query(None),
    user: User = Depends(require_permission("financial", "read")),
    db: AsyncSession = Depends(get_db),
):
    """Totales del período por médico y tipo de examen."""
    return await financial_service.financial_report(
        db,
        user,
        period=period,
        start=start,
        end=end,
        physician_id=physician_id,
        exam_type=exam_type,
        status=status,
    )


# ── Fatura mensal ────────────────────────────────────


@router.post("/invoices", response_model=InvoiceResponse, status_code=201)
async def generate_monthly_invoice(
    data: InvoiceGenerate,
    network: NetworkInfo = Depends(get_network_info),
    user: User = Depends(require_permission("financial", "invoice")),
    db: AsyncSession = Depends(get_db),
    audit: AuditTrailWriter = Depends(get_audit_writer),
):
    """Fatura del médico con sus transacciones no canceladas del mes."""
    return await financial_service.generate_monthly_invoice(db, audit, user, data, network)


@router.get("/invoices", response_model=list[InvoiceResponse])
async def list_invoices(
    physician_id: UUID | None = Query(None),
    status: InvoiceStatus | None = Query(None),
    user: User = Depends(require_permission("financial", "read")),
    db: AsyncSession = Depends(get_db),
):
    return await financial_service.list_invoices(db, user, physician_id=physician_id, status=status)


@router.patch("/invoices/{invoice_id}", response_model=InvoiceResponse)
async def update_invoice_status(
    invoice_id: UUID,
    data: InvoiceStatusUpdate,
    network: NetworkInfo = Depends(get_network_info),
    user: User = Depends(require_permission("financial", "invoice")),
    db: AsyncSession = Depends(get_db),
    audit: AuditTrailWriter = Depends(get_audit_writer),
):
    return await financial_service.update_invoice_status(
        db, audit, user, invoice_id, data.status, network
    )


@router.get("/dashboard", response_model=FinancialDashboard)
async def financial_dashboard(
    user: User = Depends(require_permission("financial", "dashboard")),
    db: AsyncSession = Depends(get_db),
):
    """Resumen del mes en curso y evolución de los últimos 6 meses."""
    return await financial_service.financial_dashboard(db)

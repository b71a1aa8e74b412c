"""
Servicio financiero: configuración de honorarios por médico, transacción
generada al firmar un laudo, reporte de totales por período, fatura mensal
del médico y dashboard.
"""

import logging
import math
from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from dateutil.relativedelta import relativedelta
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from laudofy.config import get_settings
from laudofy.core.exceptions import ConflictException, NotFoundException, ValidationException
from laudofy.models.audit_log import AuditAction
from laudofy.models.financial import FinancialConfig, FinancialTransaction, PaymentStatus
from laudofy.models.invoice import Invoice, InvoiceItem, InvoiceStatus
from laudofy.models.medical_report import MedicalReport
from laudofy.models.user import User, UserRole
from laudofy.schemas.financial import (
    FinancialConfigCreate,
    FinancialConfigResponse,
    FinancialDashboard,
    FinancialReportResponse,
    FinancialTotals,
    InvoiceGenerate,
    InvoiceResponse,
    MonthlyFinancialTotals,
    PhysicianRanking,
    TransactionResponse,
)
from laudofy.services.audit_service import Actor, AuditTrailWriter, NetworkInfo

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def split_value(base_value: Decimal, commission_percent: Decimal) -> tuple[Decimal, Decimal]:
    """Reparto (médico, clínica): médico = base × comisión / 100, clínica = resto."""
    physician = _money(base_value * commission_percent / Decimal(100))
    return physician, _money(base_value) - physician


# ── Configuración ────────────────────────────────────


async def get_active_config(db: AsyncSession, physician_id: UUID) -> FinancialConfig | None:
    result = await db.execute(
        select(FinancialConfig)
        .where(
            FinancialConfig.physician_id == physician_id,
            FinancialConfig.is_active.is_(True),
        )
        .order_by(FinancialConfig.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def create_config(
    db: AsyncSession,
    audit: AuditTrailWriter,
    admin: User,
    data: FinancialConfigCreate,
    network: NetworkInfo,
) -> FinancialConfigResponse:
    """Crea la configuración vigente del médico; la anterior queda inactiva."""
    async with audit.track(
        db,
        action=AuditAction.CREATE,
        collection="financial_configs",
        actor=Actor.from_user(admin),
        network=network,
    ) as trail:
        physician = await db.get(User, data.physician_id)
        if physician is None or physician.role != UserRole.PHYSICIAN:
            raise NotFoundException("Médico")

        previous = await get_active_config(db, physician.id)
        if previous is not None:
            trail.before = {
                "id": previous.id,
                "prices_by_exam_type": previous.prices_by_exam_type,
                "commission_percent": previous.commission_percent,
            }
        await db.execute(
            update(FinancialConfig)
            .where(
                FinancialConfig.physician_id == physician.id,
                FinancialConfig.is_active.is_(True),
            )
            .values(is_active=False)
        )

        config = FinancialConfig(
            physician_id=physician.id,
            prices_by_exam_type={k: float(v) for k, v in data.prices_by_exam_type.items()},
            commission_percent=data.commission_percent,
            is_active=True,
            created_by_id=admin.id,
        )
        db.add(config)
        await db.flush()

        trail.document_id = config.id
        trail.after = {
            "physician_id": physician.id,
            "prices_by_exam_type": config.prices_by_exam_type,
            "commission_percent": config.commission_percent,
        }

    return FinancialConfigResponse.model_validate(config)


async def list_configs(db: AsyncSession, physician_id: UUID) -> list[FinancialConfigResponse]:
    result = await db.execute(
        select(FinancialConfig)
        .where(FinancialConfig.physician_id == physician_id)
        .order_by(FinancialConfig.created_at.desc())
    )
    return [FinancialConfigResponse.model_validate(c) for c in result.scalars().all()]


# ── Transacción por laudo firmado ────────────────────


async def ensure_transaction(
    db: AsyncSession,
    report: MedicalReport,
    exam_type: str,
) -> FinancialTransaction | None:
    """
    Crea la transacción del laudo si todavía no existe. Devuelve None si ya
    existía. Sin configuración activa se usa precio 0 y la comisión por defecto.
    """
    existing = await db.execute(
        select(FinancialTransaction.id).where(FinancialTransaction.report_id == report.id)
    )
    if existing.scalar_one_or_none():
        return None

    config = await get_active_config(db, report.physician_id)
    if config is None:
        logger.warning(
            "Médico %s sin configuración financiera activa; transacción con valor 0",
            report.physician_id,
        )
        base_value = Decimal("0")
        commission = Decimal(str(get_settings().DEFAULT_COMMISSION_PERCENT))
    else:
        base_value = Decimal(str(config.prices_by_exam_type.get(exam_type, 0)))
        commission = Decimal(config.commission_percent)

    physician_value, clinic_value = split_value(base_value, commission)
    transaction = FinancialTransaction(
        report_id=report.id,
        exam_id=report.exam_id,
        physician_id=report.physician_id,
        exam_type=exam_type,
        base_value=_money(base_value),
        commission_percent=commission,
        physician_value=physician_value,
        clinic_value=clinic_value,
        status=PaymentStatus.PENDING,
        report_date=report.signed_at or datetime.now(timezone.utc),
    )
    db.add(transaction)
    await db.flush()
    return transaction


async def list_transactions(
    db: AsyncSession,
    user: User,
    *,
    page: int = 1,
    size: int = 20,
    physician_id: UUID | None = None,
    status: PaymentStatus | None = None,
) -> dict:
    """Transacciones paginadas. Un médico solo ve las suyas."""
    if user.role == UserRole.PHYSICIAN:
        physician_id = user.id

    query = select(FinancialTransaction)
    if physician_id:
        query = query.where(FinancialTransaction.physician_id == physician_id)
    if status:
        query = query.where(FinancialTransaction.status == status)

    total_result = await db.execute(select(func.count()).select_from(query.subquery()))
    total = total_result.scalar() or 0

    result = await db.execute(
        query.order_by(FinancialTransaction.report_date.desc())
        .offset((page - 1) * size)
        .limit(size)
    )
    return {
        "items": [TransactionResponse.model_validate(t) for t in result.scalars().all()],
        "total": total,
        "page": page,
        "size": size,
        "pages": math.ceil(total / size) if total > 0 else 0,
    }


# ── Estado de pago ───────────────────────────────────


async def update_payment_status(
    db: AsyncSession,
    audit: AuditTrailWriter,
    admin: User,
    transaction_id: UUID,
    status: PaymentStatus,
    network: NetworkInfo,
) -> TransactionResponse:
    """Solo cambia estado y fecha de pago. Una transacción cancelada no se reabre."""
    async with audit.track(
        db,
        action=AuditAction.UPDATE,
        collection="financial_transactions",
        actor=Actor.from_user(admin),
        network=network,
        document_id=transaction_id,
    ) as trail:
        transaction = await db.get(FinancialTransaction, transaction_id)
        if transaction is None:
            raise NotFoundException("Transacción")
        if transaction.status == PaymentStatus.CANCELLED:
            raise ConflictException("La transacción está cancelada")

        trail.before = {"status": transaction.status.value, "payment_date": transaction.payment_date}
        transaction.status = status
        if status == PaymentStatus.PAID:
            transaction.payment_date = datetime.now(timezone.utc)
        elif status == PaymentStatus.PENDING:
            transaction.payment_date = None
        await db.flush()
        trail.after = {"status": transaction.status.value, "payment_date": transaction.payment_date}

    return TransactionResponse.model_validate(transaction)


# ── Reporte ──────────────────────────────────────────


def resolve_period(
    period: str | None,
    start: date | None,
    end: date | None,
    today: date | None = None,
) -> tuple[str, date, date]:
    """`dia`, `semana` (lunes a hoy), `mes` (día 1 a hoy) o intervalo explícito."""
    today = today or date.today()
    if start or end:
        if not (start and end):
            raise ValidationException("Un intervalo requiere fecha inicial y final")
        if start > end:
            raise ValidationException("La fecha inicial es posterior a la final")
        return "intervalo", start, end
    if period in (None, "mes"):
        return "mes", today.replace(day=1), today
    if period == "dia":
        return "dia", today, today
    if period == "semana":
        return "semana", today - timedelta(days=today.weekday()), today
    raise ValidationException("Período inválido. Use: dia, semana, mes")


def _day_range(start: date, end: date) -> tuple[datetime, datetime]:
    """Intervalo UTC semiabierto [start 00:00, end+1 00:00)."""
    return (
        datetime.combine(start, time.min, tzinfo=timezone.utc),
        datetime.combine(end + timedelta(days=1), time.min, tzinfo=timezone.utc),
    )


def _totals(transactions: list[FinancialTransaction]) -> FinancialTotals:
    zero = Decimal("0.00")
    active = [t for t in transactions if t.status != PaymentStatus.CANCELLED]
    return FinancialTotals(
        count=len(active),
        base_value=sum((Decimal(t.base_value) for t in active), zero),
        physician_value=sum((Decimal(t.physician_value) for t in active), zero),
        clinic_value=sum((Decimal(t.clinic_value) for t in active), zero),
        paid=sum((Decimal(t.physician_value) for t in active if t.status == PaymentStatus.PAID), zero),
        pending=sum((Decimal(t.physician_value) for t in active if t.status == PaymentStatus.PENDING), zero),
    )


async def financial_report(
    db: AsyncSession,
    user: User,
    *,
    period: str | None = None,
    start: date | None = None,
    end: date | None = None,
    physician_id: UUID | None = None,
    exam_type: str | None = None,
    status: PaymentStatus | None = None,
) -> FinancialReportResponse:
    """Totales del período. Un médico solo ve sus propias transacciones."""
    label, start_date, end_date = resolve_period(period, start, end)
    if user.role == UserRole.PHYSICIAN:
        physician_id = user.id

    start_at, end_at = _day_range(start_date, end_date)

    query = select(FinancialTransaction).where(
        FinancialTransaction.report_date >= start_at,
        FinancialTransaction.report_date < end_at,
    )
    if physician_id:
        query = query.where(FinancialTransaction.physician_id == physician_id)
    if exam_type:
        query = query.where(FinancialTransaction.exam_type == exam_type.strip().upper())
    if status:
        query = query.where(FinancialTransaction.status == status)

    result = await db.execute(query.order_by(FinancialTransaction.report_date.desc()))
    transactions = list(result.scalars().all())

    by_type: dict[str, list[FinancialTransaction]] = {}
    for t in transactions:
        by_type.setdefault(t.exam_type, []).append(t)

    return FinancialReportResponse(
        period=label,
        start=start_date,
        end=end_date,
        totals=_totals(transactions),
        by_exam_type={k: _totals(v) for k, v in by_type.items()},
        items=[TransactionResponse.model_validate(t) for t in transactions],
    )


# ── Fatura mensal ────────────────────────────────────


def month_bounds(year: int, month: int) -> tuple[date, date]:
    """Primer y último día del mes."""
    start = date(year, month, 1)
    return start, start + relativedelta(months=1) - timedelta(days=1)


def _invoice_snapshot(invoice: Invoice) -> dict:
    return {
        "physician_id": invoice.physician_id,
        "period_start": invoice.period_start,
        "period_end": invoice.period_end,
        "total_value": invoice.total_value,
        "status": invoice.status.value,
        "transactions": [item.transaction_id for item in invoice.items],
    }


async def generate_monthly_invoice(
    db: AsyncSession,
    audit: AuditTrailWriter,
    admin: User,
    data: InvoiceGenerate,
    network: NetworkInfo,
) -> InvoiceResponse:
    """
    Agrupa las transacciones no canceladas del médico en el mes. 404 si no
    hay transacciones; 409 si ya existe una fatura vigente del período.
    """
    async with audit.track(
        db,
        action=AuditAction.CREATE,
        collection="invoices",
        actor=Actor.from_user(admin),
        network=network,
    ) as trail:
        physician = await db.get(User, data.physician_id)
        if physician is None or physician.role != UserRole.PHYSICIAN:
            raise NotFoundException("Médico")

        start, end = month_bounds(data.year, data.month)
        trail.after = {"physician_id": physician.id, "period_start": start}
        existing = await db.execute(
            select(Invoice.id).where(
                Invoice.physician_id == physician.id,
                Invoice.period_start == start,
                Invoice.status != InvoiceStatus.CANCELLED,
            )
        )
        if existing.scalars().first():
            raise ConflictException("El médico ya tiene una fatura para el período")

        start_at, end_at = _day_range(start, end)
        result = await db.execute(
            select(FinancialTransaction)
            .where(
                FinancialTransaction.physician_id == physician.id,
                FinancialTransaction.report_date >= start_at,
                FinancialTransaction.report_date < end_at,
                FinancialTransaction.status != PaymentStatus.CANCELLED,
            )
            .order_by(FinancialTransaction.report_date)
        )
        transactions = list(result.scalars().all())
        if not transactions:
            raise NotFoundException(detail="No hay transacciones del médico en el período")

        invoice = Invoice(
            physician_id=physician.id,
            period_start=start,
            period_end=end,
            total_value=sum((Decimal(t.physician_value) for t in transactions), Decimal("0.00")),
            status=InvoiceStatus.PENDING,
            notes=data.notes,
            created_by_id=admin.id,
            items=[
                InvoiceItem(transaction_id=t.id, exam_type=t.exam_type, value=t.physician_value)
                for t in transactions
            ],
        )
        db.add(invoice)
        await db.flush()

        trail.document_id = invoice.id
        trail.after = _invoice_snapshot(invoice)

    logger.info(
        "Fatura %s generada: médico %s, %s, %d transacciones",
        invoice.id, physician.id, start.strftime("%m/%Y"), len(transactions),
    )
    return InvoiceResponse.model_validate(invoice)


async def list_invoices(
    db: AsyncSession,
    user: User,
    *,
    physician_id: UUID | None = None,
    status: InvoiceStatus | None = None,
) -> list[InvoiceResponse]:
    """Faturas, la más reciente primero. Un médico solo ve las suyas."""
    if user.role == UserRole.PHYSICIAN:
        physician_id = user.id

    query = select(Invoice)
    if physician_id:
        query = query.where(Invoice.physician_id == physician_id)
    if status:
        query = query.where(Invoice.status == status)

    result = await db.execute(query.order_by(Invoice.period_start.desc(), Invoice.created_at.desc()))
    return [InvoiceResponse.model_validate(i) for i in result.scalars().all()]


async def update_invoice_status(
    db: AsyncSession,
    audit: AuditTrailWriter,
    admin: User,
    invoice_id: UUID,
    status: InvoiceStatus,
    network: NetworkInfo,
) -> InvoiceResponse:
    """
    Pagar la fatura marca como pagas sus transacciones pendientes. Una fatura
    cancelada no se reabre.
    """
    async with audit.track(
        db,
        action=AuditAction.UPDATE,
        collection="invoices",
        actor=Actor.from_user(admin),
        network=network,
        document_id=invoice_id,
    ) as trail:
        invoice = await db.get(Invoice, invoice_id)
        if invoice is None:
            raise NotFoundException("Fatura")
        if invoice.status == InvoiceStatus.CANCELLED:
            raise ConflictException("La fatura está cancelada")

        trail.before = {"status": invoice.status.value, "payment_date": invoice.payment_date}
        invoice.status = status
        if status == InvoiceStatus.PAID:
            invoice.payment_date = datetime.now(timezone.utc)
            await db.execute(
                update(FinancialTransaction)
                .where(
                    FinancialTransaction.id.in_([item.transaction_id for item in invoice.items]),
                    FinancialTransaction.status == PaymentStatus.PENDING,
                )
                .values(status=PaymentStatus.PAID, payment_date=invoice.payment_date)
                .execution_options(synchronize_session=False)
            )
        elif status == InvoiceStatus.PENDING:
            invoice.payment_date = None
        await db.flush()
        trail.after = {"status": invoice.status.value, "payment_date": invoice.payment_date}

    return InvoiceResponse.model_validate(invoice)


# ── Dashboard ────────────────────────────────────────


async def financial_dashboard(db: AsyncSession, today: date | None = None) -> FinancialDashboard:
    """
    Resumen del mes en curso, los 5 médicos con mayor valor, las 5
    transacciones más recientes y la evolución de los últimos 6 meses.
    Las transacciones canceladas no suman.
    """
    month_start = (today or date.today()).replace(day=1)
    history_start = month_start - relativedelta(months=5)
    start_at, end_at = _day_range(history_start, month_start + relativedelta(months=1) - timedelta(days=1))

    result = await db.execute(
        select(FinancialTransaction).where(
            FinancialTransaction.report_date >= start_at,
            FinancialTransaction.report_date < end_at,
            FinancialTransaction.status != PaymentStatus.CANCELLED,
        )
    )
    window = list(result.scalars().all())

    by_month: dict[str, list[FinancialTransaction]] = {
        (history_start + relativedelta(months=n)).strftime("%Y-%m"): [] for n in range(6)
    }
    for t in window:
        by_month.setdefault(t.report_date.strftime("%Y-%m"), []).append(t)
    current = by_month.get(month_start.strftime("%Y-%m"), [])

    ranking: dict[UUID, list] = {}
    for t in current:
        entry = ranking.setdefault(t.physician_id, [Decimal("0.00"), 0])
        entry[0] += Decimal(t.physician_value)
        entry[1] += 1
    names: dict[UUID, str] = {}
    if ranking:
        rows = await db.execute(select(User.id, User.name).where(User.id.in_(list(ranking))))
        names = dict(rows.all())
    top = sorted(ranking.items(), key=lambda item: (-item[1][0], names.get(item[0]) or ""))[:5]

    recent = await db.execute(
        select(FinancialTransaction).order_by(FinancialTransaction.report_date.desc()).limit(5)
    )

    monthly = []
    for month, transactions in by_month.items():
        totals = _totals(transactions)
        monthly.append(
            MonthlyFinancialTotals(
                month=month,
                count=totals.count,
                base_value=totals.base_value,
                physician_value=totals.physician_value,
                clinic_value=totals.clinic_value,
            )
        )

    return FinancialDashboard(
        month_start=month_start,
        month_totals=_totals(current),
        top_physicians=[
            PhysicianRanking(
                physician_id=physician_id,
                physician_name=names.get(physician_id),
                physician_value=value,
                count=count,
            )
            for physician_id, (value, count) in top
        ],
        recent_transactions=[TransactionResponse.model_validate(t) for t in recent.scalars().all()],
        monthly=sorted(monthly, key=lambda m: m.month),
    )

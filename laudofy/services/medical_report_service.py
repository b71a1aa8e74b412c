"""
Servicio de laudos médicos: ciclo de vida versionado.

    Rascunho → Laudo realizado → Laudo assinado
    ramas: Laudo refeito, Cancelado, Erro ao gerar PDF, Erro no envio

El flujo de creación lo define REPORT_CREATION_FLOW:
- draft_then_sign: el laudo nace inválido y se valida al firmar.
- signed_on_create: el PDF firmado llega con la creación y el laudo nace
  válido y firmado (la transacción financiera se genera en la creación).
Las versiones nuevas de una refação siempre nacen en Rascunho y se firman
por /sign.

Cada transición corre dentro de una única transacción de base con su entrada
de auditoría. El índice único parcial (exam_id WHERE valid) sostiene la regla
de un solo laudo válido por examen aun con requests concurrentes.
"""

import logging
import math
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from laudofy.config import get_settings
from laudofy.core.crypto import FieldCipher
from laudofy.core.exceptions import (
    ConflictException,
    CredentialsException,
    DownstreamException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from laudofy.core.fields import EXAM_FIELDS, PATIENT_FIELDS, REPORT_FIELDS
from laudofy.core.security import access_code_matches, generate_access_code
from laudofy.models.audit_log import AuditAction, AuditStatus
from laudofy.models.exam import Exam
from laudofy.models.medical_report import (
    HistoryAction,
    MedicalReport,
    ReportStatus,
    SendStatus,
)
from laudofy.models.user import User
from laudofy.schemas.medical_report import (
    PublicReportView,
    ReportChain,
    ReportCreate,
    ReportDetailResponse,
    ReportInvalidate,
    ReportListResponse,
    ReportProcessingStatus,
    ReportRedo,
    ReportResponse,
    ReportStatusCount,
    ReportSummary,
    ReportVersionHistory,
)
from laudofy.services.audit_service import Actor, AuditEvent, AuditTrailWriter, NetworkInfo
from laudofy.services.email_service import EmailError, ReportEmail, SendGridMailer
from laudofy.services.encrypted_search import match_encrypted
from laudofy.services.exam_service import advance_exam_status, get_exam_model
from laudofy.services.financial_service import ensure_transaction
from laudofy.services.patient_service import compute_age
from laudofy.services.report_document import PdfDispatcher, PdfDispatchError
from laudofy.services.report_history import append_history, history_view
from laudofy.services.storage_service import FileUpload, StorageError, UploadcareStorage

logger = logging.getLogger(__name__)

COLLECTION = "medical_reports"
REPORT_ISSUED_EXAM_STATUS = "Laudo realizado"

# Estados con los que el documento queda listo para consulta
_READY_STATUSES = (ReportStatus.ISSUED, ReportStatus.SIGNED, ReportStatus.SEND_ERROR)


# ── Helpers ──────────────────────────────────────────


def _now() -> datetime:
    return datetime.now(timezone.utc)


def public_link(report_id: UUID) -> str:
    return f"{get_settings().FRONTEND_URL.rstrip('/')}/publico/{report_id}"


def report_view(report: MedicalReport, cipher: FieldCipher, *, with_history: bool = True) -> dict:
    """Vista descifrada del laudo. Sin historial para snapshots de auditoría."""
    decrypted = REPORT_FIELDS.read(report, cipher)
    view = {
        "id": report.id,
        "exam_id": report.exam_id,
        "physician_id": report.physician_id,
        "physician_name": decrypted["physician_name"],
        "conclusion": decrypted["conclusion"],
        "original_file_url": decrypted["original_file_url"],
        "signed_file_url": decrypted["signed_file_url"],
        "status": report.status,
        "valid": report.valid,
        "version": report.version,
        "previous_report_id": report.previous_report_id,
        "replacement_report_id": report.replacement_report_id,
        "redo_reason": decrypted["redo_reason"],
        "replacement_reason": decrypted["replacement_reason"],
        "invalidation_reason": decrypted["invalidation_reason"],
        "signed_at": report.signed_at,
        "email_sent_at": report.email_sent_at,
        "email_recipient": decrypted["email_recipient"],
        "public_link": decrypted["public_link"],
        "access_code": decrypted["access_code"],
        "created_at": report.created_at,
        "updated_at": report.updated_at,
    }
    if with_history:
        view["history"] = history_view(report, cipher)
    return view


def _to_response(report: MedicalReport, cipher: FieldCipher) -> ReportResponse:
    return ReportResponse(**report_view(report, cipher))


def _summary(report: MedicalReport) -> ReportSummary:
    return ReportSummary(
        id=report.id,
        version=report.version,
        status=report.status,
        valid=report.valid,
        created_at=report.created_at,
    )


async def get_report_model(db: AsyncSession, report_id: UUID) -> MedicalReport:
    result = await db.execute(
        select(MedicalReport)
        .options(selectinload(MedicalReport.exam).selectinload(Exam.patient))
        .where(MedicalReport.id == report_id)
    )
    report = result.scalar_one_or_none()
    if not report:
        raise NotFoundException("Laudo")
    return report


async def _valid_report_id(db: AsyncSession, exam_id: UUID) -> UUID | None:
    result = await db.execute(
        select(MedicalReport.id).where(
            MedicalReport.exam_id == exam_id,
            MedicalReport.valid.is_(True),
        )
    )
    return result.scalars().first()


def _stamp_author(report: MedicalReport, cipher: FieldCipher, user: User) -> None:
    report.updated_by_id = user.id
    REPORT_FIELDS.write(report, cipher, {"updated_by_name": user.name})


async def _register_transaction(
    db: AsyncSession,
    cipher: FieldCipher,
    report: MedicalReport,
    exam: Exam,
    user: User,
) -> None:
    """Genera la transacción financiera del laudo firmado (una sola vez)."""
    exam_type = EXAM_FIELDS.open(cipher, "exam_type", exam.exam_type) or "OUTRO"
    transaction = await ensure_transaction(db, report, exam_type)
    if transaction is not None:
        append_history(
            report,
            cipher,
            HistoryAction.FINANCIAL_TRANSACTION,
            user,
            detail=(
                f"Transação {transaction.id}: valor base {transaction.base_value}, "
                f"médico {transaction.physician_value}, clínica {transaction.clinic_value}"
            ),
        )


def _new_report(
    cipher: FieldCipher,
    exam: Exam,
    user: User,
    conclusion: str,
    *,
    version: int = 1,
    previous: MedicalReport | None = None,
    redo_reason: str | None = None,
) -> MedicalReport:
    """Nueva versión en Rascunho, inválida y sin firma."""
    report = MedicalReport(
        exam_id=exam.id,
        physician_id=user.id,
        status=ReportStatus.DRAFT,
        valid=False,
        version=version,
        previous_report_id=previous.id if previous else None,
        created_by_id=user.id,
        history=[],
    )
    REPORT_FIELDS.write(
        report,
        cipher,
        {
            "physician_name": user.name,
            "conclusion": conclusion,
            "created_by_name": user.name,
            "redo_reason": redo_reason,
            "access_code": generate_access_code(),
        },
    )
    return report


async def _upload_signed(storage: UploadcareStorage, upload: FileUpload) -> str:
    try:
        return await storage.upload(upload)
    except StorageError as exc:
        raise DownstreamException("almacenamiento", exc.message) from exc


def _apply_signature(report: MedicalReport, cipher: FieldCipher, user: User, signed_url: str) -> None:
    """Adjunta el PDF firmado y deja el laudo válido en "Laudo assinado"."""
    REPORT_FIELDS.write(report, cipher, {"signed_file_url": signed_url})
    _stamp_author(report, cipher, user)
    report.valid = True
    report.signed_at = _now()
    report.status = ReportStatus.SIGNED
    append_history(report, cipher, HistoryAction.SIGNED, user, detail="Laudo assinado")


async def _dispatch_pdf(
    db: AsyncSession,
    cipher: FieldCipher,
    audit: AuditTrailWriter,
    dispatcher: PdfDispatcher,
    report: MedicalReport,
    user: User,
    network: NetworkInfo,
) -> None:
    """
    Encola la fase 2. Si el broker no responde, el laudo queda en PDF_ERROR
    con su entrada de historial y una auditoría fallida (la creación ya se
    confirmó antes de encolar).
    """
    try:
        dispatcher.dispatch(report.id)
    except PdfDispatchError as exc:
        logger.error("No se pudo encolar el PDF del laudo %s: %s", report.id, exc)
        detail = f"Falha ao enfileirar a geração do PDF: {exc}"
        before_status = report.status
        report.status = ReportStatus.PDF_ERROR
        append_history(report, cipher, HistoryAction.UPDATED, user, detail=detail)
        await db.commit()
        await audit.record(
            AuditEvent(
                actor_id=user.id,
                actor_name=user.name,
                action=AuditAction.UPDATE,
                collection=COLLECTION,
                document_id=str(report.id),
                before={"status": before_status},
                after={"status": report.status},
                ip=network.ip,
                user_agent=network.user_agent,
                status=AuditStatus.FAILED,
                detail=detail,
            )
        )


# ── Crear laudo ──────────────────────────────────────


async def create_report(
    db: AsyncSession,
    cipher: FieldCipher,
    audit: AuditTrailWriter,
    storage: UploadcareStorage,
    dispatcher: PdfDispatcher,
    user: User,
    data: ReportCreate,
    network: NetworkInfo,
    signed_upload: FileUpload | None = None,
) -> ReportResponse:
    """
    Crea la versión 1 del laudo de un examen sin laudo válido.
    El examen avanza a "Laudo realizado" y el PDF se genera en segundo plano.

    Con REPORT_CREATION_FLOW=signed_on_create el PDF firmado llega junto con
    la creación: el laudo nace válido, en "Laudo assinado" y con su
    transacción financiera. En draft_then_sign no se acepta archivo.
    """
    signed_on_create = get_settings().signed_on_create
    async with audit.track(
        db,
        action=AuditAction.CREATE,
        failure_action=AuditAction.CREATE_FAILED,
        collection=COLLECTION,
        actor=Actor.from_user(user),
        network=network,
    ) as trail:
        trail.after = {"exam_id": data.exam_id}
        if REPORT_FIELDS.canonical("conclusion", data.conclusion) is None:
            raise ValidationException("La conclusión del laudo es obligatoria")
        if signed_on_create and signed_upload is None:
            raise ValidationException("El PDF firmado es obligatorio al crear el laudo")
        if not signed_on_create and signed_upload is not None:
            raise ValidationException("El PDF firmado se adjunta al firmar el laudo")

        exam = await get_exam_model(db, data.exam_id)
        if await _valid_report_id(db, exam.id):
            raise ConflictException("El examen ya tiene un laudo válido")

        report = _new_report(cipher, exam, user, data.conclusion)
        append_history(report, cipher, HistoryAction.CREATED, user, detail="Laudo criado")
        if signed_upload is not None:
            _apply_signature(report, cipher, user, await _upload_signed(storage, signed_upload))
        db.add(report)
        await db.flush()

        REPORT_FIELDS.write(report, cipher, {"public_link": public_link(report.id)})
        advance_exam_status(exam, cipher, REPORT_ISSUED_EXAM_STATUS)
        if report.valid:
            await _register_transaction(db, cipher, report, exam, user)
        await db.flush()

        trail.document_id = report.id
        trail.after = report_view(report, cipher, with_history=False)

    await _dispatch_pdf(db, cipher, audit, dispatcher, report, user, network)
    return _to_response(report, cipher)


# ── Firmar ───────────────────────────────────────────


async def sign_report(
    db: AsyncSession,
    cipher: FieldCipher,
    audit: AuditTrailWriter,
    storage: UploadcareStorage,
    user: User,
    report_id: UUID,
    upload: FileUpload,
    network: NetworkInfo,
) -> ReportResponse:
    """Adjunta el PDF firmado, valida el laudo y genera la transacción financiera."""
    async with audit.track(
        db,
        action=AuditAction.UPLOAD_SIGNED,
        collection=COLLECTION,
        actor=Actor.from_user(user),
        network=network,
        document_id=report_id,
    ) as trail:
        report = await get_report_model(db, report_id)
        trail.before = report_view(report, cipher, with_history=False)

        if report.physician_id != user.id:
            raise ForbiddenException("Solo el médico responsable puede firmar el laudo")
        if report.status in (ReportStatus.REDONE, ReportStatus.INVALIDATED) or not report.is_current_version:
            raise ConflictException("No se puede firmar un laudo sustituido o cancelado")
        if report.signed_at is not None or report.signed_file_url:
            raise ConflictException("El laudo ya está firmado")
        other = await _valid_report_id(db, report.exam_id)
        if other and other != report.id:
            raise ConflictException("El examen ya tiene otro laudo válido")

        _apply_signature(report, cipher, user, await _upload_signed(storage, upload))
        await db.flush()

        advance_exam_status(report.exam, cipher, REPORT_ISSUED_EXAM_STATUS)
        await _register_transaction(db, cipher, report, report.exam, user)
        await db.flush()

        trail.after = report_view(report, cipher, with_history=False)

    return _to_response(report, cipher)


# ── Rehacer ──────────────────────────────────────────


async def redo_report(
    db: AsyncSession,
    cipher: FieldCipher,
    audit: AuditTrailWriter,
    dispatcher: PdfDispatcher,
    user: User,
    report_id: UUID,
    data: ReportRedo,
    network: NetworkInfo,
) -> ReportResponse:
    """
    Crea la versión N+1 enlazada a la N, que queda inválida y "Laudo refeito".
    Solo la versión vigente (sin sustituto) puede rehacerse.
    """
    async with audit.track(
        db,
        action=AuditAction.RECREATE,
        collection=COLLECTION,
        actor=Actor.from_user(user),
        network=network,
        document_id=report_id,
    ) as trail:
        old = await get_report_model(db, report_id)
        if not old.is_current_version:
            raise ConflictException("El laudo ya fue rehecho; rehaga la versión vigente")
        trail.before = report_view(old, cipher, with_history=False)

        conclusion = data.conclusion or REPORT_FIELDS.open(cipher, "conclusion", old.conclusion)
        if REPORT_FIELDS.canonical("conclusion", conclusion or "") is None:
            raise ValidationException("La conclusión del laudo es obligatoria")

        # Primero se libera el lugar del laudo válido
        old.valid = False
        old.status = ReportStatus.REDONE
        REPORT_FIELDS.write(old, cipher, {"replacement_reason": data.reason})
        _stamp_author(old, cipher, user)
        append_history(old, cipher, HistoryAction.REDONE, user, detail=data.reason)
        await db.flush()

        new = _new_report(
            cipher,
            old.exam,
            user,
            conclusion,
            version=old.version + 1,
            previous=old,
            redo_reason=data.reason,
        )
        append_history(new, cipher, HistoryAction.CREATED, user, detail="Laudo criado por refação")
        append_history(
            new, cipher, HistoryAction.REDONE, user,
            detail=f"Substitui a versão {old.version}: {data.reason}",
        )
        db.add(new)
        await db.flush()

        REPORT_FIELDS.write(new, cipher, {"public_link": public_link(new.id)})
        old.replacement_report_id = new.id
        await db.flush()

        trail.document_id = new.id
        trail.after = {
            "replaced": report_view(old, cipher, with_history=False),
            "report": report_view(new, cipher, with_history=False),
        }

    await _dispatch_pdf(db, cipher, audit, dispatcher, new, user, network)
    return _to_response(new, cipher)


# ── Invalidar ────────────────────────────────────────


async def invalidate_report(
    db: AsyncSession,
    cipher: FieldCipher,
    audit: AuditTrailWriter,
    user: User,
    report_id: UUID,
    data: ReportInvalidate,
    network: NetworkInfo,
) -> ReportResponse:
    async with audit.track(
        db,
        action=AuditAction.UPDATE,
        collection=COLLECTION,
        actor=Actor.from_user(user),
        network=network,
        document_id=report_id,
    ) as trail:
        report = await get_report_model(db, report_id)
        if not report.valid:
            raise ConflictException("El laudo ya está invalidado")
        trail.before = report_view(report, cipher, with_history=False)

        report.valid = False
        report.status = ReportStatus.INVALIDATED
        REPORT_FIELDS.write(report, cipher, {"invalidation_reason": data.reason})
        _stamp_author(report, cipher, user)
        append_history(report, cipher, HistoryAction.INVALIDATED, user, detail=data.reason)
        await db.flush()

        trail.after = report_view(report, cipher, with_history=False)

    return _to_response(report, cipher)


# ── Enviar por e-mail ────────────────────────────────


async def send_report_email(
    db: AsyncSession,
    cipher: FieldCipher,
    audit: AuditTrailWriter,
    mailer: SendGridMailer,
    user: User,
    report_id: UUID,
    network: NetworkInfo,
) -> ReportResponse:
    """
    Envía el laudo firmado al paciente. Un fallo del proveedor queda en el
    historial (Falha) y en el estado del laudo; el resto del laudo no cambia.
    """
    async with audit.track(
        db,
        action=AuditAction.UPDATE,
        collection=COLLECTION,
        actor=Actor.from_user(user),
        network=network,
        document_id=report_id,
    ) as trail:
        trail.detail = "envio de e-mail"
        report = await get_report_model(db, report_id)
        patient = report.exam.patient

        signed_url = REPORT_FIELDS.open(cipher, "signed_file_url", report.signed_file_url)
        access_code = REPORT_FIELDS.open(cipher, "access_code", report.access_code)
        if not signed_url:
            raise ValidationException("El laudo no tiene archivo firmado")
        if not patient.email:
            raise ValidationException("El paciente no tiene e-mail registrado")
        if not access_code:
            raise ValidationException("El laudo no tiene código de acceso")
        if not report.valid:
            raise ValidationException("Solo se envían laudos válidos")

        trail.before = report_view(report, cipher, with_history=False)
        message = ReportEmail(
            recipient_email=patient.email,
            recipient_name=patient.name,
            report_id=report.id,
            file_url=signed_url,
            access_code=access_code,
        )

        try:
            await mailer.send_report(message)
        except EmailError as exc:
            logger.error("Fallo el envío del laudo %s: %s", report.id, exc.message)
            append_history(
                report, cipher, HistoryAction.EMAIL_SENT, user,
                email_recipient=patient.email,
                send_status=SendStatus.FAILED,
                error_message=exc.message,
            )
            report.status = ReportStatus.SEND_ERROR
            # El evento de falla se conserva aunque la operación falle
            await db.commit()
            raise DownstreamException("e-mail", exc.message) from exc

        report.email_sent_at = _now()
        REPORT_FIELDS.write(report, cipher, {"email_recipient": patient.email})
        if report.status == ReportStatus.SEND_ERROR:
            report.status = ReportStatus.SIGNED
        append_history(
            report, cipher, HistoryAction.EMAIL_SENT, user,
            email_recipient=patient.email,
            send_status=SendStatus.SENT,
        )
        await db.flush()

        trail.after = report_view(report, cipher, with_history=False)

    return _to_response(report, cipher)


# ── Consultas ────────────────────────────────────────


async def _chain_neighbors(
    db: AsyncSession, report: MedicalReport
) -> tuple[MedicalReport | None, MedicalReport | None]:
    previous = await db.get(MedicalReport, report.previous_report_id) if report.previous_report_id else None
    replacement = (
        await db.get(MedicalReport, report.replacement_report_id) if report.replacement_report_id else None
    )
    return previous, replacement


async def get_report(db: AsyncSession, cipher: FieldCipher, report_id: UUID) -> ReportDetailResponse:
    """Laudo con su posición en la cadena de versiones."""
    report = await get_report_model(db, report_id)
    previous, replacement = await _chain_neighbors(db, report)
    return ReportDetailResponse(
        **report_view(report, cipher),
        chain=ReportChain(
            current=_summary(report),
            previous=_summary(previous) if previous else None,
            replacement=_summary(replacement) if replacement else None,
        ),
    )


async def list_reports(
    db: AsyncSession,
    cipher: FieldCipher,
    *,
    page: int = 1,
    size: int = 20,
    exam_id: UUID | None = None,
    patient_id: UUID | None = None,
    physician_id: UUID | None = None,
    status: ReportStatus | None = None,
    valid: bool | None = None,
    physician_name: str | None = None,
) -> ReportListResponse:
    query = select(MedicalReport)
    if exam_id:
        query = query.where(MedicalReport.exam_id == exam_id)
    if patient_id:
        query = query.join(Exam, Exam.id == MedicalReport.exam_id).where(Exam.patient_id == patient_id)
    if physician_id:
        query = query.where(MedicalReport.physician_id == physician_id)
    if status:
        query = query.where(MedicalReport.status == status)
    if valid is not None:
        query = query.where(MedicalReport.valid.is_(valid))

    if physician_name:
        candidates = query.with_only_columns(MedicalReport.id)
        ids = await match_encrypted(
            db, cipher, MedicalReport.physician_name, physician_name,
            fields=REPORT_FIELDS, within=candidates,
        )
        query = query.where(MedicalReport.id.in_(ids))

    total_result = await db.execute(select(func.count()).select_from(query.subquery()))
    total = total_result.scalar() or 0

    result = await db.execute(
        query.order_by(MedicalReport.created_at.desc()).offset((page - 1) * size).limit(size)
    )
    reports = result.scalars().all()

    return ReportListResponse(
        items=[_to_response(r, cipher) for r in reports],
        total=total,
        page=page,
        size=size,
        pages=math.ceil(total / size) if total > 0 else 0,
    )


async def list_by_patient(
    db: AsyncSession, cipher: FieldCipher, patient_id: UUID
) -> list[ReportResponse]:
    result = await db.execute(
        select(MedicalReport)
        .join(Exam, Exam.id == MedicalReport.exam_id)
        .where(Exam.patient_id == patient_id)
        .order_by(MedicalReport.created_at.desc())
    )
    return [_to_response(r, cipher) for r in result.scalars().all()]


async def get_version_history(
    db: AsyncSession, cipher: FieldCipher, report_id: UUID
) -> ReportVersionHistory:
    """
    Recorre la cadena completa desde la versión 1 hasta la vigente y reúne los
    eventos de todas las versiones, más recientes primero.
    """
    report = await get_report_model(db, report_id)

    first = report
    seen = {first.id}
    while first.previous_report_id is not None:
        first = await db.get(MedicalReport, first.previous_report_id)
        if first is None or first.id in seen:
            break
        seen.add(first.id)

    versions = []
    current = first
    visited: set[UUID] = set()
    while current is not None and current.id not in visited:
        visited.add(current.id)
        versions.append(current)
        current = (
            await db.get(MedicalReport, current.replacement_report_id)
            if current.replacement_report_id
            else None
        )

    events = [event for version in versions for event in history_view(version, cipher)]
    events.sort(key=lambda e: e.get("at") or "", reverse=True)

    return ReportVersionHistory(
        versions=[_summary(v) for v in versions],
        events=events,
    )


async def get_processing_status(db: AsyncSession, report_id: UUID) -> ReportProcessingStatus:
    """Consulta liviana para polling de la fase 2 (sin descifrar)."""
    result = await db.execute(select(MedicalReport).where(MedicalReport.id == report_id))
    report = result.scalar_one_or_none()
    if not report:
        raise NotFoundException("Laudo")
    return ReportProcessingStatus(
        id=report.id,
        status=report.status,
        valid=report.valid,
        has_original_file=bool(report.original_file_url),
        has_signed_file=bool(report.signed_file_url),
        ready=report.status in _READY_STATUSES and bool(report.original_file_url),
    )


async def count_by_status(db: AsyncSession, physician_id: UUID | None = None) -> list[ReportStatusCount]:
    query = select(MedicalReport.status, func.count(MedicalReport.id)).group_by(MedicalReport.status)
    if physician_id:
        query = query.where(MedicalReport.physician_id == physician_id)
    result = await db.execute(query)
    return [ReportStatusCount(status=status, total=total) for status, total in result.all()]


# ── Acceso público ───────────────────────────────────


async def get_public_view(
    db: AsyncSession,
    cipher: FieldCipher,
    report_id: UUID,
    access_code: str,
) -> PublicReportView:
    """
    Vista reducida del laudo para el paciente, sin autenticación.
    Solo se devuelve si el código coincide con el guardado.
    """
    result = await db.execute(
        select(MedicalReport)
        .options(selectinload(MedicalReport.exam).selectinload(Exam.patient))
        .where(MedicalReport.id == report_id)
    )
    report = result.scalar_one_or_none()
    stored = REPORT_FIELDS.open(cipher, "access_code", report.access_code) if report else None
    if report is None or not access_code_matches(access_code, stored):
        logger.warning("Acceso público rechazado para el laudo %s", report_id)
        raise CredentialsException("Laudo no encontrado o código de acceso inválido")

    exam = report.exam
    patient = exam.patient
    birth_date = PATIENT_FIELDS.open(cipher, "birth_date", patient.birth_date)
    return PublicReportView(
        id=report.id,
        patient_name=patient.name,
        patient_age=compute_age(birth_date),
        exam_type=EXAM_FIELDS.open(cipher, "exam_type", exam.exam_type),
        exam_date=exam.created_at.date() if exam.created_at else None,
        physician_name=REPORT_FIELDS.open(cipher, "physician_name", report.physician_name),
        conclusion=REPORT_FIELDS.open(cipher, "conclusion", report.conclusion),
        version=report.version,
        valid=report.valid,
        signed_at=report.signed_at,
        signed_file_url=REPORT_FIELDS.open(cipher, "signed_file_url", report.signed_file_url),
    )

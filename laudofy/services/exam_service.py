"""
Servicio de exámenes: subida por técnicos, lecturas clínicas cifradas,
estado que solo avanza y listados con filtros sobre campos cifrados.
"""

import math
from collections import Counter
from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID

from dateutil.relativedelta import relativedelta
from sqlalchemy import exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from laudofy.core.crypto import FieldCipher
from laudofy.core.exceptions import (
    ConflictException,
    DownstreamException,
    NotFoundException,
    ValidationException,
)
from laudofy.core.fields import EXAM_FIELDS, PATIENT_FIELDS
from laudofy.models.audit_log import AuditAction
from laudofy.models.exam import EXAM_STATUS_RANK, Exam
from laudofy.models.medical_report import MedicalReport, ReportStatus
from laudofy.models.patient import Patient
from laudofy.models.user import User
from laudofy.schemas.exam import (
    ExamCreate,
    ExamListResponse,
    ExamPatientInfo,
    ExamResponse,
    ExamStatistics,
    ExamTypeCount,
    ExamUpdate,
    MonthlyExamCount,
)
from laudofy.services.audit_service import Actor, AuditTrailWriter, NetworkInfo
from laudofy.services.encrypted_search import (
    decrypt_column,
    intersect_ids,
    match_encrypted,
    tally_encrypted,
)
from laudofy.services.patient_service import compute_age, get_patient_model
from laudofy.services.storage_service import FileUpload, StorageError, UploadcareStorage

COLLECTION = "exams"
REPORT_ISSUED_STATUS = "Laudo realizado"
READING_FIELDS = (
    "pr_segment", "heart_rate", "qrs_duration", "qrs_axis",
    "height", "weight", "age", "symptoms",
)

# Laudos que ya no cuentan como "laudo del examen"
_INACTIVE_REPORT_STATUSES = (ReportStatus.REDONE, ReportStatus.INVALIDATED)


# ── Helpers ──────────────────────────────────────────


def exam_view(exam: Exam, cipher: FieldCipher, patient: Patient | None = None) -> dict:
    """Vista descifrada del examen, con datos mínimos del paciente si se pasa."""
    view = {
        "id": exam.id,
        "patient_id": exam.patient_id,
        "technician_id": exam.technician_id,
        **EXAM_FIELDS.read(exam, cipher),
        "created_at": exam.created_at,
        "updated_at": exam.updated_at,
    }
    if patient is not None:
        birth_date = PATIENT_FIELDS.open(cipher, "birth_date", patient.birth_date)
        view["patient"] = {
            "id": patient.id,
            "name": patient.name,
            "age": compute_age(birth_date),
        }
    return view


def _exam_to_response(exam: Exam, cipher: FieldCipher, patient: Patient | None = None) -> ExamResponse:
    view = exam_view(exam, cipher, patient)
    if "patient" in view:
        view["patient"] = ExamPatientInfo(**view["patient"])
    return ExamResponse(**view)


def advance_exam_status(exam: Exam, cipher: FieldCipher, target: str) -> bool:
    """
    Avanza el estado del examen hacia `target` si está más adelante.
    Nunca retrocede; devuelve True si hubo cambio.
    """
    canonical = EXAM_FIELDS.canonical("status", target)
    current = EXAM_FIELDS.open(cipher, "status", exam.status)
    if EXAM_STATUS_RANK.get(canonical, 0) <= EXAM_STATUS_RANK.get(current, -1):
        return False
    EXAM_FIELDS.write(exam, cipher, {"status": canonical})
    return True


async def get_exam_model(db: AsyncSession, exam_id: UUID) -> Exam:
    result = await db.execute(
        select(Exam).options(selectinload(Exam.patient)).where(Exam.id == exam_id)
    )
    exam = result.scalar_one_or_none()
    if not exam:
        raise NotFoundException("Examen")
    return exam


async def _has_reports(db: AsyncSession, exam_id: UUID) -> bool:
    result = await db.execute(select(exists().where(MedicalReport.exam_id == exam_id)))
    return bool(result.scalar())


# ── Crear examen ─────────────────────────────────────


async def create_exam(
    db: AsyncSession,
    cipher: FieldCipher,
    audit: AuditTrailWriter,
    storage: UploadcareStorage,
    user: User,
    data: ExamCreate,
    upload: FileUpload,
    network: NetworkInfo,
) -> ExamResponse:
    """El técnico sube el PDF del examen; el archivo va al storage y la URL se cifra."""
    async with audit.track(
        db,
        action=AuditAction.CREATE,
        collection=COLLECTION,
        actor=Actor.from_user(user),
        network=network,
    ) as trail:
        patient = await get_patient_model(db, data.patient_id)

        exam = Exam(patient_id=patient.id, technician_id=user.id)
        # Valida tipo/estado antes de subir el archivo
        EXAM_FIELDS.write(
            exam,
            cipher,
            data.model_dump(include={"exam_type", "status", "thumbnail_url", *READING_FIELDS}),
        )

        try:
            file_url = await storage.upload(upload)
        except StorageError as exc:
            raise DownstreamException("almacenamiento", exc.message) from exc
        EXAM_FIELDS.write(exam, cipher, {"file_url": file_url})

        db.add(exam)
        await db.flush()

        view = exam_view(exam, cipher, patient)
        trail.document_id = exam.id
        trail.after = view

    return _exam_to_response(exam, cipher, patient)


# ── Obtener / listar ─────────────────────────────────


async def get_exam(db: AsyncSession, cipher: FieldCipher, exam_id: UUID) -> ExamResponse:
    exam = await get_exam_model(db, exam_id)
    return _exam_to_response(exam, cipher, exam.patient)


async def list_exams(
    db: AsyncSession,
    cipher: FieldCipher,
    *,
    page: int = 1,
    size: int = 20,
    patient_id: UUID | None = None,
    patient_name: str | None = None,
    technician_id: UUID | None = None,
    exam_type: str | None = None,
    status: str | None = None,
    without_report: bool = False,
) -> ExamListResponse:
    """
    Filtros en claro (paciente, técnico, nombre) se aplican en SQL y acotan
    los candidatos; tipo y estado son cifrados y pasan por la búsqueda
    aproximada en memoria.
    """
    candidates = select(Exam.id)
    if patient_id:
        candidates = candidates.where(Exam.patient_id == patient_id)
    if technician_id:
        candidates = candidates.where(Exam.technician_id == technician_id)
    if patient_name:
        candidates = candidates.join(Patient, Patient.id == Exam.patient_id).where(
            Patient.name.icontains(patient_name.strip(), autoescape=True)
        )
    if without_report:
        candidates = candidates.where(
            ~exists().where(
                MedicalReport.exam_id == Exam.id,
                MedicalReport.status.not_in(_INACTIVE_REPORT_STATUSES),
            )
        )

    ids: set[UUID] | None = None
    if exam_type:
        ids = intersect_ids(
            ids,
            await match_encrypted(db, cipher, Exam.exam_type, exam_type, fields=EXAM_FIELDS, within=candidates),
        )
    if status:
        ids = intersect_ids(
            ids,
            await match_encrypted(db, cipher, Exam.status, status, fields=EXAM_FIELDS, within=candidates),
        )

    query = select(Exam).where(Exam.id.in_(candidates))
    if ids is not None:
        query = query.where(Exam.id.in_(ids))

    total_result = await db.execute(select(func.count()).select_from(query.subquery()))
    total = total_result.scalar() or 0

    result = await db.execute(
        query.options(selectinload(Exam.patient))
        .order_by(Exam.created_at.desc())
        .offset((page - 1) * size)
        .limit(size)
    )
    exams = result.scalars().all()

    return ExamListResponse(
        items=[_exam_to_response(e, cipher, e.patient) for e in exams],
        total=total,
        page=page,
        size=size,
        pages=math.ceil(total / size) if total > 0 else 0,
    )


# ── Actualizar examen ────────────────────────────────


async def update_exam(
    db: AsyncSession,
    cipher: FieldCipher,
    audit: AuditTrailWriter,
    user: User,
    exam_id: UUID,
    data: ExamUpdate,
    network: NetworkInfo,
) -> ExamResponse:
    """Actualiza lecturas; el estado solo puede avanzar (422 si retrocede)."""
    async with audit.track(
        db,
        action=AuditAction.UPDATE,
        collection=COLLECTION,
        actor=Actor.from_user(user),
        network=network,
        document_id=exam_id,
    ) as trail:
        exam = await get_exam_model(db, exam_id)
        trail.before = exam_view(exam, cipher)

        update_data = data.model_dump(exclude_unset=True)
        new_status = update_data.pop("status", None)
        if new_status is not None:
            current = EXAM_FIELDS.open(cipher, "status", exam.status)
            target = EXAM_FIELDS.canonical("status", new_status)
            if target != current and not advance_exam_status(exam, cipher, target):
                raise ValidationException(
                    f"El estado del examen no puede retroceder de '{current}' a '{target}'"
                )

        EXAM_FIELDS.write(exam, cipher, update_data)
        await db.flush()

        view = exam_view(exam, cipher, exam.patient)
        trail.after = view

    return _exam_to_response(exam, cipher, exam.patient)


# ── Eliminar examen ──────────────────────────────────


async def delete_exam(
    db: AsyncSession,
    cipher: FieldCipher,
    audit: AuditTrailWriter,
    user: User,
    exam_id: UUID,
    network: NetworkInfo,
) -> None:
    async with audit.track(
        db,
        action=AuditAction.DELETE,
        collection=COLLECTION,
        actor=Actor.from_user(user),
        network=network,
        document_id=exam_id,
    ) as trail:
        exam = await get_exam_model(db, exam_id)
        if await _has_reports(db, exam_id):
            raise ConflictException("No se puede eliminar el examen: tiene laudos asociados")
        trail.before = exam_view(exam, cipher)
        await db.delete(exam)
        await db.flush()


# ── Estadísticas ─────────────────────────────────────


async def exam_statistics(
    db: AsyncSession,
    cipher: FieldCipher,
    *,
    start: date | None = None,
    end: date | None = None,
    today: date | None = None,
) -> ExamStatistics:
    """
    Totales por estado y tipo (descifrados en memoria), evolución de los
    últimos 12 meses y tiempo medio de respuesta. `start`/`end` acotan por
    fecha de subida.
    """
    candidates = select(Exam.id)
    if start:
        candidates = candidates.where(Exam.created_at >= datetime.combine(start, time.min, tzinfo=timezone.utc))
    if end:
        candidates = candidates.where(
            Exam.created_at < datetime.combine(end + timedelta(days=1), time.min, tzinfo=timezone.utc)
        )

    total_result = await db.execute(select(func.count()).select_from(candidates.subquery()))
    total = total_result.scalar() or 0
    statuses = await decrypt_column(db, cipher, Exam.status, fields=EXAM_FIELDS, within=candidates)
    status_counts = Counter(statuses.values())
    type_counts = await tally_encrypted(db, cipher, Exam.exam_type, fields=EXAM_FIELDS, within=candidates)

    # Evolución mensual: los 12 meses hasta el actual, incluidos los vacíos
    first_month = (today or date.today()).replace(day=1) - relativedelta(months=11)
    buckets = {
        (first_month + relativedelta(months=n)).strftime("%Y-%m"): [0, 0] for n in range(12)
    }
    rows = await db.execute(
        select(Exam.id, Exam.created_at).where(
            Exam.id.in_(candidates),
            Exam.created_at >= datetime.combine(first_month, time.min, tzinfo=timezone.utc),
        )
    )
    for exam_id, created_at in rows.all():
        bucket = buckets.get(created_at.strftime("%Y-%m"))
        if bucket is None:
            continue
        bucket[0] += 1
        if statuses.get(exam_id) == REPORT_ISSUED_STATUS:
            bucket[1] += 1

    signed = await db.execute(
        select(Exam.created_at, MedicalReport.signed_at)
        .join(MedicalReport, MedicalReport.exam_id == Exam.id)
        .where(
            Exam.id.in_(candidates),
            MedicalReport.valid.is_(True),
            MedicalReport.signed_at.is_not(None),
        )
    )
    durations = [(signed_at - created_at).total_seconds() for created_at, signed_at in signed.all()]

    return ExamStatistics(
        total=total,
        pending=status_counts.get("Pendente", 0),
        concluded=status_counts.get("Concluído", 0),
        finished=status_counts.get(REPORT_ISSUED_STATUS, 0),
        by_type=[
            ExamTypeCount(exam_type=exam_type, total=count)
            for exam_type, count in type_counts.most_common()
        ],
        monthly=[
            MonthlyExamCount(month=month, total=counts[0], finished=counts[1])
            for month, counts in buckets.items()
        ],
        average_response_hours=(
            round(sum(durations) / len(durations) / 3600, 2) if durations else None
        ),
    )

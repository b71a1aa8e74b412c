"""
Servicio de pacientes: CRUD con cifrado de campos sensibles y audit log.

El CPF se normaliza a dígitos, se cifra (Fernet, no determinístico) y se
indexa con un HMAC determinístico (`cpf_hash`) que sostiene la unicidad y la
búsqueda exacta sin descifrar.
"""

import math
import re
from datetime import date
from uuid import UUID

from sqlalchemy import delete, exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from laudofy.core.crypto import FieldCipher
from laudofy.core.exceptions import ConflictException, NotFoundException, ValidationException
from laudofy.core.fields import PATIENT_FIELDS
from laudofy.models.audit_log import AuditAction
from laudofy.models.exam import Exam
from laudofy.models.medical_report import MedicalReport
from laudofy.models.patient import Patient
from laudofy.models.user import User
from laudofy.schemas.patient import (
    PatientCreate,
    PatientListResponse,
    PatientResponse,
    PatientUpdate,
)
from laudofy.services.audit_service import Actor, AuditTrailWriter, NetworkInfo

COLLECTION = "patients"
IMMUTABLE_FIELDS = ("cpf", "birth_date")
CPF_PATTERN = re.compile(r"\d{3}\.?\d{3}\.?\d{3}-?\d{2}")


# ── Helpers ──────────────────────────────────────────


def compute_age(birth_date: date | None, today: date | None = None) -> int | None:
    if birth_date is None:
        return None
    today = today or date.today()
    years = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        years -= 1
    return years


def cpf_index(cipher: FieldCipher, cpf: str) -> str:
    """Índice ciego del CPF normalizado (solo dígitos)."""
    return cipher.blind_index(PATIENT_FIELDS.canonical("cpf", cpf))


def patient_view(patient: Patient, cipher: FieldCipher) -> dict:
    """Vista descifrada del paciente (respuestas y snapshots de auditoría)."""
    decrypted = PATIENT_FIELDS.read(patient, cipher)
    return {
        "id": patient.id,
        "name": patient.name,
        "email": patient.email,
        **decrypted,
        "age": compute_age(decrypted["birth_date"]),
        "created_at": patient.created_at,
        "updated_at": patient.updated_at,
    }


def _patient_to_response(patient: Patient, cipher: FieldCipher) -> PatientResponse:
    return PatientResponse(**patient_view(patient, cipher))


async def get_patient_model(db: AsyncSession, patient_id: UUID) -> Patient:
    result = await db.execute(select(Patient).where(Patient.id == patient_id))
    patient = result.scalar_one_or_none()
    if not patient:
        raise NotFoundException("Paciente")
    return patient


# ── Crear paciente ───────────────────────────────────


async def create_patient(
    db: AsyncSession,
    cipher: FieldCipher,
    audit: AuditTrailWriter,
    user: User,
    data: PatientCreate,
    network: NetworkInfo,
) -> PatientResponse:
    """Crea un paciente con campos sensibles cifrados. CPF duplicado → 409."""
    async with audit.track(
        db,
        action=AuditAction.CREATE,
        collection=COLLECTION,
        actor=Actor.from_user(user),
        network=network,
    ) as trail:
        cpf_hash = cpf_index(cipher, data.cpf)
        existing = await db.execute(select(Patient.id).where(Patient.cpf_hash == cpf_hash))
        if existing.scalar_one_or_none():
            raise ConflictException("Ya existe un paciente con ese CPF")

        patient = Patient(
            name=data.name.strip(),
            email=data.email.lower() if data.email else None,
            cpf_hash=cpf_hash,
            created_by_id=user.id,
        )
        PATIENT_FIELDS.write(
            patient,
            cipher,
            {
                "cpf": data.cpf,
                "birth_date": data.birth_date,
                "address": data.address,
                "phone": data.phone,
            },
        )
        db.add(patient)
        await db.flush()

        view = patient_view(patient, cipher)
        trail.document_id = patient.id
        trail.after = view

    return PatientResponse(**view)


# ── Obtener / listar ─────────────────────────────────


async def get_patient(db: AsyncSession, cipher: FieldCipher, patient_id: UUID) -> PatientResponse:
    patient = await get_patient_model(db, patient_id)
    return _patient_to_response(patient, cipher)


async def find_by_cpf(db: AsyncSession, cipher: FieldCipher, cpf: str) -> PatientResponse | None:
    """Búsqueda exacta por CPF vía índice ciego (sin descifrar la tabla)."""
    result = await db.execute(
        select(Patient).where(Patient.cpf_hash == cpf_index(cipher, cpf))
    )
    patient = result.scalar_one_or_none()
    return _patient_to_response(patient, cipher) if patient else None


async def list_patients(
    db: AsyncSession,
    cipher: FieldCipher,
    *,
    page: int = 1,
    size: int = 20,
    search: str | None = None,
) -> PatientListResponse:
    """
    Lista pacientes con paginación. `search` filtra por nombre (texto plano);
    si son 11 dígitos también busca el CPF por índice ciego.
    """
    query = select(Patient)

    if search:
        term = search.strip()
        condition = Patient.name.icontains(term, autoescape=True)
        if CPF_PATTERN.fullmatch(term):
            condition = condition | (Patient.cpf_hash == cpf_index(cipher, term))
        query = query.where(condition)

    total_result = await db.execute(select(func.count()).select_from(query.subquery()))
    total = total_result.scalar() or 0

    result = await db.execute(
        query.order_by(Patient.name).offset((page - 1) * size).limit(size)
    )
    patients = result.scalars().all()

    return PatientListResponse(
        items=[_patient_to_response(p, cipher) for p in patients],
        total=total,
        page=page,
        size=size,
        pages=math.ceil(total / size) if total > 0 else 0,
    )


# ── Actualizar paciente ──────────────────────────────


async def update_patient(
    db: AsyncSession,
    cipher: FieldCipher,
    audit: AuditTrailWriter,
    user: User,
    patient_id: UUID,
    data: PatientUpdate,
    network: NetworkInfo,
) -> PatientResponse:
    """Actualiza nombre y contacto. CPF y fecha de nacimiento no se modifican."""
    async with audit.track(
        db,
        action=AuditAction.UPDATE,
        collection=COLLECTION,
        actor=Actor.from_user(user),
        network=network,
        document_id=patient_id,
    ) as trail:
        blocked = [f for f in IMMUTABLE_FIELDS if f in (data.model_extra or {})]
        if blocked:
            raise ValidationException(
                f"Campos inmutables no pueden modificarse: {', '.join(blocked)}"
            )

        patient = await get_patient_model(db, patient_id)
        trail.before = patient_view(patient, cipher)

        update_data = data.model_dump(exclude_unset=True, include={"name", "address", "phone", "email"})
        if update_data.get("name") is not None:
            patient.name = update_data.pop("name").strip()
        else:
            update_data.pop("name", None)
        if "email" in update_data:
            email = update_data.pop("email")
            patient.email = email.lower() if email else None
        PATIENT_FIELDS.write(patient, cipher, update_data)

        await db.flush()
        view = patient_view(patient, cipher)
        trail.after = view

    return PatientResponse(**view)


# ── Eliminar paciente ────────────────────────────────


async def delete_patient(
    db: AsyncSession,
    cipher: FieldCipher,
    audit: AuditTrailWriter,
    user: User,
    patient_id: UUID,
    network: NetworkInfo,
) -> None:
    """Bloqueado (409) mientras exista algún laudo sobre un examen del paciente."""
    async with audit.track(
        db,
        action=AuditAction.DELETE,
        collection=COLLECTION,
        actor=Actor.from_user(user),
        network=network,
        document_id=patient_id,
    ) as trail:
        patient = await get_patient_model(db, patient_id)

        has_reports = await db.execute(
            select(
                exists().where(
                    MedicalReport.exam_id == Exam.id,
                    Exam.patient_id == patient_id,
                )
            )
        )
        if has_reports.scalar():
            raise ConflictException(
                "No se puede eliminar el paciente: tiene laudos asociados a sus exámenes"
            )

        trail.before = patient_view(patient, cipher)
        await db.execute(delete(Exam).where(Exam.patient_id == patient_id))
        await db.delete(patient)
        await db.flush()

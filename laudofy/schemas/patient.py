"""
Schemas para Patient.
El CPF se acepta con o sin puntuación; se normaliza a dígitos al cifrar.
"""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class PatientCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=200)
    cpf: str = Field(..., min_length=11, max_length=14, description="CPF, ej: 123.456.789-00")
    birth_date: date
    address: str | None = Field(None, max_length=500)
    phone: str | None = Field(None, max_length=20)
    email: EmailStr | None = None


class PatientUpdate(BaseModel):
    """CPF y fecha de nacimiento son inmutables: enviarlos devuelve 422."""

    model_config = ConfigDict(extra="allow")

    name: str | None = Field(None, min_length=2, max_length=200)
    address: str | None = Field(None, max_length=500)
    phone: str | None = Field(None, max_length=20)
    email: EmailStr | None = None


class PatientResponse(BaseModel):
    id: UUID
    name: str
    cpf: str
    birth_date: date | None = None
    age: int | None = None
    address: str | None = None
    phone: str | None = None
    email: str | None = None
    created_at: datetime
    updated_at: datetime


class PatientListResponse(BaseModel):
    """Respuesta paginada de listado de pacientes."""
    items: list[PatientResponse]
    total: int
    page: int
    size: int
    pages: int

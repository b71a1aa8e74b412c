"""
Schemas para Exam.
Tipo y estado se validan contra sus dominios cerrados en la capa de campos
cifrados (422 con el valor inválido y los permitidos).
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class ExamReadings(BaseModel):
    pr_segment: float | None = Field(None, description="Segmento PR (ms)")
    heart_rate: float | None = Field(None, description="Frecuencia cardíaca (bpm)")
    qrs_duration: float | None = Field(None, description="Duración QRS (ms)")
    qrs_axis: float | None = Field(None, description="Eje medio QRS (grados)")
    height: float | None = Field(None, description="Altura (cm)")
    weight: float | None = Field(None, description="Peso (kg)")
    age: int | None = Field(None, ge=0, le=150)
    symptoms: str | None = Field(None, max_length=2000)


class ExamCreate(ExamReadings):
    patient_id: UUID
    exam_type: str = Field(..., description="ECG, HOLTER, ERGOMETRIA, MAPA u OUTRO")
    status: str = Field("Pendente", description="Pendente, Concluído o Laudo realizado")
    thumbnail_url: str | None = None


class ExamUpdate(ExamReadings):
    status: str | None = Field(None, description="Solo puede avanzar")
    thumbnail_url: str | None = None


class ExamPatientInfo(BaseModel):
    id: UUID
    name: str
    age: int | None = None


class ExamResponse(ExamReadings):
    id: UUID
    patient_id: UUID
    patient: ExamPatientInfo | None = None
    technician_id: UUID
    exam_type: str | None = None
    status: str | None = None
    file_url: str | None = None
    thumbnail_url: str | None = None
    created_at: datetime
    updated_at: datetime


class ExamListResponse(BaseModel):
    items: list[ExamResponse]
    total: int
    page: int
    size: int
    pages: int


class ExamTypeCount(BaseModel):
    exam_type: str
    total: int


class MonthlyExamCount(BaseModel):
    month: str = Field(..., description="YYYY-MM")
    total: int
    finished: int


class ExamStatistics(BaseModel):
    total: int
    pending: int
    concluded: int
    finished: int = Field(..., description='Exámenes en "Laudo realizado"')
    by_type: list[ExamTypeCount]
    monthly: list[MonthlyExamCount]
    average_response_hours: float | None = Field(
        None, description="Promedio entre la subida del examen y la firma del laudo válido"
    )

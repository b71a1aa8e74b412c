"""
Schemas para MedicalReport (laudos), su historial y la vista pública.
"""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, Field

from laudofy.models.medical_report import HistoryAction, ReportStatus, SendStatus


# ── Requests ─────────────────────────────────────────
class ReportCreate(BaseModel):
    exam_id: UUID
    conclusion: str = Field(..., min_length=1, max_length=20000)


class ReportRedo(BaseModel):
    reason: str = Field(..., min_length=3, max_length=2000, description="Motivo del rehecho")
    conclusion: str | None = Field(
        None, min_length=1, max_length=20000,
        description="Nueva conclusión; si se omite se copia la de la versión anterior",
    )


class ReportInvalidate(BaseModel):
    reason: str = Field(..., min_length=3, max_length=2000)


class PublicAccessRequest(BaseModel):
    access_code: str = Field(..., min_length=4, max_length=12)


# ── Responses ────────────────────────────────────────
class HistoryEvent(BaseModel):
    at: datetime
    action: HistoryAction
    user_id: str | None = None
    user_name: str | None = None
    detail: str | None = None
    version: int | None = None
    email_recipient: str | None = None
    send_status: SendStatus | None = None
    error_message: str | None = None


class ReportSummary(BaseModel):
    id: UUID
    version: int
    status: ReportStatus
    valid: bool
    created_at: datetime


class ReportResponse(BaseModel):
    id: UUID
    exam_id: UUID
    physician_id: UUID
    physician_name: str | None = None
    conclusion: str | None = None
    original_file_url: str | None = None
    signed_file_url: str | None = None
    status: ReportStatus
    valid: bool
    version: int
    previous_report_id: UUID | None = None
    replacement_report_id: UUID | None = None
    redo_reason: str | None = None
    replacement_reason: str | None = None
    invalidation_reason: str | None = None
    signed_at: datetime | None = None
    email_sent_at: datetime | None = None
    email_recipient: str | None = None
    public_link: str | None = None
    access_code: str | None = None
    history: list[HistoryEvent] = []
    created_at: datetime
    updated_at: datetime


class ReportChain(BaseModel):
    current: ReportSummary
    previous: ReportSummary | None = None
    replacement: ReportSummary | None = None


class ReportDetailResponse(ReportResponse):
    chain: ReportChain


class ReportListResponse(BaseModel):
    items: list[ReportResponse]
    total: int
    page: int
    size: int
    pages: int


class ReportVersionHistory(BaseModel):
    versions: list[ReportSummary]
    events: list[HistoryEvent]


class ReportProcessingStatus(BaseModel):
    id: UUID
    status: ReportStatus
    valid: bool
    has_original_file: bool
    has_signed_file: bool
    ready: bool


class ReportStatusCount(BaseModel):
    status: ReportStatus
    total: int


# ── Vista pública (sin autenticación) ────────────────
class PublicReportView(BaseModel):
    id: UUID
    patient_name: str
    patient_age: int | None = None
    exam_type: str | None = None
    exam_date: date | None = None
    physician_name: str | None = None
    conclusion: str | None = None
    version: int
    valid: bool
    signed_at: datetime | None = None
    signed_file_url: str | None = None

"""
Schemas del audit log.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel

from laudofy.models.audit_log import AuditAction, AuditStatus


class AuditLogResponse(BaseModel):
    id: UUID
    user_id: UUID | None = None
    user_name: str | None = None
    action: AuditAction
    collection: str
    document_id: str | None = None
    status: AuditStatus
    detail: str | None = None
    before_data: dict | None = None
    after_data: dict | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class AuditLogListResponse(BaseModel):
    items: list[AuditLogResponse]
    total: int
    page: int
    size: int
    pages: int

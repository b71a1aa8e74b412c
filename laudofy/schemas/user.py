"""
Schemas para User.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, model_validator

from laudofy.models.user import UserRole


class UserBase(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=2, max_length=200)
    role: UserRole = UserRole.TECHNICIAN
    crm: str | None = Field(None, max_length=20, description="Obligatorio para médicos")


class UserCreate(UserBase):
    password: str = Field(..., min_length=8, max_length=128)

    @model_validator(mode="after")
    def physician_requires_crm(self) -> "UserCreate":
        if self.role == UserRole.PHYSICIAN and not (self.crm or "").strip():
            raise ValueError("El CRM es obligatorio para médicos")
        return self


class UserUpdate(BaseModel):
    name: str | None = Field(None, min_length=2, max_length=200)
    role: UserRole | None = None
    crm: str | None = Field(None, max_length=20)
    is_active: bool | None = None
    password: str | None = Field(None, min_length=8, max_length=128)


class UserResponse(BaseModel):
    id: UUID
    email: str
    name: str
    role: UserRole
    crm: str | None = None
    is_active: bool
    last_login: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class UserListResponse(BaseModel):
    items: list[UserResponse]
    total: int
    page: int
    size: int
    pages: int

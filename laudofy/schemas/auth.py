"""
Schemas de autenticación: login, tokens, reseteo de contraseña.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from laudofy.models.user import UserRole


# ── Login ────────────────────────────────────────────
class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class UserLoginData(BaseModel):
    id: UUID
    email: str
    name: str
    role: UserRole
    crm: str | None = None


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_at: datetime


class LoginResponse(BaseModel):
    user: UserLoginData
    tokens: TokenResponse


# ── Refresh Token ────────────────────────────────────
class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=10)


# ── Reseteo de contraseña ────────────────────────────
class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=10)
    new_password: str = Field(..., min_length=8, max_length=128)


class MessageResponse(BaseModel):
    message: str

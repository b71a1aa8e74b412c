"""
Endpoints de autenticación: login, refresh, logout y reseteo de contraseña.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from laudofy.auth.dependencies import get_current_user, get_network_info
from laudofy.database import get_db
from laudofy.models.user import User
from laudofy.schemas.auth import (
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RefreshRequest,
    ResetPasswordRequest,
    TokenResponse,
)
from laudofy.schemas.user import UserResponse
from laudofy.services import auth_service
from laudofy.services.audit_service import AuditTrailWriter, NetworkInfo, get_audit_writer
from laudofy.services.email_service import SendGridMailer, get_mailer

router = APIRouter()


@router.post("/login", response_model=LoginResponse)
async def login(
    data: LoginRequest,
    network: NetworkInfo = Depends(get_network_info),
    db: AsyncSession = Depends(get_db),
    audit: AuditTrailWriter = Depends(get_audit_writer),
):
    """Autentica un usuario con email y contraseña."""
    return await auth_service.login(db, audit, data, network)


@router.post("/refresh", response_model=TokenResponse)
async def refresh_tokens(
    data: RefreshRequest,
    network: NetworkInfo = Depends(get_network_info),
    db: AsyncSession = Depends(get_db),
    audit: AuditTrailWriter = Depends(get_audit_writer),
):
    """Rota el par de tokens usando el refresh token."""
    return await auth_service.refresh_tokens(db, audit, data.refresh_token, network)


@router.post("/logout", status_code=204)
async def logout(
    network: NetworkInfo = Depends(get_network_info),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    audit: AuditTrailWriter = Depends(get_audit_writer),
):
    await auth_service.logout(db, audit, user, network)


@router.get("/me", response_model=UserResponse)
async def get_me(
    user: User = Depends(get_current_user),
):
    """Retorna los datos del usuario autenticado."""
    return UserResponse.model_validate(user)


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(
    data: ForgotPasswordRequest,
    network: NetworkInfo = Depends(get_network_info),
    db: AsyncSession = Depends(get_db),
    audit: AuditTrailWriter = Depends(get_audit_writer),
    mailer: SendGridMailer = Depends(get_mailer),
):
    """
    Envía el link de reseteo. La respuesta es la misma exista o no el email.
    """
    await auth_service.forgot_password(db, audit, mailer, data.email, network)
    return MessageResponse(
        message="Si el email está registrado, recibirá instrucciones para restablecer la contraseña"
    )


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    data: ResetPasswordRequest,
    network: NetworkInfo = Depends(get_network_info),
    db: AsyncSession = Depends(get_db),
    audit: AuditTrailWriter = Depends(get_audit_writer),
):
    await auth_service.reset_password(db, audit, data.token, data.new_password, network)
    return MessageResponse(message="Contraseña actualizada")

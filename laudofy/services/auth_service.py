"""
Servicio de autenticación: login, refresh, logout y reseteo de contraseña.

Cada intento, exitoso o no, queda en el audit log. El refresh token y el
token de reseteo son opacos; en base solo se guarda su SHA-256.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from laudofy.auth.jwt import create_access_token
from laudofy.config import get_settings
from laudofy.core.exceptions import CredentialsException, DownstreamException, ValidationException
from laudofy.core.security import (
    generate_opaque_token,
    hash_password,
    hash_token,
    verify_password,
)
from laudofy.database import as_utc
from laudofy.models.audit_log import AuditAction
from laudofy.models.user import User
from laudofy.schemas.auth import (
    LoginRequest,
    LoginResponse,
    TokenResponse,
    UserLoginData,
)
from laudofy.services.audit_service import Actor, AuditTrailWriter, NetworkInfo
from laudofy.services.email_service import EmailError, SendGridMailer

logger = logging.getLogger(__name__)

COLLECTION = "users"


def _issue_tokens(user: User) -> tuple[TokenResponse, str]:
    """Genera access + refresh. Devuelve también el hash a persistir."""
    access_token, expires_at = create_access_token(user.id, user.name, user.role.value)
    refresh_token = generate_opaque_token()
    return (
        TokenResponse(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
        ),
        hash_token(refresh_token),
    )


async def _find_active_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(
        select(User).where(User.email == email.lower(), User.is_active.is_(True))
    )
    return result.scalar_one_or_none()


# ── Login ────────────────────────────────────────────


async def login(
    db: AsyncSession,
    audit: AuditTrailWriter,
    data: LoginRequest,
    network: NetworkInfo,
) -> LoginResponse:
    """Autentica con email y contraseña."""
    async with audit.track(
        db,
        action=AuditAction.LOGIN,
        failure_action=AuditAction.LOGIN_FAILED,
        collection=COLLECTION,
        actor=None,
        network=network,
    ) as trail:
        trail.after = {"email": data.email}
        user = await _find_active_by_email(db, data.email)

        if not user:
            logger.warning("Login fallido: usuario no encontrado")
            raise CredentialsException("Email o contraseña incorrectos")

        trail.actor = Actor.from_user(user)
        trail.document_id = user.id

        if not verify_password(data.password, user.hashed_password):
            logger.warning("Login fallido: contraseña incorrecta para user_id=%s", user.id)
            raise CredentialsException("Email o contraseña incorrectos")

        tokens, refresh_hash = _issue_tokens(user)
        user.refresh_token_hash = refresh_hash
        user.last_login = datetime.now(timezone.utc)
        await db.flush()

        response = LoginResponse(
            user=UserLoginData(
                id=user.id,
                email=user.email,
                name=user.name,
                role=user.role,
                crm=user.crm,
            ),
            tokens=tokens,
        )

    return response


async def refresh_tokens(
    db: AsyncSession,
    audit: AuditTrailWriter,
    refresh_token: str,
    network: NetworkInfo,
) -> TokenResponse:
    """Rota el par de tokens. El refresh anterior queda invalidado."""
    async with audit.track(
        db,
        action=AuditAction.REFRESH_TOKEN,
        failure_action=AuditAction.REFRESH_TOKEN_FAILED,
        collection=COLLECTION,
        actor=None,
        network=network,
    ) as trail:
        result = await db.execute(
            select(User).where(
                User.refresh_token_hash == hash_token(refresh_token),
                User.is_active.is_(True),
            )
        )
        user = result.scalar_one_or_none()
        if not user:
            raise CredentialsException("Refresh token inválido o revocado")

        trail.actor = Actor.from_user(user)
        trail.document_id = user.id

        tokens, refresh_hash = _issue_tokens(user)
        user.refresh_token_hash = refresh_hash
        await db.flush()

    return tokens


async def logout(
    db: AsyncSession,
    audit: AuditTrailWriter,
    user: User,
    network: NetworkInfo,
) -> None:
    async with audit.track(
        db,
        action=AuditAction.LOGOUT,
        collection=COLLECTION,
        actor=Actor.from_user(user),
        network=network,
        document_id=user.id,
    ):
        user.refresh_token_hash = None
        await db.flush()


# ── Reseteo de contraseña ────────────────────────────


async def forgot_password(
    db: AsyncSession,
    audit: AuditTrailWriter,
    mailer: SendGridMailer,
    email: str,
    network: NetworkInfo,
) -> None:
    """
    Genera un token de reseteo y lo envía por e-mail.
    Un email desconocido responde igual que uno válido.
    """
    settings = get_settings()
    async with audit.track(
        db,
        action=AuditAction.FORGOT_PASSWORD_REQUEST,
        failure_action=AuditAction.FORGOT_PASSWORD_FAILED,
        collection=COLLECTION,
        actor=None,
        network=network,
    ) as trail:
        trail.after = {"email": email}
        user = await _find_active_by_email(db, email)
        if user is None:
            trail.detail = "email no registrado"
            return

        trail.actor = Actor.from_user(user)
        trail.document_id = user.id

        token = generate_opaque_token()
        user.reset_token_hash = hash_token(token)
        user.reset_token_expires_at = datetime.now(timezone.utc) + timedelta(
            minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES
        )
        await db.flush()

        try:
            await mailer.send_password_reset(user.email, user.name, token)
        except EmailError as exc:
            raise DownstreamException("e-mail", exc.message) from exc


async def reset_password(
    db: AsyncSession,
    audit: AuditTrailWriter,
    token: str,
    new_password: str,
    network: NetworkInfo,
) -> None:
    async with audit.track(
        db,
        action=AuditAction.PASSWORD_RESET_SUCCESS,
        failure_action=AuditAction.PASSWORD_RESET_INVALID_TOKEN,
        collection=COLLECTION,
        actor=None,
        network=network,
    ) as trail:
        result = await db.execute(
            select(User).where(
                User.reset_token_hash == hash_token(token),
                User.is_active.is_(True),
            )
        )
        user = result.scalar_one_or_none()
        expires_at = as_utc(user.reset_token_expires_at) if user else None
        if user is None or expires_at is None or expires_at < datetime.now(timezone.utc):
            raise ValidationException("Token de reseteo inválido o expirado")

        trail.actor = Actor.from_user(user)
        trail.document_id = user.id

        user.hashed_password = hash_password(new_password)
        user.reset_token_hash = None
        user.reset_token_expires_at = None
        # Las sesiones abiertas dejan de poder refrescarse
        user.refresh_token_hash = None
        await db.flush()

"""
Dependencies de FastAPI para autenticación, permisos y metadata de la request.
"""

from uuid import UUID

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from laudofy.auth.jwt import TokenType, decode_token
from laudofy.auth.rbac import has_permission
from laudofy.core.exceptions import CredentialsException, ForbiddenException
from laudofy.database import get_db
from laudofy.models.user import User
from laudofy.services.audit_service import NetworkInfo

# ── Security scheme ──────────────────────────────────
security = HTTPBearer()


# ── Token payload tipado ─────────────────────────────
class TokenPayload:
    """Datos extraídos del token JWT decodificado."""

    def __init__(self, payload: dict):
        self.user_id: UUID = UUID(payload["sub"])
        self.name: str = payload.get("name", "")
        self.role: str = payload.get("role", "")
        self.token_type: str = payload.get("type", TokenType.ACCESS)


# ── Obtener usuario actual ───────────────────────────
async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Dependency que:
    1. Decodifica el JWT del header Authorization
    2. Carga el usuario activo de la DB
    """
    try:
        payload = decode_token(credentials.credentials)
        token_data = TokenPayload(payload)
    except (jwt.InvalidTokenError, KeyError, ValueError):
        raise CredentialsException("Token inválido o expirado")

    if token_data.token_type != TokenType.ACCESS:
        raise CredentialsException("Tipo de token inválido")

    result = await db.execute(
        select(User).where(
            User.id == token_data.user_id,
            User.is_active.is_(True),
        )
    )
    user = result.scalar_one_or_none()

    if user is None:
        raise CredentialsException("Usuario no encontrado o inactivo")

    return user


# ── Factory de dependency con permisos ───────────────
def require_permission(resource: str, action: str):
    """
    Factory que crea un dependency que verifica el permiso RBAC del usuario.

    Uso:
        @router.post("")
        async def create(user: User = Depends(require_permission("report", "create"))):
            ...
    """

    async def _check_permission(
        user: User = Depends(get_current_user),
    ) -> User:
        if not has_permission(user.role, resource, action):
            raise ForbiddenException(
                f"El rol {user.role.value} no puede realizar '{action}' sobre '{resource}'"
            )
        return user

    return _check_permission


# ── Metadata de red para auditoría ───────────────────
def _get_client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def get_network_info(request: Request) -> NetworkInfo:
    return NetworkInfo(
        ip=_get_client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )

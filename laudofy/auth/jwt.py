"""
Gestión de JWT (RS256 con claves asimétricas, o HS256 en desarrollo/tests).
El access token lleva {sub, name, role}; el refresh es un token opaco
cuyo hash SHA-256 vive en la tabla de usuarios.
"""

from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt

from laudofy.config import get_settings

settings = get_settings()


class TokenType:
    ACCESS = "access"


def create_access_token(
    user_id: UUID,
    name: str,
    role: str,
    extra_claims: dict | None = None,
) -> tuple[str, datetime]:
    """Crea un access token JWT. Devuelve el token y su expiración."""
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {
        "sub": str(user_id),
        "name": name,
        "role": role,
        "type": TokenType.ACCESS,
        "iat": now,
        "exp": expires_at,
    }
    if extra_claims:
        payload.update(extra_claims)

    token = jwt.encode(
        payload,
        settings.jwt_signing_key,
        algorithm=settings.JWT_ALGORITHM,
    )
    return token, expires_at


def decode_token(token: str) -> dict:
    """
    Decodifica y verifica un token JWT.
    Lanza jwt.InvalidTokenError si el token es inválido o expirado.
    """
    return jwt.decode(
        token,
        settings.jwt_verifying_key,
        algorithms=[settings.JWT_ALGORITHM],
    )

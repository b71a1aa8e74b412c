"""
Utilidades de seguridad: hashing de contraseñas, tokens opacos y códigos de acceso.
"""

import hashlib
import hmac
import secrets

from passlib.context import CryptContext

from laudofy.config import get_settings

# ── Hashing de contraseñas ───────────────────────────
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    """Genera hash bcrypt de una contraseña."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verifica una contraseña contra su hash bcrypt."""
    return pwd_context.verify(plain_password, hashed_password)


# ── Tokens opacos (refresh / reset) ──────────────────
def generate_opaque_token() -> str:
    """Token aleatorio para refresh o reseteo de contraseña. Nunca se persiste en claro."""
    return secrets.token_urlsafe(48)


def hash_token(token: str) -> str:
    """SHA-256 del token; es lo único que se guarda en base."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def token_matches(token: str, stored_hash: str | None) -> bool:
    if not stored_hash:
        return False
    return hmac.compare_digest(hash_token(token), stored_hash)


# ── Código de acceso público de laudos ───────────────
def generate_access_code(length: int | None = None) -> str:
    """Código numérico sin cero inicial (4 dígitos por defecto: 1000-9999)."""
    length = length or get_settings().ACCESS_CODE_LENGTH
    low = 10 ** (length - 1)
    return str(low + secrets.randbelow(9 * low))


def access_code_matches(supplied: str, stored: str | None) -> bool:
    if not stored or not supplied:
        return False
    return hmac.compare_digest(supplied.strip().encode(), stored.encode())

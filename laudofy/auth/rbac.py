"""
Definición de permisos RBAC por rol.
Mapea qué acciones puede realizar cada rol.
"""

from laudofy.models.user import UserRole

_ALL = [UserRole.ADMIN, UserRole.PHYSICIAN, UserRole.TECHNICIAN]

# ── Permisos por recurso ─────────────────────────────
# Formato: {recurso: {acción: [roles permitidos]}}
PERMISSIONS: dict[str, dict[str, list[UserRole]]] = {
    "user": {
        "create": [UserRole.ADMIN],
        "read": [UserRole.ADMIN],
        "update": [UserRole.ADMIN],
        "delete": [UserRole.ADMIN],
    },
    "patient": {
        "create": _ALL,
        "read": _ALL,
        "update": _ALL,
        "delete": [UserRole.ADMIN],
    },
    "exam": {
        "create": [UserRole.ADMIN, UserRole.TECHNICIAN],
        "read": _ALL,
        "update": _ALL,
        "delete": [UserRole.ADMIN],
        "statistics": [UserRole.ADMIN, UserRole.PHYSICIAN],
    },
    "report": {
        "create": [UserRole.PHYSICIAN],
        "read": _ALL,
        "sign": [UserRole.PHYSICIAN],
        "redo": [UserRole.PHYSICIAN],
        "invalidate": [UserRole.ADMIN, UserRole.PHYSICIAN],
        "send": [UserRole.ADMIN, UserRole.PHYSICIAN],
    },
    "financial": {
        "configure": [UserRole.ADMIN],
        "read": [UserRole.ADMIN, UserRole.PHYSICIAN],
        "update": [UserRole.ADMIN],
        "invoice": [UserRole.ADMIN],
        "dashboard": [UserRole.ADMIN],
    },
    "audit_log": {
        "read": [UserRole.ADMIN],
    },
}


def has_permission(role: UserRole, resource: str, action: str) -> bool:
    """Verifica si un rol tiene permiso para una acción en un recurso."""
    resource_perms = PERMISSIONS.get(resource, {})
    allowed_roles = resource_perms.get(action, [])
    return role in allowed_roles

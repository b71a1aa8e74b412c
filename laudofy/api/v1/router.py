"""
Router principal de la API v1.
Agrupa todos los sub-routers de la versión 1.
"""

from fastapi import APIRouter

from laudofy.api.v1.audit_logs import router as audit_logs_router
from laudofy.api.v1.auth import router as auth_router
from laudofy.api.v1.exams import router as exams_router
from laudofy.api.v1.financial import router as financial_router
from laudofy.api.v1.patients import router as patients_router
from laudofy.api.v1.public import router as public_router
from laudofy.api.v1.reports import router as reports_router
from laudofy.api.v1.users import router as users_router

api_v1_router = APIRouter()

api_v1_router.include_router(
    auth_router,
    prefix="/auth",
    tags=["Autenticación"],
)

api_v1_router.include_router(
    users_router,
    prefix="/users",
    tags=["Usuarios"],
)

api_v1_router.include_router(
    patients_router,
    prefix="/patients",
    tags=["Pacientes"],
)

api_v1_router.include_router(
    exams_router,
    prefix="/exams",
    tags=["Exámenes"],
)

api_v1_router.include_router(
    reports_router,
    prefix="/reports",
    tags=["Laudos"],
)

api_v1_router.include_router(
    public_router,
    prefix="/public/reports",
    tags=["Acceso Público"],
)

api_v1_router.include_router(
    financial_router,
    prefix="/financial",
    tags=["Financiero"],
)

api_v1_router.include_router(
    audit_logs_router,
    prefix="/audit-logs",
    tags=["Auditoría"],
)

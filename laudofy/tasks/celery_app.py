"""
Configuración de Celery para tareas asíncronas (generación de PDF de laudos).
"""

from celery import Celery

from laudofy.config import get_settings

settings = get_settings()

celery_app = Celery(
    "laudofy",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="America/Sao_Paulo",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)

# Reintenta cada 15 minutos los laudos con PDF en error
celery_app.conf.beat_schedule = {
    "retry-failed-report-pdfs": {
        "task": "reports.retry_failed_pdfs",
        "schedule": 15 * 60,
    },
}

# Auto-descubrir tareas en laudofy/tasks/
celery_app.autodiscover_tasks(["laudofy.tasks"], related_name="report_tasks")

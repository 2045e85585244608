from celery import Celery
from app.core.config import settings

celery_app = Celery(
    "crm_commissions",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["app.tasks.async_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_always_eager=settings.CELERY_TASK_ALWAYS_EAGER,
)

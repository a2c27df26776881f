from celery import Celery

from raktdaan.config import get_settings

settings = get_settings()

celery_app = Celery(
    "raktdaan",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=[
        "raktdaan.tasks.ranking_tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_routes={
        "raktdaan.tasks.ranking_tasks.*": {"queue": "matching"},
    },
    beat_schedule={
        "refresh-active-rankings": {
            "task": "raktdaan.tasks.ranking_tasks.refresh_active_rankings",
            "schedule": settings.RANKING_REFRESH_SECONDS,
        },
        "expire-stale-alerts": {
            "task": "raktdaan.tasks.ranking_tasks.expire_alerts",
            "schedule": settings.EXPIRY_SWEEP_SECONDS,
        },
    },
)

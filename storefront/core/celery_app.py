from celery import Celery
from celery.schedules import crontab

from storefront.core.config import settings

TASK_MODULES = ["storefront.tasks.email_tasks", "storefront.tasks.security_tasks"]

celery_app = Celery(
    "storefront",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=TASK_MODULES,
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    enable_utc=True,
    timezone="UTC",
    # A task is redelivered when its worker dies mid-run
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    task_soft_time_limit=60,
    task_time_limit=90,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=500,
    result_expires=60 * 60,
    task_routes={"storefront.tasks.email_tasks.*": {"queue": "emails"}},
    beat_schedule={
        "purge-expired-otps": {
            "task": "storefront.tasks.security_tasks.purge_expired_otps",
            "schedule": crontab(minute="*/10"),
        },
        "purge-expired-blacklisted-tokens": {
            "task": "storefront.tasks.security_tasks.cleanup_expired_blacklisted_tokens",
            "schedule": crontab(hour=3, minute=0),
        },
    },
)

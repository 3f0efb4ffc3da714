from celery import Celery
from celery.schedules import crontab
from csi_portal.core.config import settings

# Create Celery app
celery_app = Celery(
    "csi_portal",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "csi_portal.tasks",
    ]
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=settings.CELERY_TASK_TIME_LIMIT,
    task_soft_time_limit=settings.CELERY_TASK_SOFT_TIME_LIMIT,
    result_expires=86400,  # 24 hours
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
    broker_connection_retry_on_startup=True,
)

# Celery beat schedule for periodic tasks
# Use these when the API runs with SCHEDULER_ENABLED=false (multiple replicas)
celery_app.conf.beat_schedule = {
    "process-scheduled-operations": {
        "task": "csi_portal.tasks.process_scheduled_operations",
        "schedule": float(settings.SCHEDULER_INTERVAL_SECONDS),
    },
    "sap-organizational-sync": {
        "task": "csi_portal.tasks.sync_sap_organizational_data",
        "schedule": crontab(hour=1, minute=0),
    },
}

"""
Celery application configuration.
"""

from celery import Celery

from cabinet_portal.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    "cabinet_portal",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["cabinet_portal.workers.sync_tasks"],
)

# Configure Celery
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task execution
    task_track_started=True,
    task_time_limit=3600,  # 1 hour max per task
    task_soft_time_limit=3000,  # Soft limit at 50 min

    # Result backend
    result_expires=86400,  # Results expire after 24 hours

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,

    # Task routes
    task_routes={
        "cabinet_portal.workers.sync_tasks.reverse_sync_task": {"queue": "sync"},
        "cabinet_portal.workers.sync_tasks.provision_folders_task": {"queue": "sync"},
        "cabinet_portal.workers.sync_tasks.sync_dossiers_task": {"queue": "sync"},
        "cabinet_portal.workers.sync_tasks.calendar_sync_task": {"queue": "sync"},
        "cabinet_portal.workers.sync_tasks.ensure_dossier_folders_task": {"queue": "sync"},
        "cabinet_portal.workers.sync_tasks.push_event_task": {"queue": "sync"},
        "cabinet_portal.workers.sync_tasks.health_check_task": {"queue": "sync"},
    },

    # Beat schedule for periodic tasks
    beat_schedule={
        "calendar-sync-every-15-minutes": {
            "task": "cabinet_portal.workers.sync_tasks.calendar_sync_task",
            "schedule": 900.0,
        },
        "reverse-sync-every-hour": {
            "task": "cabinet_portal.workers.sync_tasks.reverse_sync_task",
            "schedule": 3600.0,
        },
        "folder-provisioning-every-hour": {
            "task": "cabinet_portal.workers.sync_tasks.provision_folders_task",
            "schedule": 3600.0,
        },
        "health-check-every-10-minutes": {
            "task": "cabinet_portal.workers.sync_tasks.health_check_task",
            "schedule": 600.0,
        },
    },
)

"""
Celery workers for background sync.
"""

from cabinet_portal.workers.celery_app import celery_app
from cabinet_portal.workers.sync_tasks import (
    reverse_sync_task,
    provision_folders_task,
    sync_dossiers_task,
    calendar_sync_task,
    health_check_task,
    ensure_dossier_folders_task,
    push_event_task,
)

__all__ = [
    "celery_app",
    "reverse_sync_task",
    "provision_folders_task",
    "sync_dossiers_task",
    "calendar_sync_task",
    "health_check_task",
    "ensure_dossier_folders_task",
    "push_event_task",
]

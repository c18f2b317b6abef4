"""
Celery tasks for scheduled and mutation-triggered synchronization.
"""

import asyncio
import logging

from cabinet_portal.models import SyncMode
from cabinet_portal.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


def run_async(coro):
    """Run async function in Celery task."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def _with_services(work):
    """
    Run work(db, services) in a fresh session.

    The engine is disposed afterwards: its pooled connections belong to
    this task's event loop.
    """
    from cabinet_portal.database import close_db, get_db_context
    from cabinet_portal.services.registry import ServiceRegistry

    services = ServiceRegistry.build()
    try:
        async with get_db_context() as db:
            return await work(db, services)
    finally:
        await close_db()


# ============== Scheduled ==============

@celery_app.task
def reverse_sync_task():
    """Hourly import of the OneDrive client tree."""

    async def work(db, services):
        result = await services.reverse_sync.reverse_sync_from_onedrive(db, SyncMode.SCHEDULED)
        return result.model_dump(exclude={"details"})

    return run_async(_with_services(work))


@celery_app.task
def provision_folders_task():
    """Hourly creation of missing case folders."""

    async def work(db, services):
        report = await services.provisioner.provision_missing(db, SyncMode.SCHEDULED)
        return report.model_dump(mode="json", exclude={"details", "results"})

    return run_async(_with_services(work))


@celery_app.task
def sync_dossiers_task():
    """Per-case document reconciliation for every linked case."""

    async def work(db, services):
        report = await services.reverse_sync.sync_all_dossiers(db, SyncMode.SCHEDULED)
        return report.model_dump(exclude={"details"})

    return run_async(_with_services(work))


@celery_app.task
def calendar_sync_task():
    """Push pending portal events, then import remote ones. Every 15 minutes."""

    async def work(db, services):
        push = await services.forward_sync.push_pending_events(
            db, SyncMode.SCHEDULED, only_pending=True
        )
        pull = await services.calendar_import.pull_from_active_calendars(db, SyncMode.SCHEDULED)
        return {
            "push": push.model_dump(exclude={"details"}),
            "pull": pull.model_dump(exclude={"details"}),
        }

    return run_async(_with_services(work))


@celery_app.task
def health_check_task():
    """Probe every integration and log the unhealthy ones."""

    async def work(db, services):
        results = await services.health.perform_health_checks(db)
        for service, check in results.items():
            if not check.healthy:
                logger.warning(f"Integration {service} unhealthy: {check.error}")
        return {service: check.model_dump() for service, check in results.items()}

    return run_async(_with_services(work))


# ============== Mutation hooks ==============

def _retry_failed(task, result: dict) -> dict:
    """Retry a failed mutation push with exponential backoff, then give up."""
    if result.get("success") or task.request.retries >= task.max_retries:
        return result
    countdown = 60 * 2 ** task.request.retries
    logger.warning(
        f"{task.name} failed ({result.get('error')}), retrying in {countdown}s"
    )
    raise task.retry(countdown=countdown)


@celery_app.task(bind=True, max_retries=3)
def ensure_dossier_folders_task(self, dossier_id: str):
    """Queued when a case is created or renamed."""

    async def work(db, services):
        result = await services.provisioner.ensure_folders(db, dossier_id)
        return result.model_dump(mode="json")

    return _retry_failed(self, run_async(_with_services(work)))


@celery_app.task(bind=True, max_retries=3)
def push_event_task(self, event_id: str):
    """Queued when an event is created or edited; manual-mode accounts are skipped."""

    async def work(db, services):
        result = await services.forward_sync.push_event_on_change(db, event_id)
        return result.model_dump(mode="json")

    return _retry_failed(self, run_async(_with_services(work)))

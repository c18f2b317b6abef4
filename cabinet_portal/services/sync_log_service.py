"""
Sync log writer and reader.
"""

import logging
from typing import Any, Optional, Union
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cabinet_portal.config import Settings, get_settings
from cabinet_portal.models import IntegrationType, SyncLog, SyncMode
from cabinet_portal.schemas.sync import SyncReport

logger = logging.getLogger(__name__)

SKIP_MESSAGES = {
    "not_configured": "Google Calendar is not configured",
    "no_accounts": "No Google account connected",
    "no_calendars": "No active calendar configured",
}


class SyncLogService:
    """Appends one entry per sync run and serves the history."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def clamp_limit(self, limit: int) -> int:
        return max(1, min(limit, self.settings.sync_history_max_limit))

    async def record(
        self,
        db: AsyncSession,
        sync_type: IntegrationType,
        mode: SyncMode,
        report: SyncReport,
        duration_ms: Optional[int] = None,
        triggered_by: Optional[Union[str, UUID]] = None,
        extra_details: Optional[dict[str, Any]] = None,
    ) -> Optional[SyncLog]:
        """
        Write the log entry for a finished run.

        A failure here is logged and swallowed: the run itself already
        happened and its result is still returned to the caller.
        """
        limit = self.settings.sync_log_details_limit
        details: dict[str, Any] = {
            "details": report.details[:limit],
            "total_details": len(report.details),
        }
        if extra_details:
            details.update(extra_details)

        entry = SyncLog(
            sync_type=sync_type,
            mode=mode,
            outcome=report.outcome,
            items_processed=report.processed,
            items_created=report.created,
            items_updated=report.updated,
            items_deleted=report.deleted,
            items_errored=report.errors,
            message=report.message,
            details=details,
            duration_ms=duration_ms,
            triggered_by_id=UUID(str(triggered_by)) if triggered_by else None,
        )
        try:
            db.add(entry)
            await db.commit()
        except SQLAlchemyError:
            logger.exception(f"Failed to write {sync_type.value} sync log")
            await db.rollback()
            return None
        return entry

    async def record_skipped(
        self,
        db: AsyncSession,
        sync_type: IntegrationType,
        mode: SyncMode,
        reason: str,
        triggered_by: Optional[Union[str, UUID]] = None,
    ) -> Optional[SyncLog]:
        text = SKIP_MESSAGES.get(reason, reason)
        report = SyncReport(message=f"{text} - sync skipped", details=[text])
        return await self.record(
            db,
            sync_type,
            mode,
            report,
            duration_ms=0,
            triggered_by=triggered_by,
            extra_details={"skipped_reason": reason},
        )

    async def history(
        self,
        db: AsyncSession,
        sync_type: Optional[IntegrationType] = None,
        limit: int = 20,
    ) -> list[SyncLog]:
        """Newest first; limit is clamped to the configured maximum."""
        stmt = select(SyncLog).order_by(SyncLog.created_at.desc()).limit(
            self.clamp_limit(limit)
        )
        if sync_type is not None:
            stmt = stmt.where(SyncLog.sync_type == sync_type)
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def latest(
        self,
        db: AsyncSession,
        sync_type: IntegrationType,
    ) -> Optional[SyncLog]:
        entries = await self.history(db, sync_type, limit=1)
        return entries[0] if entries else None

"""
Calendar import: pull events from the active Google calendars.
"""

import logging
import time
from datetime import date, datetime, time as dt_time, timedelta
from itertools import groupby
from typing import Optional, Union
from uuid import UUID
from zoneinfo import ZoneInfo

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cabinet_portal.config import Settings, get_settings
from cabinet_portal.core.clock import as_utc, utcnow
from cabinet_portal.core.provider_client import ProviderAPIError
from cabinet_portal.models import Dossier, Event, IntegrationType, RemoteCalendar, SyncMode
from cabinet_portal.schemas.sync import CalendarSyncResult
from cabinet_portal.services.calendar_directory import CalendarDirectory
from cabinet_portal.services.connector import IntegrationConnector
from cabinet_portal.services.errors import IntegrationError
from cabinet_portal.services.naming import extract_reference
from cabinet_portal.services.sync_log_service import SyncLogService

logger = logging.getLogger(__name__)

REMOTE_ERRORS = (ProviderAPIError, IntegrationError, httpx.HTTPError)


def parse_event_time(value: dict, tz: ZoneInfo) -> tuple[Optional[datetime], bool]:
    """
    Read a Google start/end object.

    Returns (timestamp, all_day). Dates of all-day events are midnight in
    the portal's time zone.
    """
    if not value:
        return None, False
    if value.get("dateTime"):
        raw = value["dateTime"].replace("Z", "+00:00")
        parsed = datetime.fromisoformat(raw)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=tz)
        return parsed, False
    if value.get("date"):
        day = date.fromisoformat(value["date"])
        return datetime.combine(day, dt_time.min, tzinfo=tz), True
    return None, False


class CalendarImportService:
    """
    Service importing Google events into the portal agenda.

    Handles:
    - Listing events of every active directory entry within the import window
    - Linking events to a case through a reference in their title
    - Refreshing events imported by earlier runs
    """

    def __init__(
        self,
        connector: Optional[IntegrationConnector] = None,
        directory: Optional[CalendarDirectory] = None,
        sync_log: Optional[SyncLogService] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.connector = connector or IntegrationConnector()
        self.directory = directory or CalendarDirectory()
        self.sync_log = sync_log or SyncLogService(self.settings)

    async def _skip_reason(self, db: AsyncSession) -> Optional[str]:
        if not self.settings.google_calendar_configured:
            return "not_configured"
        if not await self.connector.token_store.list_tokens(db, IntegrationType.GOOGLE_CALENDAR):
            return "no_accounts"
        return None

    async def pull_from_active_calendars(
        self,
        db: AsyncSession,
        mode: SyncMode = SyncMode.MANUAL,
        triggered_by: Optional[Union[str, UUID]] = None,
    ) -> CalendarSyncResult:
        """Import remote events of every active calendar and log the run."""
        result = CalendarSyncResult()
        calendars: list[RemoteCalendar] = []

        result.skipped_reason = await self._skip_reason(db)
        if result.skipped_reason is None:
            calendars = await self.directory.list_active(db)
            if not calendars:
                result.skipped_reason = "no_calendars"

        if result.skipped_reason:
            logger.info(f"Calendar import skipped: {result.skipped_reason}")
            await self.sync_log.record_skipped(
                db, IntegrationType.GOOGLE_CALENDAR, mode, result.skipped_reason, triggered_by
            )
            result.finish(f"Calendar import skipped: {result.skipped_reason}")
            return result

        started = time.monotonic()
        now = utcnow()
        time_min = now - timedelta(days=self.settings.calendar_import_past_days)
        time_max = now + timedelta(days=self.settings.calendar_import_future_days)

        dossiers = {
            reference.upper(): dossier_id
            for dossier_id, reference in (await db.execute(select(Dossier.id, Dossier.reference))).all()
        }

        # One client per account, operator tokens after the shared one
        def token_key(c: RemoteCalendar):
            return str(c.token.operator_id or "")

        calendars.sort(key=token_key)
        for _, group in groupby(calendars, key=token_key):
            group = list(group)
            operator_id = group[0].token.operator_id
            try:
                async with self.connector.google_calendar(db, operator_id) as client:
                    for calendar in group:
                        try:
                            items = await client.list_events(
                                calendar.calendar_id,
                                time_min,
                                time_max,
                                max_results=self.settings.calendar_import_max_results,
                            )
                        except REMOTE_ERRORS as e:
                            logger.error(f"Listing events of {calendar.name} failed: {e}")
                            result.add_error(f"{calendar.name}: {e}")
                            continue
                        await self._import_events(db, calendar, items, dossiers, result)
                        await db.commit()
            except REMOTE_ERRORS as e:
                result.add_error(f"Google account {group[0].token.account_email}: {e}")

        result.finish(
            f"Calendar import done: {result.created} imported, {result.updated} updated"
        )
        logger.info(result.message)
        await self.sync_log.record(
            db,
            IntegrationType.GOOGLE_CALENDAR,
            mode,
            result,
            duration_ms=int((time.monotonic() - started) * 1000),
            triggered_by=triggered_by,
            extra_details={"operation": "pull", "calendars": len(calendars)},
        )
        return result

    async def _import_events(
        self,
        db: AsyncSession,
        calendar: RemoteCalendar,
        items: list[dict],
        dossiers: dict[str, UUID],
        result: CalendarSyncResult,
    ) -> None:
        tz = ZoneInfo(self.settings.default_timezone)
        remote_ids = [item["id"] for item in items if item.get("id")]
        known: dict[str, Event] = {}
        if remote_ids:
            stmt = select(Event).where(Event.remote_event_id.in_(remote_ids))
            known = {e.remote_event_id: e for e in (await db.execute(stmt)).scalars().all()}

        for item in items:
            private = (item.get("extendedProperties") or {}).get("private") or {}
            if private.get("portalEventId"):
                continue  # pushed from the portal
            if item.get("status") == "cancelled" or not item.get("id"):
                continue

            starts_at, all_day = parse_event_time(item.get("start") or {}, tz)
            if starts_at is None:
                continue
            result.processed += 1

            ends_at, _ = parse_event_time(item.get("end") or {}, tz)
            if ends_at is None:
                ends_at = starts_at + timedelta(hours=1)
            elif all_day:
                # Remote all-day end dates are exclusive
                ends_at = max(starts_at, ends_at - timedelta(days=1))

            event = known.get(item["id"])
            if event is not None:
                result.updated += 1
                if event.sync_enabled:
                    continue  # owned by the portal
            else:
                reference = extract_reference(item.get("summary") or "")
                # Imported events are owned by Google and never pushed back
                event = Event(
                    remote_event_id=item["id"],
                    dossier_id=dossiers.get(reference.upper()) if reference else None,
                    event_type="other",
                    sync_enabled=False,
                )
                db.add(event)
                known[item["id"]] = event
                result.created += 1
                result.details.append(f"Imported {item.get('summary') or item['id']}")

            location = item.get("location")
            event.title = (item.get("summary") or "(untitled)")[:255]
            event.description = item.get("description")
            event.place = location[:255] if location else None
            event.starts_at = as_utc(starts_at)
            event.ends_at = as_utc(ends_at)
            event.all_day = all_day
            event.remote_calendar_id = calendar.id
            event.remote_last_sync = utcnow()

"""
Tests for importing Google events into the portal agenda.
"""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import select

from cabinet_portal.core.clock import as_utc
from cabinet_portal.core.provider_client import ProviderAPIError
from cabinet_portal.models import Event, EventLink, SyncLog
from cabinet_portal.services.calendar_import import parse_event_time

PARIS = ZoneInfo("Europe/Paris")


def remote_events():
    return [
        {
            "id": "r1",
            "summary": "Audience DOS-2024-0012 TJ",
            "location": "TJ Paris",
            "start": {"dateTime": "2024-06-03T09:00:00Z"},
            "end": {"dateTime": "2024-06-03T10:30:00Z"},
        },
        {
            "id": "r2",
            "summary": "Congrès",
            "start": {"date": "2024-06-10"},
            "end": {"date": "2024-06-12"},
        },
        {
            "id": "gevt-1",
            "summary": "Pushed from the portal",
            "start": {"dateTime": "2024-06-04T09:00:00Z"},
            "extendedProperties": {"private": {"portalEventId": "abc"}},
        },
        {
            "id": "r3",
            "status": "cancelled",
            "start": {"dateTime": "2024-06-05T09:00:00Z"},
        },
    ]


async def events_by_remote_id(db) -> dict[str, Event]:
    result = await db.execute(select(Event))
    return {e.remote_event_id: e for e in result.scalars().all()}


class TestParseEventTime:
    def test_date_time(self):
        assert parse_event_time({"dateTime": "2024-06-03T09:00:00Z"}, PARIS) == (
            datetime(2024, 6, 3, 9, 0, tzinfo=timezone.utc),
            False,
        )

    def test_date_is_local_midnight(self):
        assert parse_event_time({"date": "2024-06-10"}, PARIS) == (
            datetime(2024, 6, 10, tzinfo=PARIS),
            True,
        )

    def test_empty(self):
        assert parse_event_time({}, PARIS) == (None, False)


class TestSkips:
    async def test_no_accounts(self, db, services):
        result = await services.calendar_import.pull_from_active_calendars(db)

        assert result.skipped_reason == "no_accounts"
        assert result.success

    async def test_no_active_calendar(self, db, services, google_token):
        result = await services.calendar_import.pull_from_active_calendars(db)

        assert result.skipped_reason == "no_calendars"
        entry = (await db.execute(select(SyncLog))).scalar_one()
        assert entry.details["skipped_reason"] == "no_calendars"
        assert entry.message == "No active calendar configured - sync skipped"


class TestPullFromActiveCalendars:
    @pytest.fixture
    async def active_calendar(self, db, services, calendar, google_token):
        await services.directory.refresh_from_remote(db, google_token, calendar)
        calendar.events["cabinet@example.com"] = remote_events()

    async def test_imports_remote_events(self, db, factory, services, active_calendar):
        client = await factory.client("Jean", "Dupont")
        dossier = await factory.dossier(client, "DOS-2024-0012")

        result = await services.calendar_import.pull_from_active_calendars(db)

        assert result.success
        assert result.skipped_reason is None
        assert result.processed == 2
        assert result.created == 2

        events = await events_by_remote_id(db)
        assert set(events) == {"r1", "r2"}
        hearing = events["r1"]
        assert hearing.dossier_id == dossier.id
        assert hearing.link == EventLink.CASE
        assert hearing.place == "TJ Paris"
        assert not hearing.sync_enabled
        assert as_utc(hearing.ends_at) == datetime(2024, 6, 3, 10, 30, tzinfo=timezone.utc)

        congress = events["r2"]
        assert congress.all_day
        assert congress.dossier_id is None
        assert congress.link == EventLink.CALENDAR_IMPORT
        assert as_utc(congress.ends_at) == datetime(2024, 6, 11, tzinfo=PARIS)

        entry = (await db.execute(select(SyncLog))).scalar_one()
        assert entry.details["operation"] == "pull"
        assert entry.details["calendars"] == 1

    async def test_second_run_updates(self, db, services, calendar, active_calendar):
        await services.calendar_import.pull_from_active_calendars(db)
        calendar.events["cabinet@example.com"][1]["summary"] = "Congrès annuel"

        result = await services.calendar_import.pull_from_active_calendars(db)

        assert result.created == 0
        assert result.updated == 2
        events = await events_by_remote_id(db)
        assert len(events) == 2
        assert events["r2"].title == "Congrès annuel"

    async def test_portal_owned_event_is_left_alone(self, db, factory, services, active_calendar):
        await factory.event("Audience portail", remote_event_id="r1")

        result = await services.calendar_import.pull_from_active_calendars(db)

        assert result.created == 1
        assert result.updated == 1
        events = await events_by_remote_id(db)
        assert events["r1"].title == "Audience portail"
        assert events["r1"].sync_enabled

    async def test_listing_failure_is_counted(self, db, services, calendar, active_calendar):
        calendar.failures["list_events"] = ProviderAPIError("Rate Limit Exceeded", status_code=429)

        result = await services.calendar_import.pull_from_active_calendars(db)

        assert not result.success
        assert result.errors == 1
        assert result.details == ["Cabinet: Rate Limit Exceeded"]

"""
Tests for the local Google calendar directory.
"""

import uuid


class TestRefreshFromRemote:
    async def test_only_primary_starts_active(self, db, services, calendar, google_token):
        entries = await services.directory.refresh_from_remote(db, google_token, calendar)

        flags = {e.calendar_id: e.is_active for e in entries}
        assert flags == {
            "cabinet@example.com": True,
            "audiences@group.calendar.google.com": False,
        }

    async def test_second_refresh_keeps_flags(self, db, services, calendar, google_token):
        entries = await services.directory.refresh_from_remote(db, google_token, calendar)
        by_id = {e.calendar_id: e for e in entries}
        await services.directory.deactivate(db, by_id["cabinet@example.com"].id)
        await services.directory.activate(db, by_id["audiences@group.calendar.google.com"].id)

        calendar.calendars[1].summary = "Audiences TJ"
        entries = await services.directory.refresh_from_remote(db, google_token, calendar)

        flags = {e.calendar_id: e.is_active for e in entries}
        assert flags == {
            "cabinet@example.com": False,
            "audiences@group.calendar.google.com": True,
        }
        assert len(await services.directory.list_for_token(db, google_token.id)) == 2
        active = await services.directory.list_active(db)
        assert [e.name for e in active] == ["Audiences TJ"]


class TestSetActive:
    async def test_unknown_entry(self, db, services):
        assert await services.directory.activate(db, uuid.uuid4()) is None

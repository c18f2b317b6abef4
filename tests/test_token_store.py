"""
Tests for OAuth token storage, refresh and disconnection.
"""

import pytest
from sqlalchemy import select

from cabinet_portal.models import CalendarSyncMode, Event, IntegrationType, RemoteCalendar
from cabinet_portal.schemas.integrations import TokenCredentials, TokenState
from cabinet_portal.services.errors import (
    IntegrationNotConnectedError,
    TokenRefreshError,
)


class TestSave:
    async def test_upsert_keeps_one_row_per_pair(self, db, token_store, onedrive_token):
        again = await token_store.save(
            db,
            IntegrationType.ONEDRIVE,
            TokenCredentials(access_token="second-access", expires_in=3600),
        )

        tokens = await token_store.list_tokens(db, IntegrationType.ONEDRIVE)
        assert len(tokens) == 1
        assert again.id == onedrive_token.id
        assert again.access_token == "second-access"

    async def test_update_keeps_account_and_refresh_token(self, db, token_store, onedrive_token):
        token = await token_store.save(
            db,
            IntegrationType.ONEDRIVE,
            TokenCredentials(access_token="second-access"),
        )

        assert token.refresh_token == "onedrive-refresh"
        assert token.account_email == "cabinet@example.com"
        assert token.account_name == "Cabinet Martin"

    async def test_operator_tokens_are_separate(self, db, factory, token_store, google_token):
        operator = await factory.operator()
        await token_store.save(
            db,
            IntegrationType.GOOGLE_CALENDAR,
            TokenCredentials(access_token="operator-access", account_email="avocat@example.com"),
            operator_id=operator.id,
        )

        tokens = await token_store.list_tokens(db, IntegrationType.GOOGLE_CALENDAR)
        assert [t.operator_id for t in tokens] == [None, operator.id]
        shared = await token_store.get(db, IntegrationType.GOOGLE_CALENDAR)
        assert shared.id == google_token.id


class TestTokenState:
    @pytest.mark.parametrize(
        "expires_in,expected",
        [
            (3600, TokenState.VALID),
            (60, TokenState.EXPIRING),
            (-10, TokenState.EXPIRED),
        ],
    )
    async def test_state(self, db, token_store, expires_in, expected):
        token = await token_store.save(
            db,
            IntegrationType.ONEDRIVE,
            TokenCredentials(access_token="a", refresh_token="r", expires_in=expires_in),
        )
        assert token_store.token_state(token) == expected


class TestGetValidToken:
    async def test_not_connected(self, db, token_store):
        with pytest.raises(IntegrationNotConnectedError):
            await token_store.get_valid_token(db, IntegrationType.ONEDRIVE)

    async def test_fresh_token_is_not_refreshed(self, db, token_store, oauth_clients, onedrive_token):
        token = await token_store.get_valid_token(db, IntegrationType.ONEDRIVE)

        assert token.access_token == "onedrive-access"
        assert oauth_clients[IntegrationType.ONEDRIVE].refresh_calls == 0

    async def test_refreshes_when_expiring(self, db, token_store, oauth_clients):
        await token_store.save(
            db,
            IntegrationType.ONEDRIVE,
            TokenCredentials(access_token="old", refresh_token="keep-me", expires_in=60),
        )

        token = await token_store.get_valid_token(db, IntegrationType.ONEDRIVE)

        assert token.access_token == "refreshed-1"
        assert token.refresh_token == "keep-me"
        assert oauth_clients[IntegrationType.ONEDRIVE].refresh_calls == 1

    async def test_forced_refresh(self, db, token_store, oauth_clients, onedrive_token):
        access = await token_store.get_valid_access_token(
            db, IntegrationType.ONEDRIVE, force_refresh=True
        )

        assert access == "refreshed-1"
        assert oauth_clients[IntegrationType.ONEDRIVE].refresh_calls == 1

    async def test_refused_refresh(self, db, token_store, oauth_clients):
        oauth_clients[IntegrationType.ONEDRIVE].fail_refresh = True
        await token_store.save(
            db,
            IntegrationType.ONEDRIVE,
            TokenCredentials(access_token="old", refresh_token="revoked", expires_in=-10),
        )

        with pytest.raises(TokenRefreshError):
            await token_store.get_valid_token(db, IntegrationType.ONEDRIVE)

    async def test_expired_without_refresh_token(self, db, token_store):
        await token_store.save(
            db,
            IntegrationType.ONEDRIVE,
            TokenCredentials(access_token="old", expires_in=-10),
        )

        with pytest.raises(TokenRefreshError):
            await token_store.get_valid_token(db, IntegrationType.ONEDRIVE)


class TestAccessTokenProvider:
    async def test_caches_until_forced(self, db, token_store, oauth_clients, onedrive_token):
        provide = token_store.access_token_provider(db, IntegrationType.ONEDRIVE)

        assert await provide(False) == "onedrive-access"
        assert await provide(False) == "onedrive-access"
        assert oauth_clients[IntegrationType.ONEDRIVE].refresh_calls == 0

        assert await provide(True) == "refreshed-1"
        assert await provide(False) == "refreshed-1"
        assert oauth_clients[IntegrationType.ONEDRIVE].refresh_calls == 1


class TestOAuthFlow:
    async def test_authorization_url(self, token_store):
        url = token_store.authorization_url(IntegrationType.ONEDRIVE, "abc")
        assert url.endswith("state=abc")

    async def test_complete_flow_stores_profile(self, db, token_store):
        token = await token_store.complete_oauth_flow(db, IntegrationType.GOOGLE_CALENDAR, "consent-code")

        assert token.access_token == "access-for-consent-code"
        assert token.refresh_token == "refresh-from-consent"
        assert token.account_email == "cabinet@example.com"
        assert token.account_name == "Cabinet Martin"


class TestDelete:
    async def test_delete_removes_calendars_and_detaches_events(
        self, db, factory, services, token_store, google_token
    ):
        entry = await services.directory.upsert(
            db, google_token.id, "cabinet@example.com", "Cabinet", is_active=True
        )
        event = await factory.event(remote_calendar_id=entry.id, remote_event_id="gevt-1")

        assert await token_store.delete(db, IntegrationType.GOOGLE_CALENDAR)

        assert await token_store.get(db, IntegrationType.GOOGLE_CALENDAR) is None
        remaining = (await db.execute(select(RemoteCalendar.id))).scalars().all()
        assert remaining == []
        calendar_id = (
            await db.execute(select(Event.remote_calendar_id).where(Event.id == event.id))
        ).scalar_one()
        assert calendar_id is None

    async def test_delete_unknown(self, db, token_store):
        assert not await token_store.delete(db, IntegrationType.ONEDRIVE)


class TestSyncMode:
    async def test_defaults_to_auto(self, db, token_store, google_token):
        assert google_token.sync_mode == CalendarSyncMode.AUTO
        assert await token_store.get_sync_mode(db, IntegrationType.GOOGLE_CALENDAR) == CalendarSyncMode.AUTO

    async def test_not_connected_counts_as_auto(self, db, token_store):
        assert await token_store.get_sync_mode(db, IntegrationType.GOOGLE_CALENDAR) == CalendarSyncMode.AUTO

    async def test_mode_survives_token_refresh(self, db, token_store, google_token):
        await token_store.set_sync_mode(db, IntegrationType.GOOGLE_CALENDAR, CalendarSyncMode.MANUAL)

        await token_store.save(
            db,
            IntegrationType.GOOGLE_CALENDAR,
            TokenCredentials(access_token="google-access-2", expires_in=3600),
        )

        assert await token_store.get_sync_mode(db, IntegrationType.GOOGLE_CALENDAR) == CalendarSyncMode.MANUAL

    async def test_set_requires_a_connection(self, db, token_store):
        with pytest.raises(IntegrationNotConnectedError):
            await token_store.set_sync_mode(db, IntegrationType.GOOGLE_CALENDAR, CalendarSyncMode.MANUAL)

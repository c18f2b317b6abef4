"""
Tests for the Graph and Google Calendar HTTP clients against a mock transport.
"""

import json
from datetime import datetime, timezone

import httpx
import pytest
from tenacity import wait_none

from cabinet_portal.core.google_calendar import GoogleCalendarClient
from cabinet_portal.core.onedrive import OneDriveClient
from cabinet_portal.core.provider_client import ProviderAPIError

QUOTA = {"quota": {"total": 1000, "used": 250, "remaining": 750, "state": "normal"}}


class TokenProviderStub:
    """Returns a stale token until a refresh is forced."""

    def __init__(self):
        self.calls: list[bool] = []

    async def __call__(self, force_refresh: bool = False) -> str:
        self.calls.append(force_refresh)
        return "fresh" if force_refresh else "stale"


def onedrive(handler, tokens=None) -> OneDriveClient:
    return OneDriveClient(
        token_provider=tokens or TokenProviderStub(),
        transport=httpx.MockTransport(handler),
        retry_wait=wait_none(),
    )


def google(handler) -> GoogleCalendarClient:
    return GoogleCalendarClient(
        token_provider=TokenProviderStub(),
        transport=httpx.MockTransport(handler),
        retry_wait=wait_none(),
    )


class TestAuthentication:
    async def test_401_refreshes_once_and_retries(self):
        tokens = TokenProviderStub()

        def handler(request: httpx.Request) -> httpx.Response:
            if request.headers["Authorization"] == "Bearer stale":
                return httpx.Response(401, json={"error": {"code": "InvalidAuthenticationToken"}})
            return httpx.Response(200, json=QUOTA)

        async with onedrive(handler, tokens) as client:
            quota = await client.get_quota()

        assert quota.used_percentage == 25.0
        assert tokens.calls == [False, True]

    async def test_second_401_is_raised(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, text="unauthorized")

        async with onedrive(handler) as client:
            with pytest.raises(ProviderAPIError) as exc_info:
                await client.get_quota()

        assert exc_info.value.is_auth_error


class TestRetries:
    async def test_transient_status_is_retried(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            if len(attempts) < 3:
                return httpx.Response(503, text="Service Unavailable")
            return httpx.Response(200, json=QUOTA)

        async with onedrive(handler) as client:
            quota = await client.get_quota()

        assert quota.total == 1000
        assert len(attempts) == 3

    async def test_gives_up_after_max_attempts(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            return httpx.Response(429, text="Too Many Requests")

        async with onedrive(handler) as client:
            with pytest.raises(ProviderAPIError) as exc_info:
                await client.get_quota()

        assert exc_info.value.is_rate_limited
        assert len(attempts) == 3

    async def test_network_errors_are_retried(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json=QUOTA)

        async with onedrive(handler) as client:
            await client.get_quota()

        assert len(attempts) == 2

    async def test_not_found_is_not_retried(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            return httpx.Response(404, json={"error": {"code": "itemNotFound"}})

        async with onedrive(handler) as client:
            item = await client.get_item_by_path("/Portail Cabinet/Clients")

        assert item is None
        assert len(attempts) == 1


class TestOneDriveClient:
    async def test_list_children_follows_next_link(self):
        seen_params = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen_params.append(dict(request.url.params))
            if "$skiptoken" not in request.url.params:
                return httpx.Response(200, json={
                    "value": [{"id": "1", "name": "CABINET", "folder": {"childCount": 0}}],
                    "@odata.nextLink": "https://graph.microsoft.com/v1.0/me/drive/items/f1/children?$skiptoken=abc",
                })
            return httpx.Response(200, json={
                "value": [{
                    "id": "2",
                    "name": "note.pdf",
                    "size": 12,
                    "file": {"mimeType": "application/pdf"},
                    "lastModifiedDateTime": "2024-05-02T08:30:00Z",
                }],
            })

        async with onedrive(handler) as client:
            items = await client.list_children("f1")

        assert [i.name for i in items] == ["CABINET", "note.pdf"]
        assert items[0].is_folder
        assert items[1].mime_type == "application/pdf"
        assert items[1].last_modified == datetime(2024, 5, 2, 8, 30, tzinfo=timezone.utc)
        assert seen_params == [{"$top": "200"}, {"$skiptoken": "abc"}]

    async def test_ensure_child_folder_recovers_from_conflict(self):
        listings = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(409, json={"error": {"code": "nameAlreadyExists"}})
            listings.append(request)
            if len(listings) == 1:
                return httpx.Response(200, json={"value": []})
            return httpx.Response(200, json={"value": [{"id": "c1", "name": "Client", "folder": {}}]})

        async with onedrive(handler) as client:
            folder, created = await client.ensure_child_folder("f1", "CLIENT")

        assert folder.id == "c1"
        assert not created

    async def test_ensure_folder_path_creates_missing_segments(self):
        created = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                name = json.loads(request.content)["name"]
                created.append(name)
                return httpx.Response(201, json={"id": f"id-{name}", "name": name, "folder": {}})
            if "root:" in request.url.path:
                return httpx.Response(404, json={})
            if request.url.path.endswith("/root/children"):
                return httpx.Response(200, json={"value": [{"id": "r", "name": "Portail Cabinet", "folder": {}}]})
            return httpx.Response(200, json={"value": []})

        async with onedrive(handler) as client:
            folder, was_created = await client.ensure_folder_path("/Portail Cabinet/Clients/Jean Dupont")

        assert was_created
        assert folder.id == "id-Jean Dupont"
        assert created == ["Clients", "Jean Dupont"]

    async def test_get_missing_item_returns_none(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"error": {"code": "itemNotFound"}})

        async with onedrive(handler) as client:
            assert await client.get_item("gone") is None

    async def test_download_follows_redirect_without_credentials(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.url.host, request.headers.get("Authorization")))
            if request.url.path.endswith("/content"):
                return httpx.Response(302, headers={"Location": "https://download.test/abc"})
            return httpx.Response(200, content=b"%PDF-1.4")

        async with onedrive(handler) as client:
            content = await client.download_file("f1")

        assert content == b"%PDF-1.4"
        assert seen == [("graph.microsoft.com", "Bearer stale"), ("download.test", None)]

    async def test_delete_missing_item_is_ignored(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={})

        async with onedrive(handler) as client:
            await client.delete_item("gone")


class TestGoogleCalendarClient:
    async def test_list_events_pages(self):
        seen_tokens = []

        def handler(request: httpx.Request) -> httpx.Response:
            token = request.url.params.get("pageToken")
            seen_tokens.append(token)
            if token is None:
                return httpx.Response(200, json={"items": [{"id": "e1"}], "nextPageToken": "p2"})
            return httpx.Response(200, json={"items": [{"id": "e2"}]})

        now = datetime(2024, 6, 1, tzinfo=timezone.utc)
        async with google(handler) as client:
            events = await client.list_events("primary", now, now)

        assert [e["id"] for e in events] == ["e1", "e2"]
        assert seen_tokens == [None, "p2"]

    async def test_list_calendars(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path.endswith("/users/me/calendarList")
            return httpx.Response(200, json={"items": [
                {"id": "cabinet@example.com", "summary": "Cabinet", "primary": True, "backgroundColor": "#9fe1e7"},
            ]})

        async with google(handler) as client:
            (calendar,) = await client.list_calendars()

        assert calendar.primary
        assert calendar.background_color == "#9fe1e7"

    async def test_delete_of_gone_event_is_ignored(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(410, json={"error": {"message": "Resource has been deleted"}})

        async with google(handler) as client:
            await client.delete_event("primary", "gevt-1")

    async def test_update_error_carries_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": {"errors": [{"reason": "eventTypeRestriction"}]}})

        async with google(handler) as client:
            with pytest.raises(ProviderAPIError) as exc_info:
                await client.update_event("primary", "gevt-1", {"summary": "x"})

        assert exc_info.value.status_code == 400
        assert "eventTypeRestriction" in exc_info.value.body

"""
Tests for the integration and sync HTTP endpoints.
"""

import uuid
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from cabinet_portal.api.deps import get_services
from cabinet_portal.core.redis_client import get_redis
from cabinet_portal.database import get_db
from cabinet_portal.main import app
from cabinet_portal.models import DocumentLocation, IntegrationType, Uploader, UploaderKind


@pytest.fixture
async def client(db, services, redis):
    async def override_db():
        yield db

    async def override_redis():
        return redis

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_services] = lambda: services
    app.dependency_overrides[get_redis] = override_redis

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def state_of(url: str) -> str:
    return parse_qs(urlparse(url).query)["state"][0]


class TestLiveness:
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestHealthEndpoints:
    async def test_report(self, client):
        response = await client.get("/api/v1/integrations/health")

        assert response.status_code == 200
        data = response.json()
        assert data["overall_healthy"] is False
        assert {i["type"] for i in data["integrations"]} == {"onedrive", "google_calendar"}
        assert all(i["state"] == "not_connected" for i in data["integrations"])

    async def test_health_check_invalidates_cache(self, client, services, onedrive_token):
        await client.get("/api/v1/integrations/health")
        assert services.health.cache.get() is not None

        response = await client.post("/api/v1/integrations/health-check")

        assert response.status_code == 200
        assert response.json()["onedrive"] == {"healthy": True, "error": None}
        assert response.json()["google_calendar"]["error"] == "Not connected"
        assert services.health.cache.get() is None

    async def test_sync_history(self, client, db, services):
        await services.reverse_sync.reverse_sync_from_onedrive(db)

        response = await client.get("/api/v1/integrations/sync-history", params={"type": "onedrive", "limit": 1000})

        assert response.status_code == 200
        (entry,) = response.json()
        assert entry["sync_type"] == "onedrive"
        assert entry["outcome"] == "error"

    async def test_unknown_service_type(self, client):
        response = await client.get("/api/v1/integrations/sync-history", params={"type": "dropbox"})

        assert response.status_code == 400
        assert "Unknown service: dropbox" in response.json()["detail"]

    async def test_statistics_window_is_clamped(self, client):
        response = await client.get("/api/v1/integrations/statistics", params={"days": 500})

        assert response.status_code == 200
        assert response.json()["days"] == 30


class TestOAuthEndpoints:
    async def test_authorize_and_callback(self, client, redis, services, db):
        response = await client.get("/api/v1/integrations/onedrive/authorize")
        assert response.status_code == 200
        state = state_of(response.json()["url"])
        assert redis.states[state] == {"service": "onedrive", "operator_id": None}

        response = await client.get(
            "/api/v1/integrations/onedrive/callback",
            params={"code": "abc", "state": state},
        )

        assert response.status_code == 200
        assert response.json()["account_email"] == "cabinet@example.com"
        token = await services.token_store.get(db, IntegrationType.ONEDRIVE)
        assert token.access_token == "access-for-abc"
        assert state not in redis.states

    async def test_google_callback_mirrors_calendars(self, client):
        response = await client.get("/api/v1/integrations/google-calendar/authorize")
        state = state_of(response.json()["url"])

        response = await client.get(
            "/api/v1/integrations/google_calendar/callback",
            params={"code": "xyz", "state": state},
        )

        assert response.status_code == 200
        calendars = response.json()["calendars"]
        assert {c["calendar_id"]: c["is_active"] for c in calendars} == {
            "cabinet@example.com": True,
            "audiences@group.calendar.google.com": False,
        }

    async def test_unknown_state(self, client):
        response = await client.get(
            "/api/v1/integrations/onedrive/callback",
            params={"code": "abc", "state": "forged"},
        )

        assert response.status_code == 400

    async def test_state_is_bound_to_service(self, client):
        response = await client.get("/api/v1/integrations/onedrive/authorize")
        state = state_of(response.json()["url"])

        response = await client.get(
            "/api/v1/integrations/google_calendar/callback",
            params={"code": "abc", "state": state},
        )

        assert response.status_code == 400

    async def test_disconnect(self, client, onedrive_token):
        response = await client.delete("/api/v1/integrations/onedrive")

        assert response.status_code == 200
        assert response.json() == {"service": "onedrive", "operator_id": None, "status": "disconnected"}

        response = await client.delete("/api/v1/integrations/onedrive")
        assert response.status_code == 404


class TestCalendarEndpoints:
    async def test_refresh_requires_an_account(self, client):
        response = await client.post("/api/v1/integrations/google_calendar/calendars/refresh")

        assert response.status_code == 400

    async def test_refresh_and_toggle(self, client, google_token):
        response = await client.post("/api/v1/integrations/google_calendar/calendars/refresh")
        assert response.status_code == 200
        audiences = next(c for c in response.json() if c["name"] == "Audiences")

        response = await client.post(f"/api/v1/integrations/google_calendar/calendars/{audiences['id']}/activate")

        assert response.status_code == 200
        assert response.json()["is_active"] is True
        listing = await client.get("/api/v1/integrations/google_calendar/calendars")
        assert all(c["is_active"] for c in listing.json())

    async def test_unknown_calendar(self, client):
        response = await client.post(f"/api/v1/integrations/google_calendar/calendars/{uuid.uuid4()}/deactivate")

        assert response.status_code == 404


class TestSyncEndpoints:
    async def test_reverse_sync(self, client, onedrive_token, clients_root):
        response = await client.post("/api/v1/sync/onedrive/reverse")

        assert response.status_code == 200
        assert response.json()["success"] is True

    async def test_missing_dossier(self, client):
        response = await client.post(f"/api/v1/sync/onedrive/dossiers/{uuid.uuid4()}")

        assert response.status_code == 404
        assert response.json()["detail"] == "Dossier not found"

    async def test_ensure_dossier_folders(self, client, factory, onedrive_token):
        dossier = await factory.dossier(await factory.client("Jean", "Dupont"), "AFF-001", "Divorce")

        response = await client.post(f"/api/v1/sync/onedrive/dossiers/{dossier.id}/folders")

        assert response.status_code == 200
        assert response.json()["folder_path"] == "/Portail Cabinet/Clients/Jean Dupont/AFF-001 - Divorce"

    async def test_missing_event(self, client):
        response = await client.post(f"/api/v1/sync/events/{uuid.uuid4()}/push")

        assert response.status_code == 404

    async def test_calendar_sync_without_accounts(self, client):
        response = await client.post("/api/v1/sync/google-calendar", json={"triggered_by": None})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["push"]["skipped_reason"] == "no_accounts"
        assert data["pull"]["skipped_reason"] == "no_accounts"


class TestSyncModeEndpoints:
    async def test_switch_to_manual(self, client, google_token):
        response = await client.post(
            "/api/v1/integrations/google_calendar/sync-mode",
            json={"sync_mode": "manual"},
        )

        assert response.status_code == 200
        assert response.json() == {"service": "google_calendar", "operator_id": None, "sync_mode": "manual"}
        current = await client.get("/api/v1/integrations/google_calendar/sync-mode")
        assert current.json()["sync_mode"] == "manual"

    async def test_unknown_mode(self, client, google_token):
        response = await client.post(
            "/api/v1/integrations/google_calendar/sync-mode",
            json={"sync_mode": "sometimes"},
        )

        assert response.status_code == 422

    async def test_not_connected(self, client):
        response = await client.post(
            "/api/v1/integrations/google_calendar/sync-mode",
            json={"sync_mode": "manual"},
        )

        assert response.status_code == 404


class TestDocumentEndpoints:
    @pytest.fixture
    async def document_id(self, db, factory, services, onedrive_token):
        dossier = await factory.dossier(await factory.client("Jean", "Dupont"), "AFF-001", "Divorce")
        uploaded = await services.forward_sync.upload_document(
            db,
            dossier.id,
            "requête été.pdf",
            b"%PDF-1.4",
            DocumentLocation.CLIENT,
            Uploader(kind=UploaderKind.OPERATOR),
        )
        return uploaded.document_id

    async def test_download(self, client, document_id):
        response = await client.get(f"/api/v1/sync/onedrive/documents/{document_id}/content")

        assert response.status_code == 200
        assert response.content == b"%PDF-1.4"
        assert response.headers["content-disposition"] == (
            "attachment; filename*=UTF-8''requ%C3%AAte%20%C3%A9t%C3%A9.pdf"
        )

    async def test_refresh_download_url(self, client, document_id):
        response = await client.post(f"/api/v1/sync/onedrive/documents/{document_id}/download-url")

        assert response.status_code == 200
        assert response.json()["download_url"].startswith("https://download.test/")

    async def test_verify(self, client, document_id):
        response = await client.get(f"/api/v1/sync/onedrive/documents/{document_id}/verify")

        assert response.json() == {"document_id": str(document_id), "exists": True, "synced": True}

    async def test_missing_document(self, client):
        response = await client.get(f"/api/v1/sync/onedrive/documents/{uuid.uuid4()}/content")

        assert response.status_code == 404
        assert response.json()["detail"] == "Document not found"

import itertools
import os
from datetime import datetime, timezone
from typing import Optional

# Configure the environment before importing app modules.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("MICROSOFT_CLIENT_ID", "ms-client")
os.environ.setdefault("MICROSOFT_CLIENT_SECRET", "ms-secret")
os.environ.setdefault("GOOGLE_CLIENT_ID", "google-client")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "google-secret")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from cabinet_portal.config import Settings
from cabinet_portal.core.cache import TTLCache
from cabinet_portal.core.google_calendar import CalendarListEntry
from cabinet_portal.core.onedrive import DriveItem, DriveQuota
from cabinet_portal.core.provider_client import ProviderAPIError
from cabinet_portal.database import Base
from cabinet_portal.models import (
    Client,
    Dossier,
    Event,
    IntegrationType,
    Operator,
)
from cabinet_portal.schemas.integrations import TokenCredentials
from cabinet_portal.services.registry import ServiceRegistry
from cabinet_portal.services.token_store import TokenStore


# ============== Fake providers ==============


class FakeDrive:
    """In-memory OneDrive tree with call recording and failure injection."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.items: dict[str, dict] = {}
        self.calls: list[str] = []
        self.created_folders: list[str] = []
        self.uploads: list[tuple[str, str]] = []
        self.deleted: list[str] = []
        self.failures: dict[str, Exception] = {}
        self.failing_folders: set[str] = set()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args) -> None:
        return None

    # Setup helpers, not recorded as calls

    def add_folder(self, parent_id: Optional[str], name: str) -> str:
        item_id = f"item-{next(self._ids)}"
        self.items[item_id] = {"name": name, "parent": parent_id, "folder": True}
        return item_id

    def add_file(
        self,
        parent_id: str,
        name: str,
        modified: Optional[datetime] = None,
        size: int = 10,
    ) -> str:
        item_id = f"item-{next(self._ids)}"
        self.items[item_id] = {
            "name": name,
            "parent": parent_id,
            "folder": False,
            "size": size,
            "modified": modified or datetime(2024, 1, 1, tzinfo=timezone.utc),
            "content": b"x" * size,
        }
        return item_id

    def add_path(self, path: str) -> str:
        parent_id = None
        for segment in path.strip("/").split("/"):
            child = self._child(parent_id, segment)
            parent_id = child if child else self.add_folder(parent_id, segment)
        return parent_id

    def path_of(self, item_id: str) -> str:
        parts = []
        while item_id is not None:
            parts.append(self.items[item_id]["name"])
            item_id = self.items[item_id]["parent"]
        return "/" + "/".join(reversed(parts))

    def _child(self, parent_id: Optional[str], name: str) -> Optional[str]:
        for item_id, item in self.items.items():
            if item["parent"] == parent_id and item["name"].casefold() == name.casefold():
                return item_id
        return None

    def _item(self, item_id: str) -> DriveItem:
        item = self.items[item_id]
        data = {
            "id": item_id,
            "name": item["name"],
            "webUrl": f"https://onedrive.test/{item_id}",
        }
        if item["folder"]:
            data["folder"] = {"childCount": 0}
        else:
            data["file"] = {"mimeType": "application/pdf"}
            data["size"] = item["size"]
            data["lastModifiedDateTime"] = item["modified"].isoformat()
            data["@microsoft.graph.downloadUrl"] = f"https://download.test/{item_id}"
        return DriveItem.model_validate(data)

    def _record(self, method: str) -> None:
        self.calls.append(method)
        if method in self.failures:
            raise self.failures[method]

    # Client surface

    async def get_quota(self) -> DriveQuota:
        self._record("get_quota")
        return DriveQuota(total=1000, used=250, remaining=750, state="normal")

    async def get_item(self, item_id: str) -> Optional[DriveItem]:
        self._record("get_item")
        if item_id not in self.items:
            return None
        return self._item(item_id)

    async def download_file(self, item_id: str) -> bytes:
        self._record("download_file")
        if item_id not in self.items:
            raise ProviderAPIError("OneDrive API error 404: itemNotFound", status_code=404)
        return self.items[item_id]["content"]

    async def get_item_by_path(self, path: str) -> Optional[DriveItem]:
        self._record("get_item_by_path")
        parent_id = None
        for segment in path.strip("/").split("/"):
            parent_id = self._child(parent_id, segment)
            if parent_id is None:
                return None
        return self._item(parent_id)

    async def list_children(self, folder_id: Optional[str] = None) -> list[DriveItem]:
        self._record("list_children")
        if folder_id in self.failing_folders:
            raise ProviderAPIError("OneDrive API error 500: boom", status_code=500)
        children = [i for i, item in self.items.items() if item["parent"] == folder_id]
        return [self._item(i) for i in sorted(children, key=lambda i: self.items[i]["name"])]

    async def ensure_folder_path(self, path: str) -> tuple[DriveItem, bool]:
        self._record("ensure_folder_path")
        parent_id = None
        created = False
        for segment in path.strip("/").split("/"):
            child = self._child(parent_id, segment)
            if child is None:
                child = self.add_folder(parent_id, segment)
                self.created_folders.append(self.path_of(child))
                created = True
            parent_id = child
        return self._item(parent_id), created

    async def ensure_child_folder(self, parent_id: Optional[str], name: str) -> tuple[DriveItem, bool]:
        self._record("ensure_child_folder")
        child = self._child(parent_id, name)
        if child is not None:
            return self._item(child), False
        child = self.add_folder(parent_id, name)
        self.created_folders.append(self.path_of(child))
        return self._item(child), True

    async def upload_file(
        self,
        parent_id: str,
        filename: str,
        content: bytes,
        mime_type: Optional[str] = None,
    ) -> DriveItem:
        self._record("upload_file")
        item_id = self.add_file(parent_id, filename, size=len(content))
        self.items[item_id]["content"] = content
        self.uploads.append((parent_id, filename))
        return self._item(item_id)

    async def move_item(self, item_id: str, new_parent_id: str, new_name: Optional[str] = None) -> DriveItem:
        self._record("move_item")
        self.items[item_id]["parent"] = new_parent_id
        if new_name:
            self.items[item_id]["name"] = new_name
        return self._item(item_id)

    async def rename_item(self, item_id: str, new_name: str) -> DriveItem:
        self._record("rename_item")
        self.items[item_id]["name"] = new_name
        return self._item(item_id)

    async def delete_item(self, item_id: str) -> None:
        self._record("delete_item")
        self.items.pop(item_id, None)
        self.deleted.append(item_id)


class FakeCalendar:
    """In-memory Google Calendar account."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.calendars = [
            CalendarListEntry(id="cabinet@example.com", summary="Cabinet", primary=True),
            CalendarListEntry(id="audiences@group.calendar.google.com", summary="Audiences"),
        ]
        self.events: dict[str, list[dict]] = {}
        self.calls: list[str] = []
        self.created: list[tuple[str, dict]] = []
        self.updated: list[tuple[str, str, dict]] = []
        self.deleted: list[tuple[str, str]] = []
        self.failures: dict[str, Exception] = {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args) -> None:
        return None

    def _record(self, method: str) -> None:
        self.calls.append(method)
        if method in self.failures:
            raise self.failures[method]

    async def list_calendars(self, max_results: int = 250) -> list[CalendarListEntry]:
        self._record("list_calendars")
        return self.calendars[:max_results]

    async def list_events(self, calendar_id, time_min, time_max, max_results: int = 500) -> list[dict]:
        self._record("list_events")
        return list(self.events.get(calendar_id, []))[:max_results]

    async def create_event(self, calendar_id: str, body: dict) -> dict:
        self._record("create_event")
        created = {"id": f"gevt-{next(self._ids)}", **body}
        self.created.append((calendar_id, body))
        return created

    async def update_event(self, calendar_id: str, event_id: str, body: dict) -> dict:
        self._record("update_event")
        self.updated.append((calendar_id, event_id, body))
        return {"id": event_id, **body}

    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        self._record("delete_event")
        self.deleted.append((calendar_id, event_id))


class FakeConnector:
    """Hands out the fake clients instead of HTTP ones."""

    def __init__(self, token_store: TokenStore, drive: FakeDrive, calendar: FakeCalendar):
        self.token_store = token_store
        self.drive = drive
        self.calendar = calendar
        self.calendar_operators: list = []

    def onedrive(self, db):
        return self.drive

    def google_calendar(self, db, operator_id=None):
        self.calendar_operators.append(operator_id)
        return self.calendar


class FakeProvider:
    configured = True


class FakeOAuthClient:
    """Token endpoint stand-in."""

    def __init__(self):
        self.provider = FakeProvider()
        self.refresh_calls = 0
        self.fail_refresh = False

    def authorization_url(self, state: str) -> str:
        return f"https://login.test/authorize?state={state}"

    async def exchange_code(self, code: str) -> TokenCredentials:
        return TokenCredentials(
            access_token=f"access-for-{code}",
            refresh_token="refresh-from-consent",
            expires_in=3600,
            scope="Files.ReadWrite.All offline_access",
        )

    async def refresh(self, refresh_token: str) -> TokenCredentials:
        self.refresh_calls += 1
        if self.fail_refresh:
            raise ProviderAPIError("invalid_grant", status_code=400)
        return TokenCredentials(access_token=f"refreshed-{self.refresh_calls}", expires_in=3600)

    async def fetch_profile(self, access_token: str):
        return "cabinet@example.com", "Cabinet Martin"


class FakeRedis:
    def __init__(self):
        self.states: dict[str, dict] = {}

    async def ping(self) -> bool:
        return True

    async def save_oauth_state(self, state: str, payload: dict, ttl: int) -> None:
        self.states[state] = payload

    async def pop_oauth_state(self, state: str) -> Optional[dict]:
        return self.states.pop(state, None)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Factory:
    """Creates committed records."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def operator(self, email: str = "avocat@example.com") -> Operator:
        operator = Operator(email=email, name="Maître Durand")
        self.db.add(operator)
        await self.db.commit()
        return operator

    async def client(self, first_name: str, last_name: str) -> Client:
        client = Client(first_name=first_name, last_name=last_name)
        self.db.add(client)
        await self.db.commit()
        return client

    async def dossier(self, client: Client, reference: str, title: str = "", **kwargs) -> Dossier:
        dossier = Dossier(client_id=client.id, reference=reference, title=title, **kwargs)
        self.db.add(dossier)
        await self.db.commit()
        return dossier

    async def event(self, title: str = "Audience", **kwargs) -> Event:
        kwargs.setdefault("starts_at", datetime(2024, 6, 3, 9, 0, tzinfo=timezone.utc))
        event = Event(title=title, **kwargs)
        self.db.add(event)
        await self.db.commit()
        return event


# ============== Fixtures ==============


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite://",
        microsoft_client_id="ms-client",
        microsoft_client_secret="ms-secret",
        google_client_id="google-client",
        google_client_secret="google-secret",
        reverse_sync_concurrency=2,
    )


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db(engine):
    factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with factory() as session:
        yield session


@pytest.fixture
def factory(db):
    return Factory(db)


@pytest.fixture
def oauth_clients():
    return {
        IntegrationType.ONEDRIVE: FakeOAuthClient(),
        IntegrationType.GOOGLE_CALENDAR: FakeOAuthClient(),
    }


@pytest.fixture
def token_store(oauth_clients, settings):
    return TokenStore(oauth_clients=oauth_clients, settings=settings)


@pytest.fixture
def drive():
    return FakeDrive()


@pytest.fixture
def calendar():
    return FakeCalendar()


@pytest.fixture
def connector(token_store, drive, calendar):
    return FakeConnector(token_store, drive, calendar)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def services(settings, token_store, connector, clock):
    return ServiceRegistry.build(
        settings,
        token_store=token_store,
        connector=connector,
        health_cache=TTLCache(settings.health_report_ttl_seconds, clock=clock),
    )


@pytest.fixture
async def onedrive_token(db, token_store):
    return await token_store.save(
        db,
        IntegrationType.ONEDRIVE,
        TokenCredentials(
            access_token="onedrive-access",
            refresh_token="onedrive-refresh",
            expires_in=3600,
            account_email="cabinet@example.com",
            account_name="Cabinet Martin",
        ),
    )


@pytest.fixture
async def google_token(db, token_store):
    return await token_store.save(
        db,
        IntegrationType.GOOGLE_CALENDAR,
        TokenCredentials(
            access_token="google-access",
            refresh_token="google-refresh",
            expires_in=3600,
            account_email="cabinet@example.com",
        ),
    )


@pytest.fixture
def clients_root(drive, settings):
    """Id of /<root>/<Clients> in the fake drive."""
    return drive.add_path(f"/{settings.onedrive_root_folder}/{settings.onedrive_clients_folder}")


@pytest.fixture
def redis():
    return FakeRedis()

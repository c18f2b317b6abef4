"""
Google Calendar v3 client.
"""

import logging
from datetime import datetime
from typing import Optional
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field

from cabinet_portal.config import get_settings
from cabinet_portal.core.provider_client import (
    ProviderAPIError,
    ProviderClient,
    TokenProvider,
)

logger = logging.getLogger(__name__)


class CalendarListEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    summary: str = ""
    background_color: Optional[str] = Field(default=None, alias="backgroundColor")
    primary: bool = False
    access_role: Optional[str] = Field(default=None, alias="accessRole")


def _calendar_path(calendar_id: str) -> str:
    return f"/calendars/{quote(calendar_id, safe='')}/events"


class GoogleCalendarClient(ProviderClient):
    """Client for the calendars of one Google account."""

    provider_name = "Google Calendar"

    def __init__(
        self,
        token_provider: Optional[TokenProvider] = None,
        base_url: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(
            base_url or get_settings().google_calendar_api_base,
            token_provider=token_provider,
            **kwargs,
        )

    async def list_calendars(self, max_results: int = 250) -> list[CalendarListEntry]:
        calendars: list[CalendarListEntry] = []
        params = {"maxResults": min(max_results, 250)}
        while True:
            data = await self._request("GET", "/users/me/calendarList", params=params)
            calendars.extend(
                CalendarListEntry.model_validate(c) for c in data.get("items", [])
            )
            page_token = data.get("nextPageToken")
            if not page_token or len(calendars) >= max_results:
                return calendars[:max_results]
            params = {**params, "pageToken": page_token}

    async def list_events(
        self,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
        max_results: int = 500,
    ) -> list[dict]:
        """Expanded single events in a window, ordered by start."""
        events: list[dict] = []
        params = {
            "timeMin": time_min.isoformat(),
            "timeMax": time_max.isoformat(),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": min(max_results, 2500),
        }
        while True:
            data = await self._request("GET", _calendar_path(calendar_id), params=params)
            events.extend(data.get("items", []))
            page_token = data.get("nextPageToken")
            if not page_token or len(events) >= max_results:
                return events[:max_results]
            params = {**params, "pageToken": page_token}

    async def get_event(self, calendar_id: str, event_id: str) -> Optional[dict]:
        try:
            return await self._request(
                "GET", f"{_calendar_path(calendar_id)}/{quote(event_id, safe='')}"
            )
        except ProviderAPIError as e:
            if e.is_not_found:
                return None
            raise

    async def create_event(self, calendar_id: str, body: dict) -> dict:
        return await self._request("POST", _calendar_path(calendar_id), json=body)

    async def update_event(self, calendar_id: str, event_id: str, body: dict) -> dict:
        return await self._request(
            "PATCH",
            f"{_calendar_path(calendar_id)}/{quote(event_id, safe='')}",
            json=body,
        )

    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        try:
            await self._request(
                "DELETE", f"{_calendar_path(calendar_id)}/{quote(event_id, safe='')}"
            )
        except ProviderAPIError as e:
            # Already gone
            if e.status_code not in (404, 410):
                raise
            logger.debug(f"Google event {event_id} already deleted")

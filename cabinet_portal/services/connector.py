"""
Factory for provider clients authenticated through the token store.
"""

from typing import Optional, Union
from uuid import UUID

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from cabinet_portal.core.google_calendar import GoogleCalendarClient
from cabinet_portal.core.onedrive import OneDriveClient
from cabinet_portal.models import IntegrationType
from cabinet_portal.services.token_store import TokenStore


class IntegrationConnector:
    """Hands out unconnected clients; use them as async context managers."""

    def __init__(
        self,
        token_store: Optional[TokenStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token_store = token_store or TokenStore()
        self.transport = transport

    def onedrive(self, db: AsyncSession) -> OneDriveClient:
        return OneDriveClient(
            token_provider=self.token_store.access_token_provider(
                db, IntegrationType.ONEDRIVE
            ),
            transport=self.transport,
        )

    def google_calendar(
        self,
        db: AsyncSession,
        operator_id: Optional[Union[str, UUID]] = None,
    ) -> GoogleCalendarClient:
        return GoogleCalendarClient(
            token_provider=self.token_store.access_token_provider(
                db, IntegrationType.GOOGLE_CALENDAR, operator_id
            ),
            transport=self.transport,
        )

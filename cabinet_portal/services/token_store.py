"""
OAuth token storage and refresh.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Optional, Union
from uuid import UUID

import httpx
from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from cabinet_portal.config import Settings, get_settings
from cabinet_portal.core.clock import as_utc, utcnow
from cabinet_portal.core.oauth import OAuthClient, OAuthProvider
from cabinet_portal.core.provider_client import ProviderAPIError, TokenProvider
from cabinet_portal.models import CalendarSyncMode, Event, IntegrationType, OAuthToken, RemoteCalendar
from cabinet_portal.schemas.integrations import TokenCredentials, TokenState
from cabinet_portal.services.errors import (
    IntegrationNotConfiguredError,
    IntegrationNotConnectedError,
    TokenRefreshError,
)

logger = logging.getLogger(__name__)


class TokenStore:
    """
    Service for OAuth credentials, one row per (service, operator).

    Handles:
    - Upserting tokens on consent and refresh
    - Proactive refresh before expiry and forced refresh after a 401
    - Disconnecting a service
    - The per-account calendar sync mode
    """

    def __init__(
        self,
        oauth_clients: Optional[dict[IntegrationType, OAuthClient]] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self._oauth_clients: dict[IntegrationType, OAuthClient] = dict(oauth_clients or {})
        self.refresh_margin = timedelta(seconds=self.settings.token_refresh_margin_seconds)

    def oauth_client(self, service: IntegrationType) -> OAuthClient:
        if service not in self._oauth_clients:
            provider = OAuthProvider.for_service(service, self.settings)
            self._oauth_clients[service] = OAuthClient(provider)
        return self._oauth_clients[service]

    # ============== Reads ==============

    async def get(
        self,
        db: AsyncSession,
        service: IntegrationType,
        operator_id: Optional[Union[str, UUID]] = None,
    ) -> Optional[OAuthToken]:
        stmt = select(OAuthToken).where(OAuthToken.service == service)
        if operator_id is None:
            stmt = stmt.where(OAuthToken.operator_id.is_(None))
        else:
            stmt = stmt.where(OAuthToken.operator_id == _as_uuid(operator_id))
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_tokens(
        self,
        db: AsyncSession,
        service: IntegrationType,
    ) -> list[OAuthToken]:
        """Shared token first, then operator tokens."""
        stmt = (
            select(OAuthToken)
            .where(OAuthToken.service == service)
            .order_by(OAuthToken.operator_id.is_not(None), OAuthToken.account_email)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    def is_expired(self, token: OAuthToken) -> bool:
        return token.is_expired()

    def will_expire_soon(
        self,
        token: OAuthToken,
        horizon: Optional[timedelta] = None,
    ) -> bool:
        return token.will_expire_soon(horizon or self.refresh_margin)

    def token_state(self, token: OAuthToken) -> TokenState:
        if self.is_expired(token):
            return TokenState.EXPIRED
        if self.will_expire_soon(token):
            return TokenState.EXPIRING
        return TokenState.VALID

    async def get_sync_mode(
        self,
        db: AsyncSession,
        service: IntegrationType,
        operator_id: Optional[Union[str, UUID]] = None,
    ) -> CalendarSyncMode:
        """Accounts that are not connected count as auto."""
        token = await self.get(db, service, operator_id)
        if token is None or token.sync_mode is None:
            return CalendarSyncMode.AUTO
        return token.sync_mode

    # ============== Writes ==============

    async def save(
        self,
        db: AsyncSession,
        service: IntegrationType,
        credentials: TokenCredentials,
        operator_id: Optional[Union[str, UUID]] = None,
    ) -> OAuthToken:
        """
        Insert or update the token for (service, operator).

        The row keeps its identity. Account email/name are only replaced
        when the credentials explicitly carry them, and a refresh answer
        without a new refresh token keeps the old one.
        """
        operator_id = _as_uuid(operator_id)
        expires_at = utcnow() + timedelta(seconds=credentials.expires_in)
        token = await self.get(db, service, operator_id)

        if token is None:
            token = OAuthToken(
                service=service,
                operator_id=operator_id,
                access_token=credentials.access_token,
                refresh_token=credentials.refresh_token,
                expires_at=expires_at,
                account_email=credentials.account_email,
                account_name=credentials.account_name,
                scopes=credentials.scope,
            )
            db.add(token)
        else:
            provided = credentials.model_fields_set
            token.access_token = credentials.access_token
            token.expires_at = expires_at
            if credentials.refresh_token:
                token.refresh_token = credentials.refresh_token
            if credentials.scope:
                token.scopes = credentials.scope
            if "account_email" in provided:
                token.account_email = credentials.account_email
            if "account_name" in provided:
                token.account_name = credentials.account_name

        await db.commit()
        return token

    async def delete(
        self,
        db: AsyncSession,
        service: IntegrationType,
        operator_id: Optional[Union[str, UUID]] = None,
    ) -> bool:
        """Disconnect a service. Its calendar directory entries go with it."""
        token = await self.get(db, service, operator_id)
        if token is None:
            return False

        calendar_ids = select(RemoteCalendar.id).where(RemoteCalendar.token_id == token.id)
        await db.execute(
            update(Event)
            .where(Event.remote_calendar_id.in_(calendar_ids))
            .values(remote_calendar_id=None)
            .execution_options(synchronize_session="fetch")
        )
        await db.execute(
            delete(RemoteCalendar)
            .where(RemoteCalendar.token_id == token.id)
            .execution_options(synchronize_session="fetch")
        )
        await db.delete(token)
        await db.commit()

        logger.info(f"Disconnected {service.value} (operator={operator_id})")
        return True

    async def set_sync_mode(
        self,
        db: AsyncSession,
        service: IntegrationType,
        mode: CalendarSyncMode,
        operator_id: Optional[Union[str, UUID]] = None,
    ) -> OAuthToken:
        token = await self.get(db, service, operator_id)
        if token is None:
            raise IntegrationNotConnectedError(f"{service.value} is not connected", service)

        token.sync_mode = mode
        await db.commit()
        logger.info(f"{service.value} sync mode set to {mode.value} (operator={operator_id})")
        return token

    # ============== Access ==============

    async def get_valid_token(
        self,
        db: AsyncSession,
        service: IntegrationType,
        operator_id: Optional[Union[str, UUID]] = None,
        force_refresh: bool = False,
    ) -> OAuthToken:
        """
        Return the token row, refreshed first when it expires soon or when forced.

        Raises:
            IntegrationNotConnectedError: no token saved for the pair
            TokenRefreshError: the provider refused the refresh
        """
        token = await self.get(db, service, operator_id)
        if token is None:
            raise IntegrationNotConnectedError(
                f"{service.value} is not connected",
                service=service,
            )

        if not force_refresh and not self.will_expire_soon(token):
            return token

        if not token.refresh_token:
            if force_refresh or self.is_expired(token):
                raise TokenRefreshError(
                    f"{service.value} token expired and has no refresh token",
                    service=service,
                )
            return token

        try:
            credentials = await self.oauth_client(service).refresh(token.refresh_token)
        except (ProviderAPIError, httpx.HTTPError) as e:
            logger.warning(f"Token refresh failed for {service.value}: {e}")
            raise TokenRefreshError(
                f"{service.value} token refresh failed: {e}",
                service=service,
            ) from e

        token = await self.save(db, service, credentials, operator_id)
        logger.info(f"Refreshed {service.value} access token")
        return token

    async def get_valid_access_token(
        self,
        db: AsyncSession,
        service: IntegrationType,
        operator_id: Optional[Union[str, UUID]] = None,
        force_refresh: bool = False,
    ) -> str:
        token = await self.get_valid_token(db, service, operator_id, force_refresh)
        return token.access_token

    def access_token_provider(
        self,
        db: AsyncSession,
        service: IntegrationType,
        operator_id: Optional[Union[str, UUID]] = None,
    ) -> TokenProvider:
        """
        Bind the store to a provider client.

        The token is kept in memory until it nears expiry, and the lock
        keeps concurrent requests of one client from sharing the session.
        """
        lock = asyncio.Lock()
        cached: dict = {}

        async def provide(force_refresh: bool = False) -> str:
            async with lock:
                fresh_until = cached.get("expires_at")
                if not force_refresh and fresh_until and utcnow() + self.refresh_margin < fresh_until:
                    return cached["access_token"]

                token = await self.get_valid_token(
                    db, service, operator_id, force_refresh=force_refresh
                )
                cached["access_token"] = token.access_token
                cached["expires_at"] = as_utc(token.expires_at)
                return token.access_token

        return provide

    # ============== OAuth flow ==============

    def authorization_url(self, service: IntegrationType, state: str) -> str:
        client = self.oauth_client(service)
        if not client.provider.configured:
            raise IntegrationNotConfiguredError(
                f"{service.value} OAuth client is not configured",
                service=service,
            )
        return client.authorization_url(state)

    async def complete_oauth_flow(
        self,
        db: AsyncSession,
        service: IntegrationType,
        code: str,
        operator_id: Optional[Union[str, UUID]] = None,
    ) -> OAuthToken:
        """Exchange the consent code and store the resulting token."""
        client = self.oauth_client(service)
        if not client.provider.configured:
            raise IntegrationNotConfiguredError(
                f"{service.value} OAuth client is not configured",
                service=service,
            )

        credentials = await client.exchange_code(code)
        try:
            email, name = await client.fetch_profile(credentials.access_token)
        except (ProviderAPIError, httpx.HTTPError) as e:
            logger.warning(f"Could not read {service.value} account profile: {e}")
        else:
            credentials = TokenCredentials(
                **credentials.model_dump(exclude_unset=True, exclude={"account_email", "account_name"}),
                account_email=email,
                account_name=name,
            )

        token = await self.save(db, service, credentials, operator_id)
        logger.info(f"Connected {service.value} account {token.account_email}")
        return token


def _as_uuid(value: Optional[Union[str, UUID]]) -> Optional[UUID]:
    if value is None or isinstance(value, UUID):
        return value
    return UUID(str(value))

"""
OAuth 2.0 authorization-code clients for Microsoft and Google.
"""

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from cabinet_portal.config import Settings, get_settings
from cabinet_portal.core.provider_client import ProviderAPIError, is_transient
from cabinet_portal.models.enums import IntegrationType
from cabinet_portal.schemas.integrations import TokenCredentials

logger = logging.getLogger(__name__)


@dataclass
class OAuthProvider:
    """Endpoints and client credentials of one OAuth provider."""

    service: IntegrationType
    authorize_url: str
    token_url: str
    profile_url: str
    client_id: Optional[str]
    client_secret: Optional[str]
    redirect_uri: str
    scopes: list[str]
    extra_authorize_params: dict

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @classmethod
    def for_service(
        cls,
        service: IntegrationType,
        settings: Optional[Settings] = None,
    ) -> "OAuthProvider":
        settings = settings or get_settings()
        if service == IntegrationType.ONEDRIVE:
            authority = f"https://login.microsoftonline.com/{settings.microsoft_tenant_id}/oauth2/v2.0"
            return cls(
                service=service,
                authorize_url=f"{authority}/authorize",
                token_url=f"{authority}/token",
                profile_url=f"{settings.graph_api_base}/me",
                client_id=settings.microsoft_client_id,
                client_secret=settings.microsoft_client_secret,
                redirect_uri=settings.microsoft_redirect_uri,
                scopes=settings.microsoft_scopes,
                extra_authorize_params={"response_mode": "query"},
            )
        return cls(
            service=service,
            authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
            token_url="https://oauth2.googleapis.com/token",
            profile_url="https://www.googleapis.com/oauth2/v2/userinfo",
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            redirect_uri=settings.google_redirect_uri,
            scopes=settings.google_scopes,
            # Refresh tokens are only issued with offline access and consent
            extra_authorize_params={"access_type": "offline", "prompt": "consent"},
        )


class OAuthClient:
    """Exchanges codes and refresh tokens at a provider's token endpoint."""

    def __init__(
        self,
        provider: OAuthProvider,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.provider = provider
        self._transport = transport

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.provider.client_id,
            "response_type": "code",
            "redirect_uri": self.provider.redirect_uri,
            "scope": " ".join(self.provider.scopes),
            "state": state,
            **self.provider.extra_authorize_params,
        }
        return f"{self.provider.authorize_url}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenCredentials:
        return await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.provider.redirect_uri,
            }
        )

    async def refresh(self, refresh_token: str) -> TokenCredentials:
        return await self._token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            }
        )

    async def fetch_profile(self, access_token: str) -> tuple[Optional[str], Optional[str]]:
        """Return (email, display name) of the consenting account."""
        async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
            response = await client.get(
                self.provider.profile_url,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        if response.status_code >= 400:
            raise ProviderAPIError(
                f"Profile lookup failed: {response.text[:500]}",
                status_code=response.status_code,
                body=response.text,
            )
        data = response.json()
        if self.provider.service == IntegrationType.ONEDRIVE:
            email = data.get("mail") or data.get("userPrincipalName")
            return email, data.get("displayName")
        return data.get("email"), data.get("name")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception(is_transient),
        reraise=True,
    )
    async def _token_request(self, payload: dict) -> TokenCredentials:
        """Make token request with retry logic."""
        data = {
            **payload,
            "client_id": self.provider.client_id,
            "client_secret": self.provider.client_secret,
        }
        if self.provider.service == IntegrationType.ONEDRIVE:
            data["scope"] = " ".join(self.provider.scopes)

        async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
            response = await client.post(self.provider.token_url, data=data)

        if response.status_code >= 400:
            raise ProviderAPIError(
                f"Token endpoint error: {response.text[:500]}",
                status_code=response.status_code,
                body=response.text,
            )
        return TokenCredentials.model_validate(response.json())

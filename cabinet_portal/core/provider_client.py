"""
Base HTTP client shared by the Microsoft Graph and Google Calendar clients.

Handles:
- Bearer authentication through a token provider
- One refresh-and-retry when the provider answers 401
- Bounded retries with exponential backoff on transient failures
"""

import logging
from typing import Any, Awaitable, Callable, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from cabinet_portal.config import get_settings

logger = logging.getLogger(__name__)

# Called with force_refresh; returns a bearer token
TokenProvider = Callable[[bool], Awaitable[str]]


class ProviderAPIError(Exception):
    """Exception for errors answered by a provider API."""

    RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    @property
    def is_auth_error(self) -> bool:
        return self.status_code in (401, 403)

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429

    @property
    def is_retryable(self) -> bool:
        return self.status_code in self.RETRYABLE_STATUSES


def is_transient(exc: BaseException) -> bool:
    """Network failures and retryable statuses are worth another attempt."""
    if isinstance(exc, ProviderAPIError):
        return exc.is_retryable
    return isinstance(exc, httpx.TransportError)


class ProviderClient:
    """
    Async client for one provider REST API.

    Use as an async context manager or call connect()/disconnect().
    """

    provider_name = "provider"

    def __init__(
        self,
        base_url: str,
        token_provider: Optional[TokenProvider] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        retry_wait: Any = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.base_url = base_url
        self.token_provider = token_provider
        self.timeout = timeout or settings.provider_timeout_seconds
        self.max_attempts = max_attempts or settings.provider_max_attempts
        self.retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=10)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, *args) -> None:
        await self.disconnect()

    async def connect(self) -> None:
        """Create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )

    async def disconnect(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Client not connected. Call connect() first.")
        return self._client

    async def _send(
        self,
        method: str,
        url: str,
        authenticated: bool = True,
        headers: Optional[dict] = None,
        **kwargs,
    ) -> httpx.Response:
        """Single attempt. A 401 triggers one forced token refresh."""
        headers = dict(headers or {})

        if authenticated and self.token_provider is not None:
            token = await self.token_provider(False)
            headers["Authorization"] = f"Bearer {token}"
            response = await self.client.request(method, url, headers=headers, **kwargs)

            if response.status_code == 401:
                logger.info(f"{self.provider_name} rejected access token, refreshing")
                token = await self.token_provider(True)
                headers["Authorization"] = f"Bearer {token}"
                response = await self.client.request(
                    method, url, headers=headers, **kwargs
                )
        else:
            response = await self.client.request(method, url, headers=headers, **kwargs)

        if response.status_code >= 400:
            raise ProviderAPIError(
                f"{self.provider_name} API error {response.status_code}: {response.text[:500]}",
                status_code=response.status_code,
                body=response.text,
            )
        return response

    async def _request_raw(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Make HTTP request with retry logic."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.retry_wait,
            retry=retry_if_exception(is_transient),
            reraise=True,
        ):
            with attempt:
                return await self._send(method, url, **kwargs)

    async def _request(self, method: str, url: str, **kwargs) -> dict:
        response = await self._request_raw(method, url, **kwargs)
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

"""
Redis client for OAuth state and readiness checks.
"""

import json
from typing import Any, Optional

import redis.asyncio as redis

from cabinet_portal.config import get_settings

OAUTH_STATE_PREFIX = "oauth_state:"


class RedisClient:
    """Async Redis client wrapper."""

    def __init__(self, url: str):
        self.url = url
        self._client: Optional[redis.Redis] = None

    async def connect(self) -> None:
        """Connect to Redis."""
        if self._client is None:
            self._client = redis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,
            )

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> redis.Redis:
        """Get Redis client instance."""
        if self._client is None:
            raise RuntimeError("Redis client not connected. Call connect() first.")
        return self._client

    async def ping(self) -> bool:
        return await self.client.ping()

    async def get_json(self, key: str) -> Optional[dict]:
        """Get a JSON value from Redis."""
        value = await self.client.get(key)
        if value:
            return json.loads(value)
        return None

    async def set_json(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
    ) -> None:
        """Set a JSON value in Redis with optional TTL."""
        if ttl:
            await self.client.setex(key, ttl, json.dumps(value))
        else:
            await self.client.set(key, json.dumps(value))

    async def delete(self, key: str) -> None:
        """Delete a key from Redis."""
        await self.client.delete(key)

    # ============== OAuth state ==============

    async def save_oauth_state(self, state: str, payload: dict, ttl: int) -> None:
        """Remember who started a consent flow until the callback comes back."""
        await self.set_json(f"{OAUTH_STATE_PREFIX}{state}", payload, ttl)

    async def pop_oauth_state(self, state: str) -> Optional[dict]:
        """Read and forget a consent flow; None when unknown or expired."""
        # GETDEL is atomic: a state is redeemed at most once
        value = await self.client.getdel(f"{OAUTH_STATE_PREFIX}{state}")
        if value:
            return json.loads(value)
        return None


# Global Redis client instance
_redis_client: Optional[RedisClient] = None


async def get_redis() -> RedisClient:
    """Get the global Redis client instance."""
    global _redis_client
    if _redis_client is None:
        _redis_client = RedisClient(get_settings().redis_url)
        await _redis_client.connect()
    return _redis_client


async def close_redis() -> None:
    """Close the global Redis client."""
    global _redis_client
    if _redis_client:
        await _redis_client.disconnect()
        _redis_client = None

"""
Usage Cache - Disposable per-identity usage snapshots in Redis.

The cache is a latency optimization only. Backends raise CacheError on any
failure; callers treat that as "absent" and fall back to the database.
Staleness is detected by the snapshot's month label, never by TTL.
"""

from typing import Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

from app.config import Settings
from app.exceptions import CacheError
from app.models.domain import UsageSnapshot, user_usage_key


class UsageCache(Protocol):
    """Capability interface for usage snapshots."""

    async def get(self, external_id: str) -> UsageSnapshot | None:
        """
        Read the snapshot for an identity.

        Returns:
            The snapshot, or None when no entry exists

        Raises:
            CacheError: If the backend fails or holds a malformed entry
        """
        ...

    async def set(self, external_id: str, snapshot: UsageSnapshot) -> None:
        """
        Overwrite the snapshot for an identity.

        Raises:
            CacheError: If the backend fails
        """
        ...

    async def ping(self) -> bool:
        """Connectivity check for health reporting; never raises."""
        ...


class RedisUsageCache:
    """
    Redis-backed usage cache.

    Values are JSON documents {current_usage, plan_limit, month} stored
    under "user_usage:<external id>".
    """

    def __init__(self, client: redis.Redis) -> None:
        self.client = client

    async def get(self, external_id: str) -> UsageSnapshot | None:
        """Read and decode a snapshot."""
        try:
            raw = await self.client.get(user_usage_key(external_id))
        except (RedisError, OSError) as exc:
            raise CacheError(f"get failed: {exc}") from exc

        if raw is None:
            return None

        try:
            return UsageSnapshot.from_json(raw)
        except ValueError as exc:
            raise CacheError(str(exc)) from exc

    async def set(self, external_id: str, snapshot: UsageSnapshot) -> None:
        """Encode and write a snapshot."""
        try:
            await self.client.set(user_usage_key(external_id), snapshot.to_json())
        except (RedisError, OSError) as exc:
            raise CacheError(f"set failed: {exc}") from exc

    async def ping(self) -> bool:
        """Check connectivity for health reporting."""
        try:
            return bool(await self.client.ping())
        except (RedisError, OSError):
            return False

    async def close(self) -> None:
        """Close the underlying connection pool."""
        await self.client.aclose()


def create_redis_client(settings: Settings) -> redis.Redis:
    """Create a pooled Redis client from settings."""
    return redis.Redis.from_url(
        settings.redis_url,
        password=settings.redis_password or None,
        decode_responses=True,
        max_connections=settings.redis_max_connections,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_timeout,
        retry_on_timeout=True,
    )

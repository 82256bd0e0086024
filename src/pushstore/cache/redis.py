"""Redis cache for package histories.

Devices poll by deployment key, so the history behind each key is cached as
one orjson document with a TTL and dropped whenever the history changes.
Redis failures surface as UnavailableError.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, cast

import orjson
import redis.asyncio as redis
from redis.exceptions import RedisError

from pushstore.cache.keys import CacheKeys
from pushstore.core.model import Package
from pushstore.errors import UnavailableError

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

# Default TTL (1 hour)
DEFAULT_TTL = 3600


def create_redis_client(redis_url: str) -> Redis:
    """Create a pooled Redis client storing raw bytes."""
    return redis.from_url(  # type: ignore[no-untyped-call]
        redis_url,
        encoding="utf-8",
        decode_responses=False,  # We're storing bytes
    )


class PackageHistoryCache:
    """Cache-aside store for package histories keyed by deployment key."""

    def __init__(self, client: Redis, ttl: int = DEFAULT_TTL):
        self.client = client
        self.ttl = ttl

    async def get_history(self, deployment_key: str) -> list[Package] | None:
        """Return the cached history, or None on a miss."""
        try:
            raw = await self.client.get(CacheKeys.package_history(deployment_key))
        except RedisError as exc:
            raise UnavailableError(f"Cache read failed: {exc}") from exc
        if raw is None:
            return None
        return [Package.model_validate(doc) for doc in orjson.loads(raw)]

    async def set_history(self, deployment_key: str, history: list[Package]) -> None:
        payload = orjson.dumps([package.to_doc() for package in history])
        try:
            await self.client.setex(CacheKeys.package_history(deployment_key), self.ttl, payload)
        except RedisError as exc:
            raise UnavailableError(f"Cache write failed: {exc}") from exc

    async def invalidate(self, *deployment_keys: str) -> None:
        """Drop cached histories for the given deployment keys."""
        if not deployment_keys:
            return
        keys = [CacheKeys.package_history(key) for key in deployment_keys]
        try:
            await self.client.delete(*keys)
        except RedisError as exc:
            raise UnavailableError(f"Cache invalidation failed: {exc}") from exc

    async def health_check(self) -> bool:
        """Check Redis connectivity."""
        try:
            return cast(bool, await self.client.ping())
        except (RedisError, OSError) as exc:
            logger.warning(f"Redis ping failed: {exc}")
            return False

    async def close(self) -> None:
        await self.client.aclose()

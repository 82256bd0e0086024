"""Redis caching layer for pushstore.

Provides:
- CacheKeys: key schema
- PackageHistoryCache: orjson-encoded package histories with TTL
"""

from pushstore.cache.keys import CacheKeys
from pushstore.cache.redis import PackageHistoryCache, create_redis_client

__all__ = ["CacheKeys", "PackageHistoryCache", "create_redis_client"]

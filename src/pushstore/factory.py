"""Build the storage facade from settings."""

from __future__ import annotations

import logging

from pushstore.cache.redis import PackageHistoryCache, create_redis_client
from pushstore.config import Settings
from pushstore.facade import StorageFacade
from pushstore.persistence.factory import build_metadata_backend
from pushstore.storage.factory import build_blob_storage

logger = logging.getLogger(__name__)


def create_storage(settings: Settings) -> StorageFacade:
    """Wire the metadata backend, blob store and optional cache into a facade.

    Call once at startup; `await facade.initialize()` before first use when
    the SQL backend may need its schema.
    """
    backend = build_metadata_backend(settings)
    blobs = build_blob_storage(settings)
    cache = (
        PackageHistoryCache(create_redis_client(settings.redis_url), ttl=settings.cache_ttl)
        if settings.cache_enabled
        else None
    )
    logger.info(
        f"Storage configured: metadata={backend.backend_type} "
        f"blobs={blobs.storage_type} cache={'redis' if cache else 'off'}"
    )
    return StorageFacade(backend, blobs, settings, cache=cache)

"""Metadata backend factory for pushstore."""

from __future__ import annotations

from pushstore.config import Settings
from pushstore.persistence.base import MetadataBackend
from pushstore.persistence.memory import MemoryMetadataBackend
from pushstore.persistence.sql import SqlMetadataBackend


def build_metadata_backend(settings: Settings) -> MetadataBackend:
    """Return the MetadataBackend selected by settings."""
    backend = settings.storage_backend.lower()
    if backend == "sql":
        return SqlMetadataBackend.from_url(
            settings.database_url,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=settings.db_pool_timeout,
            pool_recycle=settings.db_pool_recycle,
            echo=settings.db_echo,
        )
    if backend == "memory":
        return MemoryMetadataBackend()
    raise ValueError("Unsupported storage_backend. Supported values: memory, sql.")

"""Metadata persistence for pushstore.

This module provides:
- The MetadataBackend contract shared by all backends
- An in-memory backend (reference implementation, tests)
- A SQL backend on SQLAlchemy 2.0 asyncio (PostgreSQL, SQLite)

Both backends serialize label assignment per deployment with a
compare-and-swap on the deployment's version counter.
"""

from pushstore.persistence.base import DeploymentRecord, MetadataBackend
from pushstore.persistence.factory import build_metadata_backend
from pushstore.persistence.memory import MemoryMetadataBackend
from pushstore.persistence.sql import SqlMetadataBackend

__all__ = [
    "DeploymentRecord",
    "MetadataBackend",
    "MemoryMetadataBackend",
    "SqlMetadataBackend",
    "build_metadata_backend",
]

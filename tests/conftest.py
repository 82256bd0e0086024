"""Global pytest configuration and fixtures.

Provides an in-memory storage stack and a registered account for store and
facade tests.
"""

from __future__ import annotations

import pytest

from pushstore.config import Settings
from pushstore.core.model import Account, App
from pushstore.facade import StorageFacade
from pushstore.persistence.memory import MemoryMetadataBackend
from pushstore.storage.memory import MemoryBlobStorage


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        storage_backend="memory",
        blob_storage_type="memory",
        commit_max_attempts=5,
        operation_timeout=5.0,
    )


@pytest.fixture
def backend() -> MemoryMetadataBackend:
    return MemoryMetadataBackend()


@pytest.fixture
def blobs() -> MemoryBlobStorage:
    return MemoryBlobStorage()


@pytest.fixture
def storage(
    settings: Settings, backend: MemoryMetadataBackend, blobs: MemoryBlobStorage
) -> StorageFacade:
    return StorageFacade(backend, blobs, settings)


@pytest.fixture
async def account_id(storage: StorageFacade) -> str:
    return await storage.add_account(Account(email="a@x.com", name="Ada"))


@pytest.fixture
async def other_account_id(storage: StorageFacade) -> str:
    return await storage.add_account(Account(email="b@x.com", name="Bea"))


@pytest.fixture
async def app(storage: StorageFacade, account_id: str) -> App:
    """An app with the default Staging and Production deployments."""
    return await storage.add_app(account_id, App(name="MyApp"))

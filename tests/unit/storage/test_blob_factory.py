"""Tests for blob storage selection from settings."""

from __future__ import annotations

from pathlib import Path

import pytest

from pushstore.config import Settings
from pushstore.storage import (
    AzureBlobStorage,
    GcsBlobStorage,
    LocalBlobStorage,
    MemoryBlobStorage,
    S3BlobStorage,
    build_blob_storage,
)


def _settings(**kwargs: object) -> Settings:
    return Settings(_env_file=None, **kwargs)  # type: ignore[arg-type]


def test_memory_is_default() -> None:
    assert isinstance(build_blob_storage(_settings()), MemoryBlobStorage)


def test_local(tmp_path: Path) -> None:
    storage = build_blob_storage(
        _settings(blob_storage_type="local", blob_storage_path=str(tmp_path))
    )
    assert isinstance(storage, LocalBlobStorage)
    assert storage.base_path == tmp_path


@pytest.mark.parametrize("storage_type", ["s3", "minio", "S3"])
def test_s3(storage_type: str) -> None:
    storage = build_blob_storage(
        _settings(blob_storage_type=storage_type, s3_bucket="releases", s3_prefix="p")
    )
    assert isinstance(storage, S3BlobStorage)
    assert storage.bucket == "releases"
    assert storage.prefix == "p/"


def test_gcs() -> None:
    storage = build_blob_storage(_settings(blob_storage_type="gcs", gcs_bucket="b"))
    assert isinstance(storage, GcsBlobStorage)


def test_azure() -> None:
    storage = build_blob_storage(
        _settings(blob_storage_type="azure", azure_container="c", azure_account_key="k")
    )
    assert isinstance(storage, AzureBlobStorage)
    assert storage.credential == "k"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"blob_storage_type": "s3"},
        {"blob_storage_type": "gcs"},
        {"blob_storage_type": "azure"},
        {"blob_storage_type": "ftp"},
    ],
)
def test_invalid_configuration(kwargs: dict[str, str]) -> None:
    with pytest.raises(ValueError):
        build_blob_storage(_settings(**kwargs))

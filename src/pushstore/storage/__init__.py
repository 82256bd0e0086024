"""Blob storage for release payloads.

Backends:
- In-memory storage (tests, single process)
- Local filesystem storage
- S3-compatible storage (MinIO, AWS S3)
- Google Cloud Storage
- Azure Blob Storage

Every backend streams payloads in chunks and exposes the same
add / get_url / remove contract.
"""

from pushstore.storage.azure import AzureBlobStorage
from pushstore.storage.base import BlobStorage
from pushstore.storage.factory import build_blob_storage
from pushstore.storage.gcs import GcsBlobStorage
from pushstore.storage.local import LocalBlobStorage
from pushstore.storage.memory import MemoryBlobStorage
from pushstore.storage.s3 import S3BlobStorage
from pushstore.storage.streams import BlobContent, HashingStream, compute_hash

__all__ = [
    "BlobStorage",
    "BlobContent",
    "HashingStream",
    "compute_hash",
    "MemoryBlobStorage",
    "LocalBlobStorage",
    "S3BlobStorage",
    "GcsBlobStorage",
    "AzureBlobStorage",
    "build_blob_storage",
]

"""Blob storage factory for pushstore."""

from __future__ import annotations

from pushstore.config import Settings
from pushstore.storage.azure import AzureBlobStorage
from pushstore.storage.base import BlobStorage
from pushstore.storage.gcs import GcsBlobStorage
from pushstore.storage.local import LocalBlobStorage
from pushstore.storage.memory import MemoryBlobStorage
from pushstore.storage.s3 import S3BlobStorage


def build_blob_storage(settings: Settings) -> BlobStorage:
    """Return the BlobStorage selected by settings."""
    storage_type = settings.blob_storage_type.lower()
    if storage_type in {"s3", "minio"}:
        if not settings.s3_bucket:
            raise ValueError("S3_BUCKET is required for blob_storage_type='s3' or 'minio'")
        return S3BlobStorage(
            bucket=settings.s3_bucket,
            prefix=settings.s3_prefix,
            endpoint_url=settings.s3_endpoint_url,
            region_name=settings.s3_region,
            aws_access_key_id=settings.s3_access_key_id,
            aws_secret_access_key=settings.s3_secret_access_key,
        )
    if storage_type == "gcs":
        if not settings.gcs_bucket:
            raise ValueError("GCS_BUCKET is required for blob_storage_type='gcs'")
        return GcsBlobStorage(
            bucket=settings.gcs_bucket,
            prefix=settings.gcs_prefix,
            project=settings.gcs_project,
            credentials_path=settings.gcs_credentials_path,
        )
    if storage_type == "azure":
        if not settings.azure_container:
            raise ValueError("AZURE_CONTAINER is required for blob_storage_type='azure'")
        credential = settings.azure_account_key or settings.azure_sas_token
        return AzureBlobStorage(
            container=settings.azure_container,
            prefix=settings.azure_prefix,
            connection_string=settings.azure_connection_string,
            account_url=settings.azure_account_url,
            credential=credential,
        )
    if storage_type == "local":
        return LocalBlobStorage(
            base_path=settings.blob_storage_path, base_url=settings.blob_base_url
        )
    if storage_type == "memory":
        return MemoryBlobStorage()
    raise ValueError(
        "Unsupported blob_storage_type. Supported values: memory, local, s3, minio, gcs, azure."
    )

"""S3-compatible blob storage backend.

Supports:
- AWS S3
- MinIO
- DigitalOcean Spaces
- Any S3-compatible object storage
"""

from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING, Any, cast

from botocore.exceptions import BotoCoreError, ClientError

from pushstore.errors import NotFoundError, StorageError, UnavailableError
from pushstore.storage.base import BlobStorage
from pushstore.storage.streams import BlobContent, iter_sized_chunks

if TYPE_CHECKING:
    import aioboto3

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def _is_not_found(exc: ClientError) -> bool:
    return str(exc.response.get("Error", {}).get("Code")) in _NOT_FOUND_CODES


class S3BlobStorage(BlobStorage):
    """S3-compatible blob storage implementation.

    Uses aioboto3 for async S3 operations. Payloads are streamed with a
    multipart upload, one part per `chunk_size` bytes, so large bundles are
    never held in memory.

    Configuration via:
    - bucket: S3 bucket name
    - prefix: Optional key prefix (e.g., "pushstore/blobs/")
    - endpoint_url: For non-AWS S3-compatible services
    - region_name: AWS region
    - credentials: via AWS SDK defaults or explicit aws_access_key_id/secret_access_key
    - presign_expires: Return presigned URLs valid this many seconds instead of
      plain object URLs
    """

    storage_type = "s3"

    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        endpoint_url: str | None = None,
        region_name: str = "us-east-1",
        aws_access_key_id: str | None = None,
        aws_secret_access_key: str | None = None,
        chunk_size: int = 8 * 1024 * 1024,  # 8MB parts (S3 minimum is 5MB)
        presign_expires: int | None = None,
    ):
        self.bucket = bucket
        self.prefix = prefix.rstrip("/") + "/" if prefix else ""
        self.endpoint_url = endpoint_url
        self.region_name = region_name
        self.aws_access_key_id = aws_access_key_id
        self.aws_secret_access_key = aws_secret_access_key
        self.chunk_size = chunk_size
        self.presign_expires = presign_expires
        self._session: "aioboto3.Session | None" = None

    async def _get_session(self) -> "aioboto3.Session":
        """Get or create aioboto3 session."""
        if self._session is None:
            import aioboto3

            self._session = aioboto3.Session(
                aws_access_key_id=self.aws_access_key_id,
                aws_secret_access_key=self.aws_secret_access_key,
                region_name=self.region_name,
            )
        return self._session

    def _client(self, session: Any) -> Any:
        return session.client("s3", endpoint_url=self.endpoint_url)

    def _build_key(self, blob_id: str) -> str:
        return f"{self.prefix}{blob_id}"

    def _object_url(self, key: str) -> str:
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{self.region_name}.amazonaws.com/{key}"

    async def add(self, content: BlobContent, length: int | None = None) -> str:
        """Stream a payload to S3 as a multipart upload."""
        blob_id = self.new_blob_id()
        key = self._build_key(blob_id)
        session = await self._get_session()

        try:
            async with self._client(session) as s3:
                upload = await s3.create_multipart_upload(Bucket=self.bucket, Key=key)
                upload_id = upload["UploadId"]
                try:
                    parts: list[dict[str, Any]] = []
                    written = 0
                    async for chunk in iter_sized_chunks(content, self.chunk_size):
                        part_number = len(parts) + 1
                        response = await s3.upload_part(
                            Bucket=self.bucket,
                            Key=key,
                            PartNumber=part_number,
                            UploadId=upload_id,
                            Body=chunk,
                        )
                        parts.append({"ETag": response["ETag"], "PartNumber": part_number})
                        written += len(chunk)
                    self.check_length(blob_id, length, written)

                    if not parts:
                        await s3.abort_multipart_upload(
                            Bucket=self.bucket, Key=key, UploadId=upload_id
                        )
                        await s3.put_object(Bucket=self.bucket, Key=key, Body=b"")
                    else:
                        await s3.complete_multipart_upload(
                            Bucket=self.bucket,
                            Key=key,
                            UploadId=upload_id,
                            MultipartUpload={"Parts": parts},
                        )
                except BaseException:
                    with contextlib.suppress(ClientError, BotoCoreError):
                        await s3.abort_multipart_upload(
                            Bucket=self.bucket, Key=key, UploadId=upload_id
                        )
                    raise
        except StorageError:
            raise
        except (ClientError, BotoCoreError) as exc:
            raise UnavailableError(f"Failed to upload blob {blob_id}: {exc}") from exc

        return blob_id

    async def get_url(self, blob_id: str) -> str:
        key = self._build_key(blob_id)
        session = await self._get_session()

        try:
            async with self._client(session) as s3:
                try:
                    await s3.head_object(Bucket=self.bucket, Key=key)
                except ClientError as exc:
                    if _is_not_found(exc):
                        raise NotFoundError.for_entity("Blob", blob_id) from exc
                    raise

                if self.presign_expires:
                    url = await s3.generate_presigned_url(
                        "get_object",
                        Params={"Bucket": self.bucket, "Key": key},
                        ExpiresIn=self.presign_expires,
                    )
                    return cast(str, url)
        except StorageError:
            raise
        except (ClientError, BotoCoreError) as exc:
            raise UnavailableError(f"Failed to resolve blob {blob_id}: {exc}") from exc

        return self._object_url(key)

    async def remove(self, blob_id: str) -> None:
        """Delete a blob from S3 (S3 deletes are idempotent)."""
        session = await self._get_session()
        try:
            async with self._client(session) as s3:
                await s3.delete_object(Bucket=self.bucket, Key=self._build_key(blob_id))
        except ClientError as exc:
            if _is_not_found(exc):
                return
            raise UnavailableError(f"Failed to remove blob {blob_id}: {exc}") from exc
        except BotoCoreError as exc:
            raise UnavailableError(f"Failed to remove blob {blob_id}: {exc}") from exc

    async def exists(self, blob_id: str) -> bool:
        session = await self._get_session()
        try:
            async with self._client(session) as s3:
                await s3.head_object(Bucket=self.bucket, Key=self._build_key(blob_id))
                return True
        except ClientError as exc:
            if _is_not_found(exc):
                return False
            raise UnavailableError(f"Failed to check blob {blob_id}: {exc}") from exc
        except BotoCoreError as exc:
            raise UnavailableError(f"Failed to check blob {blob_id}: {exc}") from exc

    async def ping(self) -> bool:
        session = await self._get_session()
        try:
            async with self._client(session) as s3:
                await s3.head_bucket(Bucket=self.bucket)
        except (ClientError, BotoCoreError):
            return False
        return True

    async def close(self) -> None:
        """Close the S3 session."""
        # aioboto3 sessions don't need explicit closing
        self._session = None

"""
S3 object store backend.

Uses aiobotocore for async access to S3 or an S3-compatible service
(MinIO, LocalStack).

Invariants:
    - The client is created on connect() and released on close()
    - Listing follows pagination until exhausted
    - Files above multipart_threshold are uploaded in parts; a failed
      multipart upload is aborted so no parts are left behind
    - Botocore errors are translated to StoreError subclasses

How to change safely:
    - Test against MinIO before deploying to AWS
    - Keep upload/download semantics identical to InMemoryObjectStore
"""

from __future__ import annotations

import logging
import os
from typing import Any, BinaryIO, List, Optional

from aiobotocore.session import get_session
from botocore.exceptions import BotoCoreError, ClientError

from .base import ObjectNotFoundError, StoreError, local_path_for

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 1024 * 1024

# single PUT objects are capped at 5GB; parts must be at least 5MB
MULTIPART_THRESHOLD = 64 * 1024 * 1024
MULTIPART_PART_SIZE = 64 * 1024 * 1024


class S3ObjectStore:
    """S3 implementation of the ObjectStore protocol.

    Attributes:
        config: S3Config instance
        multipart_threshold: Files larger than this many bytes use multipart upload
        multipart_part_size: Bytes per uploaded part

    Example:
        >>> async with S3ObjectStore(config.s3) as store:
        ...     keys = await store.list("backups/users/")
    """

    def __init__(
        self,
        config: Any,
        multipart_threshold: int = MULTIPART_THRESHOLD,
        multipart_part_size: int = MULTIPART_PART_SIZE,
    ) -> None:
        """Initialize S3 object store.

        Args:
            config: S3Config instance
            multipart_threshold: Size above which uploads are split into parts
            multipart_part_size: Size of each part
        """
        self.config = config
        self.multipart_threshold = multipart_threshold
        self.multipart_part_size = multipart_part_size
        self._session = None
        self._s3_ctx = None
        self._s3_client = None

    async def __aenter__(self) -> S3ObjectStore:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def is_connected(self) -> bool:
        return self._s3_client is not None

    async def connect(self) -> None:
        """Initialize S3 client.

        Raises:
            StoreError: If the client cannot be created
        """
        if self._s3_client:
            return

        self._session = get_session()

        client_kwargs = {
            "region_name": self.config.region,
        }

        if self.config.endpoint_url:
            client_kwargs["endpoint_url"] = self.config.endpoint_url

        if self.config.access_key_id:
            client_kwargs["aws_access_key_id"] = self.config.access_key_id
            client_kwargs["aws_secret_access_key"] = self.config.secret_access_key

        try:
            self._s3_ctx = self._session.create_client("s3", **client_kwargs)
            self._s3_client = await self._s3_ctx.__aenter__()
        except (ClientError, BotoCoreError, ValueError) as e:
            self._s3_ctx = None
            raise StoreError(f"failed to connect to s3 bucket {self.config.bucket}: {e}") from e
        logger.debug("S3 client connected", extra={"bucket": self.config.bucket})

    async def close(self) -> None:
        """Close S3 client."""
        if self._s3_client:
            await self._s3_ctx.__aexit__(None, None, None)
            self._s3_client = None

    def _client(self) -> Any:
        if not self._s3_client:
            raise StoreError("S3 client not connected")
        return self._s3_client

    async def upload(self, local_path: str, key: str) -> None:
        client = self._client()
        try:
            size = os.path.getsize(local_path)
            with open(local_path, "rb") as f:
                if size > self.multipart_threshold:
                    await self._upload_multipart(client, f, key)
                else:
                    await client.put_object(
                        Bucket=self.config.bucket,
                        Key=key,
                        Body=f.read(),
                    )
        except (ClientError, BotoCoreError) as e:
            raise StoreError(f"failed to upload {local_path} to s3://{self.config.bucket}/{key}: {e}") from e

        logger.debug("Uploaded object", extra={"key": key, "local_path": local_path, "size": size})

    async def _upload_multipart(self, client: Any, f: BinaryIO, key: str) -> None:
        """Upload an open file in parts, aborting the upload on any error."""
        bucket = self.config.bucket
        upload = await client.create_multipart_upload(Bucket=bucket, Key=key)
        upload_id = upload["UploadId"]
        parts = []
        try:
            while True:
                chunk = f.read(self.multipart_part_size)
                if not chunk:
                    break
                part_number = len(parts) + 1
                response = await client.upload_part(
                    Bucket=bucket,
                    Key=key,
                    UploadId=upload_id,
                    PartNumber=part_number,
                    Body=chunk,
                )
                parts.append({"PartNumber": part_number, "ETag": response["ETag"]})

            await client.complete_multipart_upload(
                Bucket=bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
            )
        except Exception:
            await client.abort_multipart_upload(Bucket=bucket, Key=key, UploadId=upload_id)
            raise

    async def download(self, key: str, local_dir: str) -> str:
        client = self._client()
        local_path = local_path_for(key, local_dir)
        os.makedirs(os.path.dirname(local_path), exist_ok=True)

        try:
            response = await client.get_object(Bucket=self.config.bucket, Key=key)
            async with response["Body"] as body:
                with open(local_path, "wb") as f:
                    while True:
                        chunk = await body.read(DOWNLOAD_CHUNK_SIZE)
                        if not chunk:
                            break
                        f.write(chunk)
        except ClientError as e:
            if _error_code(e) in ("NoSuchKey", "404"):
                raise ObjectNotFoundError(key) from e
            raise StoreError(f"failed to download s3://{self.config.bucket}/{key}: {e}") from e
        except BotoCoreError as e:
            raise StoreError(f"failed to download s3://{self.config.bucket}/{key}: {e}") from e

        logger.debug("Downloaded object", extra={"key": key, "local_path": local_path})
        return local_path

    async def list(self, prefix: str) -> List[str]:
        client = self._client()
        keys: List[str] = []
        try:
            paginator = client.get_paginator("list_objects_v2")
            async for page in paginator.paginate(Bucket=self.config.bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    keys.append(obj["Key"])
        except (ClientError, BotoCoreError) as e:
            raise StoreError(f"failed to list s3://{self.config.bucket}/{prefix}: {e}") from e
        return sorted(keys)


def _error_code(error: ClientError) -> Optional[str]:
    return error.response.get("Error", {}).get("Code")

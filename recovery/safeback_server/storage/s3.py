"""
S3 blob store for externalized snapshots.

Object layout:
    s3://<bucket>/<prefix>/<workspace_id>/<snapshot_id>.json[.gz]

The returned path is the full object key, so a snapshot row stays
readable if the prefix configuration changes later.

Invariants:
    - The client is opened in start() and closed in close()
    - Deleting a missing key succeeds (S3 DeleteObject is idempotent)
"""

from __future__ import annotations

import logging
from typing import Any

from aiobotocore.session import get_session

from ..errors import StorageFailureError
from .base import BlobInfo, BlobStore, blob_path, sha256_hex

logger = logging.getLogger(__name__)


class S3BlobStore(BlobStore):
    """Blob store backed by S3 (or an S3-compatible service such as MinIO).

    Attributes:
        s3_config: S3Config instance
    """

    def __init__(self, s3_config: Any, client: Any = None) -> None:
        """Initialize the store.

        Args:
            s3_config: S3Config instance
            client: Pre-built S3 client (tests); start() creates one when omitted
        """
        self.s3_config = s3_config
        self._s3_client = client
        self._s3_ctx = None

    async def start(self) -> None:
        if self._s3_client is not None:
            return

        session = get_session()
        client_kwargs = {
            "region_name": self.s3_config.region,
        }

        if self.s3_config.endpoint_url:
            client_kwargs["endpoint_url"] = self.s3_config.endpoint_url

        if self.s3_config.access_key_id:
            client_kwargs["aws_access_key_id"] = self.s3_config.access_key_id
            client_kwargs["aws_secret_access_key"] = self.s3_config.secret_access_key

        self._s3_ctx = session.create_client("s3", **client_kwargs)
        self._s3_client = await self._s3_ctx.__aenter__()
        logger.info("S3 blob store ready", extra={"bucket": self.s3_config.bucket})

    async def close(self) -> None:
        if self._s3_ctx is not None:
            await self._s3_ctx.__aexit__(None, None, None)
            self._s3_ctx = None
            self._s3_client = None

    def _client(self) -> Any:
        if self._s3_client is None:
            raise StorageFailureError("S3 blob store is not started")
        return self._s3_client

    def _key(self, workspace_id: str, snapshot_id: str, suffix: str) -> str:
        prefix = self.s3_config.snapshot_prefix.strip("/")
        key = blob_path(workspace_id, snapshot_id, suffix)
        return f"{prefix}/{key}" if prefix else key

    async def put(
        self,
        workspace_id: str,
        snapshot_id: str,
        data: bytes,
        suffix: str = ".json",
    ) -> BlobInfo:
        key = self._key(workspace_id, snapshot_id, suffix)
        content_type = "application/gzip" if suffix.endswith(".gz") else "application/json"
        try:
            await self._client().put_object(
                Bucket=self.s3_config.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except StorageFailureError:
            raise
        except Exception as e:
            raise StorageFailureError(
                f"Failed to upload s3://{self.s3_config.bucket}/{key}: {e}",
                path=key,
                operation="put",
            ) from e

        logger.info(
            "Uploaded snapshot blob",
            extra={"bucket": self.s3_config.bucket, "key": key, "size_bytes": len(data)},
        )
        return BlobInfo(path=key, size_bytes=len(data), checksum=sha256_hex(data))

    async def get(self, path: str) -> bytes:
        try:
            response = await self._client().get_object(Bucket=self.s3_config.bucket, Key=path)
            async with response["Body"] as stream:
                return await stream.read()
        except StorageFailureError:
            raise
        except Exception as e:
            raise StorageFailureError(
                f"Failed to download s3://{self.s3_config.bucket}/{path}: {e}",
                path=path,
                operation="get",
            ) from e

    async def delete(self, path: str) -> None:
        try:
            await self._client().delete_object(Bucket=self.s3_config.bucket, Key=path)
        except StorageFailureError:
            raise
        except Exception as e:
            raise StorageFailureError(
                f"Failed to delete s3://{self.s3_config.bucket}/{path}: {e}",
                path=path,
                operation="delete",
            ) from e

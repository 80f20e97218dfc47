"""
Storage module for SafeBack - externalized snapshot blobs.

Backends:
- LocalBlobStore: directory tree on the local filesystem
- S3BlobStore: S3 or S3-compatible object storage (aiobotocore)

create_blob_store() picks the backend from ServerConfig.
"""

from __future__ import annotations

from typing import Any

from ..config import BlobBackend
from .base import BlobInfo, BlobStore, blob_path, sha256_hex
from .local import LocalBlobStore
from .s3 import S3BlobStore


def create_blob_store(config: Any) -> BlobStore:
    """Create the blob store selected by the server configuration."""
    if config.blob.backend == BlobBackend.S3:
        return S3BlobStore(config.s3)
    return LocalBlobStore(config.blob.local_dir)


__all__ = [
    "BlobInfo",
    "BlobStore",
    "LocalBlobStore",
    "S3BlobStore",
    "blob_path",
    "create_blob_store",
    "sha256_hex",
]

"""
Blob storage contract for externalized snapshots.

A BlobStore persists opaque bytes under a path derived from the workspace
and snapshot ids and reports their size and SHA-256. The engine stores
that metadata on the snapshot row and re-verifies it on every read.

Path layout:
    <workspace_id>/<snapshot_id>.json      (uncompressed)
    <workspace_id>/<snapshot_id>.json.gz   (gzip)

Invariants:
    - put() returns the checksum of exactly the bytes persisted
    - delete() is idempotent (missing blobs are not an error)
    - Every backend failure surfaces as StorageFailureError
"""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass

from ..errors import StorageFailureError


@dataclass(frozen=True)
class BlobInfo:
    """Result of a successful put.

    Attributes:
        path: Backend-relative path of the blob
        size_bytes: Number of bytes persisted
        checksum: SHA-256 hex digest of the persisted bytes
    """

    path: str
    size_bytes: int
    checksum: str


def sha256_hex(data: bytes) -> str:
    """SHA-256 hex digest (no algorithm prefix)."""
    return hashlib.sha256(data).hexdigest()


def blob_path(workspace_id: str, snapshot_id: str, suffix: str = ".json") -> str:
    """Relative blob path for a snapshot."""
    return f"{workspace_id}/{snapshot_id}{suffix}"


class BlobStore(ABC):
    """Abstract blob storage backend."""

    @abstractmethod
    async def put(
        self,
        workspace_id: str,
        snapshot_id: str,
        data: bytes,
        suffix: str = ".json",
    ) -> BlobInfo:
        """Persist bytes for a snapshot.

        Raises:
            StorageFailureError: If the write fails
        """

    @abstractmethod
    async def get(self, path: str) -> bytes:
        """Read a blob.

        Raises:
            StorageFailureError: If the blob is missing or unreadable
        """

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Delete a blob. Deleting a missing blob succeeds."""

    async def start(self) -> None:
        """Open backend resources (clients, directories)."""

    async def close(self) -> None:
        """Release backend resources."""

    async def get_verified(self, path: str, checksum: str | None) -> bytes:
        """Read a blob and check it against the recorded checksum.

        Raises:
            StorageFailureError: On read failure or checksum mismatch
        """
        data = await self.get(path)
        if checksum is not None:
            actual = sha256_hex(data)
            if actual != checksum:
                raise StorageFailureError(
                    f"Checksum mismatch for {path}: expected {checksum}, got {actual}",
                    path=path,
                    operation="verify",
                )
        return data

    async def verify(self, path: str, checksum: str) -> bool:
        """Whether the stored blob still matches its checksum."""
        try:
            await self.get_verified(path, checksum)
        except StorageFailureError:
            return False
        return True

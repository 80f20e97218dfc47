"""
Local filesystem blob store.

Blobs live under a root directory as <root>/<workspace_id>/<snapshot_id>.json[.gz].
Writes go to a temporary file in the target directory and are renamed into
place, so a reader never sees a partial blob.

Invariants:
    - Paths never escape the root directory
    - A completed put() is durable (fsync before rename)
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path

from ..errors import StorageFailureError
from .base import BlobInfo, BlobStore, blob_path, sha256_hex

logger = logging.getLogger(__name__)


class LocalBlobStore(BlobStore):
    """Blob store on the local filesystem.

    Example:
        >>> store = LocalBlobStore("/var/lib/safeback/blobs")
        >>> info = await store.put("ws_1", "snap_1", b"{}")
        >>> await store.get(info.path)
        b'{}'
    """

    def __init__(self, root_dir: str) -> None:
        self.root_dir = Path(root_dir)

    async def start(self) -> None:
        self.root_dir.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        root = self.root_dir.resolve()
        full = (root / path).resolve()
        if root not in full.parents:
            raise StorageFailureError(f"Blob path escapes storage root: {path}", path=path)
        return full

    async def put(
        self,
        workspace_id: str,
        snapshot_id: str,
        data: bytes,
        suffix: str = ".json",
    ) -> BlobInfo:
        path = blob_path(workspace_id, snapshot_id, suffix)
        target = self._resolve(path)
        try:
            await asyncio.get_running_loop().run_in_executor(None, self._write_atomic, target, data)
        except OSError as e:
            raise StorageFailureError(
                f"Failed to write blob {path}: {e}", path=path, operation="put"
            ) from e

        info = BlobInfo(path=path, size_bytes=len(data), checksum=sha256_hex(data))
        logger.debug("Stored blob", extra={"path": path, "size_bytes": info.size_bytes})
        return info

    def _write_atomic(self, target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".tmp-", suffix=target.suffix)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, target)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    async def get(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return await asyncio.get_running_loop().run_in_executor(None, target.read_bytes)
        except OSError as e:
            raise StorageFailureError(
                f"Failed to read blob {path}: {e}", path=path, operation="get"
            ) from e

    async def delete(self, path: str) -> None:
        target = self._resolve(path)
        try:
            target.unlink(missing_ok=True)
        except OSError as e:
            raise StorageFailureError(
                f"Failed to delete blob {path}: {e}", path=path, operation="delete"
            ) from e

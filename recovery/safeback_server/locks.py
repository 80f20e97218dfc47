"""
Per-workspace advisory lock.

Capture and restore of one workspace are mutually exclusive, across
coroutines and across processes sharing the data directory. The lock is a
file lock on <lock_dir>/<key>.lock where key is derived from the workspace
id, acquired without waiting: a busy workspace fails fast with
LockContentionError instead of queueing.

Invariants:
    - Same workspace id always maps to the same key
    - Acquisition never blocks (timeout 0)
    - Not reentrant: a second acquisition while held fails, even from the
      holder
    - Released on every exit path, including exceptions

How to change safely:
    - Never change lock_key(); processes on different versions would stop
      excluding each other
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TypeVar

from filelock import FileLock, Timeout

from .errors import LockContentionError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def lock_key(workspace_id: str) -> int:
    """First 8 bytes of SHA-256 of the workspace id as a signed 64-bit integer."""
    digest = hashlib.sha256(workspace_id.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], byteorder="big", signed=True)


class WorkspaceLock:
    """Non-blocking advisory lock keyed by workspace.

    Example:
        >>> locks = WorkspaceLock("/var/lib/safeback/locks")
        >>> async with locks.hold("ws_1"):
        ...     ...  # capture or restore
    """

    def __init__(self, lock_dir: str) -> None:
        self.lock_dir = Path(lock_dir)
        self._held: set[int] = set()

    def lock_path(self, workspace_id: str) -> Path:
        return self.lock_dir / f"{lock_key(workspace_id)}.lock"

    def is_held(self, workspace_id: str) -> bool:
        """Whether this process currently holds the workspace lock."""
        return lock_key(workspace_id) in self._held

    @asynccontextmanager
    async def hold(self, workspace_id: str) -> AsyncIterator[int]:
        """Hold the workspace lock for the duration of the block.

        Yields:
            The lock key

        Raises:
            LockContentionError: If the lock is already held
        """
        key = lock_key(workspace_id)
        if key in self._held:
            raise LockContentionError(workspace_id, key)

        self.lock_dir.mkdir(parents=True, exist_ok=True)
        file_lock = FileLock(str(self.lock_dir / f"{key}.lock"))
        try:
            file_lock.acquire(timeout=0)
        except Timeout as e:
            logger.info(
                "Workspace lock busy",
                extra={"workspace_id": workspace_id, "lock_key": key},
            )
            raise LockContentionError(workspace_id, key) from e

        self._held.add(key)
        try:
            yield key
        finally:
            self._held.discard(key)
            file_lock.release()

    async def with_lock(self, workspace_id: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Run fn while holding the workspace lock."""
        async with self.hold(workspace_id):
            return await fn()

"""
Retention enforcer.

Keeps the newest retain_count snapshots of a workspace and deletes the
rest. For each deleted snapshot the blob goes first, then the row, so a
row never points at a blob that was deleted without it.

Invariants:
    - Order is created_at desc, insertion sequence desc
    - A blob deletion failure never blocks the row deletion or the batch;
      the path is recorded as an orphan and retried on the next pass
    - pre_restore snapshots get no special treatment
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..errors import StorageFailureError
from ..storage import BlobStore
from ..store import ControlStore
from .audit import SNAPSHOT_DELETED, AuditLogger

logger = logging.getLogger(__name__)


@dataclass
class RetentionResult:
    """Outcome of one enforcement pass.

    Attributes:
        kept: Snapshot ids kept, newest first
        deleted: Snapshot ids deleted
        blob_failures: Blob paths that could not be deleted
        orphans_cleared: Previously orphaned blob paths deleted this pass
    """

    kept: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    blob_failures: list[str] = field(default_factory=list)
    orphans_cleared: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "kept": self.kept,
            "deleted": self.deleted,
            "blob_failures": self.blob_failures,
            "orphans_cleared": self.orphans_cleared,
        }


class RetentionEnforcer:
    """Deletes snapshots beyond a workspace's retain count."""

    def __init__(
        self,
        control_store: ControlStore,
        blob_store: BlobStore | None,
        audit: AuditLogger,
    ) -> None:
        self.control_store = control_store
        self.blob_store = blob_store
        self.audit = audit

    async def enforce(
        self,
        workspace_id: str,
        retain_count: int,
        actor: str = "system",
    ) -> RetentionResult:
        """Apply retention to one workspace.

        Args:
            workspace_id: Workspace identifier
            retain_count: Number of newest snapshots to keep
            actor: Actor recorded on deletion audit entries

        Raises:
            ValueError: If retain_count < 1
        """
        if retain_count < 1:
            raise ValueError(f"retain_count must be at least 1, got {retain_count}")

        result = RetentionResult()
        await self._retry_orphans(workspace_id, result)

        snapshots = await self.control_store.list_snapshots(workspace_id)
        keep, drop = snapshots[:retain_count], snapshots[retain_count:]
        result.kept = [s.id for s in keep]

        for snapshot in drop:
            if snapshot.storage_path:
                await self._delete_blob(snapshot.storage_path, workspace_id, snapshot.id, result)

            if await self.control_store.delete_snapshot(snapshot.id):
                result.deleted.append(snapshot.id)
                await self.audit.record(
                    workspace_id,
                    actor,
                    SNAPSHOT_DELETED,
                    entity_id=snapshot.id,
                    metadata={
                        "reason": "retention",
                        "snapshot_type": snapshot.snapshot_type.value,
                        "retain_count": retain_count,
                    },
                )

        if result.deleted:
            logger.info(
                f"Retention deleted {len(result.deleted)} snapshots",
                extra={
                    "workspace_id": workspace_id,
                    "retain_count": retain_count,
                    "blob_failures": len(result.blob_failures),
                },
            )
        return result

    async def _delete_blob(
        self,
        path: str,
        workspace_id: str,
        snapshot_id: str,
        result: RetentionResult,
    ) -> None:
        try:
            if self.blob_store is None:
                raise StorageFailureError("No blob store configured", path=path, operation="delete")
            await self.blob_store.delete(path)
        except StorageFailureError as e:
            logger.error(
                f"Failed to delete snapshot blob: {e}",
                extra={"workspace_id": workspace_id, "snapshot_id": snapshot_id, "path": path},
            )
            result.blob_failures.append(path)
            await self.control_store.record_orphaned_blob(path, workspace_id, snapshot_id, str(e))

    async def _retry_orphans(self, workspace_id: str, result: RetentionResult) -> None:
        if self.blob_store is None:
            return

        for orphan in await self.control_store.list_orphaned_blobs(workspace_id):
            try:
                await self.blob_store.delete(orphan.path)
            except StorageFailureError as e:
                logger.warning(
                    f"Orphaned blob still not deletable: {e}",
                    extra={"path": orphan.path, "attempts": orphan.attempts},
                )
                await self.control_store.record_orphaned_blob(
                    orphan.path, workspace_id, orphan.snapshot_id, str(e)
                )
                continue
            await self.control_store.remove_orphaned_blob(orphan.path)
            result.orphans_cleared.append(orphan.path)

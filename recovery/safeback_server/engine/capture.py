"""
Capture engine.

Turns the live state of a workspace into a persisted snapshot:

    1. Acquire the workspace lock (fail fast)
    2. Open one read transaction and run every provider's capture
    3. Assemble the snapshot document and its manifest
    4. Persist inline or through the blob store (per backup settings)
    5. Insert the snapshot row
    6. Enforce retention
    7. Audit snapshot.captured
    8. Release the lock

A critical provider failure aborts the capture with no row written. A
non-critical failure drops the domain and records it under "omitted",
unless the caller lists it as required (restore does this for every
domain it is about to replace).

Invariants:
    - All provider reads of one capture see the same database state
    - If the row insert fails after an upload, the uploaded blob is deleted
    - Documents loaded back through load_document() are checksum-verified

How to change safely:
    - capture_locked() assumes the caller holds the lock; never call it
      from a path that does not
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Collection
from dataclasses import dataclass, field
from typing import Any

from ..errors import NotFoundError, ProviderFailureError, StorageFailureError
from ..locks import WorkspaceLock
from ..registry import DomainSlice, ProviderRegistry
from ..storage import BlobInfo, BlobStore
from ..store import ControlStore, SnapshotType, WorkspaceSnapshot, WorkspaceStore
from .audit import SNAPSHOT_CAPTURE_FAILED, SNAPSHOT_CAPTURED, AuditLogger
from .document import SnapshotDocument, decode_document, encode_document
from .retention import RetentionEnforcer, RetentionResult

logger = logging.getLogger(__name__)


@dataclass
class CaptureResult:
    """Outcome of a capture.

    Attributes:
        snapshot_id: New snapshot id
        workspace_id: Workspace identifier
        snapshot_type: Why the snapshot was taken
        created_at: Capture timestamp (Unix ms)
        omitted: Non-critical domains left out, with errors
        manifest: Manifest stored on the snapshot row
        blob: Blob metadata when the payload was externalized
        retention: Result of the retention pass that followed
    """

    snapshot_id: str
    workspace_id: str
    snapshot_type: SnapshotType
    created_at: int
    omitted: list[dict[str, str]] = field(default_factory=list)
    manifest: dict[str, Any] = field(default_factory=dict)
    blob: BlobInfo | None = None
    retention: RetentionResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "snapshot_id": self.snapshot_id,
            "workspace_id": self.workspace_id,
            "snapshot_type": self.snapshot_type.value,
            "created_at": self.created_at,
            "omitted": self.omitted,
            "storage_path": self.blob.path if self.blob else None,
            "size_bytes": self.blob.size_bytes if self.blob else None,
            "checksum": self.blob.checksum if self.blob else None,
            "deleted": self.retention.deleted if self.retention else [],
        }


class CaptureEngine:
    """Orchestrates providers into persisted snapshots.

    Example:
        >>> engine = CaptureEngine(registry, workspace_store, control_store,
        ...                        blob_store, locks, audit, retention)
        >>> snapshot_id = await engine.capture("ws_1", "user:alice", "manual")
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        workspace_store: WorkspaceStore,
        control_store: ControlStore,
        blob_store: BlobStore | None,
        locks: WorkspaceLock,
        audit: AuditLogger,
        retention: RetentionEnforcer,
        compression: str = "none",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = registry
        self.workspace_store = workspace_store
        self.control_store = control_store
        self.blob_store = blob_store
        self.locks = locks
        self.audit = audit
        self.retention = retention
        self.compression = compression
        self._clock = clock

    async def capture(
        self,
        workspace_id: str,
        actor: str,
        snapshot_type: SnapshotType | str,
        reason: str | None = None,
    ) -> str:
        """Capture a snapshot and return its id."""
        result = await self.capture_snapshot(workspace_id, actor, snapshot_type, reason)
        return result.snapshot_id

    async def capture_snapshot(
        self,
        workspace_id: str,
        actor: str,
        snapshot_type: SnapshotType | str,
        reason: str | None = None,
        externalize: bool | None = None,
    ) -> CaptureResult:
        """Capture a snapshot under the workspace lock.

        Args:
            workspace_id: Workspace identifier
            actor: Actor recorded as creator
            snapshot_type: Why the snapshot is taken
            reason: Optional free-text reason
            externalize: Force blob storage on/off (settings decide when None)

        Raises:
            NotFoundError: If the workspace does not exist
            LockContentionError: If a capture or restore is running
            ProviderFailureError: If a critical provider fails
            StorageFailureError: If the blob upload fails
        """
        await self._require_workspace(workspace_id)
        async with self.locks.hold(workspace_id):
            return await self.capture_locked(
                workspace_id, actor, snapshot_type, reason, externalize=externalize
            )

    async def capture_locked(
        self,
        workspace_id: str,
        actor: str,
        snapshot_type: SnapshotType | str,
        reason: str | None = None,
        externalize: bool | None = None,
        required: Collection[str] = (),
    ) -> CaptureResult:
        """Capture for a caller that already holds the workspace lock.

        pre_restore captures ignore provider row caps.

        Args:
            workspace_id: Workspace identifier
            actor: Actor recorded as creator
            snapshot_type: Why the snapshot is taken
            reason: Optional free-text reason
            externalize: Force blob storage on/off (settings decide when None)
            required: Providers treated as critical for this capture
        """
        snapshot_type = SnapshotType(snapshot_type)
        await self._require_workspace(workspace_id)
        settings = await self.control_store.get_backup_settings(workspace_id)

        snapshot_id = str(uuid.uuid4())
        created_at = int(self._clock() * 1000)

        try:
            providers, omitted = self._collect(
                workspace_id,
                complete=snapshot_type is SnapshotType.PRE_RESTORE,
                required=required,
            )
        except ProviderFailureError as e:
            await self.audit.record(
                workspace_id,
                actor,
                SNAPSHOT_CAPTURE_FAILED,
                metadata={
                    "snapshot_type": snapshot_type.value,
                    "provider": e.provider,
                    "error": e.message,
                },
            )
            raise

        document = SnapshotDocument(
            workspace_id=workspace_id,
            snapshot_id=snapshot_id,
            created_at=created_at,
            snapshot_type=snapshot_type.value,
            providers=providers,
            omitted=omitted,
        )
        manifest = document.manifest()
        snapshot = WorkspaceSnapshot(
            id=snapshot_id,
            workspace_id=workspace_id,
            created_at=created_at,
            created_by=actor,
            snapshot_type=snapshot_type,
            reason=reason,
            manifest=manifest,
        )

        if externalize is None:
            externalize = settings.store_in_storage

        blob = None
        if externalize:
            blob = await self._persist_blob(snapshot, document)
        else:
            inline, _ = encode_document(document)
            await self.control_store.insert_snapshot(snapshot, snapshot_json=inline.decode("utf-8"))

        retention = await self.retention.enforce(workspace_id, settings.retain_count, actor=actor)

        await self.audit.record(
            workspace_id,
            actor,
            SNAPSHOT_CAPTURED,
            entity_id=snapshot_id,
            metadata={
                "snapshot_type": snapshot_type.value,
                "reason": reason,
                "providers": manifest["providers"],
                "omitted": [o["provider"] for o in omitted],
                "storage_path": blob.path if blob else None,
            },
        )

        logger.info(
            "Captured snapshot",
            extra={
                "workspace_id": workspace_id,
                "snapshot_id": snapshot_id,
                "snapshot_type": snapshot_type.value,
                "omitted": len(omitted),
                "externalized": blob is not None,
            },
        )

        return CaptureResult(
            snapshot_id=snapshot_id,
            workspace_id=workspace_id,
            snapshot_type=snapshot_type,
            created_at=created_at,
            omitted=omitted,
            manifest=manifest,
            blob=blob,
            retention=retention,
        )

    def _collect(
        self,
        workspace_id: str,
        complete: bool = False,
        required: Collection[str] = (),
    ) -> tuple[dict[str, DomainSlice], list[dict[str, str]]]:
        """Run every provider inside one read transaction."""
        providers: dict[str, DomainSlice] = {}
        omitted: list[dict[str, str]] = []

        with self.workspace_store.read_transaction(workspace_id) as conn:
            for provider in self.registry:
                try:
                    if complete:
                        slice_ = provider.capture_complete(conn, workspace_id)
                    else:
                        slice_ = provider.capture(conn, workspace_id)
                    providers[provider.name] = slice_
                except Exception as e:
                    if provider.critical or provider.name in required:
                        logger.error(
                            f"Required provider {provider.name} failed: {e}",
                            extra={"workspace_id": workspace_id, "provider": provider.name},
                        )
                        raise ProviderFailureError(provider.name, str(e)) from e

                    logger.warning(
                        f"Provider {provider.name} omitted from snapshot: {e}",
                        extra={"workspace_id": workspace_id, "provider": provider.name},
                    )
                    omitted.append({"provider": provider.name, "error": str(e)})

        return providers, omitted

    async def _persist_blob(
        self,
        snapshot: WorkspaceSnapshot,
        document: SnapshotDocument,
    ) -> BlobInfo:
        if self.blob_store is None:
            raise StorageFailureError("No blob store configured", operation="put")

        data, suffix = encode_document(document, self.compression)
        blob = await self.blob_store.put(snapshot.workspace_id, snapshot.id, data, suffix)

        snapshot.storage_path = blob.path
        snapshot.size_bytes = blob.size_bytes
        snapshot.checksum = blob.checksum
        try:
            await self.control_store.insert_snapshot(snapshot)
        except Exception:
            await self._discard_blob(blob.path, snapshot.workspace_id, snapshot.id)
            raise
        return blob

    async def _discard_blob(self, path: str, workspace_id: str, snapshot_id: str) -> None:
        try:
            await self.blob_store.delete(path)
        except StorageFailureError as e:
            logger.error(
                f"Failed to remove blob of unrecorded snapshot: {e}",
                extra={"workspace_id": workspace_id, "snapshot_id": snapshot_id, "path": path},
            )
            await self.control_store.record_orphaned_blob(path, workspace_id, snapshot_id, str(e))

    async def _require_workspace(self, workspace_id: str) -> None:
        if not await self.control_store.workspace_exists(workspace_id):
            raise NotFoundError("Workspace", workspace_id)
        if not await self.workspace_store.workspace_exists(workspace_id):
            raise NotFoundError("Workspace database", workspace_id)

    async def get_snapshot(self, snapshot_id: str) -> WorkspaceSnapshot:
        """Snapshot row by id.

        Raises:
            NotFoundError: If the snapshot does not exist
        """
        snapshot = await self.control_store.get_snapshot(snapshot_id)
        if snapshot is None:
            raise NotFoundError("Snapshot", snapshot_id)
        return snapshot

    async def load_document(self, snapshot: WorkspaceSnapshot) -> SnapshotDocument:
        """Load a snapshot's document, verifying blob checksums.

        Raises:
            StorageFailureError: If the blob is unreadable, fails its
                checksum, or the payload is not a valid document
        """
        if snapshot.storage_path:
            if self.blob_store is None:
                raise StorageFailureError(
                    "No blob store configured", path=snapshot.storage_path, operation="get"
                )
            payload: bytes | str | None = await self.blob_store.get_verified(
                snapshot.storage_path, snapshot.checksum
            )
        else:
            payload = await self.control_store.get_inline_payload(snapshot.id)
            if payload is None:
                raise StorageFailureError(
                    f"Snapshot {snapshot.id} has no payload", operation="get"
                )

        try:
            return decode_document(payload)
        except ValueError as e:
            raise StorageFailureError(
                f"Snapshot {snapshot.id} payload is unreadable: {e}",
                path=snapshot.storage_path,
                operation="decode",
            ) from e

    async def externalize(self, snapshot_id: str) -> BlobInfo | None:
        """Move an inline snapshot payload to blob storage.

        Returns:
            Blob metadata, or None if the snapshot was already externalized
        """
        snapshot = await self.get_snapshot(snapshot_id)
        if snapshot.is_externalized:
            return None
        if self.blob_store is None:
            raise StorageFailureError("No blob store configured", operation="put")

        async with self.locks.hold(snapshot.workspace_id):
            document = await self.load_document(snapshot)
            data, suffix = encode_document(document, self.compression)
            blob = await self.blob_store.put(snapshot.workspace_id, snapshot.id, data, suffix)

            attached = await self.control_store.attach_storage(
                snapshot.id, blob.path, blob.size_bytes, blob.checksum
            )
            if not attached:
                current = await self.control_store.get_snapshot(snapshot.id)
                if current is None or current.storage_path != blob.path:
                    await self._discard_blob(blob.path, snapshot.workspace_id, snapshot.id)
                return None

        logger.info(
            "Externalized snapshot",
            extra={"snapshot_id": snapshot.id, "path": blob.path, "size_bytes": blob.size_bytes},
        )
        return blob

"""
Snapshot service facade.

SnapshotService is what the HTTP API, the scheduler and the CLI talk to.
It checks that the actor is an owner or admin of the workspace and then
delegates to the capture engine and the restore protocol.

create_service() wires the whole engine from a ServerConfig and a frozen
provider registry.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from ..errors import ForbiddenError
from ..locks import WorkspaceLock
from ..registry import ProviderRegistry
from ..storage import BlobStore
from ..store import AuditLogEntry, ControlStore, SnapshotType, WorkspaceSnapshot, WorkspaceStore
from .audit import SNAPSHOT_EXPORTED, AuditLogger
from .capture import CaptureEngine
from .restore import RestorePreview, RestoreProtocol, RestoreResult
from .retention import RetentionEnforcer
from .tokens import TokenManager

logger = logging.getLogger(__name__)


class SnapshotService:
    """Admin-facing snapshot operations."""

    def __init__(
        self,
        registry: ProviderRegistry,
        workspace_store: WorkspaceStore,
        control_store: ControlStore,
        capture_engine: CaptureEngine,
        restore_protocol: RestoreProtocol,
        audit: AuditLogger,
    ) -> None:
        self.registry = registry
        self.workspace_store = workspace_store
        self.control_store = control_store
        self.capture_engine = capture_engine
        self.restore_protocol = restore_protocol
        self.audit = audit

    async def initialize(self) -> None:
        """Create the control schema and open the blob store."""
        await self.control_store.initialize()
        if self.capture_engine.blob_store is not None:
            await self.capture_engine.blob_store.start()

    async def close(self) -> None:
        if self.capture_engine.blob_store is not None:
            await self.capture_engine.blob_store.close()

    async def _assert_admin(self, actor: str, workspace_id: str) -> None:
        if not actor or not await self.control_store.is_workspace_admin(actor, workspace_id):
            raise ForbiddenError(actor, workspace_id)

    async def _snapshot_for_admin(self, snapshot_id: str, actor: str) -> WorkspaceSnapshot:
        snapshot = await self.capture_engine.get_snapshot(snapshot_id)
        await self._assert_admin(actor, snapshot.workspace_id)
        return snapshot

    async def create_workspace(
        self,
        workspace_id: str,
        owner: str,
        name: str | None = None,
    ) -> None:
        """Register a workspace, its owner and its business database."""
        await self.control_store.create_workspace(workspace_id, name=name)
        await self.control_store.add_member(workspace_id, owner, "owner")
        await self.workspace_store.initialize_workspace(workspace_id)

    async def capture(
        self,
        workspace_id: str,
        actor: str,
        reason: str | None = None,
        snapshot_type: SnapshotType | str = SnapshotType.MANUAL,
    ) -> str:
        await self._assert_admin(actor, workspace_id)
        return await self.capture_engine.capture(workspace_id, actor, snapshot_type, reason)

    async def preview(self, snapshot_id: str, actor: str) -> RestorePreview:
        await self._snapshot_for_admin(snapshot_id, actor)
        return await self.restore_protocol.preview(snapshot_id, actor)

    async def restore(
        self,
        snapshot_id: str,
        confirmation_token: str,
        actor: str,
    ) -> RestoreResult:
        await self._snapshot_for_admin(snapshot_id, actor)
        return await self.restore_protocol.restore(snapshot_id, confirmation_token, actor)

    async def list_providers(self, workspace_id: str, actor: str) -> list[dict[str, Any]]:
        await self._assert_admin(actor, workspace_id)
        return self.registry.describe()

    async def list_snapshots(
        self,
        workspace_id: str,
        actor: str,
        limit: int = 50,
    ) -> list[WorkspaceSnapshot]:
        await self._assert_admin(actor, workspace_id)
        return await self.control_store.list_snapshots(workspace_id, limit=limit)

    async def export_snapshot(self, snapshot_id: str, actor: str) -> dict[str, Any]:
        """Return the verified snapshot document for download."""
        snapshot = await self._snapshot_for_admin(snapshot_id, actor)
        document = await self.capture_engine.load_document(snapshot)

        await self.audit.record(
            snapshot.workspace_id,
            actor,
            SNAPSHOT_EXPORTED,
            entity_id=snapshot_id,
            metadata={"externalized": snapshot.is_externalized},
        )
        return document.to_dict()

    async def list_audit_log(
        self,
        workspace_id: str,
        actor: str,
        limit: int = 20,
        offset: int = 0,
    ) -> list[AuditLogEntry]:
        await self._assert_admin(actor, workspace_id)
        return await self.audit.list(workspace_id, limit=limit, offset=offset)


def create_service(
    config: Any,
    registry: ProviderRegistry,
    blob_store: BlobStore | None,
    clock: Callable[[], float] = time.time,
) -> SnapshotService:
    """Wire stores, lock, engine and protocol from a ServerConfig.

    Layout under DATA_DIR:
        control.db        control database
        workspaces/       one SQLite file per workspace
        locks/            advisory lock files
    """
    data_dir = Path(config.storage.data_dir)

    workspace_store = WorkspaceStore(
        str(data_dir / "workspaces"),
        registry,
        wal_mode=config.storage.wal_mode,
        busy_timeout_ms=config.storage.busy_timeout_ms,
        db_pattern=config.storage.workspace_db_pattern,
    )
    control_store = ControlStore(
        str(data_dir),
        wal_mode=config.storage.wal_mode,
        busy_timeout_ms=config.storage.busy_timeout_ms,
    )
    locks = WorkspaceLock(str(data_dir / "locks"))
    audit = AuditLogger(control_store, clock=clock)
    retention = RetentionEnforcer(control_store, blob_store, audit)
    capture_engine = CaptureEngine(
        registry,
        workspace_store,
        control_store,
        blob_store,
        locks,
        audit,
        retention,
        compression=config.blob.compression,
        clock=clock,
    )
    tokens = TokenManager(control_store, config.restore.token_ttl_seconds, clock=clock)
    restore_protocol = RestoreProtocol(registry, workspace_store, capture_engine, tokens, audit)

    return SnapshotService(
        registry,
        workspace_store,
        control_store,
        capture_engine,
        restore_protocol,
        audit,
    )

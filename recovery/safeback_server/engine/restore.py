"""
Two-phase preview/restore protocol.

    IDLE --preview--> PREVIEW_READY --restore(valid token)--> RESTORED
                                    \\--restore fails--------> FAILED

preview() reads only: it loads the target document, compares its row
counts with the live data and mints a confirmation token. restore()
replaces live data with the document, after taking a pre_restore safety
snapshot so that the restore itself can be undone.

Restore sequence (under the workspace lock):
    0. Load the target document (before the safety snapshot, whose
       retention pass may delete the target)
    1. Capture a pre_restore snapshot (uncapped; any domain the document
       replaces must be in it, or the restore aborts)
    2. Consume the token
    3. Replace every domain present in the document in one transaction,
       integrity-checked before commit
    4. Audit snapshot.restored

Invariants:
    - Token checks run before any mutation; a rejected token never
      creates a safety snapshot
    - Domains absent from the document are left untouched
    - A failure in step 3 rolls back every domain; nothing is half-restored
    - The pre_restore snapshot holds every row step 3 deletes, so restoring
      it undoes the restore exactly
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any

from ..errors import ProviderFailureError
from ..registry import ProviderRegistry
from ..store import SnapshotType, WorkspaceStore
from .audit import (
    SNAPSHOT_PREVIEW_ISSUED,
    SNAPSHOT_RESTORE_FAILED,
    SNAPSHOT_RESTORED,
    AuditLogger,
)
from .capture import CaptureEngine
from .document import SnapshotDocument
from .tokens import TokenManager

logger = logging.getLogger(__name__)


@dataclass
class RestorePreview:
    """What a restore would change, plus the token that authorizes it.

    Attributes:
        confirmation_token: Single-use token for restore()
        will_replace: Live row counts per table that would be deleted
        will_restore: Row counts per table the snapshot would write
        providers: Per-provider disclosure (name, description, critical,
            entity_count, present)
        omitted: Domains missing from the snapshot, with errors
        snapshot_created_at: Capture timestamp (Unix ms)
        snapshot_type: Why the snapshot was taken
        snapshot_reason: Free-text reason
        expires_in_seconds: Token lifetime
    """

    confirmation_token: str
    will_replace: dict[str, int]
    will_restore: dict[str, int]
    providers: list[dict[str, Any]] = field(default_factory=list)
    omitted: list[dict[str, str]] = field(default_factory=list)
    snapshot_created_at: int = 0
    snapshot_type: str = ""
    snapshot_reason: str | None = None
    expires_in_seconds: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "confirmation_token": self.confirmation_token,
            "summary": {
                "will_replace": self.will_replace,
                "will_restore": self.will_restore,
                "providers": self.providers,
                "omitted": self.omitted,
            },
            "snapshot_created_at": self.snapshot_created_at,
            "snapshot_type": self.snapshot_type,
            "snapshot_reason": self.snapshot_reason,
            "expires_in_seconds": self.expires_in_seconds,
        }


@dataclass
class RestoreResult:
    """Outcome of a successful restore."""

    success: bool
    snapshot_id: str
    pre_restore_snapshot_id: str
    entities_restored: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "snapshot_id": self.snapshot_id,
            "pre_restore_snapshot_id": self.pre_restore_snapshot_id,
            "entities_restored": self.entities_restored,
        }


class RestoreProtocol:
    """Preview and confirmed restore of snapshots."""

    def __init__(
        self,
        registry: ProviderRegistry,
        workspace_store: WorkspaceStore,
        capture_engine: CaptureEngine,
        tokens: TokenManager,
        audit: AuditLogger,
    ) -> None:
        self.registry = registry
        self.workspace_store = workspace_store
        self.capture_engine = capture_engine
        self.tokens = tokens
        self.audit = audit

    async def preview(self, snapshot_id: str, actor: str) -> RestorePreview:
        """Describe a restore and issue a confirmation token.

        Expired and spent tokens are purged first.

        Raises:
            NotFoundError: If the snapshot does not exist
            StorageFailureError: If the payload cannot be loaded or verified
        """
        snapshot = await self.capture_engine.get_snapshot(snapshot_id)
        document = await self.capture_engine.load_document(snapshot)
        workspace_id = snapshot.workspace_id

        present = [p.name for p in self.registry if p.name in document.providers]
        will_replace = await self.workspace_store.count_entities(workspace_id, present)

        will_restore: dict[str, int] = {}
        providers = []
        for provider in self.registry:
            slice_ = document.providers.get(provider.name)
            if slice_ is not None:
                will_restore.update(slice_.entity_counts)
            providers.append(
                {
                    **provider.describe().to_dict(),
                    "entity_count": slice_.entity_count if slice_ else 0,
                    "present": slice_ is not None,
                }
            )

        await self.tokens.purge()
        token = await self.tokens.issue(workspace_id, snapshot_id, actor)

        await self.audit.record(
            workspace_id,
            actor,
            SNAPSHOT_PREVIEW_ISSUED,
            entity_id=snapshot_id,
            metadata={"will_replace": will_replace, "will_restore": will_restore},
        )

        return RestorePreview(
            confirmation_token=token,
            will_replace=will_replace,
            will_restore=will_restore,
            providers=providers,
            omitted=list(document.omitted),
            snapshot_created_at=snapshot.created_at,
            snapshot_type=snapshot.snapshot_type.value,
            snapshot_reason=snapshot.reason,
            expires_in_seconds=self.tokens.ttl_seconds,
        )

    async def restore(
        self,
        snapshot_id: str,
        confirmation_token: str,
        actor: str,
    ) -> RestoreResult:
        """Replace live data with a snapshot.

        Raises:
            NotFoundError: If the snapshot does not exist
            InvalidConfirmationError: If the token is not valid for this
                snapshot and actor
            LockContentionError: If a capture or restore is running
            StorageFailureError: If the payload cannot be loaded or verified
            ProviderFailureError: If the safety snapshot or the replace fails
        """
        snapshot = await self.capture_engine.get_snapshot(snapshot_id)
        workspace_id = snapshot.workspace_id
        await self.tokens.validate(confirmation_token, workspace_id, snapshot_id, actor)

        async with self.capture_engine.locks.hold(workspace_id):
            document = await self.capture_engine.load_document(snapshot)

            pre_restore = await self.capture_engine.capture_locked(
                workspace_id,
                actor,
                SnapshotType.PRE_RESTORE,
                reason=f"Automatic safety snapshot before restoring {snapshot_id}",
                required=set(document.providers),
            )

            await self.tokens.consume(confirmation_token, workspace_id, snapshot_id, actor)

            try:
                entities = self._replace(workspace_id, document)
            except ProviderFailureError as e:
                await self.audit.record(
                    workspace_id,
                    actor,
                    SNAPSHOT_RESTORE_FAILED,
                    entity_id=snapshot_id,
                    metadata={
                        "provider": e.provider,
                        "error": e.message,
                        "pre_restore_snapshot_id": pre_restore.snapshot_id,
                    },
                )
                raise

            await self.audit.record(
                workspace_id,
                actor,
                SNAPSHOT_RESTORED,
                entity_id=snapshot_id,
                metadata={
                    "pre_restore_snapshot_id": pre_restore.snapshot_id,
                    "entities_restored": entities,
                    "providers": [p for p in document.providers if p in self.registry],
                },
            )

        logger.info(
            "Restored snapshot",
            extra={
                "workspace_id": workspace_id,
                "snapshot_id": snapshot_id,
                "pre_restore_snapshot_id": pre_restore.snapshot_id,
                "entities_restored": entities,
            },
        )
        return RestoreResult(
            success=True,
            snapshot_id=snapshot_id,
            pre_restore_snapshot_id=pre_restore.snapshot_id,
            entities_restored=entities,
        )

    def _replace(self, workspace_id: str, document: SnapshotDocument) -> int:
        """Replace every domain in the document inside one write transaction."""
        for name in document.providers:
            if name not in self.registry:
                logger.warning(
                    f"Snapshot contains unknown provider {name}; skipping",
                    extra={"workspace_id": workspace_id, "provider": name},
                )

        entities = 0
        try:
            with self.workspace_store.write_transaction(workspace_id) as conn:
                for provider in self.registry:
                    slice_ = document.providers.get(provider.name)
                    if slice_ is None:
                        continue
                    try:
                        entities += provider.restore(conn, workspace_id, slice_)
                    except Exception as e:
                        logger.error(
                            f"Restore of provider {provider.name} failed: {e}",
                            extra={"workspace_id": workspace_id, "provider": provider.name},
                        )
                        raise ProviderFailureError(
                            provider.name, str(e), operation="restore"
                        ) from e
                try:
                    self.workspace_store.check_integrity(conn)
                except ValueError as e:
                    raise ProviderFailureError("workspace", str(e), operation="restore") from e
        except sqlite3.Error as e:
            # Transaction-level failure (BEGIN or COMMIT), not tied to one provider
            raise ProviderFailureError("workspace", str(e), operation="restore") from e
        return entities

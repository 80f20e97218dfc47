"""
Audit logger for snapshot lifecycle events.

Every capture, preview, restore, export and retention deletion appends
one immutable row to the control database and one INFO log line.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import replace
from typing import Any

from ..store import AuditLogEntry, ControlStore

logger = logging.getLogger(__name__)

SNAPSHOT_CAPTURED = "snapshot.captured"
SNAPSHOT_CAPTURE_FAILED = "snapshot.capture_failed"
SNAPSHOT_PREVIEW_ISSUED = "snapshot.preview_issued"
SNAPSHOT_RESTORED = "snapshot.restored"
SNAPSHOT_RESTORE_FAILED = "snapshot.restore_failed"
SNAPSHOT_DELETED = "snapshot.deleted"
SNAPSHOT_EXPORTED = "snapshot.exported"

ENTITY_TYPE = "workspace_snapshot"


class AuditLogger:
    """Append-only audit trail."""

    def __init__(
        self,
        control_store: ControlStore,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.control_store = control_store
        self._clock = clock

    async def record(
        self,
        workspace_id: str,
        actor: str,
        action: str,
        entity_type: str = ENTITY_TYPE,
        entity_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            workspace_id=workspace_id,
            actor_user_id=actor,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            metadata=metadata or {},
            created_at=int(self._clock() * 1000),
        )
        entry_id = await self.control_store.append_audit(entry)

        logger.info(
            f"Audit: {action}",
            extra={
                "workspace_id": workspace_id,
                "actor": actor,
                "action": action,
                "entity_id": entity_id,
            },
        )
        return replace(entry, id=entry_id)

    async def list(
        self,
        workspace_id: str,
        limit: int = 20,
        offset: int = 0,
    ) -> list[AuditLogEntry]:
        """Entries for a workspace, newest first."""
        return await self.control_store.list_audit(workspace_id, limit=limit, offset=offset)

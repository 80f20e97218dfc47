"""
Persisted record types for SafeBack.

Invariants:
    - Timestamps are Unix milliseconds
    - A snapshot has either an inline payload or storage metadata, never neither
    - Audit entries are never updated or deleted
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SnapshotType(Enum):
    """Why a snapshot was captured."""

    MANUAL = "manual"
    SCHEDULED = "scheduled"
    PRE_RESTORE = "pre_restore"
    PRE_UPGRADE = "pre_upgrade"


class Cadence(Enum):
    """Scheduled backup cadence."""

    DAILY = "daily"
    WEEKLY = "weekly"

    @property
    def interval_seconds(self) -> int:
        return 86400 if self is Cadence.DAILY else 7 * 86400


@dataclass(frozen=True)
class BackupSettings:
    """Per-workspace backup settings.

    Owned by the admin UI; the engine only reads them.

    Attributes:
        workspace_id: Workspace identifier
        is_enabled: Whether scheduled backups run
        cadence: Scheduled backup cadence
        retain_count: Number of newest snapshots to keep
        store_in_storage: Externalize payloads to blob storage
    """

    workspace_id: str
    is_enabled: bool = False
    cadence: Cadence = Cadence.DAILY
    retain_count: int = 30
    store_in_storage: bool = False

    def __post_init__(self) -> None:
        if self.retain_count < 1:
            raise ValueError(f"retain_count must be at least 1, got {self.retain_count}")


@dataclass
class WorkspaceSnapshot:
    """Metadata row for one captured snapshot.

    Attributes:
        id: Snapshot identifier (UUID)
        workspace_id: Workspace identifier
        created_at: Capture timestamp (Unix ms)
        created_by: Actor who triggered the capture
        snapshot_type: Why the snapshot was taken
        reason: Free-text reason
        storage_path: Blob path when externalized
        size_bytes: Blob size when externalized
        checksum: SHA-256 hex of the blob when externalized
        manifest: Providers, entity counts and omitted domains
        seq: Insertion sequence, tie-breaker for equal created_at
    """

    id: str
    workspace_id: str
    created_at: int
    created_by: str
    snapshot_type: SnapshotType
    reason: str | None = None
    storage_path: str | None = None
    size_bytes: int | None = None
    checksum: str | None = None
    manifest: dict[str, Any] = field(default_factory=dict)
    seq: int | None = None

    @property
    def is_externalized(self) -> bool:
        return self.storage_path is not None

    @property
    def omitted(self) -> list[dict[str, Any]]:
        return list(self.manifest.get("omitted", []))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "created_at": self.created_at,
            "created_by": self.created_by,
            "snapshot_type": self.snapshot_type.value,
            "reason": self.reason,
            "storage_path": self.storage_path,
            "size_bytes": self.size_bytes,
            "checksum": self.checksum,
            "manifest": self.manifest,
        }


@dataclass(frozen=True)
class AuditLogEntry:
    """One immutable lifecycle record."""

    workspace_id: str
    actor_user_id: str
    action: str
    entity_type: str
    entity_id: str | None
    metadata: dict[str, Any]
    created_at: int
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "actor_user_id": self.actor_user_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "metadata": self.metadata,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class RestoreToken:
    """Server-held record of an issued confirmation token.

    Only the SHA-256 of the token is stored.
    """

    token_hash: str
    workspace_id: str
    snapshot_id: str
    actor: str
    issued_at: int
    expires_at: int
    consumed_at: int | None = None


@dataclass(frozen=True)
class OrphanedBlob:
    """Blob whose deletion failed during retention."""

    path: str
    workspace_id: str
    snapshot_id: str | None
    error: str
    attempts: int
    recorded_at: int

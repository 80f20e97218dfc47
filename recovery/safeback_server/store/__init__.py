"""
Store module for SafeBack - SQLite persistence.

This module handles:
- Per-workspace business databases (provider tables)
- The control database (snapshots, settings, tokens, audit, members)

Invariants:
    - One SQLite file per workspace plus one control database
    - Multi-statement writes run inside explicit transactions
    - SQLite uses WAL mode for concurrent reads during writes
"""

from .control_store import ADMIN_ROLES, ControlStore
from .models import (
    AuditLogEntry,
    BackupSettings,
    Cadence,
    OrphanedBlob,
    RestoreToken,
    SnapshotType,
    WorkspaceSnapshot,
)
from .workspace_store import WorkspaceDatabaseNotFoundError, WorkspaceStore

__all__ = [
    "ADMIN_ROLES",
    "ControlStore",
    "WorkspaceStore",
    "WorkspaceDatabaseNotFoundError",
    "AuditLogEntry",
    "BackupSettings",
    "Cadence",
    "OrphanedBlob",
    "RestoreToken",
    "SnapshotType",
    "WorkspaceSnapshot",
]

"""
Control SQLite store for SafeBack.

This module manages the single control database that holds everything
SafeBack knows about workspaces other than their business data:
- Workspaces and admin memberships (for authorization checks)
- Backup settings
- Snapshot metadata rows and inline payloads
- Restore confirmation tokens (hashed)
- Append-only audit log
- Orphaned blobs awaiting deletion

Invariants:
    - Snapshot rows are only inserted by the capture engine and only deleted
      by the retention enforcer
    - Storage metadata is attached to a snapshot at most once
    - Token consumption is a single conditional UPDATE (exactly one winner)
    - Audit rows are never updated or deleted

Table schema:
    workspace_snapshots:
        - seq INTEGER PRIMARY KEY AUTOINCREMENT
        - id TEXT UNIQUE
        - workspace_id TEXT
        - created_at INTEGER (Unix ms)
        - created_by TEXT
        - snapshot_type TEXT
        - reason TEXT
        - snapshot_json TEXT (inline payload, NULL when externalized)
        - storage_path TEXT, size_bytes INTEGER, checksum TEXT
        - manifest_json TEXT

    restore_tokens:
        - token_hash TEXT PRIMARY KEY
        - workspace_id, snapshot_id, actor TEXT
        - issued_at, expires_at, consumed_at INTEGER (Unix ms)

    audit_log:
        - id INTEGER PRIMARY KEY AUTOINCREMENT
        - workspace_id, actor_user_id, action, entity_type, entity_id TEXT
        - metadata_json TEXT, created_at INTEGER
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from .models import (
    AuditLogEntry,
    BackupSettings,
    Cadence,
    OrphanedBlob,
    RestoreToken,
    SnapshotType,
    WorkspaceSnapshot,
)

logger = logging.getLogger(__name__)

ADMIN_ROLES = ("owner", "admin")


class ControlStore:
    """Control database for snapshots, settings, tokens and audit.

    Example:
        >>> store = ControlStore("/var/lib/safeback")
        >>> await store.initialize()
        >>> await store.create_workspace("ws_1", name="Acme")
        >>> await store.add_member("ws_1", "user:alice", "owner")
    """

    def __init__(
        self,
        data_dir: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        db_name: str = "control.db",
    ) -> None:
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / db_name
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._lock = asyncio.Lock()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS workspaces (
                id TEXT PRIMARY KEY,
                name TEXT,
                created_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS workspace_members (
                workspace_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                team_role TEXT NOT NULL,
                PRIMARY KEY (workspace_id, user_id)
            );

            CREATE TABLE IF NOT EXISTS backup_settings (
                workspace_id TEXT PRIMARY KEY,
                is_enabled INTEGER NOT NULL DEFAULT 0,
                cadence TEXT NOT NULL DEFAULT 'daily',
                retain_count INTEGER NOT NULL DEFAULT 30 CHECK (retain_count >= 1),
                store_in_storage INTEGER NOT NULL DEFAULT 0,
                updated_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS workspace_snapshots (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                workspace_id TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                created_by TEXT NOT NULL,
                snapshot_type TEXT NOT NULL,
                reason TEXT,
                snapshot_json TEXT,
                storage_path TEXT,
                size_bytes INTEGER,
                checksum TEXT,
                manifest_json TEXT NOT NULL DEFAULT '{}',
                CHECK (snapshot_json IS NOT NULL OR storage_path IS NOT NULL)
            );

            CREATE INDEX IF NOT EXISTS idx_snapshots_workspace
                ON workspace_snapshots(workspace_id, created_at DESC, seq DESC);

            CREATE TABLE IF NOT EXISTS restore_tokens (
                token_hash TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL,
                snapshot_id TEXT NOT NULL,
                actor TEXT NOT NULL,
                issued_at INTEGER NOT NULL,
                expires_at INTEGER NOT NULL,
                consumed_at INTEGER
            );

            CREATE TABLE IF NOT EXISTS audit_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                workspace_id TEXT NOT NULL,
                actor_user_id TEXT NOT NULL,
                action TEXT NOT NULL,
                entity_type TEXT NOT NULL,
                entity_id TEXT,
                metadata_json TEXT NOT NULL DEFAULT '{}',
                created_at INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_audit_workspace
                ON audit_log(workspace_id, created_at DESC, id DESC);

            CREATE TABLE IF NOT EXISTS orphaned_blobs (
                path TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL,
                snapshot_id TEXT,
                error TEXT NOT NULL,
                attempts INTEGER NOT NULL DEFAULT 1,
                recorded_at INTEGER NOT NULL
            );
        """)

    async def initialize(self) -> None:
        """Create the control database schema."""
        async with self._lock:
            with self._get_connection() as conn:
                self._create_schema(conn)
        logger.info(f"Initialized control database: {self.db_path}")

    # --- Workspaces and members ---

    async def create_workspace(self, workspace_id: str, name: str | None = None) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO workspaces (id, name, created_at) VALUES (?, ?, ?)",
                (workspace_id, name, _now_ms()),
            )

    async def workspace_exists(self, workspace_id: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute("SELECT 1 FROM workspaces WHERE id = ?", (workspace_id,))
            return cursor.fetchone() is not None

    async def add_member(self, workspace_id: str, user_id: str, team_role: str) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO workspace_members (workspace_id, user_id, team_role)
                VALUES (?, ?, ?)
                ON CONFLICT (workspace_id, user_id) DO UPDATE SET team_role = excluded.team_role
                """,
                (workspace_id, user_id, team_role),
            )

    async def is_workspace_admin(self, user_id: str, workspace_id: str) -> bool:
        """Whether the user is an owner or admin of the workspace."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                f"""
                SELECT 1 FROM workspace_members
                WHERE workspace_id = ? AND user_id = ?
                AND team_role IN ({", ".join("?" for _ in ADMIN_ROLES)})
                """,
                (workspace_id, user_id, *ADMIN_ROLES),
            )
            return cursor.fetchone() is not None

    async def resolve_admin_actor(self, workspace_id: str) -> str | None:
        """Pick an actor to attribute system-initiated snapshots to.

        Owners are preferred over admins; ties resolve by user_id.
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                SELECT user_id FROM workspace_members
                WHERE workspace_id = ? AND team_role IN ('owner', 'admin')
                ORDER BY CASE team_role WHEN 'owner' THEN 0 ELSE 1 END, user_id
                LIMIT 1
                """,
                (workspace_id,),
            )
            row = cursor.fetchone()
            return row["user_id"] if row else None

    # --- Backup settings ---

    async def get_backup_settings(self, workspace_id: str) -> BackupSettings:
        """Settings for a workspace, defaults when none are stored."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM backup_settings WHERE workspace_id = ?", (workspace_id,)
            )
            row = cursor.fetchone()
        if not row:
            return BackupSettings(workspace_id=workspace_id)
        return _settings_from_row(row)

    async def upsert_backup_settings(self, settings: BackupSettings) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO backup_settings
                    (workspace_id, is_enabled, cadence, retain_count, store_in_storage, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (workspace_id) DO UPDATE SET
                    is_enabled = excluded.is_enabled,
                    cadence = excluded.cadence,
                    retain_count = excluded.retain_count,
                    store_in_storage = excluded.store_in_storage,
                    updated_at = excluded.updated_at
                """,
                (
                    settings.workspace_id,
                    int(settings.is_enabled),
                    settings.cadence.value,
                    settings.retain_count,
                    int(settings.store_in_storage),
                    _now_ms(),
                ),
            )

    async def list_enabled_settings(self) -> list[BackupSettings]:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM backup_settings WHERE is_enabled = 1 ORDER BY workspace_id"
            )
            return [_settings_from_row(row) for row in cursor.fetchall()]

    # --- Snapshots ---

    async def insert_snapshot(
        self,
        snapshot: WorkspaceSnapshot,
        snapshot_json: str | None = None,
    ) -> WorkspaceSnapshot:
        """Insert a snapshot row.

        Exactly one of snapshot_json or snapshot.storage_path must be set.

        Returns:
            The snapshot with its insertion sequence filled in
        """
        if (snapshot_json is None) == (snapshot.storage_path is None):
            raise ValueError("Snapshot needs exactly one of an inline payload or a storage path")

        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO workspace_snapshots
                    (id, workspace_id, created_at, created_by, snapshot_type, reason,
                     snapshot_json, storage_path, size_bytes, checksum, manifest_json)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    snapshot.id,
                    snapshot.workspace_id,
                    snapshot.created_at,
                    snapshot.created_by,
                    snapshot.snapshot_type.value,
                    snapshot.reason,
                    snapshot_json,
                    snapshot.storage_path,
                    snapshot.size_bytes,
                    snapshot.checksum,
                    json.dumps(snapshot.manifest, sort_keys=True),
                ),
            )
            snapshot.seq = cursor.lastrowid

        logger.debug(
            "Inserted snapshot row",
            extra={"snapshot_id": snapshot.id, "workspace_id": snapshot.workspace_id},
        )
        return snapshot

    async def get_snapshot(self, snapshot_id: str) -> WorkspaceSnapshot | None:
        with self._get_connection() as conn:
            cursor = conn.execute(
                f"SELECT {_SNAPSHOT_COLUMNS} FROM workspace_snapshots WHERE id = ?",
                (snapshot_id,),
            )
            row = cursor.fetchone()
            return _snapshot_from_row(row) if row else None

    async def get_inline_payload(self, snapshot_id: str) -> str | None:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT snapshot_json FROM workspace_snapshots WHERE id = ?",
                (snapshot_id,),
            )
            row = cursor.fetchone()
            return row["snapshot_json"] if row else None

    async def list_snapshots(
        self,
        workspace_id: str,
        limit: int | None = None,
        snapshot_type: SnapshotType | None = None,
    ) -> list[WorkspaceSnapshot]:
        """Snapshots of a workspace, newest first."""
        query = f"SELECT {_SNAPSHOT_COLUMNS} FROM workspace_snapshots WHERE workspace_id = ?"
        params: list[object] = [workspace_id]
        if snapshot_type is not None:
            query += " AND snapshot_type = ?"
            params.append(snapshot_type.value)
        query += " ORDER BY created_at DESC, seq DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self._get_connection() as conn:
            cursor = conn.execute(query, params)
            return [_snapshot_from_row(row) for row in cursor.fetchall()]

    async def attach_storage(
        self,
        snapshot_id: str,
        storage_path: str,
        size_bytes: int,
        checksum: str,
    ) -> bool:
        """Attach storage metadata to an inline snapshot, once.

        The inline payload is dropped in the same statement.

        Returns:
            True if attached, False if the snapshot is missing or already externalized
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE workspace_snapshots
                SET storage_path = ?, size_bytes = ?, checksum = ?, snapshot_json = NULL
                WHERE id = ? AND storage_path IS NULL
                """,
                (storage_path, size_bytes, checksum, snapshot_id),
            )
            return cursor.rowcount == 1

    async def delete_snapshot(self, snapshot_id: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM workspace_snapshots WHERE id = ?", (snapshot_id,))
            return cursor.rowcount > 0

    # --- Restore tokens ---

    async def insert_token(self, token: RestoreToken) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO restore_tokens
                    (token_hash, workspace_id, snapshot_id, actor, issued_at, expires_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    token.token_hash,
                    token.workspace_id,
                    token.snapshot_id,
                    token.actor,
                    token.issued_at,
                    token.expires_at,
                ),
            )

    async def get_token(self, token_hash: str) -> RestoreToken | None:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM restore_tokens WHERE token_hash = ?", (token_hash,)
            )
            row = cursor.fetchone()
        if not row:
            return None
        return RestoreToken(
            token_hash=row["token_hash"],
            workspace_id=row["workspace_id"],
            snapshot_id=row["snapshot_id"],
            actor=row["actor"],
            issued_at=row["issued_at"],
            expires_at=row["expires_at"],
            consumed_at=row["consumed_at"],
        )

    async def consume_token(
        self,
        token_hash: str,
        workspace_id: str,
        snapshot_id: str,
        actor: str,
        now_ms: int,
    ) -> bool:
        """Mark a token consumed if it is still valid for this binding.

        Returns:
            True for exactly one caller per token
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE restore_tokens SET consumed_at = ?
                WHERE token_hash = ? AND workspace_id = ? AND snapshot_id = ? AND actor = ?
                AND consumed_at IS NULL AND expires_at > ?
                """,
                (now_ms, token_hash, workspace_id, snapshot_id, actor, now_ms),
            )
            return cursor.rowcount == 1

    async def purge_tokens(self, now_ms: int) -> int:
        """Delete expired or consumed tokens."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM restore_tokens WHERE expires_at <= ? OR consumed_at IS NOT NULL",
                (now_ms,),
            )
            return cursor.rowcount

    # --- Audit log ---

    async def append_audit(self, entry: AuditLogEntry) -> int:
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO audit_log
                    (workspace_id, actor_user_id, action, entity_type, entity_id,
                     metadata_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.workspace_id,
                    entry.actor_user_id,
                    entry.action,
                    entry.entity_type,
                    entry.entity_id,
                    json.dumps(entry.metadata, sort_keys=True, default=str),
                    entry.created_at,
                ),
            )
            return cursor.lastrowid

    async def list_audit(
        self,
        workspace_id: str,
        limit: int = 20,
        offset: int = 0,
        action: str | None = None,
    ) -> list[AuditLogEntry]:
        """Audit entries for a workspace, newest first."""
        query = "SELECT * FROM audit_log WHERE workspace_id = ?"
        params: list[object] = [workspace_id]
        if action is not None:
            query += " AND action = ?"
            params.append(action)
        query += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        with self._get_connection() as conn:
            cursor = conn.execute(query, params)
            return [
                AuditLogEntry(
                    id=row["id"],
                    workspace_id=row["workspace_id"],
                    actor_user_id=row["actor_user_id"],
                    action=row["action"],
                    entity_type=row["entity_type"],
                    entity_id=row["entity_id"],
                    metadata=json.loads(row["metadata_json"]),
                    created_at=row["created_at"],
                )
                for row in cursor.fetchall()
            ]

    # --- Orphaned blobs ---

    async def record_orphaned_blob(
        self,
        path: str,
        workspace_id: str,
        snapshot_id: str | None,
        error: str,
    ) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO orphaned_blobs (path, workspace_id, snapshot_id, error, recorded_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (path) DO UPDATE SET
                    error = excluded.error,
                    attempts = orphaned_blobs.attempts + 1
                """,
                (path, workspace_id, snapshot_id, error, _now_ms()),
            )

    async def list_orphaned_blobs(self, workspace_id: str) -> list[OrphanedBlob]:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM orphaned_blobs WHERE workspace_id = ? ORDER BY recorded_at",
                (workspace_id,),
            )
            return [
                OrphanedBlob(
                    path=row["path"],
                    workspace_id=row["workspace_id"],
                    snapshot_id=row["snapshot_id"],
                    error=row["error"],
                    attempts=row["attempts"],
                    recorded_at=row["recorded_at"],
                )
                for row in cursor.fetchall()
            ]

    async def remove_orphaned_blob(self, path: str) -> None:
        with self._get_connection() as conn:
            conn.execute("DELETE FROM orphaned_blobs WHERE path = ?", (path,))


_SNAPSHOT_COLUMNS = (
    "seq, id, workspace_id, created_at, created_by, snapshot_type, reason, "
    "storage_path, size_bytes, checksum, manifest_json"
)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _snapshot_from_row(row: sqlite3.Row) -> WorkspaceSnapshot:
    return WorkspaceSnapshot(
        id=row["id"],
        workspace_id=row["workspace_id"],
        created_at=row["created_at"],
        created_by=row["created_by"],
        snapshot_type=SnapshotType(row["snapshot_type"]),
        reason=row["reason"],
        storage_path=row["storage_path"],
        size_bytes=row["size_bytes"],
        checksum=row["checksum"],
        manifest=json.loads(row["manifest_json"] or "{}"),
        seq=row["seq"],
    )


def _settings_from_row(row: sqlite3.Row) -> BackupSettings:
    return BackupSettings(
        workspace_id=row["workspace_id"],
        is_enabled=bool(row["is_enabled"]),
        cadence=Cadence(row["cadence"]),
        retain_count=row["retain_count"],
        store_in_storage=bool(row["store_in_storage"]),
    )

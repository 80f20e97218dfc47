"""
Per-workspace SQLite store for SafeBack.

This module manages the SQLite database that holds a workspace's live
business data. Each registered provider owns a set of tables in it.

Invariants:
    - One SQLite file per workspace
    - Provider tables are created when the workspace is initialized
    - Multi-table writes happen inside one explicit transaction
    - Reads for a capture happen inside one read transaction (consistent view)

How to change safely:
    - Schema changes belong to providers (ensure_schema), not to this module
    - Use transactions for all write operations
    - Monitor SQLite file size and performance
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..registry import ProviderRegistry

logger = logging.getLogger(__name__)


class WorkspaceDatabaseNotFoundError(Exception):
    """Workspace database does not exist."""

    pass


class WorkspaceStore:
    """Per-workspace SQLite store for business data.

    Thread safety:
        Each database connection is created per-operation.
        SQLite handles concurrent access via WAL mode.

    Example:
        >>> store = WorkspaceStore("/var/lib/safeback/workspaces", registry)
        >>> await store.initialize_workspace("ws_123")
        >>> with store.write_transaction("ws_123") as conn:
        ...     conn.execute("INSERT INTO tasks (id, workspace_id, title) VALUES (?, ?, ?)",
        ...                  ("t1", "ws_123", "Ship it"))
    """

    def __init__(
        self,
        data_dir: str,
        registry: ProviderRegistry,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        db_pattern: str = "workspace_{workspace_id}.db",
    ) -> None:
        """Initialize the workspace store.

        Args:
            data_dir: Directory for workspace database files
            registry: Provider registry whose tables live in each database
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            db_pattern: File name pattern for workspace databases
        """
        self.data_dir = Path(data_dir)
        self.registry = registry
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.db_pattern = db_pattern
        self._lock = asyncio.Lock()

    def get_db_path(self, workspace_id: str) -> Path:
        """Get database file path for a workspace.

        Ids made only of letters, digits, '-' and '_' map to their own
        name. Any other id keeps its safe characters and gains a hash
        suffix, so two distinct ids never share a file.
        """
        # Sanitize workspace_id to prevent path traversal
        safe_id = "".join(c for c in workspace_id if c.isalnum() or c in "-_")
        if safe_id != workspace_id:
            digest = hashlib.sha256(workspace_id.encode("utf-8")).hexdigest()[:16]
            safe_id = f"{safe_id}-{digest}"
        return self.data_dir / self.db_pattern.format(workspace_id=safe_id)

    @contextmanager
    def _get_connection(
        self, workspace_id: str, create: bool = False
    ) -> Iterator[sqlite3.Connection]:
        """Get a database connection for a workspace.

        Raises:
            WorkspaceDatabaseNotFoundError: If database doesn't exist and create=False
        """
        db_path = self.get_db_path(workspace_id)

        if not create and not db_path.exists():
            raise WorkspaceDatabaseNotFoundError(f"Workspace database not found: {workspace_id}")

        db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA foreign_keys = ON")

            yield conn
        finally:
            conn.close()

    async def initialize_workspace(self, workspace_id: str) -> None:
        """Create the workspace database and every provider's tables."""
        async with self._lock:
            with self._get_connection(workspace_id, create=True) as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    for provider in self.registry:
                        provider.ensure_schema(conn)
                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    raise
                logger.info(f"Initialized workspace database: {workspace_id}")

    async def workspace_exists(self, workspace_id: str) -> bool:
        """Check if workspace database exists."""
        return self.get_db_path(workspace_id).exists()

    @contextmanager
    def read_transaction(self, workspace_id: str) -> Iterator[sqlite3.Connection]:
        """Open a connection holding one read transaction.

        All reads inside observe the same database state.
        """
        with self._get_connection(workspace_id) as conn:
            conn.execute("BEGIN")
            try:
                yield conn
            finally:
                conn.execute("COMMIT")

    @contextmanager
    def write_transaction(self, workspace_id: str) -> Iterator[sqlite3.Connection]:
        """Open a connection holding one write transaction.

        Commits when the block exits normally, rolls back on any exception.
        """
        with self._get_connection(workspace_id) as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    async def count_entities(
        self,
        workspace_id: str,
        provider_names: list[str] | None = None,
    ) -> dict[str, int]:
        """Count live rows per table.

        Args:
            workspace_id: Workspace identifier
            provider_names: Restrict to these providers (all when None)

        Returns:
            Row count keyed by table name
        """
        counts: dict[str, int] = {}
        with self.read_transaction(workspace_id) as conn:
            for provider in self.registry:
                if provider_names is not None and provider.name not in provider_names:
                    continue
                counts.update(provider.count(conn, workspace_id))
        return counts

    async def fetch_rows(self, workspace_id: str, table: str) -> list[dict[str, Any]]:
        """Fetch every row of a provider table for a workspace (ordered by rowid)."""
        known = {spec.name for provider in self.registry for spec in getattr(provider, "tables", ())}
        if table not in known:
            raise ValueError(f"Unknown provider table: {table}")

        with self._get_connection(workspace_id) as conn:
            cursor = conn.execute(
                f"SELECT * FROM {table} WHERE workspace_id = ? ORDER BY rowid",
                (workspace_id,),
            )
            return [dict(row) for row in cursor.fetchall()]

    def check_integrity(self, conn: sqlite3.Connection) -> None:
        """Run SQLite's integrity check on an open connection.

        Called inside the restore transaction, before it commits.

        Raises:
            ValueError: If the check fails
        """
        result = conn.execute("PRAGMA integrity_check").fetchone()[0]
        if result != "ok":
            raise ValueError(f"Database integrity check failed: {result}")

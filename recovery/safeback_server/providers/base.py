"""
Table-backed provider base class.

Most domains are a handful of workspace-scoped tables. TableProvider
implements capture/restore/count for them from a declarative table list:

    capture:  SELECT * FROM <table> WHERE workspace_id = ?
              (newest max_rows only; capture_complete() ignores the cap)
    restore:  DELETE every table (reverse order), INSERT every row (declared order)
    count:    SELECT COUNT(*) per table

Invariants:
    - Every table has a workspace_id column; no statement touches other workspaces
    - Restore only writes columns declared in the TableSpec (unknown keys in a
      slice are dropped, missing keys fall back to column defaults)
    - Tables are declared parent-first so foreign keys hold during restore
    - restore() never commits; the engine owns the transaction
    - restore() deletes every row of its tables, so only capture_complete()
      output is a lossless undo point for a capped table
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Any

from ..registry.types import DomainSlice, SnapshotProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TableSpec:
    """Declarative description of one workspace-scoped table.

    Attributes:
        name: Table name
        columns: (column name, SQL type and constraints) pairs
        primary_key: Primary key columns
        order_by: ORDER BY clause used for capture
        max_rows: Capture at most this many rows (newest by order_by), None for all
        constraints: Extra table constraints (e.g. FOREIGN KEY clauses)
    """

    name: str
    columns: tuple[tuple[str, str], ...]
    primary_key: tuple[str, ...] = ("id",)
    order_by: str = "created_at, rowid"
    max_rows: int | None = None
    constraints: tuple[str, ...] = ()

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(name for name, _ in self.columns)

    def create_sql(self) -> str:
        parts = [f"{name} {decl}" for name, decl in self.columns]
        parts.append(f"PRIMARY KEY ({', '.join(self.primary_key)})")
        parts.extend(self.constraints)
        body = ",\n                ".join(parts)
        return f"CREATE TABLE IF NOT EXISTS {self.name} (\n                {body}\n            )"


class TableProvider(SnapshotProvider):
    """Provider whose domain is a fixed list of tables."""

    tables: tuple[TableSpec, ...] = ()

    def ensure_schema(self, conn: sqlite3.Connection) -> None:
        for table in self.tables:
            conn.execute(table.create_sql())
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{table.name}_workspace "
                f"ON {table.name}(workspace_id)"
            )

    def capture(self, conn: sqlite3.Connection, workspace_id: str) -> DomainSlice:
        return self._capture(conn, workspace_id, capped=True)

    def capture_complete(self, conn: sqlite3.Connection, workspace_id: str) -> DomainSlice:
        return self._capture(conn, workspace_id, capped=False)

    def _capture(
        self,
        conn: sqlite3.Connection,
        workspace_id: str,
        capped: bool,
    ) -> DomainSlice:
        data: dict[str, list[dict[str, Any]]] = {}
        for table in self.tables:
            data[table.name] = self._capture_table(conn, table, workspace_id, capped)
        return DomainSlice(provider=self.name, version=self.version, data=data)

    def _capture_table(
        self,
        conn: sqlite3.Connection,
        table: TableSpec,
        workspace_id: str,
        capped: bool = True,
    ) -> list[dict[str, Any]]:
        columns = ", ".join(table.column_names)
        if table.max_rows is None or not capped:
            cursor = conn.execute(
                f"SELECT {columns} FROM {table.name} WHERE workspace_id = ? "
                f"ORDER BY {table.order_by}",
                (workspace_id,),
            )
            return [dict(row) for row in cursor.fetchall()]

        # Keep the newest max_rows, returned in ascending order
        cursor = conn.execute(
            f"SELECT * FROM (SELECT {columns}, rowid AS _rid FROM {table.name} "
            f"WHERE workspace_id = ? ORDER BY created_at DESC, rowid DESC LIMIT ?) "
            f"ORDER BY created_at, _rid",
            (workspace_id, table.max_rows),
        )
        rows = []
        for row in cursor.fetchall():
            item = dict(row)
            item.pop("_rid", None)
            rows.append(item)
        if len(rows) == table.max_rows:
            logger.info(
                f"Capture of {table.name} capped at {table.max_rows} rows",
                extra={"workspace_id": workspace_id, "provider": self.name},
            )
        return rows

    def restore(
        self,
        conn: sqlite3.Connection,
        workspace_id: str,
        slice_: DomainSlice,
    ) -> int:
        for table in reversed(self.tables):
            conn.execute(f"DELETE FROM {table.name} WHERE workspace_id = ?", (workspace_id,))

        written = 0
        for table in self.tables:
            for row in slice_.data.get(table.name, []):
                self._insert_row(conn, table, workspace_id, row)
                written += 1
        return written

    def _insert_row(
        self,
        conn: sqlite3.Connection,
        table: TableSpec,
        workspace_id: str,
        row: dict[str, Any],
    ) -> None:
        values = {name: row[name] for name in table.column_names if name in row}
        # Rows always land in the workspace being restored
        values["workspace_id"] = workspace_id
        columns = ", ".join(values)
        placeholders = ", ".join(f":{name}" for name in values)
        conn.execute(
            f"INSERT INTO {table.name} ({columns}) VALUES ({placeholders})",
            values,
        )

    def count(self, conn: sqlite3.Connection, workspace_id: str) -> dict[str, int]:
        counts = {}
        for table in self.tables:
            cursor = conn.execute(
                f"SELECT COUNT(*) FROM {table.name} WHERE workspace_id = ?",
                (workspace_id,),
            )
            counts[table.name] = cursor.fetchone()[0]
        return counts

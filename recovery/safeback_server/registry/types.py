"""
Core type definitions for snapshot providers.

This module defines the contract every data domain implements:
- ProviderDescriptor: UI disclosure metadata for a provider
- DomainSlice: The named, serializable data a provider captured
- SnapshotProvider: Capture/restore/count/describe for one domain

Providers work on an open SQLite connection to the workspace database.
The engine owns the connection and the transaction around it, so all
providers of one restore share a single transaction.

Invariants:
    - Provider names are unique and stable (they key the snapshot document)
    - A slice's data maps table name to a list of JSON-serializable rows
    - restore() replaces exactly the rows of its own tables for one workspace
    - count() never mutates data
    - capture_complete() returns every row restore() would delete

How to change safely:
    - Bump version when the slice layout of a provider changes
    - Keep restore() able to read slices of every earlier version
    - Never rename a provider; register a new one instead

Example:
    >>> class NotesProvider(SnapshotProvider):
    ...     name = "notes"
    ...     description = "Workspace notes"
    ...     critical = False
    ...     def capture(self, conn, workspace_id): ...
    ...     def restore(self, conn, workspace_id, slice_): ...
    ...     def count(self, conn, workspace_id): ...
"""

from __future__ import annotations

import sqlite3
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ProviderDescriptor:
    """Provider metadata shown to admins before capture/restore.

    Attributes:
        name: Unique provider name
        description: Human readable summary of the domain
        critical: Whether capture fails when this provider fails
    """

    name: str
    description: str
    critical: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "critical": self.critical,
        }


@dataclass
class DomainSlice:
    """Captured data for one provider.

    Attributes:
        provider: Name of the provider that produced the slice
        version: Provider slice format version
        data: Rows keyed by table name
    """

    provider: str
    version: int
    data: dict[str, list[dict[str, Any]]] = field(default_factory=dict)

    @property
    def entity_counts(self) -> dict[str, int]:
        """Number of rows per table."""
        return {table: len(rows) for table, rows in self.data.items()}

    @property
    def entity_count(self) -> int:
        return sum(len(rows) for rows in self.data.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "version": self.version,
            "data": self.data,
            "entity_counts": self.entity_counts,
        }

    @classmethod
    def from_dict(cls, provider: str, data: dict[str, Any]) -> DomainSlice:
        return cls(
            provider=data.get("provider", provider),
            version=int(data.get("version", 1)),
            data={table: list(rows) for table, rows in data.get("data", {}).items()},
        )


class SnapshotProvider(ABC):
    """A pluggable data domain.

    Subclasses set the class attributes and implement the three data
    operations. ensure_schema() is optional and lets a provider create
    its tables when a workspace database is initialized.
    """

    name: str = ""
    description: str = ""
    critical: bool = False
    version: int = 1

    @abstractmethod
    def capture(self, conn: sqlite3.Connection, workspace_id: str) -> DomainSlice:
        """Produce this domain's slice of the workspace's state."""

    def capture_complete(self, conn: sqlite3.Connection, workspace_id: str) -> DomainSlice:
        """Capture with no row caps.

        Used for pre_restore safety snapshots, which must hold everything
        restore() is about to delete. Defaults to capture().
        """
        return self.capture(conn, workspace_id)

    @abstractmethod
    def restore(
        self,
        conn: sqlite3.Connection,
        workspace_id: str,
        slice_: DomainSlice,
    ) -> int:
        """Replace the workspace's live data for this domain.

        Runs inside a transaction owned by the caller. Must not commit.

        Returns:
            Number of rows written
        """

    @abstractmethod
    def count(self, conn: sqlite3.Connection, workspace_id: str) -> dict[str, int]:
        """Count live rows per table for the workspace."""

    def ensure_schema(self, conn: sqlite3.Connection) -> None:
        """Create the provider's tables if they do not exist."""

    def describe(self) -> ProviderDescriptor:
        return ProviderDescriptor(
            name=self.name,
            description=self.description,
            critical=self.critical,
        )

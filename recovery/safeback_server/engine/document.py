"""
Snapshot document model and codec.

A snapshot document is the self-describing payload of one snapshot:

    {
      "engine_version": 2,
      "workspace_id": "...",
      "snapshot_id": "...",
      "created_at": 1700000000000,
      "snapshot_type": "manual",
      "providers": {"workboard": {"provider": ..., "version": ..., "data": {...}}, ...},
      "omitted": [{"provider": "team_chat", "error": "..."}]
    }

Encoding is canonical JSON (sorted keys, compact separators, UTF-8), so
the same document always produces the same bytes and checksum. Documents
stored in blob storage may additionally be gzip compressed.

Invariants:
    - Decoding accepts both compressed and uncompressed payloads
    - Unknown top-level keys are ignored on decode
"""

from __future__ import annotations

import gzip
import json
from dataclasses import dataclass, field
from typing import Any

from ..registry.types import DomainSlice

ENGINE_VERSION = 2

GZIP_MAGIC = b"\x1f\x8b"


@dataclass
class SnapshotDocument:
    """Captured state of a workspace across all providers.

    Attributes:
        workspace_id: Workspace identifier
        snapshot_id: Snapshot identifier
        created_at: Capture timestamp (Unix ms)
        snapshot_type: Why the snapshot was taken
        providers: Slices keyed by provider name
        omitted: Non-critical providers that failed, with their errors
        engine_version: Document format version
    """

    workspace_id: str
    snapshot_id: str
    created_at: int
    snapshot_type: str
    providers: dict[str, DomainSlice] = field(default_factory=dict)
    omitted: list[dict[str, str]] = field(default_factory=list)
    engine_version: int = ENGINE_VERSION

    @property
    def entity_counts(self) -> dict[str, int]:
        """Row counts per table across every captured provider."""
        counts: dict[str, int] = {}
        for slice_ in self.providers.values():
            counts.update(slice_.entity_counts)
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "engine_version": self.engine_version,
            "workspace_id": self.workspace_id,
            "snapshot_id": self.snapshot_id,
            "created_at": self.created_at,
            "snapshot_type": self.snapshot_type,
            "providers": {name: s.to_dict() for name, s in self.providers.items()},
            "omitted": list(self.omitted),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SnapshotDocument:
        providers = {
            name: DomainSlice.from_dict(name, raw)
            for name, raw in (data.get("providers") or {}).items()
        }
        return cls(
            workspace_id=data["workspace_id"],
            snapshot_id=data["snapshot_id"],
            created_at=int(data.get("created_at", 0)),
            snapshot_type=data.get("snapshot_type", "manual"),
            providers=providers,
            omitted=list(data.get("omitted") or []),
            engine_version=int(data.get("engine_version", ENGINE_VERSION)),
        )

    def manifest(self) -> dict[str, Any]:
        """Summary stored on the snapshot row."""
        return {
            "engine_version": self.engine_version,
            "providers": list(self.providers),
            "entity_counts": self.entity_counts,
            "omitted": list(self.omitted),
        }


def canonical_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def encode_document(document: SnapshotDocument, compression: str = "none") -> tuple[bytes, str]:
    """Serialize a document.

    Args:
        document: Document to encode
        compression: "gzip" or "none"

    Returns:
        Tuple of (bytes, blob path suffix)
    """
    raw = canonical_json(document.to_dict()).encode("utf-8")
    if compression == "gzip":
        # mtime=0 keeps the output deterministic
        return gzip.compress(raw, mtime=0), ".json.gz"
    return raw, ".json"


def decode_document(data: bytes | str) -> SnapshotDocument:
    """Parse a document from inline JSON or blob bytes.

    Raises:
        ValueError: If the payload is not a valid snapshot document
    """
    if isinstance(data, bytes):
        if data[:2] == GZIP_MAGIC:
            data = gzip.decompress(data)
        data = data.decode("utf-8")

    try:
        parsed = json.loads(data)
        return SnapshotDocument.from_dict(parsed)
    except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
        raise ValueError(f"Invalid snapshot document: {e}") from e

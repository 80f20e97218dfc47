"""
Engine module for SafeBack.

This module contains the snapshot lifecycle:
- CaptureEngine: providers -> document -> storage -> row -> retention
- RestoreProtocol: token-gated preview and restore
- RetentionEnforcer: keep the newest N snapshots
- AuditLogger: append-only lifecycle records
- SnapshotService: admin-checked facade over all of the above

Invariants:
    - Capture and restore of one workspace never overlap (advisory lock)
    - Restore always takes a pre_restore snapshot first
    - Every lifecycle event is audited
"""

from .audit import AuditLogger
from .capture import CaptureEngine, CaptureResult
from .document import ENGINE_VERSION, SnapshotDocument, decode_document, encode_document
from .restore import RestorePreview, RestoreProtocol, RestoreResult
from .retention import RetentionEnforcer, RetentionResult
from .service import SnapshotService, create_service
from .tokens import TokenManager, hash_token

__all__ = [
    "AuditLogger",
    "CaptureEngine",
    "CaptureResult",
    "ENGINE_VERSION",
    "RestorePreview",
    "RestoreProtocol",
    "RestoreResult",
    "RetentionEnforcer",
    "RetentionResult",
    "SnapshotDocument",
    "SnapshotService",
    "TokenManager",
    "create_service",
    "decode_document",
    "encode_document",
    "hash_token",
]

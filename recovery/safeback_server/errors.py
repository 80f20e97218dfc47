"""
Error types for SafeBack.

This module defines every exception the engine raises to its callers:
- SafeBackError: Base exception
- LockContentionError: Capture/restore already running for the workspace
- ProviderFailureError: A provider failed during capture or restore
- NotFoundError: Unknown workspace or snapshot
- ForbiddenError: Actor is not an admin of the workspace
- InvalidConfirmationError: Restore token missing, expired, reused or mismatched
- StorageFailureError: Blob write/read/delete failed or checksum mismatch

Omitted non-critical domains are not errors. They are recorded on the
snapshot manifest and logged as warnings.

Invariants:
    - All errors inherit from SafeBackError
    - Every error carries a stable code for HTTP mapping
    - InvalidConfirmationError never reveals which check failed
"""

from __future__ import annotations

from typing import Any


class SafeBackError(Exception):
    """Base exception for all SafeBack errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "SAFEBACK_ERROR"
        self.details = details or {}


class LockContentionError(SafeBackError):
    """Another capture or restore holds the workspace lock.

    Retryable by the caller once the running operation finishes.
    """

    def __init__(self, workspace_id: str, lock_key: int | None = None) -> None:
        super().__init__(
            f"A backup operation is already in progress for workspace {workspace_id}",
            code="LOCK_CONTENTION",
            details={"workspace_id": workspace_id, "lock_key": lock_key},
        )
        self.workspace_id = workspace_id
        self.lock_key = lock_key


class ProviderFailureError(SafeBackError):
    """A provider failed in a way that aborts the operation.

    Raised when:
    - A critical provider fails during capture
    - Any provider fails while replacing live data during restore
    """

    def __init__(
        self,
        provider: str,
        message: str,
        operation: str = "capture",
    ) -> None:
        super().__init__(
            f"Provider '{provider}' failed during {operation}: {message}",
            code="PROVIDER_FAILURE",
            details={"provider": provider, "operation": operation},
        )
        self.provider = provider
        self.operation = operation


class NotFoundError(SafeBackError):
    """Workspace or snapshot does not exist."""

    def __init__(self, entity_type: str, entity_id: str) -> None:
        super().__init__(
            f"{entity_type} not found: {entity_id}",
            code="NOT_FOUND",
            details={"entity_type": entity_type, "entity_id": entity_id},
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class ForbiddenError(SafeBackError):
    """Actor lacks admin rights on the workspace."""

    def __init__(self, actor: str, workspace_id: str) -> None:
        super().__init__(
            f"Actor {actor} is not an admin of workspace {workspace_id}",
            code="FORBIDDEN",
            details={"actor": actor, "workspace_id": workspace_id},
        )
        self.actor = actor
        self.workspace_id = workspace_id


class InvalidConfirmationError(SafeBackError):
    """Confirmation token is invalid or expired.

    Unknown, expired, consumed and mismatched tokens all raise this
    error with the same message.
    """

    def __init__(self) -> None:
        super().__init__(
            "Invalid or expired confirmation token",
            code="INVALID_CONFIRMATION",
        )


class StorageFailureError(SafeBackError):
    """Blob storage operation failed."""

    def __init__(
        self,
        message: str,
        path: str | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(
            message,
            code="STORAGE_FAILURE",
            details={"path": path, "operation": operation},
        )
        self.path = path
        self.operation = operation

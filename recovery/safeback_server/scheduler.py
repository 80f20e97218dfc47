"""
Scheduled backups for SafeBack.

The BackupScheduler captures a "scheduled" snapshot of every workspace
whose backup settings are enabled and due, then lets the capture engine
enforce retention. It is triggered either by the maintenance endpoint
(external cron) or by the in-process loop started from main.py.

A pass:
    1. Lists enabled backup settings
    2. Skips workspaces whose last scheduled snapshot is younger than
       their cadence (unless forced)
    3. Resolves an owner (falling back to an admin) as the actor
    4. Captures, externalizing when store_in_storage is set
    5. Collects one result per workspace

Invariants:
    - One workspace failing never stops the others
    - At most max_concurrent workspaces are captured at once
    - A busy workspace (lock held) is reported as an error, not retried
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .engine import CaptureEngine
from .errors import SafeBackError
from .store import BackupSettings, ControlStore, SnapshotType

logger = logging.getLogger(__name__)


@dataclass
class ScheduleResult:
    """Outcome of a scheduler pass for one workspace."""

    workspace_id: str
    snapshot_id: str | None = None
    omitted: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    skipped: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"workspace_id": self.workspace_id}
        if self.error is not None:
            result["error"] = self.error
        elif self.skipped:
            result["skipped"] = True
        else:
            result["snapshot_id"] = self.snapshot_id
            result["omitted"] = self.omitted
            result["deleted"] = self.deleted
        return result


class BackupScheduler:
    """Runs scheduled captures for enabled workspaces.

    Example:
        >>> scheduler = BackupScheduler(control_store, capture_engine)
        >>> results = await scheduler.run_once(force=True)
    """

    def __init__(
        self,
        control_store: ControlStore,
        capture_engine: CaptureEngine,
        interval_seconds: int = 3600,
        max_concurrent: int = 4,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.control_store = control_store
        self.capture_engine = capture_engine
        self.interval_seconds = interval_seconds
        self.max_concurrent = max_concurrent
        self._clock = clock

        self._running = False

    async def start(self) -> None:
        """Run passes every interval_seconds until stopped."""
        if self._running:
            logger.warning("Backup scheduler already running")
            return

        self._running = True
        logger.info(
            "Starting backup scheduler",
            extra={"interval_seconds": self.interval_seconds},
        )

        try:
            while self._running:
                await self.run_once()
                await asyncio.sleep(self.interval_seconds)
        except asyncio.CancelledError:
            logger.info("Backup scheduler cancelled")
        finally:
            self._running = False

    async def stop(self) -> None:
        self._running = False
        logger.info("Stopping backup scheduler")

    async def run_once(
        self,
        force: bool = False,
        request_id: str | None = None,
    ) -> list[ScheduleResult]:
        """Run one pass over every enabled workspace.

        Args:
            force: Capture even if the cadence has not elapsed
            request_id: Correlation id for logs

        Returns:
            One result per enabled workspace
        """
        started = time.monotonic()
        enabled = await self.control_store.list_enabled_settings()
        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def run(settings: BackupSettings) -> ScheduleResult:
            async with semaphore:
                return await self._run_workspace(settings, force)

        results = list(await asyncio.gather(*(run(s) for s in enabled)))

        logger.info(
            "Backup scheduler pass complete",
            extra={
                "request_id": request_id,
                "workspaces": len(results),
                "captured": sum(1 for r in results if r.snapshot_id),
                "skipped": sum(1 for r in results if r.skipped),
                "failed": sum(1 for r in results if r.error),
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return results

    async def _run_workspace(self, settings: BackupSettings, force: bool) -> ScheduleResult:
        workspace_id = settings.workspace_id
        try:
            if not force and not await self._is_due(settings):
                return ScheduleResult(workspace_id=workspace_id, skipped=True)

            actor = await self.control_store.resolve_admin_actor(workspace_id)
            if actor is None:
                return ScheduleResult(
                    workspace_id=workspace_id,
                    error="No owner or admin found for workspace",
                )

            result = await self.capture_engine.capture_snapshot(
                workspace_id,
                actor,
                SnapshotType.SCHEDULED,
                reason=f"Scheduled {settings.cadence.value} backup",
                externalize=settings.store_in_storage,
            )
            return ScheduleResult(
                workspace_id=workspace_id,
                snapshot_id=result.snapshot_id,
                omitted=[o["provider"] for o in result.omitted],
                deleted=result.retention.deleted if result.retention else [],
            )

        except SafeBackError as e:
            logger.warning(
                f"Scheduled backup failed: {e.message}",
                extra={"workspace_id": workspace_id, "error_code": e.code},
            )
            return ScheduleResult(workspace_id=workspace_id, error=e.message)
        except Exception as e:
            logger.error(
                f"Scheduled backup failed: {e}",
                extra={"workspace_id": workspace_id},
                exc_info=True,
            )
            return ScheduleResult(workspace_id=workspace_id, error=str(e))

    async def _is_due(self, settings: BackupSettings) -> bool:
        latest = await self.control_store.list_snapshots(
            settings.workspace_id, limit=1, snapshot_type=SnapshotType.SCHEDULED
        )
        if not latest:
            return True
        age_seconds = (self._clock() * 1000 - latest[0].created_at) / 1000
        return age_seconds >= settings.cadence.interval_seconds

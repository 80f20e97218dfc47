"""
Operator CLI for SafeBack.

Runs snapshot operations directly against the data directory, without the
HTTP server. Intended for on-call operators; it bypasses the workspace
admin check (the actor defaults to the workspace owner).

Usage:
    safeback-snapshot capture --workspace-id <id> [--reason <text>]
    safeback-snapshot list --workspace-id <id> [--limit N]
    safeback-snapshot verify --snapshot-id <id>
    safeback-snapshot retention --workspace-id <id> [--retain-count N]
    safeback-snapshot externalize --snapshot-id <id>
    safeback-snapshot run-scheduler [--force]

Invariants:
    - Uses the same engine, lock and audit trail as the server
    - Exits non-zero on any failure
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import os
import sys
from typing import Any

from ..config import ServerConfig
from ..engine import SnapshotService, create_service
from ..errors import NotFoundError, SafeBackError
from ..providers import register_default_providers
from ..registry import ProviderRegistry
from ..scheduler import BackupScheduler
from ..storage import create_blob_store

logger = logging.getLogger(__name__)


class SnapshotCLI:
    """Snapshot operations for operators.

    Example:
        >>> cli = SnapshotCLI(service)
        >>> result = await cli.capture("ws_1", reason="before migration")
    """

    def __init__(self, service: SnapshotService, max_concurrent: int = 4) -> None:
        self.service = service
        self.max_concurrent = max_concurrent

    async def _actor(self, workspace_id: str, actor: str | None) -> str:
        if actor:
            return actor
        resolved = await self.service.control_store.resolve_admin_actor(workspace_id)
        if resolved is None:
            raise NotFoundError("Workspace owner", workspace_id)
        return resolved

    async def capture(
        self,
        workspace_id: str,
        actor: str | None = None,
        reason: str | None = None,
        snapshot_type: str = "manual",
    ) -> dict[str, Any]:
        actor = await self._actor(workspace_id, actor)
        result = await self.service.capture_engine.capture_snapshot(
            workspace_id, actor, snapshot_type, reason
        )
        return result.to_dict()

    async def list(self, workspace_id: str, limit: int = 50) -> list[dict[str, Any]]:
        snapshots = await self.service.control_store.list_snapshots(workspace_id, limit=limit)
        return [s.to_dict() for s in snapshots]

    async def verify(self, snapshot_id: str) -> dict[str, Any]:
        """Load a snapshot end to end (checksum and document parse)."""
        engine = self.service.capture_engine
        snapshot = await engine.get_snapshot(snapshot_id)
        document = await engine.load_document(snapshot)
        return {
            "snapshot_id": snapshot_id,
            "workspace_id": snapshot.workspace_id,
            "externalized": snapshot.is_externalized,
            "checksum": snapshot.checksum,
            "providers": list(document.providers),
            "entity_counts": document.entity_counts,
            "omitted": document.omitted,
        }

    async def enforce_retention(
        self,
        workspace_id: str,
        retain_count: int | None = None,
    ) -> dict[str, Any]:
        if retain_count is None:
            settings = await self.service.control_store.get_backup_settings(workspace_id)
            retain_count = settings.retain_count
        result = await self.service.capture_engine.retention.enforce(
            workspace_id, retain_count, actor="operator"
        )
        return result.to_dict()

    async def externalize(self, snapshot_id: str) -> dict[str, Any]:
        blob = await self.service.capture_engine.externalize(snapshot_id)
        if blob is None:
            return {"snapshot_id": snapshot_id, "externalized": False}
        return {
            "snapshot_id": snapshot_id,
            "externalized": True,
            "storage_path": blob.path,
            "size_bytes": blob.size_bytes,
            "checksum": blob.checksum,
        }

    async def run_scheduler(self, force: bool = False) -> list[dict[str, Any]]:
        scheduler = BackupScheduler(
            self.service.control_store,
            self.service.capture_engine,
            max_concurrent=self.max_concurrent,
        )
        results = await scheduler.run_once(force=force)
        return [r.to_dict() for r in results]


def with_data_dir(config: ServerConfig, data_dir: str) -> ServerConfig:
    """Point config at another data directory.

    The local blob directory follows unless BLOB_DIR is set explicitly.
    """
    blob = config.blob
    if not os.getenv("BLOB_DIR"):
        blob = dataclasses.replace(blob, local_dir=os.path.join(data_dir, "blobs"))
    return dataclasses.replace(
        config,
        storage=dataclasses.replace(config.storage, data_dir=data_dir),
        blob=blob,
    )


async def _run(args: argparse.Namespace, config: ServerConfig) -> Any:
    registry = ProviderRegistry()
    register_default_providers(registry)
    registry.freeze()

    service = create_service(config, registry, create_blob_store(config))
    await service.initialize()
    cli = SnapshotCLI(service, max_concurrent=config.scheduler.max_concurrent)

    try:
        if args.command == "capture":
            return await cli.capture(args.workspace_id, args.actor, args.reason, args.type)
        if args.command == "list":
            return await cli.list(args.workspace_id, args.limit)
        if args.command == "verify":
            return await cli.verify(args.snapshot_id)
        if args.command == "retention":
            return await cli.enforce_retention(args.workspace_id, args.retain_count)
        if args.command == "externalize":
            return await cli.externalize(args.snapshot_id)
        if args.command == "run-scheduler":
            return await cli.run_scheduler(args.force)
        raise ValueError(f"Unknown command: {args.command}")
    finally:
        await service.close()


def main() -> None:
    """CLI entry point for snapshot tool."""
    parser = argparse.ArgumentParser(description="SafeBack snapshot operations")
    parser.add_argument("--data-dir", help="Data directory (default: DATA_DIR)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    capture_parser = subparsers.add_parser("capture", help="Capture a snapshot")
    capture_parser.add_argument("--workspace-id", required=True)
    capture_parser.add_argument("--actor", help="Actor recorded as creator (default: owner)")
    capture_parser.add_argument("--reason")
    capture_parser.add_argument(
        "--type", choices=["manual", "pre_upgrade"], default="manual", help="Snapshot type"
    )

    list_parser = subparsers.add_parser("list", help="List snapshots, newest first")
    list_parser.add_argument("--workspace-id", required=True)
    list_parser.add_argument("--limit", type=int, default=50)

    verify_parser = subparsers.add_parser("verify", help="Verify a snapshot payload")
    verify_parser.add_argument("--snapshot-id", required=True)

    retention_parser = subparsers.add_parser("retention", help="Enforce retention now")
    retention_parser.add_argument("--workspace-id", required=True)
    retention_parser.add_argument("--retain-count", type=int)

    externalize_parser = subparsers.add_parser(
        "externalize", help="Move an inline snapshot to blob storage"
    )
    externalize_parser.add_argument("--snapshot-id", required=True)

    scheduler_parser = subparsers.add_parser("run-scheduler", help="Run one scheduler pass")
    scheduler_parser.add_argument("--force", action="store_true", help="Ignore cadence")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    if args.data_dir:
        config = with_data_dir(config, args.data_dir)

    try:
        output = asyncio.run(_run(args, config))
    except (SafeBackError, ValueError) as e:
        print(f"{args.command} failed: {e}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(output, indent=2, default=str))


if __name__ == "__main__":
    main()

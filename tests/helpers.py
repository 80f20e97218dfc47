"""
Shared test helpers for SafeBack tests.
"""

from __future__ import annotations

from typing import Any

from recovery.safeback_server.config import BlobConfig, RestoreConfig, ServerConfig, StorageConfig
from recovery.safeback_server.engine import SnapshotService, create_service
from recovery.safeback_server.providers import (
    BillingProvider,
    BookingProvider,
    SettingsProvider,
    TeamChatProvider,
    WorkboardProvider,
)
from recovery.safeback_server.registry import ProviderRegistry
from recovery.safeback_server.storage import LocalBlobStore

OWNER = "user:alice"
ADMIN = "user:bob"
MEMBER = "user:carol"

T0 = 1_704_067_200.0  # 2024-01-01T00:00:00Z


class FakeClock:
    """Controllable time source (seconds since epoch)."""

    def __init__(self, start: float = T0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FlakyChatProvider(TeamChatProvider):
    """Team chat provider whose capture can be made to fail."""

    fail_capture = False

    def capture(self, conn, workspace_id):
        if self.fail_capture:
            raise RuntimeError("chat service unavailable")
        return super().capture(conn, workspace_id)

    def capture_complete(self, conn, workspace_id):
        if self.fail_capture:
            raise RuntimeError("chat service unavailable")
        return super().capture_complete(conn, workspace_id)


class FlakySettingsProvider(SettingsProvider):
    """Settings provider whose capture or restore can be made to fail."""

    fail_capture = False
    fail_restore = False

    def capture(self, conn, workspace_id):
        if self.fail_capture:
            raise RuntimeError("settings table locked")
        return super().capture(conn, workspace_id)

    def capture_complete(self, conn, workspace_id):
        if self.fail_capture:
            raise RuntimeError("settings table locked")
        return super().capture_complete(conn, workspace_id)

    def restore(self, conn, workspace_id, slice_):
        written = super().restore(conn, workspace_id, slice_)
        if self.fail_restore:
            raise RuntimeError("constraint violated")
        return written


def build_registry(*providers: Any) -> ProviderRegistry:
    registry = ProviderRegistry()
    for provider in providers or (
        WorkboardProvider(),
        BillingProvider(),
        BookingProvider(),
        SettingsProvider(),
        TeamChatProvider(),
    ):
        registry.register(provider)
    registry.freeze()
    return registry


def build_config(data_dir: str, ttl_seconds: int = 600, compression: str = "none") -> ServerConfig:
    return ServerConfig(
        storage=StorageConfig(data_dir=data_dir, wal_mode=False),
        blob=BlobConfig(local_dir=f"{data_dir}/blobs", compression=compression),
        restore=RestoreConfig(token_ttl_seconds=ttl_seconds),
    )


async def build_service(
    data_dir: str,
    registry: ProviderRegistry | None = None,
    clock: FakeClock | None = None,
    **config_kwargs: Any,
) -> SnapshotService:
    config = build_config(data_dir, **config_kwargs)
    service = create_service(
        config,
        registry or build_registry(),
        LocalBlobStore(config.blob.local_dir),
        clock=clock or FakeClock(),
    )
    await service.initialize()
    return service


async def create_workspace(service: SnapshotService, workspace_id: str = "ws_1") -> str:
    await service.create_workspace(workspace_id, OWNER, name="Acme")
    await service.control_store.add_member(workspace_id, ADMIN, "admin")
    await service.control_store.add_member(workspace_id, MEMBER, "member")
    return workspace_id


def insert_rows(
    service: SnapshotService,
    workspace_id: str,
    table: str,
    rows: list[dict[str, Any]],
) -> None:
    with service.workspace_store.write_transaction(workspace_id) as conn:
        for row in rows:
            values = {"workspace_id": workspace_id, **row}
            columns = ", ".join(values)
            placeholders = ", ".join(f":{name}" for name in values)
            conn.execute(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", values)


def execute(service: SnapshotService, workspace_id: str, sql: str, params: tuple = ()) -> None:
    with service.workspace_store.write_transaction(workspace_id) as conn:
        conn.execute(sql, params)


def seed_workboard(
    service: SnapshotService,
    workspace_id: str,
    tasks: int,
    goals: int,
    prefix: str = "",
) -> None:
    insert_rows(
        service,
        workspace_id,
        "goals",
        [{"id": f"{prefix}g{i}", "title": f"Goal {i}", "created_at": i} for i in range(goals)],
    )
    insert_rows(
        service,
        workspace_id,
        "tasks",
        [{"id": f"{prefix}t{i}", "title": f"Task {i}", "created_at": i} for i in range(tasks)],
    )

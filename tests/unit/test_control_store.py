"""
Unit tests for the control store.

Tests cover:
- Backup settings defaults and upserts
- Membership and admin resolution
- One-time storage attachment
- Atomic token consumption
- Audit log ordering
"""

import asyncio
import tempfile

import pytest

from recovery.safeback_server.store import (
    AuditLogEntry,
    BackupSettings,
    Cadence,
    ControlStore,
    RestoreToken,
    SnapshotType,
    WorkspaceSnapshot,
)


class TestControlStore:
    """Tests for ControlStore."""

    @pytest.fixture
    async def store(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ControlStore(tmpdir, wal_mode=False)
            await store.initialize()
            yield store

    @pytest.mark.asyncio
    async def test_settings_defaults(self, store):
        settings = await store.get_backup_settings("ws_1")

        assert settings == BackupSettings(workspace_id="ws_1")
        assert settings.retain_count == 30
        assert settings.cadence == Cadence.DAILY
        assert settings.is_enabled is False

    @pytest.mark.asyncio
    async def test_settings_upsert_and_list_enabled(self, store):
        await store.upsert_backup_settings(
            BackupSettings(workspace_id="ws_1", is_enabled=True, cadence=Cadence.WEEKLY)
        )
        await store.upsert_backup_settings(BackupSettings(workspace_id="ws_2"))
        await store.upsert_backup_settings(
            BackupSettings(workspace_id="ws_1", is_enabled=True, retain_count=5)
        )

        enabled = await store.list_enabled_settings()

        assert [s.workspace_id for s in enabled] == ["ws_1"]
        assert enabled[0].retain_count == 5
        assert enabled[0].cadence == Cadence.DAILY

    def test_retain_count_validated(self):
        with pytest.raises(ValueError):
            BackupSettings(workspace_id="ws_1", retain_count=0)

    @pytest.mark.asyncio
    async def test_admin_membership(self, store):
        await store.create_workspace("ws_1")
        await store.add_member("ws_1", "user:bob", "admin")
        await store.add_member("ws_1", "user:carol", "member")

        assert await store.workspace_exists("ws_1")
        assert await store.is_workspace_admin("user:bob", "ws_1")
        assert not await store.is_workspace_admin("user:carol", "ws_1")
        assert not await store.is_workspace_admin("user:bob", "ws_2")

    @pytest.mark.asyncio
    async def test_resolve_admin_prefers_owner(self, store):
        await store.add_member("ws_1", "user:aaron", "admin")
        assert await store.resolve_admin_actor("ws_1") == "user:aaron"

        await store.add_member("ws_1", "user:zoe", "owner")
        assert await store.resolve_admin_actor("ws_1") == "user:zoe"

        assert await store.resolve_admin_actor("ws_2") is None

    @pytest.mark.asyncio
    async def test_snapshot_needs_exactly_one_payload(self, store):
        snapshot = WorkspaceSnapshot(
            id="s1",
            workspace_id="ws_1",
            created_at=1,
            created_by="user:alice",
            snapshot_type=SnapshotType.MANUAL,
        )
        with pytest.raises(ValueError):
            await store.insert_snapshot(snapshot)

    @pytest.mark.asyncio
    async def test_attach_storage_once(self, store):
        await store.insert_snapshot(
            WorkspaceSnapshot(
                id="s1",
                workspace_id="ws_1",
                created_at=1,
                created_by="user:alice",
                snapshot_type=SnapshotType.MANUAL,
                manifest={"providers": ["workboard"]},
            ),
            snapshot_json='{"x":1}',
        )

        assert await store.attach_storage("s1", "ws_1/s1.json", 7, "abc") is True
        assert await store.attach_storage("s1", "ws_1/other.json", 7, "def") is False

        snapshot = await store.get_snapshot("s1")
        assert snapshot.storage_path == "ws_1/s1.json"
        assert snapshot.checksum == "abc"
        assert snapshot.manifest == {"providers": ["workboard"]}
        assert await store.get_inline_payload("s1") is None

    @pytest.mark.asyncio
    async def test_consume_token_single_winner(self, store):
        await store.insert_token(
            RestoreToken(
                token_hash="h1",
                workspace_id="ws_1",
                snapshot_id="s1",
                actor="user:alice",
                issued_at=1000,
                expires_at=601_000,
            )
        )

        results = await asyncio.gather(
            *(store.consume_token("h1", "ws_1", "s1", "user:alice", now_ms=2000) for _ in range(5))
        )

        assert results.count(True) == 1
        token = await store.get_token("h1")
        assert token.consumed_at == 2000

    @pytest.mark.asyncio
    async def test_audit_newest_first(self, store):
        for i in range(3):
            await store.append_audit(
                AuditLogEntry(
                    workspace_id="ws_1",
                    actor_user_id="user:alice",
                    action=f"snapshot.captured",
                    entity_type="workspace_snapshot",
                    entity_id=f"s{i}",
                    metadata={"n": i},
                    created_at=1000,
                )
            )

        entries = await store.list_audit("ws_1", limit=2)

        assert [e.entity_id for e in entries] == ["s2", "s1"]
        assert entries[0].metadata == {"n": 2}
        page = await store.list_audit("ws_1", limit=2, offset=2)
        assert [e.entity_id for e in page] == ["s0"]

"""
Unit tests for the built-in table providers.

Tests cover:
- Capture of workspace-scoped rows
- Restore (replace) semantics
- Row counts
- Team chat message cap (and the uncapped complete capture)
"""

import tempfile

import pytest

from recovery.safeback_server.providers import (
    SettingsProvider,
    TeamChatProvider,
    WorkboardProvider,
)
from recovery.safeback_server.providers.team_chat import MAX_MESSAGES
from recovery.safeback_server.registry import DomainSlice, ProviderRegistry
from recovery.safeback_server.store import WorkspaceStore


class TestTableProviders:
    """Tests for TableProvider-based providers."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    async def store(self, data_dir):
        registry = ProviderRegistry()
        registry.register(WorkboardProvider())
        registry.register(SettingsProvider())
        registry.register(TeamChatProvider())
        registry.freeze()

        store = WorkspaceStore(data_dir, registry, wal_mode=False)
        await store.initialize_workspace("ws_a")
        await store.initialize_workspace("ws_b")
        return store

    def _insert(self, store, workspace_id, table, rows):
        with store.write_transaction(workspace_id) as conn:
            for row in rows:
                values = {"workspace_id": workspace_id, **row}
                columns = ", ".join(values)
                placeholders = ", ".join(f":{k}" for k in values)
                conn.execute(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", values)

    @pytest.mark.asyncio
    async def test_capture_scoped_to_workspace(self, store):
        """Capture only sees the workspace's rows."""
        self._insert(store, "ws_a", "tasks", [{"id": "t1", "title": "A"}])
        self._insert(store, "ws_b", "tasks", [{"id": "t2", "title": "B"}])

        with store.read_transaction("ws_a") as conn:
            slice_ = WorkboardProvider().capture(conn, "ws_a")

        assert slice_.provider == "workboard"
        assert [row["id"] for row in slice_.data["tasks"]] == ["t1"]
        assert slice_.entity_counts == {"goals": 0, "tasks": 1, "plans": 0, "ideas": 0}

    @pytest.mark.asyncio
    async def test_restore_replaces_rows(self, store):
        """Restore deletes current rows and writes the slice's rows."""
        self._insert(store, "ws_a", "tasks", [{"id": "old", "title": "Old"}])
        slice_ = DomainSlice(
            provider="workboard",
            version=1,
            data={
                "tasks": [
                    {"id": "n1", "workspace_id": "ws_a", "title": "New 1"},
                    {"id": "n2", "workspace_id": "ws_a", "title": "New 2", "extra": "dropped"},
                ],
                "goals": [{"id": "g1", "workspace_id": "ws_a", "title": "Goal"}],
            },
        )

        with store.write_transaction("ws_a") as conn:
            written = WorkboardProvider().restore(conn, "ws_a", slice_)

        assert written == 3
        rows = await store.fetch_rows("ws_a", "tasks")
        assert [row["id"] for row in rows] == ["n1", "n2"]
        assert await store.count_entities("ws_a", ["workboard"]) == {
            "goals": 1,
            "tasks": 2,
            "plans": 0,
            "ideas": 0,
        }

    @pytest.mark.asyncio
    async def test_restore_forces_workspace_id(self, store):
        """Rows always land in the workspace being restored."""
        slice_ = DomainSlice(
            provider="workboard",
            version=1,
            data={"tasks": [{"id": "t1", "workspace_id": "ws_b", "title": "Moved"}]},
        )

        with store.write_transaction("ws_a") as conn:
            WorkboardProvider().restore(conn, "ws_a", slice_)

        assert len(await store.fetch_rows("ws_a", "tasks")) == 1

    @pytest.mark.asyncio
    async def test_settings_composite_key(self, store):
        self._insert(
            store,
            "ws_a",
            "workspace_settings",
            [{"key": "theme", "value_json": '"dark"'}, {"key": "locale", "value_json": '"en"'}],
        )

        with store.read_transaction("ws_a") as conn:
            slice_ = SettingsProvider().capture(conn, "ws_a")

        assert [row["key"] for row in slice_.data["workspace_settings"]] == ["locale", "theme"]

    @pytest.mark.asyncio
    async def test_team_chat_caps_messages(self, store):
        """Only the newest MAX_MESSAGES messages are captured."""
        self._insert(store, "ws_a", "chat_channels", [{"id": "c1", "name": "general"}])
        self._insert(
            store,
            "ws_a",
            "chat_messages",
            [
                {"id": f"m{i}", "channel_id": "c1", "author_id": "u1", "created_at": i}
                for i in range(MAX_MESSAGES + 5)
            ],
        )

        with store.read_transaction("ws_a") as conn:
            slice_ = TeamChatProvider().capture(conn, "ws_a")

        messages = slice_.data["chat_messages"]
        assert len(messages) == MAX_MESSAGES
        assert messages[0]["id"] == "m5"
        assert messages[-1]["id"] == f"m{MAX_MESSAGES + 4}"
        assert "_rid" not in messages[0]

    @pytest.mark.asyncio
    async def test_unknown_table_rejected(self, store):
        with pytest.raises(ValueError):
            await store.fetch_rows("ws_a", "sqlite_master")

    @pytest.mark.asyncio
    async def test_team_chat_complete_capture_ignores_cap(self, store):
        """capture_complete() returns every message restore() would delete."""
        self._insert(store, "ws_a", "chat_channels", [{"id": "c1", "name": "general"}])
        self._insert(
            store,
            "ws_a",
            "chat_messages",
            [
                {"id": f"m{i}", "channel_id": "c1", "author_id": "u1", "created_at": i}
                for i in range(MAX_MESSAGES + 5)
            ],
        )

        with store.read_transaction("ws_a") as conn:
            slice_ = TeamChatProvider().capture_complete(conn, "ws_a")

        messages = slice_.data["chat_messages"]
        assert len(messages) == MAX_MESSAGES + 5
        assert messages[0]["id"] == "m0"

        with store.write_transaction("ws_a") as conn:
            TeamChatProvider().restore(conn, "ws_a", slice_)

        assert await store.count_entities("ws_a", ["team_chat"]) == {
            "chat_channels": 1,
            "chat_messages": MAX_MESSAGES + 5,
        }

    @pytest.mark.asyncio
    async def test_complete_capture_defaults_to_capture(self, store):
        """Uncapped providers capture the same slice either way."""
        self._insert(store, "ws_a", "tasks", [{"id": "t1", "title": "A"}])

        with store.read_transaction("ws_a") as conn:
            capped = WorkboardProvider().capture(conn, "ws_a")
            complete = WorkboardProvider().capture_complete(conn, "ws_a")

        assert complete.to_dict() == capped.to_dict()

"""
Unit tests for WorkspaceStore.

Tests cover:
- Database file naming for workspace ids
- Transactions
- Integrity check
"""

import tempfile

import pytest

from recovery.safeback_server.providers import WorkboardProvider
from recovery.safeback_server.registry import ProviderRegistry
from recovery.safeback_server.store import WorkspaceStore


class TestWorkspaceStore:
    """Tests for WorkspaceStore."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def store(self, data_dir):
        registry = ProviderRegistry()
        registry.register(WorkboardProvider())
        registry.freeze()
        return WorkspaceStore(data_dir, registry, wal_mode=False)

    def test_plain_id_keeps_its_name(self, store, data_dir):
        path = store.get_db_path("ws_1-a")

        assert path.name == "workspace_ws_1-a.db"
        assert str(path.parent) == data_dir

    def test_distinct_ids_never_share_a_file(self, store):
        dotted = store.get_db_path("a.b")

        assert dotted != store.get_db_path("ab")
        assert dotted != store.get_db_path("a/b")
        assert dotted == store.get_db_path("a.b")
        assert dotted.name.startswith("workspace_ab-")

    def test_path_traversal_stays_in_data_dir(self, store, data_dir):
        path = store.get_db_path("../../etc/passwd")

        assert str(path.parent) == data_dir
        assert "/" not in path.name

    @pytest.mark.asyncio
    async def test_similar_ids_get_separate_databases(self, store):
        await store.initialize_workspace("a.b")

        assert await store.workspace_exists("a.b")
        assert not await store.workspace_exists("ab")

    @pytest.mark.asyncio
    async def test_write_transaction_rolls_back(self, store):
        await store.initialize_workspace("ws_1")

        with pytest.raises(RuntimeError):
            with store.write_transaction("ws_1") as conn:
                conn.execute("INSERT INTO tasks (id, workspace_id, title) VALUES ('t1', 'ws_1', 'A')")
                raise RuntimeError("boom")

        assert await store.count_entities("ws_1") == {"goals": 0, "tasks": 0, "plans": 0, "ideas": 0}

    @pytest.mark.asyncio
    async def test_check_integrity_passes_on_healthy_database(self, store):
        await store.initialize_workspace("ws_1")

        with store.write_transaction("ws_1") as conn:
            conn.execute("INSERT INTO tasks (id, workspace_id, title) VALUES ('t1', 'ws_1', 'A')")
            store.check_integrity(conn)

        assert len(await store.fetch_rows("ws_1", "tasks")) == 1

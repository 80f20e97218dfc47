"""
Unit tests for restore confirmation tokens.

Tests cover:
- Issue and validate
- Expiry at the TTL boundary
- Single use
- Binding to workspace, snapshot and actor
"""

import tempfile

import pytest

from recovery.safeback_server.engine.tokens import TokenManager, hash_token
from recovery.safeback_server.errors import InvalidConfirmationError
from recovery.safeback_server.store import ControlStore
from tests.helpers import FakeClock


class TestTokenManager:
    """Tests for TokenManager."""

    @pytest.fixture
    async def control_store(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ControlStore(tmpdir, wal_mode=False)
            await store.initialize()
            yield store

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def tokens(self, control_store, clock):
        return TokenManager(control_store, ttl_seconds=600, clock=clock)

    @pytest.mark.asyncio
    async def test_issue_and_validate(self, tokens):
        token = await tokens.issue("ws_1", "snap_1", "user:alice")

        record = await tokens.validate(token, "ws_1", "snap_1", "user:alice")

        assert record.snapshot_id == "snap_1"
        assert record.expires_at - record.issued_at == 600_000

    @pytest.mark.asyncio
    async def test_only_hash_is_stored(self, tokens, control_store):
        token = await tokens.issue("ws_1", "snap_1", "user:alice")

        record = await control_store.get_token(hash_token(token))

        assert record is not None
        assert record.token_hash != token

    @pytest.mark.asyncio
    async def test_valid_just_before_expiry(self, tokens, clock):
        token = await tokens.issue("ws_1", "snap_1", "user:alice")
        clock.advance(599)

        await tokens.validate(token, "ws_1", "snap_1", "user:alice")

    @pytest.mark.asyncio
    async def test_expired_after_ttl(self, tokens, clock):
        token = await tokens.issue("ws_1", "snap_1", "user:alice")
        clock.advance(601)

        with pytest.raises(InvalidConfirmationError):
            await tokens.validate(token, "ws_1", "snap_1", "user:alice")
        with pytest.raises(InvalidConfirmationError):
            await tokens.consume(token, "ws_1", "snap_1", "user:alice")

    @pytest.mark.asyncio
    async def test_single_use(self, tokens):
        token = await tokens.issue("ws_1", "snap_1", "user:alice")

        await tokens.consume(token, "ws_1", "snap_1", "user:alice")

        with pytest.raises(InvalidConfirmationError):
            await tokens.consume(token, "ws_1", "snap_1", "user:alice")
        with pytest.raises(InvalidConfirmationError):
            await tokens.validate(token, "ws_1", "snap_1", "user:alice")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "workspace_id,snapshot_id,actor",
        [
            ("ws_2", "snap_1", "user:alice"),
            ("ws_1", "snap_2", "user:alice"),
            ("ws_1", "snap_1", "user:bob"),
        ],
    )
    async def test_binding_mismatch(self, tokens, workspace_id, snapshot_id, actor):
        token = await tokens.issue("ws_1", "snap_1", "user:alice")

        with pytest.raises(InvalidConfirmationError):
            await tokens.validate(token, workspace_id, snapshot_id, actor)
        with pytest.raises(InvalidConfirmationError):
            await tokens.consume(token, workspace_id, snapshot_id, actor)

    @pytest.mark.asyncio
    async def test_unknown_and_empty_tokens(self, tokens):
        with pytest.raises(InvalidConfirmationError, match="Invalid or expired"):
            await tokens.validate("made-up", "ws_1", "snap_1", "user:alice")
        with pytest.raises(InvalidConfirmationError):
            await tokens.validate("", "ws_1", "snap_1", "user:alice")

    @pytest.mark.asyncio
    async def test_new_preview_keeps_old_token_valid(self, tokens):
        first = await tokens.issue("ws_1", "snap_1", "user:alice")
        second = await tokens.issue("ws_1", "snap_1", "user:alice")

        assert first != second
        await tokens.validate(first, "ws_1", "snap_1", "user:alice")
        await tokens.validate(second, "ws_1", "snap_1", "user:alice")

    @pytest.mark.asyncio
    async def test_purge(self, tokens, clock):
        await tokens.issue("ws_1", "snap_1", "user:alice")
        used = await tokens.issue("ws_1", "snap_2", "user:alice")
        await tokens.consume(used, "ws_1", "snap_2", "user:alice")

        assert await tokens.purge() == 1
        clock.advance(601)
        assert await tokens.purge() == 1

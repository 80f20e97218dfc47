"""
Restore confirmation tokens.

Preview mints a random token and stores only its SHA-256 with the binding
(workspace, snapshot, actor) and an expiry. Restore presents the token back.

Invariants:
    - Plaintext tokens are never persisted or logged
    - A token is valid while now < issued_at + ttl, unconsumed, and only for
      the binding it was issued for
    - Consumption is atomic: of two concurrent restores with one token,
      exactly one wins
    - Every rejection raises the same InvalidConfirmationError
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import time
from collections.abc import Callable

from ..errors import InvalidConfirmationError
from ..store import ControlStore, RestoreToken

logger = logging.getLogger(__name__)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class TokenManager:
    """Issues, validates and consumes confirmation tokens.

    Attributes:
        control_store: Where token hashes are kept
        ttl_seconds: Token lifetime
    """

    def __init__(
        self,
        control_store: ControlStore,
        ttl_seconds: int = 600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.control_store = control_store
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def issue(self, workspace_id: str, snapshot_id: str, actor: str) -> str:
        """Mint a token bound to (workspace, snapshot, actor).

        Earlier tokens for the same binding stay valid until they expire.
        """
        token = secrets.token_urlsafe(32)
        issued_at = self._now_ms()
        await self.control_store.insert_token(
            RestoreToken(
                token_hash=hash_token(token),
                workspace_id=workspace_id,
                snapshot_id=snapshot_id,
                actor=actor,
                issued_at=issued_at,
                expires_at=issued_at + self.ttl_seconds * 1000,
            )
        )
        return token

    async def validate(
        self,
        token: str,
        workspace_id: str,
        snapshot_id: str,
        actor: str,
    ) -> RestoreToken:
        """Check a token without consuming it.

        Raises:
            InvalidConfirmationError: If the token is unknown, expired,
                consumed or bound to something else
        """
        if not token:
            raise InvalidConfirmationError()

        record = await self.control_store.get_token(hash_token(token))
        if (
            record is None
            or record.consumed_at is not None
            or self._now_ms() >= record.expires_at
            or record.workspace_id != workspace_id
            or record.snapshot_id != snapshot_id
            or record.actor != actor
        ):
            logger.info(
                "Rejected restore confirmation",
                extra={"workspace_id": workspace_id, "snapshot_id": snapshot_id, "actor": actor},
            )
            raise InvalidConfirmationError()
        return record

    async def consume(
        self,
        token: str,
        workspace_id: str,
        snapshot_id: str,
        actor: str,
    ) -> None:
        """Consume a token.

        Raises:
            InvalidConfirmationError: If the token is no longer valid
        """
        consumed = await self.control_store.consume_token(
            hash_token(token),
            workspace_id=workspace_id,
            snapshot_id=snapshot_id,
            actor=actor,
            now_ms=self._now_ms(),
        )
        if not consumed:
            raise InvalidConfirmationError()

    async def purge(self) -> int:
        """Drop expired and consumed tokens."""
        return await self.control_store.purge_tokens(self._now_ms())

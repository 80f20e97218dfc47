"""
Team chat provider: channels and message metadata.

Non-critical: a chat failure degrades the snapshot instead of aborting it.
Attachments are captured as references, never as file blobs, and only
the newest MAX_MESSAGES messages are kept. pre_restore safety snapshots
keep every message.
"""

from __future__ import annotations

from .base import TableProvider, TableSpec

MAX_MESSAGES = 2000


class TeamChatProvider(TableProvider):
    """Channels, messages, threads, attachment references."""

    name = "team_chat"
    description = "Channels, messages, threads, attachment references (no file blobs)"
    critical = False
    version = 1

    tables = (
        TableSpec(
            name="chat_channels",
            columns=(
                ("id", "TEXT NOT NULL"),
                ("workspace_id", "TEXT NOT NULL"),
                ("name", "TEXT NOT NULL"),
                ("is_private", "INTEGER NOT NULL DEFAULT 0"),
                ("created_at", "INTEGER NOT NULL DEFAULT 0"),
            ),
        ),
        TableSpec(
            name="chat_messages",
            columns=(
                ("id", "TEXT NOT NULL"),
                ("workspace_id", "TEXT NOT NULL"),
                ("channel_id", "TEXT NOT NULL"),
                ("author_id", "TEXT NOT NULL"),
                ("thread_id", "TEXT"),
                ("body", "TEXT NOT NULL DEFAULT ''"),
                ("attachment_ref", "TEXT"),
                ("created_at", "INTEGER NOT NULL DEFAULT 0"),
            ),
            max_rows=MAX_MESSAGES,
            constraints=(
                "FOREIGN KEY (channel_id) REFERENCES chat_channels(id) ON DELETE CASCADE",
            ),
        ),
    )

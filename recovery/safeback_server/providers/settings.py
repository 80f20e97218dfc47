"""
Settings provider: workspace key/value settings.
"""

from __future__ import annotations

from .base import TableProvider, TableSpec


class SettingsProvider(TableProvider):
    """Workspace settings."""

    name = "settings"
    description = "Workspace settings and preferences"
    critical = True
    version = 1

    tables = (
        TableSpec(
            name="workspace_settings",
            columns=(
                ("workspace_id", "TEXT NOT NULL"),
                ("key", "TEXT NOT NULL"),
                ("value_json", "TEXT NOT NULL DEFAULT 'null'"),
                ("updated_at", "INTEGER NOT NULL DEFAULT 0"),
            ),
            primary_key=("workspace_id", "key"),
            order_by="key",
        ),
    )

"""
Workboard provider: tasks, goals, plans and ideas.

Critical: a snapshot without the workboard is not a usable backup.
"""

from __future__ import annotations

from .base import TableProvider, TableSpec


class WorkboardProvider(TableProvider):
    """Tasks, goals, plans, ideas."""

    name = "workboard"
    description = "Tasks, goals, plans, ideas"
    critical = True
    version = 1

    tables = (
        TableSpec(
            name="goals",
            columns=(
                ("id", "TEXT NOT NULL"),
                ("workspace_id", "TEXT NOT NULL"),
                ("title", "TEXT NOT NULL"),
                ("description", "TEXT"),
                ("status", "TEXT NOT NULL DEFAULT 'active'"),
                ("target_date", "TEXT"),
                ("created_at", "INTEGER NOT NULL DEFAULT 0"),
            ),
        ),
        TableSpec(
            name="tasks",
            columns=(
                ("id", "TEXT NOT NULL"),
                ("workspace_id", "TEXT NOT NULL"),
                ("goal_id", "TEXT"),
                ("title", "TEXT NOT NULL"),
                ("status", "TEXT NOT NULL DEFAULT 'todo'"),
                ("priority", "TEXT"),
                ("assignee_id", "TEXT"),
                ("due_date", "TEXT"),
                ("created_at", "INTEGER NOT NULL DEFAULT 0"),
                ("updated_at", "INTEGER NOT NULL DEFAULT 0"),
            ),
        ),
        TableSpec(
            name="plans",
            columns=(
                ("id", "TEXT NOT NULL"),
                ("workspace_id", "TEXT NOT NULL"),
                ("title", "TEXT NOT NULL"),
                ("content_json", "TEXT NOT NULL DEFAULT '{}'"),
                ("created_at", "INTEGER NOT NULL DEFAULT 0"),
            ),
        ),
        TableSpec(
            name="ideas",
            columns=(
                ("id", "TEXT NOT NULL"),
                ("workspace_id", "TEXT NOT NULL"),
                ("title", "TEXT NOT NULL"),
                ("body", "TEXT"),
                ("votes", "INTEGER NOT NULL DEFAULT 0"),
                ("created_at", "INTEGER NOT NULL DEFAULT 0"),
            ),
        ),
    )

"""
Billing provider: subscription and plan linkage.

Only the workspace's link to the billing system is captured. Payment
details stay with the payment processor.
"""

from __future__ import annotations

from .base import TableProvider, TableSpec


class BillingProvider(TableProvider):
    """Billing subscriptions & plan linkage."""

    name = "billing"
    description = "Billing subscriptions & plan linkage"
    critical = True
    version = 1

    tables = (
        TableSpec(
            name="billing_subscriptions",
            columns=(
                ("id", "TEXT NOT NULL"),
                ("workspace_id", "TEXT NOT NULL"),
                ("plan_id", "TEXT NOT NULL"),
                ("status", "TEXT NOT NULL DEFAULT 'active'"),
                ("external_subscription_id", "TEXT"),
                ("current_period_end", "TEXT"),
                ("created_at", "INTEGER NOT NULL DEFAULT 0"),
            ),
        ),
    )

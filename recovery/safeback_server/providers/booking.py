"""
Booking provider: vendor and service catalogs.

File assets (logos, images) are captured as references only.
"""

from __future__ import annotations

from .base import TableProvider, TableSpec


class BookingProvider(TableProvider):
    """Booking vendors and services."""

    name = "booking"
    description = "Booking vendors and service catalog (file refs only)"
    critical = True
    version = 1

    tables = (
        TableSpec(
            name="booking_vendors",
            columns=(
                ("id", "TEXT NOT NULL"),
                ("workspace_id", "TEXT NOT NULL"),
                ("name", "TEXT NOT NULL"),
                ("email", "TEXT"),
                ("logo_ref", "TEXT"),
                ("is_active", "INTEGER NOT NULL DEFAULT 1"),
                ("created_at", "INTEGER NOT NULL DEFAULT 0"),
            ),
        ),
        TableSpec(
            name="booking_services",
            columns=(
                ("id", "TEXT NOT NULL"),
                ("workspace_id", "TEXT NOT NULL"),
                ("vendor_id", "TEXT NOT NULL"),
                ("name", "TEXT NOT NULL"),
                ("price_cents", "INTEGER NOT NULL DEFAULT 0"),
                ("currency", "TEXT NOT NULL DEFAULT 'USD'"),
                ("duration_minutes", "INTEGER"),
                ("created_at", "INTEGER NOT NULL DEFAULT 0"),
            ),
            constraints=("FOREIGN KEY (vendor_id) REFERENCES booking_vendors(id)",),
        ),
    )

"""
Built-in snapshot providers.

Each provider owns one data domain of a workspace. register_default_providers()
registers them in the order they appear in the snapshot document and the UI.
"""

from __future__ import annotations

from ..registry import ProviderRegistry
from .base import TableProvider, TableSpec
from .billing import BillingProvider
from .booking import BookingProvider
from .settings import SettingsProvider
from .team_chat import TeamChatProvider
from .workboard import WorkboardProvider


def register_default_providers(registry: ProviderRegistry) -> None:
    """Register every built-in provider on the given registry."""
    registry.register(WorkboardProvider())
    registry.register(BillingProvider())
    registry.register(BookingProvider())
    registry.register(SettingsProvider())
    registry.register(TeamChatProvider())


__all__ = [
    "TableProvider",
    "TableSpec",
    "WorkboardProvider",
    "BillingProvider",
    "BookingProvider",
    "SettingsProvider",
    "TeamChatProvider",
    "register_default_providers",
]

"""
Registry module for SafeBack.

This module provides the pluggable data-domain contract:
- SnapshotProvider: capture/restore/count/describe for one domain
- DomainSlice: serializable slice produced by a provider
- ProviderRegistry: process-wide, append-only registry of providers

Invariants:
    - All providers must be registered before the server starts
    - The registry is frozen before request handling begins
    - Provider names key the snapshot document and never change
"""

from .registry import (
    DuplicateProviderError,
    ProviderRegistry,
    RegistryFrozenError,
    freeze_registry,
    get_registry,
    reset_registry,
)
from .types import DomainSlice, ProviderDescriptor, SnapshotProvider

__all__ = [
    # Types
    "DomainSlice",
    "ProviderDescriptor",
    "SnapshotProvider",
    # Registry
    "ProviderRegistry",
    "RegistryFrozenError",
    "DuplicateProviderError",
    "get_registry",
    "freeze_registry",
    "reset_registry",
]

"""
Snapshot Provider Registry for SafeBack.

The ProviderRegistry is the central authority for data domains. It provides:
- Registration of providers in a stable order
- Lookup by name
- Descriptor listing for UI disclosure
- Freeze mechanism to prevent runtime modifications

Invariants:
    - Registry is mutable during startup, frozen before serving
    - Once frozen, no new providers can be registered
    - Provider names are globally unique
    - Iteration order is registration order

How to change safely:
    - Register all providers before calling freeze_registry()
    - Never unregister a provider whose slices exist in stored snapshots

Example:
    >>> registry = ProviderRegistry()
    >>> registry.register(WorkboardProvider())
    >>> registry.freeze()
    >>> registry.describe()
    [{'name': 'workboard', 'description': 'Tasks, goals, plans, ideas', 'critical': True}]
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Iterator

from .types import SnapshotProvider

logger = logging.getLogger(__name__)

# Global registry instance
_global_registry: ProviderRegistry | None = None
_registry_lock = threading.Lock()


class RegistryFrozenError(Exception):
    """Raised when attempting to modify a frozen registry."""

    pass


class DuplicateProviderError(Exception):
    """Raised when attempting to register a provider name twice."""

    pass


class ProviderRegistry:
    """Ordered registry of snapshot providers.

    Thread-safety:
        - Registration is thread-safe (uses internal lock)
        - Lookups after freeze are lock-free
        - Freeze is atomic and irreversible

    Attributes:
        frozen: Whether the registry is frozen (immutable)
    """

    def __init__(self) -> None:
        """Initialize an empty, mutable registry."""
        self._providers: dict[str, SnapshotProvider] = {}
        self._frozen = False
        self._lock = threading.Lock()

    @property
    def frozen(self) -> bool:
        """Whether the registry is frozen."""
        return self._frozen

    def register(self, provider: SnapshotProvider) -> None:
        """Register a provider.

        Args:
            provider: The provider to register

        Raises:
            RegistryFrozenError: If registry is frozen
            DuplicateProviderError: If the name is already registered
            ValueError: If the provider has no name
        """
        if not provider.name:
            raise ValueError(f"Provider {type(provider).__name__} has no name")

        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register provider '{provider.name}': registry is frozen"
                )

            if provider.name in self._providers:
                raise DuplicateProviderError(f"Provider '{provider.name}' already registered")

            self._providers[provider.name] = provider
            logger.debug(
                f"Registered snapshot provider: {provider.name} (critical={provider.critical})"
            )

    def get(self, name: str) -> SnapshotProvider | None:
        """Get a provider by name."""
        return self._providers.get(name)

    def list_providers(self) -> list[SnapshotProvider]:
        """All providers in registration order."""
        return list(self._providers.values())

    def describe(self) -> list[dict[str, Any]]:
        """Provider descriptors in registration order."""
        return [provider.describe().to_dict() for provider in self._providers.values()]

    def __iter__(self) -> Iterator[SnapshotProvider]:
        return iter(list(self._providers.values()))

    def __len__(self) -> int:
        return len(self._providers)

    def __contains__(self, name: object) -> bool:
        return name in self._providers

    def freeze(self) -> None:
        """Freeze the registry.

        Raises:
            RegistryFrozenError: If already frozen
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError("Registry is already frozen")
            self._frozen = True
            logger.info(
                f"Provider registry frozen with {len(self._providers)} providers: "
                f"{', '.join(self._providers)}"
            )


def get_registry() -> ProviderRegistry:
    """Get the global provider registry.

    Creates a new registry if none exists.
    """
    global _global_registry
    with _registry_lock:
        if _global_registry is None:
            _global_registry = ProviderRegistry()
        return _global_registry


def freeze_registry() -> None:
    """Freeze the global registry.

    This should be called after all providers are registered
    and before the server starts accepting requests.

    Raises:
        RegistryFrozenError: If already frozen
    """
    get_registry().freeze()


def reset_registry() -> None:
    """Reset the global registry (for testing only)."""
    global _global_registry
    with _registry_lock:
        _global_registry = None

"""
Base protocol for the durable settings sidecar.

The sidecar is a tiny string key/value store that survives restarts. The
registry keeps exactly two entries in it: the serialized settings blob and
the structural (index) map. It is read once on load and written after
every registry mutation.

Invariants:
    - Values are opaque strings; callers own their encoding
    - A missing key reads as None, never raises
    - set() is durable once it returns

How to change safely:
    - Protocol changes require updating all implementations
    - Never rename the two registry keys; existing sidecars would be
      read as uninitialized
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..config import StorageConfig

SETTINGS_KEY = "persistence->settings"
INDEX_MAP_KEY = "persistence->objectStore"


@runtime_checkable
class SidecarStore(Protocol):
    """Protocol for settings sidecar backends.

    Example:
        >>> sidecar = InMemorySidecar()
        >>> sidecar.set(SETTINGS_KEY, "{}")
        >>> sidecar.get(SETTINGS_KEY)
        '{}'
    """

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the stored value, or None if the key is absent."""
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store a value under key, replacing any previous one."""
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        """Remove a key. Removing an absent key is not an error."""
        ...


def create_sidecar(config: StorageConfig) -> SidecarStore:
    """Factory function to create the sidecar from configuration.

    Args:
        config: Storage configuration

    Returns:
        A JSON file sidecar in the data directory, or an in-memory one when
        no sidecar file is configured
    """
    from .file import JsonFileSidecar
    from .memory import InMemorySidecar

    if not config.sidecar_file:
        return InMemorySidecar()
    return JsonFileSidecar(config.sidecar_path)

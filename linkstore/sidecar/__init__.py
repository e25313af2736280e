"""
Durable settings sidecar for LinkStore.

Backends:
- InMemorySidecar: Tests and throwaway engines
- JsonFileSidecar: JSON file next to the database
"""

from .base import INDEX_MAP_KEY, SETTINGS_KEY, SidecarStore, create_sidecar
from .file import JsonFileSidecar
from .memory import InMemorySidecar

__all__ = [
    "SidecarStore",
    "InMemorySidecar",
    "JsonFileSidecar",
    "create_sidecar",
    "SETTINGS_KEY",
    "INDEX_MAP_KEY",
]

"""
In-memory sidecar implementation.

Useful for tests and for throwaway engines. All data is lost on process
exit; the storage file it describes may then be unreadable for a new
registry, see PersistenceService.drop_database.
"""

from __future__ import annotations


class InMemorySidecar:
    """Dictionary-backed SidecarStore."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def remove(self, key: str) -> None:
        self._values.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._values)

"""
JSON file sidecar implementation.

All keys live in one small JSON object on disk. Every write replaces the
file atomically (temporary file + rename), so a crash leaves either the
old or the new contents, never a torn file.

Invariants:
    - The file always holds a JSON object of string values
    - Writes go through os.replace
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


class JsonFileSidecar:
    """SidecarStore persisted as a JSON file.

    Example:
        >>> sidecar = JsonFileSidecar("/tmp/linkstore/persistence.json")
        >>> sidecar.set("persistence->settings", "{}")
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._values: dict[str, str] = self._read()

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        with open(self.path, encoding="utf-8") as handle:
            data = json.load(handle)
        if not isinstance(data, dict):
            raise ValueError(f"Sidecar file {self.path} does not contain a JSON object")
        return {str(key): str(value) for key, value in data.items()}

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".sidecar-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(self._values, handle)
            os.replace(tmp_path, self.path)
        except Exception:
            os.unlink(tmp_path)
            raise
        logger.debug(f"Wrote sidecar {self.path}", extra={"keys": list(self._values)})

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value
        self._write()

    def remove(self, key: str) -> None:
        if key in self._values:
            del self._values[key]
            self._write()

"""
Key handling for the storage engine.

Keys follow the ordering rules of browser object stores so that range
queries over compound trigger indices behave the same way:
numbers sort before strings, strings before arrays, arrays compare
element-wise with shorter prefixes first. Booleans, None and objects are
not valid keys; rows whose key path resolves to one are left out of the
index instead of failing.

Identity helpers live here as well because every layer needs them:
`extract_uuid` turns any primary-key value into a row identity and
`extract_primary_key` pulls the n-th UUID out of a URL.
"""

from __future__ import annotations

import json
import math
import re
from typing import Any

UUID_PATTERN = re.compile(
    r"[\da-fA-F]{8}\b-[\da-fA-F]{4}\b-[\da-fA-F]{4}\b-[\da-fA-F]{4}\b-[\da-fA-F]{12}",
    re.IGNORECASE,
)

# Rank per key type, numbers < strings < arrays
_NUMBER, _STRING, _ARRAY = 1, 2, 3


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


def extract_uuid(value: Any) -> Any:
    """Derive a row identity from a primary-key value.

    A UUID-shaped substring wins. Otherwise an IRI-like string yields its
    last path segment. Anything else is returned unchanged.

    Example:
        >>> extract_uuid("/api/users/0b7c5e4e-6a4f-4a39-9c57-3f1f0e1b2a11")
        '0b7c5e4e-6a4f-4a39-9c57-3f1f0e1b2a11'
        >>> extract_uuid("/api/locations/1")
        '1'
    """
    if value is None or isinstance(value, (bool, dict, list)):
        return value
    match = UUID_PATTERN.search(str(value))
    if match:
        return match.group(0)
    if isinstance(value, str) and "/" in value:
        segment = value.rstrip("/").rsplit("/", 1)[-1]
        if segment:
            return segment
    return value


def extract_primary_key(url: str, index: int | None = None, exact: bool = False) -> Any:
    """Pick a UUID out of a URL.

    Args:
        url: Any string that may contain UUIDs
        index: Which UUID to return (0-based); None means the first one
        exact: Return "" instead of falling back to the raw value

    Returns:
        The selected UUID; "" when exact and absent, None otherwise
    """
    if index is None:
        return extract_uuid(url)
    matches = UUID_PATTERN.findall(url or "")
    if index < len(matches):
        return matches[index]
    return "" if exact else None


def is_valid_key(value: Any) -> bool:
    """Whether a value may be used as a primary or index key."""
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return not math.isnan(value)
    if isinstance(value, str):
        return True
    if isinstance(value, (list, tuple)):
        return all(is_valid_key(item) for item in value)
    return False


def key_sort_key(value: Any) -> tuple:
    """Sort key implementing the key ordering for valid keys."""
    if isinstance(value, (list, tuple)):
        return (_ARRAY, tuple(key_sort_key(item) for item in value))
    if isinstance(value, str):
        return (_STRING, value)
    return (_NUMBER, float(value))


def compare_keys(left: Any, right: Any) -> int:
    """Return -1, 0 or 1 comparing two valid keys."""
    a, b = key_sort_key(left), key_sort_key(right)
    return (a > b) - (a < b)


def _normalize(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return [_normalize(item) for item in value]
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return value


def encode_key(value: Any) -> str:
    """Canonical text form of a key; equal keys encode identically."""
    return json.dumps(_normalize(value), separators=(",", ":"), ensure_ascii=False)


def decode_key(text: str) -> Any:
    value = json.loads(text)
    return _denormalize(value)


def _denormalize(value: Any) -> Any:
    if isinstance(value, list):
        return [_denormalize(item) for item in value]
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def resolve_key_path(value: Any, key_path: str | list[str]) -> Any:
    """Evaluate a key path against a row.

    A string path walks dotted properties through nested objects. A list
    path evaluates each member and yields a compound key.

    Returns:
        The resolved value, or MISSING if any step is absent
    """
    if isinstance(key_path, (list, tuple)):
        parts = []
        for member in key_path:
            resolved = resolve_key_path(value, member)
            if resolved is MISSING:
                return MISSING
            parts.append(resolved)
        return parts
    if key_path == "":
        return value
    current = value
    for step in key_path.split("."):
        if not isinstance(current, dict) or step not in current:
            return MISSING
        current = current[step]
    return current


def in_range(key: Any, lower: Any, upper: Any) -> bool:
    """Inclusive bound check; None bounds are open."""
    if lower is not None and compare_keys(key, lower) < 0:
        return False
    if upper is not None and compare_keys(key, upper) > 0:
        return False
    return True


def collect_path_values(value: Any, path: str) -> list[Any]:
    """Every value found at a dot-path, stepping into lists element-wise."""
    if path == "":
        return [value]
    step, _, rest = path.partition(".")
    if isinstance(value, list):
        found: list[Any] = []
        for item in value:
            found.extend(collect_path_values(item, path))
        return found
    if not isinstance(value, dict) or step not in value:
        return []
    return collect_path_values(value[step], rest)

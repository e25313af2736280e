"""
Storage engine for LinkStore.

- StorageEngine: Versioned SQLite object-store database
- UpgradeTransaction: Structural operations during a version upgrade
- keys: Key validity, ordering, encoding and identity extraction
"""

from .engine import IndexDef, StorageEngine, UpgradeTransaction
from .keys import (
    compare_keys,
    extract_primary_key,
    extract_uuid,
    is_valid_key,
    resolve_key_path,
)

__all__ = [
    "StorageEngine",
    "UpgradeTransaction",
    "IndexDef",
    "compare_keys",
    "extract_primary_key",
    "extract_uuid",
    "is_valid_key",
    "resolve_key_path",
]

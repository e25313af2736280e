"""
Schema module for LinkStore.

This module describes how entities are split into collections and indexed:
- Declarative types (CollectionOptions, triggers, cascade policies)
- The link graph between collections
- The durable schema registry

Invariants:
    - Collection names are unique per registry
    - Links never form cycles
    - Every structural change bumps the registry version

How to change safely:
    - Add new option fields with defaults
    - Never change persisted enum values or serialized keys
"""

from .links import LinkGraph
from .registry import SchemaRegistry, convert_trigger
from .types import (
    ID_KEY,
    STORE_KEY,
    AncestorLink,
    CollectionOptions,
    DeleteCascade,
    DeleteResult,
    IndexCleanup,
    IndexTrigger,
    Mutations,
    OptionsTrigger,
    ParamRule,
    PersistResult,
    SearchProperty,
    Settings,
    UuidRule,
)

__all__ = [
    # Types
    "ID_KEY",
    "STORE_KEY",
    "CollectionOptions",
    "DeleteCascade",
    "IndexTrigger",
    "OptionsTrigger",
    "UuidRule",
    "ParamRule",
    "SearchProperty",
    "IndexCleanup",
    "Mutations",
    "Settings",
    "AncestorLink",
    "PersistResult",
    "DeleteResult",
    # Graph
    "LinkGraph",
    # Registry
    "SchemaRegistry",
    "convert_trigger",
]

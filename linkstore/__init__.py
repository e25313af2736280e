"""
LinkStore - Linked-object persistence and query engine.

This package stores arbitrary nested JSON-like objects across named
collections and is used to fake a backend during frontend development:
- Nested sub-objects under declared links are split into their own
  collections and re-attached on read
- Secondary indices are inferred from a sample of the content, compound
  trigger indices from declared triggers
- Writes spanning several collections happen in one transaction and
  refresh the copies embedded in parent rows
- Deletes prune embedded copies according to a cascade policy

Architecture:
    ┌────────────────────┐
    │ PersistenceService │  (facade, HTTP surface, seed CLI)
    └─────────┬──────────┘
              │
    ┌─────────┼──────────────┬──────────────────┐
    ▼         ▼              ▼                  ▼
  Store    Retrieve       Delete          SchemaRegistry ── LinkGraph
 Service   Service        Service               │
    │         │              │                  ▼
    └─────────┴──────┬───────┘              Sidecar (JSON)
                     ▼
              StorageEngine (SQLite)

Invariants:
    - Every stored row carries `__pkey__`; callers never see it
    - The registry is the authority on structure; storage follows it on
      the next open
    - Links never form cycles

How to change safely:
    - Structural changes go through the registry and a version bump
    - Persisted settings keys and cascade values never change
"""

from ._version import __version__
from .config import LinkStoreConfig
from .errors import (
    CollectionNotRegisteredError,
    InvalidTemplateError,
    LinkCycleError,
    LinkStoreError,
    PrimaryKeyMissingError,
    StorageOpenError,
    StorageUnsupportedError,
    StoreDeleteError,
    StoreError,
    StoreWriteError,
    TriggerNotFoundError,
)
from .persistence import PersistenceService
from .query import KeyOptions, PageOptions, SearchOptions, SortDirection, SortOptions
from .schema import (
    CollectionOptions,
    DeleteCascade,
    DeleteResult,
    IndexTrigger,
    ParamRule,
    PersistResult,
    SearchProperty,
    UuidRule,
)
from .triggers import RequestContext

__all__ = [
    "__version__",
    # Facade
    "PersistenceService",
    "LinkStoreConfig",
    # Options
    "CollectionOptions",
    "DeleteCascade",
    "IndexTrigger",
    "UuidRule",
    "ParamRule",
    "SearchProperty",
    # Queries
    "KeyOptions",
    "PageOptions",
    "SearchOptions",
    "SortOptions",
    "SortDirection",
    "RequestContext",
    # Results
    "PersistResult",
    "DeleteResult",
    # Errors
    "LinkStoreError",
    "PrimaryKeyMissingError",
    "CollectionNotRegisteredError",
    "TriggerNotFoundError",
    "LinkCycleError",
    "StorageOpenError",
    "StoreError",
    "StoreWriteError",
    "StoreDeleteError",
    "StorageUnsupportedError",
    "InvalidTemplateError",
]

"""
Coordinators behind the LinkStore facade.

- StoreService: Decomposes entities into rows and writes them
- RetrieveService: Reads, re-attaches, sorts, filters and paginates rows
- DeleteService: Deletes rows and collections, pruning ancestor rows

Invariants:
    - Coordinators never open or upgrade storage themselves, except
      DeleteService.drop_collection which must apply a removal
    - Fan-out over keys or collections runs sequentially
"""

from .delete import DeleteService, apply_cascade
from .retrieve import RetrieveService, strip_internal_keys, traverse_item_path
from .store import StoreService

__all__ = [
    "StoreService",
    "RetrieveService",
    "DeleteService",
    "apply_cascade",
    "strip_internal_keys",
    "traverse_item_path",
]

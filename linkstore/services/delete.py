"""
Delete coordinator for LinkStore.

Removes rows or whole collections and prunes the copies embedded in
ancestor rows:
- delete_rows() deletes rows by key, then applies each ancestor's cascade
  policy to embedded values carrying one of the deleted keys
- drop_collection() removes collections from the registry, upgrades the
  storage structure and, unless the policy is KEEP, rewrites every
  ancestor row holding the embedding path

Invariants:
    - Ancestor rows are copied before they are changed; several changes
      to one row accumulate on the same copy
    - Rewritten ancestor rows are written in a single transaction
    - Results list the target first, then one record per ancestor,
      nearest first

How to change safely:
    - Ancestors must be computed before registry.remove(), which forgets
      the links they are derived from
"""

from __future__ import annotations

import copy
import logging
from typing import Any

from ..schema.registry import SchemaRegistry
from ..schema.types import ID_KEY, AncestorLink, DeleteCascade, DeleteResult
from ..storage.engine import StorageEngine
from .store import StoreService, as_list

logger = logging.getLogger(__name__)


def _carries_key(value: Any, keys: list[Any]) -> bool:
    return isinstance(value, dict) and value.get(ID_KEY) in keys


def _overwrite(item: dict[str, Any], prop: str, cascade: DeleteCascade) -> None:
    if cascade == DeleteCascade.DELETE:
        item.pop(prop, None)
    elif cascade in (DeleteCascade.NULL, DeleteCascade.UNDEFINED):
        item[prop] = None


def apply_cascade(
    item: Any, path: list[str], cascade: DeleteCascade, keys: list[Any] | None = None
) -> bool:
    """Apply a cascade policy to the value at a path, in place.

    Lists met on the way are walked element-wise. Without `keys` the value
    at the end of the path is always affected. With `keys` only embedded
    values whose `__pkey__` is listed are: a matching single value is
    handled as a whole, matching list elements are removed (DELETE) or
    replaced by None (NULL/UNDEFINED).

    Returns:
        Whether the item changed
    """
    if cascade == DeleteCascade.KEEP:
        return False
    if not path or not isinstance(item, dict) or path[0] not in item:
        return False

    prop, value = path[0], item[path[0]]
    if len(path) > 1:
        if isinstance(value, list):
            changed = False
            for nested in value:
                changed = apply_cascade(nested, path[1:], cascade, keys) or changed
            return changed
        return apply_cascade(value, path[1:], cascade, keys)

    if keys is None:
        _overwrite(item, prop, cascade)
        return True

    if isinstance(value, list):
        if not any(_carries_key(nested, keys) for nested in value):
            return False
        if cascade == DeleteCascade.DELETE:
            item[prop] = [nested for nested in value if not _carries_key(nested, keys)]
        else:
            item[prop] = [None if _carries_key(nested, keys) else nested for nested in value]
        return True

    if not _carries_key(value, keys):
        return False
    _overwrite(item, prop, cascade)
    return True


class DeleteService:
    """Deletes rows and collections, pruning ancestor rows.

    Example:
        >>> service = DeleteService(registry, engine, store_service)
        >>> results = await service.delete_rows("Location", ["1"])
        >>> [(r.collection, r.cascade) for r in results]
        [('Location', <DeleteCascade.DELETE: 'DELETE_PROPERTY'>), ('Person', <DeleteCascade.KEEP: 'KEEP_PROPERTY'>)]
    """

    def __init__(
        self, registry: SchemaRegistry, engine: StorageEngine, store_service: StoreService
    ) -> None:
        self.registry = registry
        self.engine = engine
        self.store_service = store_service

    async def delete_rows(self, collection: str, keys: list[Any]) -> list[DeleteResult]:
        """Delete rows by key and prune embedded copies in ancestors.

        Each ancestor uses its own declared cascade policy, KEEP when none
        was declared.

        Raises:
            StoreError: If the collection does not exist
            StoreDeleteError: If a row cannot be deleted
        """
        deleted = await self.engine.delete_many(collection, keys)
        logger.info(
            f"Deleted {len(deleted)} row(s) from {collection}",
            extra={"collection": collection, "keys": deleted},
        )
        results = [DeleteResult(collection, deleted, "", DeleteCascade.DELETE)]
        ancestors = self.registry.graph.ancestors_of(collection)
        results.extend(await self._prune(ancestors, cascade=None, keys=list(deleted)))
        return results

    async def drop_collection(
        self, names: str | list[str], cascade: DeleteCascade = DeleteCascade.KEEP
    ) -> list[DeleteResult]:
        """Remove collections and prune every ancestor holding them.

        The storage engine is reopened at the bumped registry version so the
        collections and stale ancestor indices are deleted before pruning.

        Args:
            names: One collection or several
            cascade: Policy applied to every ancestor row
        """
        names = as_list(names)
        ancestors: list[AncestorLink] = []
        for name in names:
            found = self.registry.graph.ancestors_of(name)
            ancestors.extend(link for link in found if link not in ancestors)
            self.registry.remove(name, found)

        await self.engine.open(self.registry.version, self.registry.apply_mutations)

        results = [DeleteResult(name, [], "", cascade) for name in names]
        if cascade == DeleteCascade.KEEP:
            return results

        remaining = [link for link in ancestors if link.collection not in names]
        results.extend(await self._prune(remaining, cascade=cascade, keys=None))
        return results

    async def _prune(
        self,
        ancestors: list[AncestorLink],
        cascade: DeleteCascade | None,
        keys: list[Any] | None,
    ) -> list[DeleteResult]:
        results: list[DeleteResult] = []
        changed: dict[str, dict[Any, dict[str, Any]]] = {}

        for ancestor in ancestors:
            policy = cascade or self._declared_cascade(ancestor.collection)
            result = DeleteResult(ancestor.collection, [], ancestor.dotted_path, policy)
            results.append(result)
            if policy == DeleteCascade.KEEP or not await self.engine.has_collection(ancestor.collection):
                continue

            rows = changed.setdefault(ancestor.collection, {})
            for stored in await self.engine.get_all(ancestor.collection):
                identity = stored.get(ID_KEY)
                row = rows.get(identity) or copy.deepcopy(stored)
                if apply_cascade(row, list(ancestor.path), policy, keys):
                    rows[identity] = row
                    result.primary_keys.append(identity)

            logger.debug(
                f"Pruned {len(result.primary_keys)} row(s) of {ancestor.collection}",
                extra={"collection": ancestor.collection, "path": result.path, "cascade": policy.value},
            )

        queue = {name: list(rows.values()) for name, rows in changed.items() if rows}
        if queue:
            await self.store_service.commit(queue)
        return results

    def _declared_cascade(self, collection: str) -> DeleteCascade:
        if not self.registry.has_options(collection):
            return DeleteCascade.KEEP
        return self.registry.get_options(collection).cascade or DeleteCascade.KEEP

"""
Write coordinator for LinkStore.

Turns caller content into rows and writes them:
1. create_queue() splits a nested object graph into per-collection row
   lists by following the link graph, collapsing repeated entities
2. relink_ancestors() refreshes the embedded copies held by rows that
   already reference a rewritten entity, transitively up the chain
3. commit() tags every row with `__pkey__`, tags embedded linked values
   with `__pkey__`/`__store__`, and writes all collections in one
   transaction

Invariants:
    - At most one row per identity per collection per call
    - Caller content is never mutated; rows are copied before tagging
    - Queue order is the order collections are first encountered
    - Rows written before a failing row stay written

How to change safely:
    - Anything that changes the shape of tagged rows changes what the
      retrieve and delete coordinators see; update them together
"""

from __future__ import annotations

import logging
from typing import Any

from ..errors import PrimaryKeyMissingError
from ..schema.registry import SchemaRegistry
from ..schema.types import ID_KEY, STORE_KEY, CollectionOptions
from ..storage.engine import StorageEngine
from ..storage.keys import extract_uuid

logger = logging.getLogger(__name__)

Queue = dict[str, list[dict[str, Any]]]


def has_identity(item: Any, primary_key: str) -> bool:
    """Whether an entity carries a usable primary-key value."""
    if not isinstance(item, dict):
        return False
    value = item.get(primary_key)
    if isinstance(value, bool) or value is None:
        return False
    if isinstance(value, str):
        return value != ""
    return isinstance(value, (int, float))


def as_list(content: Any) -> list[Any]:
    return content if isinstance(content, list) else [content]


class StoreService:
    """Decomposes, re-links and writes entities.

    Example:
        >>> service = StoreService(registry, engine)
        >>> queue = service.create_queue("Person", [{"@id": "/api/people/p1", "location": {...}}])
        >>> list(queue)
        ['Person', 'Location']
        >>> await service.update_content("Person", queue)
        ['p1']
    """

    def __init__(self, registry: SchemaRegistry, engine: StorageEngine) -> None:
        self.registry = registry
        self.engine = engine

    def identity_of(self, collection: str, item: dict[str, Any]) -> Any:
        options = self.registry.get_options(collection)
        return extract_uuid(item.get(options.primary_key))

    # -- decomposition --------------------------------------------------------

    def create_queue(self, collection: str, content: dict[str, Any] | list[dict[str, Any]]) -> Queue:
        """Split content into rows per collection.

        Nested values under linked properties that carry the linked
        collection's primary key are queued for that collection as well;
        values without one stay embedded as plain data.

        Raises:
            CollectionNotRegisteredError: If the collection has no options
            PrimaryKeyMissingError: If a top-level entity has no identity
        """
        options = self.registry.get_options(collection)
        items = as_list(content)
        for item in items:
            if not has_identity(item, options.primary_key):
                raise PrimaryKeyMissingError(collection, options.primary_key)

        queue: Queue = {}
        seen: dict[str, set[Any]] = {}
        self._enqueue(collection, items, queue, seen)
        logger.debug(
            f"Queued content for {collection}",
            extra={"collections": {name: len(rows) for name, rows in queue.items()}},
        )
        return queue

    def _enqueue(
        self,
        collection: str,
        items: list[dict[str, Any]],
        queue: Queue,
        seen: dict[str, set[Any]],
    ) -> None:
        options = self.registry.get_options(collection)
        bucket = queue.setdefault(collection, [])
        identities = seen.setdefault(collection, set())
        children = self.registry.graph.children_of(collection)

        for item in items:
            identity = extract_uuid(item.get(options.primary_key))
            if identity in identities:
                continue
            identities.add(identity)
            bucket.append(item)

            for prop, child in children.items():
                nested = item.get(prop)
                if not isinstance(nested, (dict, list)) or not self.registry.has_options(child):
                    continue
                child_key = self.registry.get_options(child).primary_key
                matches = [value for value in as_list(nested) if has_identity(value, child_key)]
                if matches:
                    self._enqueue(child, matches, queue, seen)

    # -- tagging ------------------------------------------------------------

    def tag_relations(self, collection: str, row: dict[str, Any]) -> dict[str, Any]:
        """Copy of a row whose linked values carry `__pkey__` and `__store__`."""
        tagged = dict(row)
        for prop, child in self.registry.graph.children_of(collection).items():
            value = tagged.get(prop)
            if not isinstance(value, (dict, list)) or not self.registry.has_options(child):
                continue
            options = self.registry.get_options(child)
            if isinstance(value, list):
                tagged[prop] = [
                    self._tag_embedded(child, options, item) if isinstance(item, dict) else item
                    for item in value
                ]
            else:
                tagged[prop] = self._tag_embedded(child, options, value)
        return tagged

    def _tag_embedded(
        self, collection: str, options: CollectionOptions, value: dict[str, Any]
    ) -> dict[str, Any]:
        tagged = self.tag_relations(collection, value)
        if has_identity(value, options.primary_key):
            tagged[STORE_KEY] = collection
            tagged[ID_KEY] = extract_uuid(value[options.primary_key])
        return tagged

    def prepare_rows(self, collection: str, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Tag rows for storage: relations plus their own `__pkey__`."""
        options = self.registry.get_options(collection)
        prepared = []
        for row in rows:
            tagged = self.tag_relations(collection, row)
            tagged[ID_KEY] = extract_uuid(row.get(options.primary_key))
            prepared.append(tagged)
        return prepared

    # -- re-linking -----------------------------------------------------------

    async def relink_ancestors(self, queue: Queue) -> Queue:
        """Refresh stale embedded copies held by ancestor rows.

        For every queued row, stored rows of each direct parent collection
        that embed it are fetched, the fresh row is spliced in and the
        parent rows are queued. Parent rows are then treated the same way,
        so the refresh travels up the whole chain before anything is
        written. Rows the caller queued explicitly are left as given.

        Returns:
            The same queue, extended with refreshed ancestor rows
        """
        queued_ids = {
            collection: {self.identity_of(collection, row) for row in rows}
            for collection, rows in queue.items()
        }
        refreshed: dict[str, dict[Any, dict[str, Any]]] = {}
        pending: list[tuple[str, list[dict[str, Any]]]] = list(queue.items())

        while pending:
            child, rows = pending.pop(0)
            if not self.registry.has_options(child):
                continue
            child_options = self.registry.get_options(child)

            for link in self.registry.graph.parent_links(child):
                parent, prop = link.collection, link.property
                if not self.registry.has_options(parent) or not await self.engine.has_collection(parent):
                    continue
                updated: dict[Any, dict[str, Any]] = {}
                for row in rows:
                    if not has_identity(row, link.id_key):
                        continue
                    identity = extract_uuid(row[link.id_key])
                    fresh = self._tag_embedded(child, child_options, row)
                    stored_rows = await self.engine.find_by_path(parent, f"{prop}.{ID_KEY}", identity)
                    for stored in stored_rows:
                        parent_id = stored.get(ID_KEY)
                        if parent_id in queued_ids.get(parent, ()):
                            continue
                        by_id = refreshed.setdefault(parent, {})
                        target = by_id.get(parent_id)
                        if target is None:
                            target = by_id[parent_id] = stored
                            queue.setdefault(parent, []).append(target)
                        _splice(target, prop, identity, fresh)
                        updated[parent_id] = target
                if updated:
                    logger.debug(
                        f"Re-linked {len(updated)} row(s) of {parent} to {child}",
                        extra={"parent": parent, "child": child, "property": prop},
                    )
                    pending.append((parent, list(updated.values())))
        return queue

    # -- writing --------------------------------------------------------------

    async def commit(self, queue: Queue) -> dict[str, list[Any]]:
        """Write every queued collection in one transaction.

        Returns:
            Collection -> keys written

        Raises:
            StoreError: If a queued collection does not exist
            StoreWriteError: If rows were rejected (other rows stay written)
        """
        batches = {
            collection: self.prepare_rows(collection, rows)
            for collection, rows in queue.items()
            if rows
        }
        if not batches:
            return {}
        return await self.engine.put_many(batches)

    async def update_content(self, collection: str, queue: Queue) -> list[Any]:
        """Re-link ancestors, write the queue and return the collection's keys."""
        await self.relink_ancestors(queue)
        written = await self.commit(queue)
        return written.get(collection, [])


def _splice(target: dict[str, Any], prop: str, identity: Any, fresh: dict[str, Any]) -> None:
    """Replace the embedded value with a given identity under a property."""
    value = target.get(prop)
    if isinstance(value, list):
        target[prop] = [
            fresh if isinstance(item, dict) and item.get(ID_KEY) == identity else item
            for item in value
        ]
    else:
        target[prop] = fresh

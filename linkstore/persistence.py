"""
Public facade of LinkStore.

PersistenceService wires the registry, the storage engine and the three
coordinators together and is the only object callers need:

    service = PersistenceService(LinkStoreConfig.from_env())
    await service.initialize()
    await service.persist(people, person_options)
    person = await service.read_by_key("Person", KeyOptions("p1"))

Invariants:
    - Calls that change structure (persist, add, update, deletes, drops)
      are serialized by one lock
    - The storage engine is always open at the registry version before
      rows are read or written
    - Everything returned to callers is stripped of `__pkey__`/`__store__`

How to change safely:
    - Register options before building the queue; the queue follows the
      link graph the registration produced
    - Derive indices before opening; the upgrade creates what the index
      map lists
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .config import LinkStoreConfig
from .generate import TemplateGenerator, ValueGenerator
from .query import KeyOptions, PageOptions, SearchOptions, SortOptions
from .schema.registry import SchemaRegistry
from .schema.types import ID_KEY, CollectionOptions, DeleteCascade, DeleteResult, PersistResult
from .services.delete import DeleteService
from .services.retrieve import Predicate, RetrieveService, strip_internal_keys
from .services.store import StoreService, as_list
from .sidecar.base import SidecarStore, create_sidecar
from .storage.engine import StorageEngine
from .storage.keys import extract_primary_key, extract_uuid
from .triggers import RequestContext, TriggerResolver, is_search_trigger

logger = logging.getLogger(__name__)


class PersistenceService:
    """Linked-object persistence and query engine.

    Example:
        >>> service = PersistenceService()
        >>> await service.initialize()
        >>> await service.persist(
        ...     [{"@id": "/api/people/p1", "location": {"@id": "/api/locations/1"}}],
        ...     CollectionOptions(
        ...         name="Person",
        ...         primary_key="@id",
        ...         linked_keys={"location": CollectionOptions(name="Location", primary_key="@id")},
        ...     ),
        ... )
        [PersistResult(collection='Person', rows=1, ...), PersistResult(collection='Location', rows=1, ...)]
    """

    def __init__(
        self,
        config: LinkStoreConfig | None = None,
        sidecar: SidecarStore | None = None,
        generator: ValueGenerator | None = None,
    ) -> None:
        """Wire the engine together without touching storage.

        Args:
            config: Configuration; defaults are used when omitted
            sidecar: Settings store; built from the config when omitted
            generator: Fills absent fields for add(); TemplateGenerator by default
        """
        self.config = config or LinkStoreConfig()
        storage = self.config.storage
        self.registry = SchemaRegistry(
            sidecar if sidecar is not None else create_sidecar(storage),
            index_sample_size=self.config.engine.index_sample_size,
        )
        self.engine = StorageEngine(
            storage.data_dir,
            storage.database_name,
            wal_mode=storage.wal_mode,
            busy_timeout_ms=storage.busy_timeout_ms,
            cache_size_pages=storage.cache_size_pages,
        )
        self.generator = generator or TemplateGenerator()
        self.store = StoreService(self.registry, self.engine)
        self.retrieve = RetrieveService(self.registry, self.engine)
        self.deleter = DeleteService(self.registry, self.engine, self.store)
        self.resolver = TriggerResolver()
        self._lock = asyncio.Lock()

    # -- lifecycle ------------------------------------------------------------

    async def initialize(self) -> None:
        """Load the registry and open storage at its version.

        Raises:
            StorageUnsupportedError: If the environment cannot host storage
            StorageOpenError: If storage is ahead of the registry
        """
        async with self._lock:
            self.registry.load()
            await self._ensure_open()
        logger.info(
            f"LinkStore initialized at version {self.registry.version}",
            extra={"path": str(self.engine.path), "collections": self.registry.collection_names()},
        )

    async def close(self) -> None:
        await self.engine.close()

    async def _ensure_open(self) -> None:
        if self.engine.is_open and self.engine.version == self.registry.version:
            return
        await self.engine.open(self.registry.version, self.registry.apply_mutations)

    async def _sync_structure(self, derived: dict[str, list[str]]) -> None:
        await self._ensure_open()
        for collection, indices in derived.items():
            if not await self.engine.has_collection(collection):
                break
            existing = set(await self.engine.index_names(collection))
            if any(name not in existing for name in indices):
                break
        else:
            return
        self.registry.mark_structure_changed()
        await self._ensure_open()

    # -- writes ---------------------------------------------------------------

    async def persist(
        self, content: dict[str, Any] | list[dict[str, Any]], options: CollectionOptions
    ) -> list[PersistResult]:
        """Register options and store content across the linked collections.

        Nested entities under linked properties are split into rows of their
        own collections. Rows already embedding a written entity are
        refreshed. With `options.store_content` False only the structure is
        created.

        Returns:
            One result per collection touched, in queue order

        Raises:
            LinkCycleError: If the options link back onto themselves
            PrimaryKeyMissingError: If a top-level entity has no identity
            StoreWriteError: If rows were rejected; earlier rows stay written
        """
        async with self._lock:
            self.registry.register_or_update(options)
            queue = self.store.create_queue(options.name, content)
            derived = self.registry.update_index_map(queue)
            await self._ensure_open()

            if not options.store_content:
                return [PersistResult(name, 0, derived.get(name, [])) for name in queue]

            await self.store.relink_ancestors(queue)
            written = await self.store.commit(queue)

        results = [
            PersistResult(name, len(written.get(name, [])), derived.get(name, []))
            for name in queue
        ]
        logger.info(
            f"Persisted content for {options.name}",
            extra={"results": [result.to_dict() for result in results]},
        )
        return results

    async def add(
        self,
        collection: str,
        content: dict[str, Any] | list[dict[str, Any]],
        template: Any = None,
    ) -> dict[str, Any] | list[dict[str, Any]] | None:
        """Add entities to a registered collection.

        Fields absent from an entity are generated from `template`, which is
        how a missing identity gets one.

        Returns:
            The stored entity, or a list when a list was given

        Raises:
            CollectionNotRegisteredError: If the collection is unknown
            PrimaryKeyMissingError: If an entity still has no identity
        """
        items = as_list(content)
        if template is not None:
            items = [self._fill_from_template(item, template) for item in items]
        stored = await self._write(collection, items)
        if not isinstance(content, list):
            return stored[0] if stored else None
        return stored

    async def update(
        self, collection: str, content: dict[str, Any] | list[dict[str, Any]]
    ) -> dict[str, Any] | list[dict[str, Any]] | None:
        """Overwrite entities of a registered collection.

        Returns:
            The stored entity when exactly one was written, else a list
        """
        stored = await self._write(collection, as_list(content))
        return stored[0] if len(stored) == 1 else stored

    def _fill_from_template(self, item: dict[str, Any], template: Any) -> dict[str, Any]:
        generated = self.generator.generate(template)
        filled = dict(item)
        if isinstance(generated, dict):
            for key, value in generated.items():
                filled.setdefault(key, value)
        return filled

    async def _write(self, collection: str, items: list[dict[str, Any]]) -> list[dict[str, Any]]:
        async with self._lock:
            self.registry.get_options(collection)
            queue = self.store.create_queue(collection, items)
            derived = self.registry.update_index_map(queue)
            await self._sync_structure(derived)
            keys = await self.store.update_content(collection, queue)
            rows = await self.retrieve.get_by_keys(collection, keys)
        return strip_internal_keys(rows)

    # -- reads ----------------------------------------------------------------

    async def read_by_key(
        self, collection: str, options: KeyOptions
    ) -> dict[str, Any] | list[dict[str, Any]] | None:
        """Rows by primary key, or by the value of an index.

        Keys are reduced to identities first, so URLs work as keys. Linked
        entities are re-attached from their own collections.

        Returns:
            A single entity (or None) for a single key, else a list
        """
        self.registry.set_counter(collection, 0)
        await self._ensure_open()
        keys = [extract_uuid(key) for key in options.keys]
        index = options.index if options.index and options.index != ID_KEY else None
        rows = strip_internal_keys(await self.retrieve.get_by_keys(collection, keys, index))
        if options.single:
            return rows[0] if rows else None
        return rows

    async def read_page(
        self,
        collection: str,
        page: PageOptions | None = None,
        sort: SortOptions | None = None,
    ) -> list[dict[str, Any]]:
        """A sorted page of a collection; the counter holds the total."""
        self.registry.set_counter(collection, 0)
        await self._ensure_open()
        rows = await self.retrieve.get_sorted(collection, sort)
        return strip_internal_keys(self.retrieve.paginate(rows, page))

    async def read_by_trigger(
        self,
        collection: str,
        trigger_name: str,
        request: RequestContext,
        sort: SortOptions | None = None,
        page: PageOptions | None = None,
    ) -> list[dict[str, Any]]:
        """Rows selected by a named trigger for a request.

        Multi-valued parameters are expanded into every combination; their
        results are merged without duplicates before sorting and paging.

        Raises:
            TriggerNotFoundError: If the collection declares no such trigger
        """
        self.registry.set_counter(collection, 0)
        trigger = self.registry.get_trigger(collection, trigger_name)
        await self._ensure_open()

        method = self.retrieve.search_by_trigger if is_search_trigger(trigger) else self.retrieve.get_by_trigger
        combinations = self.resolver.combinations(trigger, request)
        if len(combinations) == 1:
            start, end = combinations[0]
            rows = await method(collection, trigger, start, end, sort, page)
            return strip_internal_keys(rows)

        merged: list[dict[str, Any]] = []
        seen: set[str] = set()
        for start, end in combinations:
            for row in await method(collection, trigger, start, end):
                identity = repr(row.get(ID_KEY))
                if identity in seen:
                    continue
                seen.add(identity)
                merged.append(row)
        rows = self.retrieve.paginate(self.retrieve.sort(collection, merged, sort), page)
        return strip_internal_keys(rows)

    async def search(
        self,
        collection: str,
        search: SearchOptions,
        page: PageOptions | None = None,
        sort: SortOptions | None = None,
    ) -> list[dict[str, Any]]:
        """Rows whose value at a dot-path contains a term, case-insensitively."""
        await self._ensure_open()
        rows = await self.retrieve.get_sorted(collection, sort)
        return strip_internal_keys(self.retrieve.match_search_term(collection, rows, search, page))

    async def filter(
        self,
        collection: str,
        predicate: Predicate,
        context: Any = None,
        page: PageOptions | None = None,
        sort: SortOptions | None = None,
    ) -> list[dict[str, Any]]:
        """Rows for which predicate(row, context) is true."""
        await self._ensure_open()
        rows = await self.retrieve.get_sorted(collection, sort)
        return strip_internal_keys(self.retrieve.match_callback(collection, rows, predicate, context, page))

    async def find(
        self, collection: str, predicate: Predicate, context: Any = None
    ) -> dict[str, Any] | None:
        """The first row, in key order, for which predicate(row, context) is true."""
        await self._ensure_open()
        for row in await self.retrieve.get_sorted(collection):
            if predicate(row, context):
                return strip_internal_keys(row)
        return None

    # -- deletes --------------------------------------------------------------

    async def delete_rows(self, collection: str, keys: Any) -> list[DeleteResult]:
        """Delete rows and prune their copies embedded in ancestor rows."""
        async with self._lock:
            await self._ensure_open()
            identities = [extract_uuid(key) for key in as_list(keys)]
            return await self.deleter.delete_rows(collection, identities)

    async def drop_collection(
        self, names: str | list[str], cascade: DeleteCascade = DeleteCascade.KEEP
    ) -> list[DeleteResult]:
        """Drop collections; ancestors are rewritten unless cascade is KEEP."""
        async with self._lock:
            await self._ensure_open()
            return await self.deleter.drop_collection(names, cascade)

    async def clear(self, collection: str) -> bool:
        """Remove every row of a collection but keep its structure and options."""
        async with self._lock:
            await self._ensure_open()
            if await self.engine.has_collection(collection):
                await self.engine.clear(collection)
            self.registry.set_counter(collection, 0)
        return True

    async def drop_database(self) -> None:
        """Delete the database file, the settings and every in-memory map."""
        async with self._lock:
            await self.engine.delete_database()
            self.registry.reset()

    # -- helpers --------------------------------------------------------------

    def get_counter(self, collection: str) -> int:
        """Total results of the last scan, trigger, search or filter call."""
        return self.registry.get_counter(collection)

    def uuid_from(self, value: str, index: int | None = None) -> Any:
        """The n-th UUID in a value, or its identity when no index is given."""
        return extract_primary_key(value, index)

    def retrieve_by_key(self, prop: str | None, primary_keys: Any) -> KeyOptions:
        """Key options matching rows that embed the given entities under `prop`.

        Example:
            >>> service.retrieve_by_key("location", "/api/locations/1")
            KeyOptions(primary_keys='1', index='location.__pkey__')
        """
        if isinstance(primary_keys, (list, tuple)):
            keys: Any = [extract_uuid(key) for key in primary_keys]
        else:
            keys = extract_uuid(primary_keys)
        return KeyOptions(primary_keys=keys, index=f"{prop}.{ID_KEY}" if prop else ID_KEY)

"""
Settings & Schema Registry for LinkStore.

The SchemaRegistry is the single authority on what the database should
look like. It owns:
- Collection options, keyed by collection name
- The link graph between collections
- Converted triggers per collection
- The structural (index) map: collection -> {index name: unique}
- Pending structural mutations and the structural version
- Per-collection "last total results" counters

Structural state is durable: every mutation is written to the sidecar
straight away. The storage engine is only told about it on the next open,
when apply_mutations() runs inside the version upgrade.

Invariants:
    - version only ever increases while the registry lives
    - Options stored here never carry linked keys; links live in the graph
    - `__pkey__` is the key path of every collection, never an index
    - Index names of plain paths equal their dot-path
    - A trigger index is named after its key path joined with ", "

How to change safely:
    - Anything added to Settings must round-trip through the sidecar
    - Bump version for every change the storage engine has to apply
    - Keep the sample size small; index derivation runs on every persist

Example:
    >>> registry = SchemaRegistry(InMemorySidecar())
    >>> registry.load()
    >>> registry.register_or_update(CollectionOptions(name="Location", primary_key="@id"))
    >>> registry.version
    1
"""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING, Any

from ..errors import CollectionNotRegisteredError, TriggerNotFoundError
from ..sidecar.base import INDEX_MAP_KEY, SETTINGS_KEY, SidecarStore
from .links import LinkGraph
from .types import (
    ID_KEY,
    INTERNAL_KEYS,
    AncestorLink,
    CollectionOptions,
    IndexCleanup,
    IndexTrigger,
    Mutations,
    OptionsTrigger,
    ParamRule,
    Settings,
)

if TYPE_CHECKING:
    from ..storage.engine import UpgradeTransaction

logger = logging.getLogger(__name__)

# Keys usable as index paths: identifier-like start, no dashes
_INDEXABLE_KEY = re.compile(r"^[a-zA-Z_$]")


def convert_trigger(collection: str, trigger: IndexTrigger) -> OptionsTrigger:
    """Convert a declared trigger into the indices that serve it.

    Every rule contributes its path to the compound key path, with
    `.__pkey__` appended for primary-key rules. A search rule with
    `search_in` paths adds one index over the key path collected so far
    without itself, plus one per plain-string search path appended to it.

    Example:
        >>> trigger = IndexTrigger("byLocation", (UuidRule("location", 0, primary_key=True),))
        >>> convert_trigger("Person", trigger).index
        'location.__pkey__'
    """
    key_path: list[str] = []
    search_in: list[tuple[str, tuple[str, ...]]] = []

    for rule in trigger.rules:
        path = f"{rule.property}.{ID_KEY}" if rule.primary_key else rule.property
        key_path.append(path)

        if not isinstance(rule, ParamRule) or not rule.search or not rule.search_in:
            continue

        no_path = [item for item in key_path if item != path]
        search_in.append((", ".join(no_path), tuple(no_path)))
        for item in rule.search_in:
            if not isinstance(item, str):
                continue
            extended = no_path + [item]
            search_in.append((", ".join(extended), tuple(extended)))

    return OptionsTrigger(
        name=trigger.name,
        collection=collection,
        index=", ".join(key_path),
        key_path=tuple(key_path),
        rules=tuple(trigger.rules),
        search_in=tuple(search_in),
    )


def _link_graph(links: dict[str, dict[str, str]], options: dict[str, CollectionOptions]) -> LinkGraph:
    return LinkGraph(links, {name: opts.primary_key for name, opts in options.items()})


def _is_indexable_name(name: str) -> bool:
    return bool(name) and name != ID_KEY and bool(_INDEXABLE_KEY.match(name)) and "-" not in name


def _index_key_path(key_path: tuple[str, ...]) -> str | list[str]:
    # One-member key paths index the plain value so scalar bounds match
    return key_path[0] if len(key_path) == 1 else list(key_path)


class SchemaRegistry:
    """Durable registry of options, links, triggers and index structure.

    Attributes:
        version: Structural version the storage engine must be opened at
        graph: Link graph built from the current links

    Example:
        >>> registry = SchemaRegistry(JsonFileSidecar("/tmp/ls/persistence.json"))
        >>> registry.load()
        >>> registry.get_options("Person")
        CollectionOptions(name='Person', ...)
    """

    def __init__(self, sidecar: SidecarStore, index_sample_size: int = 20) -> None:
        """Initialize an empty registry; call load() to read the sidecar.

        Args:
            sidecar: Durable small-object store
            index_sample_size: Entities per collection sampled for index keys
        """
        self._sidecar = sidecar
        self._sample_size = index_sample_size
        self._settings = Settings()
        self._index_map: dict[str, dict[str, bool]] = {}
        self._triggers: dict[str, dict[str, OptionsTrigger]] = {}
        self._counters: dict[str, int] = {}
        self._graph = LinkGraph()

    # -- loading and saving -------------------------------------------------

    def load(self) -> None:
        """Read settings and index map from the sidecar.

        Missing keys leave the registry uninitialized (version 0).
        """
        raw_settings = self._sidecar.get(SETTINGS_KEY)
        raw_index_map = self._sidecar.get(INDEX_MAP_KEY)

        self._settings = Settings.from_dict(json.loads(raw_settings)) if raw_settings else Settings()
        self._index_map = (
            {name: dict(indices) for name, indices in json.loads(raw_index_map)}
            if raw_index_map
            else {}
        )
        self._triggers = {}
        for trigger in self._settings.triggers:
            self._triggers.setdefault(trigger.collection, {})[trigger.name] = trigger
        self._graph = _link_graph(self._settings.links, self._settings.options)
        self._counters = {}
        logger.debug(
            "Loaded registry",
            extra={"version": self._settings.version, "collections": list(self._index_map)},
        )

    def flush(self) -> None:
        """Write the complete state to the sidecar."""
        self._settings.triggers = [
            trigger for by_name in self._triggers.values() for trigger in by_name.values()
        ]
        self._sidecar.set(SETTINGS_KEY, json.dumps(self._settings.to_dict()))
        self._sidecar.set(
            INDEX_MAP_KEY,
            json.dumps([
                [name, [[index, unique] for index, unique in indices.items()]]
                for name, indices in self._index_map.items()
            ]),
        )

    def reset(self) -> None:
        """Forget everything and remove both sidecar keys."""
        self._sidecar.remove(SETTINGS_KEY)
        self._sidecar.remove(INDEX_MAP_KEY)
        self._settings = Settings()
        self._index_map = {}
        self._triggers = {}
        self._counters = {}
        self._graph = LinkGraph()
        logger.info("Registry reset")

    # -- accessors ------------------------------------------------------------

    @property
    def version(self) -> int:
        return self._settings.version

    @property
    def graph(self) -> LinkGraph:
        return self._graph

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def mutations(self) -> Mutations:
        return self._settings.mutations

    @property
    def index_map(self) -> dict[str, dict[str, bool]]:
        return {name: dict(indices) for name, indices in self._index_map.items()}

    def collection_names(self) -> list[str]:
        return list(self._index_map)

    def has_options(self, collection: str) -> bool:
        return collection in self._settings.options

    def get_options(self, collection: str) -> CollectionOptions:
        """Options registered for a collection.

        Raises:
            CollectionNotRegisteredError: If none were registered
        """
        options = self._settings.options.get(collection)
        if options is None:
            raise CollectionNotRegisteredError(collection)
        return options

    def get_trigger(self, collection: str, name: str) -> OptionsTrigger:
        """A converted trigger of a collection.

        Raises:
            TriggerNotFoundError: If the collection declares no such trigger
        """
        trigger = self._triggers.get(collection, {}).get(name)
        if trigger is None:
            raise TriggerNotFoundError(collection, name)
        return trigger

    def triggers_of(self, collection: str) -> list[OptionsTrigger]:
        return list(self._triggers.get(collection, {}).values())

    def set_counter(self, collection: str, total: int) -> None:
        self._counters[collection] = total

    def get_counter(self, collection: str) -> int:
        return self._counters.get(collection, 0)

    def export(self) -> dict[str, Any]:
        """Plain-dict view of the durable state."""
        return {
            "settings": self._settings.to_dict(),
            "index_map": self.index_map,
        }

    # -- registration ---------------------------------------------------------

    def register_or_update(self, options: CollectionOptions) -> None:
        """Register options for a collection and everything it links to.

        The top-level options replace what was known; linked options are
        only added when their collection is unknown. Link edges and
        triggers are refreshed, the collection is marked for structural
        update and the version is bumped.

        Raises:
            LinkCycleError: If the new links would form a cycle. Nothing is
                changed in that case.
        """
        registered = dict(self._settings.options)
        links = {name: dict(props) for name, props in self._settings.links.items()}
        triggers = {name: dict(by_name) for name, by_name in self._triggers.items()}

        self._flatten(options, registered, links, triggers, top_level=True, chain=[])
        graph = _link_graph(links, registered)
        graph.validate()

        self._settings.options = registered
        self._settings.links = links
        self._triggers = triggers
        self._graph = graph

        if options.name not in self._settings.mutations.update:
            self._settings.mutations.update.append(options.name)
        self._settings.version += 1
        self.flush()
        logger.info(
            f"Registered options for {options.name}",
            extra={"collection": options.name, "version": self._settings.version},
        )

    def _flatten(
        self,
        options: CollectionOptions,
        registered: dict[str, CollectionOptions],
        links: dict[str, dict[str, str]],
        triggers: dict[str, dict[str, OptionsTrigger]],
        top_level: bool,
        chain: list[str],
    ) -> None:
        if top_level or options.name not in registered:
            registered[options.name] = options.without_links()

        for trigger in options.triggers:
            triggers.setdefault(options.name, {})[trigger.name] = convert_trigger(
                options.name, trigger
            )

        for prop, linked in options.linked_keys.items():
            links.setdefault(options.name, {})[prop] = linked.name
            # A repeated name closes a cycle; the graph check reports it
            if linked.name in chain or linked.name == options.name:
                continue
            self._flatten(
                linked, registered, links, triggers, top_level=False, chain=chain + [options.name]
            )

    # -- index derivation -----------------------------------------------------

    def update_index_map(self, queue: dict[str, list[dict[str, Any]]]) -> dict[str, list[str]]:
        """Derive and merge the index set of every queued collection.

        At most `index_sample_size` entities per collection are inspected.

        Returns:
            Collection -> index names derived from this queue
        """
        derived: dict[str, list[str]] = {}
        for collection, items in queue.items():
            key_map = self.create_key_map(collection, items)
            stored = self._index_map.setdefault(collection, {})
            stored.update(key_map)
            derived[collection] = list(key_map)
        self.flush()
        return derived

    def mark_structure_changed(self) -> None:
        """Bump the version without recreating anything.

        The next open creates missing collections and indices only.
        """
        self._settings.version += 1
        self.flush()
        logger.debug("Structure changed", extra={"version": self._settings.version})

    def create_key_map(self, collection: str, items: list[dict[str, Any]]) -> dict[str, bool]:
        """Index name -> unique flag for a sample of entities.

        Booleans and lists are never indexed; nested objects are descended
        into and linked ones add `<path>.__pkey__` as a non-unique index.
        """
        key_map: dict[str, bool] = {}
        owner = collection if collection in self._settings.options else None
        for item in items[: self._sample_size]:
            self._collect_index_keys(item, key_map, owner, "")
        return key_map

    def _collect_index_keys(
        self,
        item: dict[str, Any],
        key_map: dict[str, bool],
        collection: str | None,
        path: str,
    ) -> None:
        options = self._settings.options.get(collection) if collection else None
        uniques = options.unique_keys if options else ()

        for key, value in item.items():
            key_path = f"{path}.{key}" if path else key
            if key in INTERNAL_KEYS or key_path in key_map or not _is_indexable_name(key):
                continue
            if isinstance(value, (bool, list)):
                continue
            if isinstance(value, dict):
                linked = self._graph.linked_collection(collection, key) if collection else None
                self._collect_index_keys(value, key_map, linked, key_path)
                if linked is not None:
                    key_map[f"{key_path}.{ID_KEY}"] = False
                continue
            key_map[key_path] = key in uniques

    # -- removal --------------------------------------------------------------

    def remove(self, collection: str, ancestors: list[AncestorLink]) -> None:
        """Forget a collection and plan its structural removal.

        Args:
            collection: Collection being dropped
            ancestors: Its ancestors, computed before the links are removed;
                every ancestor index and trigger whose path runs through the
                embedding path is scheduled for deletion
        """
        self._settings.options.pop(collection, None)
        self._triggers.pop(collection, None)

        links = {}
        for name, props in self._settings.links.items():
            if name == collection:
                continue
            kept = {prop: child for prop, child in props.items() if child != collection}
            if kept:
                links[name] = kept
        self._settings.links = links
        self._graph = _link_graph(links, self._settings.options)

        for ancestor in ancestors:
            if ancestor.collection == collection:
                continue
            self._plan_index_cleanup(ancestor)

        self._index_map[collection] = {}
        if collection in self._settings.mutations.update:
            self._settings.mutations.update.remove(collection)
        if collection not in self._settings.mutations.remove:
            self._settings.mutations.remove.append(collection)
        self._settings.version += 1
        self.flush()
        logger.info(
            f"Removed collection {collection}",
            extra={"collection": collection, "version": self._settings.version},
        )

    def _plan_index_cleanup(self, ancestor: AncestorLink) -> None:
        dotted = ancestor.dotted_path
        indices = self._index_map.get(ancestor.collection, {})

        stale = [name for name in indices if dotted in name]
        for trigger in list(self._triggers.get(ancestor.collection, {}).values()):
            if not any(dotted in path for path in trigger.key_path):
                continue
            del self._triggers[ancestor.collection][trigger.name]
            stale.append(trigger.index)
            stale.extend(name for name, _ in trigger.search_in)

        if not stale:
            return
        for name in stale:
            indices.pop(name, None)

        for cleanup in self._settings.mutations.indices:
            if cleanup.collection == ancestor.collection:
                cleanup.indices.extend(name for name in stale if name not in cleanup.indices)
                return
        self._settings.mutations.indices.append(IndexCleanup(ancestor.collection, stale))

    # -- structural upgrade ---------------------------------------------------

    def apply_mutations(self, tx: UpgradeTransaction) -> None:
        """Bring the storage structure in line with the registry.

        Runs inside StorageEngine.open() while the version is raised:
        - Collections marked for update are recreated empty with all indices
        - Unknown collections are created; existing ones gain missing indices
        - Removed collections are deleted
        - Scheduled index cleanups are applied
        Pending mutations are cleared afterwards.
        """
        mutations = self._settings.mutations
        removed = set(mutations.remove)

        for collection, indices in self._index_map.items():
            if collection in removed:
                continue
            exists = tx.has_collection(collection)
            if exists and collection in mutations.update:
                logger.debug(f"Recreating collection {collection}")
                tx.delete_collection(collection)
                exists = False
            if not exists:
                tx.create_collection(collection, ID_KEY)
            self._create_indices(tx, collection, indices)

        for collection in mutations.remove:
            if tx.has_collection(collection):
                tx.delete_collection(collection)
            self._index_map.pop(collection, None)

        for cleanup in mutations.indices:
            if not tx.has_collection(cleanup.collection):
                continue
            for name in cleanup.indices:
                if tx.has_index(cleanup.collection, name):
                    tx.delete_index(cleanup.collection, name)

        self._settings.mutations = Mutations()
        self.flush()

    def _create_indices(
        self, tx: UpgradeTransaction, collection: str, indices: dict[str, bool]
    ) -> None:
        existing = set(tx.index_names(collection))
        for name, unique in indices.items():
            if name in existing or not _is_indexable_name(name):
                continue
            tx.create_index(collection, name, name, unique)
            existing.add(name)

        for trigger in self.triggers_of(collection):
            if trigger.index and trigger.index not in existing:
                tx.create_index(collection, trigger.index, _index_key_path(trigger.key_path))
                existing.add(trigger.index)
            for name, key_path in trigger.search_in:
                if not key_path or name in existing:
                    continue
                tx.create_index(collection, name, _index_key_path(key_path))
                existing.add(name)

"""
Read coordinator for LinkStore.

Reads rows back out of the storage engine:
- By primary key or index value, with linked sub-entities re-attached
  from their own collections
- Whole collections, sorted
- Through trigger indices, as exact lookups or bounded search ranges
- Filtered by a search term or a predicate, then paginated

Every scan, trigger, search and filter call records the collection's
"last total results" counter, the number of results before pagination.

Invariants:
    - Lookups over several keys run one after another, in key order
    - Re-attaching never recurses into a row already on the current path
    - Sorting is stable; unorderable values compare equal
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable
from typing import Any

from ..schema.registry import SchemaRegistry
from ..schema.types import ID_KEY, INTERNAL_KEYS, OptionsTrigger, ParamRule, SearchProperty
from ..query import PageOptions, SearchOptions, SortDirection, SortOptions
from ..storage.engine import StorageEngine

logger = logging.getLogger(__name__)

Predicate = Callable[[dict[str, Any], Any], bool]


def strip_internal_keys(content: Any) -> Any:
    """Deep copy of content without `__pkey__`/`__store__` anywhere."""
    if isinstance(content, list):
        return [strip_internal_keys(item) for item in content]
    if isinstance(content, dict):
        return {
            key: strip_internal_keys(value)
            for key, value in content.items()
            if key not in INTERNAL_KEYS
        }
    return content


def matches_term(value: Any, term: str) -> bool:
    """Case-insensitive substring match against a leaf value."""
    if value is None or isinstance(value, dict):
        return False
    if isinstance(value, list):
        return any(matches_term(item, term) for item in value)
    if isinstance(value, bool):
        value = "true" if value else "false"
    return str(term).lower() in str(value).lower()


def traverse_item_path(item: Any, path: list[str], term: str) -> bool:
    """Whether the value at a path matches the term, stepping into lists."""
    if not path or not isinstance(item, dict) or path[0] not in item:
        return False
    value = item[path[0]]
    if len(path) == 1:
        return matches_term(value, term)
    if isinstance(value, list):
        return any(traverse_item_path(nested, path[1:], term) for nested in value)
    return traverse_item_path(value, path[1:], term)


def _comparison_value(item: Any, path: list[str]) -> Any:
    if not path or not isinstance(item, dict) or path[0] not in item:
        return item
    value = item[path[0]]
    if len(path) == 1:
        return value
    if isinstance(value, dict):
        return _comparison_value(value, path[1:])
    if isinstance(value, list):
        for nested in value:
            found = _comparison_value(nested, path[1:])
            if found:
                return found
    return item


def _type_rank(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, (bool, int, float)):
        return 1
    if isinstance(value, str):
        return 2
    return 3


def compare_values(left: Any, right: Any) -> int:
    """Three-way comparison tolerant of mixed and unorderable values."""
    left_rank, right_rank = _type_rank(left), _type_rank(right)
    if left_rank != right_rank:
        return -1 if left_rank < right_rank else 1
    if left_rank in (0, 3):
        return 0
    return (left > right) - (left < right)


class RetrieveService:
    """Reads, sorts, filters and paginates rows.

    Example:
        >>> service = RetrieveService(registry, engine)
        >>> await service.get_by_keys("Person", ["p1"])
        [{'@id': '/api/people/p1', 'location': {...}, '__pkey__': 'p1'}]
    """

    def __init__(self, registry: SchemaRegistry, engine: StorageEngine) -> None:
        self.registry = registry
        self.engine = engine

    # -- key lookups ----------------------------------------------------------

    async def get_by_keys(
        self, collection: str, keys: list[Any], index: str | None = None
    ) -> list[dict[str, Any]]:
        """Rows for each key, with linked entities re-attached.

        Args:
            collection: Collection to read
            keys: Primary keys, or index values when `index` is given
            index: Match all rows whose index value equals each key

        Raises:
            StoreError: If the collection or index does not exist
        """
        results: list[dict[str, Any]] = []
        for key in keys:
            if index:
                rows = await self.engine.get_all_by_index(collection, index, key)
            else:
                row = await self.engine.get(collection, key)
                rows = [row] if row is not None else []
            for row in rows:
                visited = frozenset({(collection, row.get(ID_KEY))})
                results.append(await self._attach_linked(collection, row, visited))
        return results

    async def _attach_linked(
        self, collection: str, row: dict[str, Any], visited: frozenset[tuple[str, Any]]
    ) -> dict[str, Any]:
        for prop, child in self.registry.graph.children_of(collection).items():
            value = row.get(prop)
            if isinstance(value, list):
                row[prop] = [await self._resolve_embedded(child, item, visited) for item in value]
            elif isinstance(value, dict):
                row[prop] = await self._resolve_embedded(child, value, visited)
        return row

    async def _resolve_embedded(
        self, child: str, value: Any, visited: frozenset[tuple[str, Any]]
    ) -> Any:
        if not isinstance(value, dict):
            return value
        identity = value.get(ID_KEY)
        if identity is None or (child, identity) in visited:
            return value
        if not await self.engine.has_collection(child):
            return value
        stored = await self.engine.get(child, identity)
        if stored is None:
            return value
        return await self._attach_linked(child, stored, visited | {(child, identity)})

    # -- scans ----------------------------------------------------------------

    async def get_all(self, collection: str) -> list[dict[str, Any]]:
        return await self.engine.get_all(collection)

    async def get_sorted(
        self, collection: str, sort: SortOptions | None = None
    ) -> list[dict[str, Any]]:
        """Every row of a collection, sorted; records the counter."""
        return self.sort(collection, await self.get_all(collection), sort)

    # -- triggers -------------------------------------------------------------

    async def get_by_trigger(
        self,
        collection: str,
        trigger: OptionsTrigger,
        start: list[Any],
        end: list[Any],
        sort: SortOptions | None = None,
        page: PageOptions | None = None,
    ) -> list[dict[str, Any]]:
        """Rows whose trigger index value lies in [start, end]."""
        rows = await self._range(collection, trigger.index, start, end)
        return self.paginate(self.sort(collection, rows, sort), page)

    async def _range(
        self, collection: str, index: str, start: list[Any], end: list[Any]
    ) -> list[dict[str, Any]]:
        lower: Any = start[0] if len(start) == 1 else list(start)
        upper: Any = end[0] if len(end) == 1 else list(end)
        return await self.engine.get_all_by_index(collection, index, lower, upper)

    async def search_by_trigger(
        self,
        collection: str,
        trigger: OptionsTrigger,
        start: list[Any],
        end: list[Any],
        sort: SortOptions | None = None,
        page: PageOptions | None = None,
    ) -> list[dict[str, Any]]:
        """Rows matching the trigger's search term along its search paths.

        The non-search rule values select candidates through the first
        search index; the search rule's value is then matched as a
        case-insensitive substring along every declared search path.
        """
        traversals = self._traversal_list(trigger)
        search_index = self._search_rule_index(trigger)
        if not traversals or search_index is None or not trigger.search_in:
            return []

        index_name, key_path = trigger.search_in[0]
        if key_path:
            bounds = list(start[: len(key_path)])
            candidates = await self._range(collection, index_name, bounds, bounds)
        else:
            candidates = await self.get_all(collection)

        term = str(start[search_index]).lower()
        matched = [
            row for row in candidates
            if any(traverse_item_path(row, path, term) for path in traversals)
        ]
        logger.debug(
            f"Trigger search on {collection} matched {len(matched)} of {len(candidates)}",
            extra={"collection": collection, "trigger": trigger.name},
        )
        return self.paginate(self.sort(collection, matched, sort), page)

    @staticmethod
    def _traversal_list(trigger: OptionsTrigger) -> list[list[str]]:
        paths: list[list[str]] = []
        for rule in trigger.rules:
            if not isinstance(rule, ParamRule) or not rule.search or not rule.search_in:
                continue
            for item in rule.search_in:
                path = item.property if isinstance(item, SearchProperty) else item
                paths.append(path.split("."))
        return paths

    @staticmethod
    def _search_rule_index(trigger: OptionsTrigger) -> int | None:
        for position, rule in enumerate(trigger.rules):
            if isinstance(rule, ParamRule) and rule.search:
                return position
        return None

    # -- filtering, sorting, paging -------------------------------------------

    def match_search_term(
        self,
        collection: str,
        content: list[dict[str, Any]],
        search: SearchOptions,
        page: PageOptions | None = None,
    ) -> list[dict[str, Any]]:
        """Rows whose value at `search.index` contains `search.term`."""
        path = search.index.split(".")
        matched = [item for item in content if traverse_item_path(item, path, search.term)]
        self.registry.set_counter(collection, len(matched))
        if page is None and search.limit is not None:
            return matched[: search.limit]
        return self.paginate(matched, page)

    def match_callback(
        self,
        collection: str,
        content: list[dict[str, Any]],
        predicate: Predicate,
        context: Any = None,
        page: PageOptions | None = None,
    ) -> list[dict[str, Any]]:
        """Rows for which predicate(row, context) is true."""
        matched = [item for item in content if predicate(item, context)]
        self.registry.set_counter(collection, len(matched))
        return self.paginate(matched, page)

    def sort(
        self,
        collection: str,
        content: list[dict[str, Any]],
        sort: SortOptions | None = None,
    ) -> list[dict[str, Any]]:
        """Stable sort by a dot-path; records the counter."""
        self.registry.set_counter(collection, len(content))
        if sort is None or not sort.column:
            return content

        path = sort.column.split(".")
        sign = 1 if sort.direction == SortDirection.ASC else -1

        def compare(a: dict[str, Any], b: dict[str, Any]) -> int:
            return sign * compare_values(_comparison_value(a, path), _comparison_value(b, path))

        return sorted(content, key=functools.cmp_to_key(compare))

    @staticmethod
    def paginate(content: list[Any], page: PageOptions | None = None) -> list[Any]:
        """Slice out a 1-indexed page.

        Everything is returned when pagination is off, no page is given, or
        the content fits in one page.
        """
        if page is None or page.pagination is False:
            return content
        if len(content) <= page.page_size:
            return content
        start = (page.page - 1) * page.page_size
        return content[start : start + page.page_size]

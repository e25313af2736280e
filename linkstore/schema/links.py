"""
Link graph between collections.

A link says "rows of collection A embed rows of collection B under
property p". The graph is an explicit adjacency map built from the
registry's link table; it answers who embeds whom, which is what writes
need to refresh stale copies and deletes need to cascade.

Invariants:
    - The graph is rebuilt whenever the registry's links change
    - Traversals never recurse forever; a cycle raises LinkCycleError
    - Declaration order of parents and properties is preserved
"""

from __future__ import annotations

from collections.abc import Iterator

from ..errors import LinkCycleError
from .types import ID_KEY, AncestorLink


class LinkGraph:
    """Adjacency map parent -> {property: child}.

    Example:
        >>> graph = LinkGraph({"Person": {"location": "Location"}})
        >>> graph.parents_of("Location")
        [('Person', 'location')]
        >>> [a.path for a in graph.ancestors_of("Location")]
        [('location',)]
    """

    def __init__(
        self,
        links: dict[str, dict[str, str]] | None = None,
        id_keys: dict[str, str] | None = None,
    ) -> None:
        """
        Args:
            links: Parent collection -> {property: child collection}
            id_keys: Collection -> primary key property, for ancestor records
        """
        self._id_keys = dict(id_keys or {})
        self._children: dict[str, dict[str, str]] = {
            name: dict(props) for name, props in (links or {}).items()
        }
        self._parents: dict[str, list[tuple[str, str]]] = {}
        for parent, props in self._children.items():
            for prop, child in props.items():
                self._parents.setdefault(child, []).append((parent, prop))

    def children_of(self, collection: str) -> dict[str, str]:
        """Property -> child collection for a collection."""
        return dict(self._children.get(collection, {}))

    def linked_collection(self, collection: str, prop: str) -> str | None:
        return self._children.get(collection, {}).get(prop)

    def parents_of(self, collection: str) -> list[tuple[str, str]]:
        """Direct parents as (parent collection, embedding property) pairs."""
        return list(self._parents.get(collection, []))

    def parent_links(self, collection: str) -> list[AncestorLink]:
        """Direct parents of a collection as single-step ancestor records."""
        return [
            self._link(parent, prop, collection, (prop,))
            for parent, prop in self._parents.get(collection, [])
        ]

    def _link(self, parent: str, prop: str, child: str, path: tuple[str, ...]) -> AncestorLink:
        grandparents = self._parents.get(parent, [])
        return AncestorLink(
            collection=parent,
            child=child,
            property=prop,
            path=path,
            id_key=self._id_keys.get(child, ID_KEY),
            parent_collection=grandparents[0][0] if grandparents else None,
        )

    def ancestors_of(self, collection: str) -> list[AncestorLink]:
        """Every collection embedding `collection`, directly or transitively.

        Each direct parent is emitted first, followed by its own ancestors.
        The path of every record runs from that ancestor down to
        `collection`.

        Raises:
            LinkCycleError: If the links loop back onto a visited collection
        """
        return list(self._walk_up(collection, (), [collection]))

    def _walk_up(
        self, collection: str, suffix: tuple[str, ...], chain: list[str]
    ) -> Iterator[AncestorLink]:
        for parent, prop in self._parents.get(collection, []):
            if parent in chain:
                raise LinkCycleError(chain[0], chain + [parent])
            path = (prop,) + suffix
            yield self._link(parent, prop, collection, path)
            yield from self._walk_up(parent, path, chain + [parent])

    def descendants_of(self, collection: str) -> list[tuple[str, tuple[str, ...]]]:
        """Every collection embedded below `collection` with its path.

        Raises:
            LinkCycleError: If the links loop back onto a visited collection
        """
        result: list[tuple[str, tuple[str, ...]]] = []

        def walk(current: str, prefix: tuple[str, ...], chain: list[str]) -> None:
            for prop, child in self._children.get(current, {}).items():
                if child in chain:
                    raise LinkCycleError(chain[0], chain + [child])
                path = prefix + (prop,)
                result.append((child, path))
                walk(child, path, chain + [child])

        walk(collection, (), [collection])
        return result

    def validate(self) -> None:
        """Raise LinkCycleError if any collection reaches itself."""
        for collection in self._children:
            self.descendants_of(collection)

    def to_dict(self) -> dict[str, dict[str, str]]:
        return {name: dict(props) for name, props in self._children.items()}

"""
Core type definitions for the LinkStore schema.

This module defines the declarative types callers hand to the engine and
the records the registry persists:
- CollectionOptions: How a collection is keyed, linked and indexed
- UuidRule / ParamRule: Trigger rules that build compound index keys
- IndexTrigger / OptionsTrigger: Declared and converted triggers
- Mutations / IndexCleanup: Pending structural changes
- Settings: The durable settings blob

Invariants:
    - Every stored row carries `__pkey__`; embedded linked copies also
      carry `__store__`
    - Option names are collection names and are unique per registry
    - Serialized forms round-trip through to_dict/from_dict

How to change safely:
    - New option fields need defaults so older settings blobs still load
    - Never rename serialized keys; add new ones instead
    - Cascade values are persisted, do not change them

Example:
    >>> location = CollectionOptions(name="Location", primary_key="@id")
    >>> person = CollectionOptions(
    ...     name="Person",
    ...     primary_key="@id",
    ...     linked_keys={"location": location},
    ... )
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

ID_KEY = "__pkey__"
STORE_KEY = "__store__"
INTERNAL_KEYS = (ID_KEY, STORE_KEY)


class DeleteCascade(Enum):
    """What happens to embedded copies when a linked row is deleted.

    NULL and UNDEFINED both leave the property with a None value since
    stored rows are JSON; they are kept apart so results report what the
    caller asked for.
    """

    NULL = "OVERWRITE_AS_NULL"
    UNDEFINED = "OVERWRITE_AS_UNDEFINED"
    DELETE = "DELETE_PROPERTY"
    KEEP = "KEEP_PROPERTY"


@dataclass(frozen=True)
class SearchProperty:
    """A search path given as an object instead of a plain string."""

    property: str

    def to_dict(self) -> dict[str, str]:
        return {"property": self.property}


@dataclass(frozen=True)
class UuidRule:
    """Trigger rule taking its value from the n-th UUID in the request URL.

    Attributes:
        property: Dot-path of the row value the rule matches against
        index: Which UUID in the URL to use (0-based)
        primary_key: Match the identity of a linked row at `property`
    """

    property: str
    index: int
    primary_key: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"property": self.property, "index": self.index, "primary_key": self.primary_key}


@dataclass(frozen=True)
class ParamRule:
    """Trigger rule taking its value from a request parameter.

    Attributes:
        property: Dot-path of the row value the rule matches against
        param: Parameter name read when `params` yields nothing
        params: Parameter name whose values are all read
        index: Which parameter value to use; all of them when None and
            `params` is set, else the first one
        primary_key: Extract an identity from the parameter value
        unique: Declares the compound value unique
        search: Treat the value as a search term
        search_in: Paths searched case-insensitively for the term
    """

    property: str
    param: str
    params: str | None = None
    index: int | None = None
    primary_key: bool = False
    unique: bool = False
    search: bool = False
    search_in: tuple[str | SearchProperty, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"property": self.property, "param": self.param}
        if self.params is not None:
            result["params"] = self.params
        if self.index is not None:
            result["index"] = self.index
        if self.primary_key:
            result["primary_key"] = True
        if self.unique:
            result["unique"] = True
        if self.search:
            result["search"] = True
        if self.search_in:
            result["search_in"] = [
                item.to_dict() if isinstance(item, SearchProperty) else item
                for item in self.search_in
            ]
        return result


TriggerRule = Union[UuidRule, ParamRule]


def rule_from_dict(data: dict[str, Any]) -> TriggerRule:
    """Create a trigger rule from its dictionary form.

    Rules with a `param` key are parameter rules, everything else is read
    from the URL.
    """
    if "param" not in data:
        return UuidRule(
            property=data["property"],
            index=int(data.get("index", 0)),
            primary_key=bool(data.get("primary_key", False)),
        )
    return ParamRule(
        property=data["property"],
        param=data["param"],
        params=data.get("params"),
        index=data.get("index"),
        primary_key=bool(data.get("primary_key", False)),
        unique=bool(data.get("unique", False)),
        search=bool(data.get("search", False)),
        search_in=tuple(
            SearchProperty(item["property"]) if isinstance(item, dict) else item
            for item in data.get("search_in", ())
        ),
    )


@dataclass(frozen=True)
class IndexTrigger:
    """A named trigger as declared on a collection."""

    name: str
    rules: tuple[TriggerRule, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "rules": [rule.to_dict() for rule in self.rules]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IndexTrigger:
        return cls(name=data["name"], rules=tuple(rule_from_dict(r) for r in data.get("rules", ())))


@dataclass(frozen=True)
class OptionsTrigger:
    """A trigger converted into the indices that serve it.

    Attributes:
        name: Trigger name
        collection: Owning collection
        index: Name of the compound index (`", ".join(key_path)`)
        key_path: Ordered rule paths
        rules: Rules the key path was built from
        search_in: (index name, key path) pairs for search lookups
    """

    name: str
    collection: str
    index: str
    key_path: tuple[str, ...]
    rules: tuple[TriggerRule, ...]
    search_in: tuple[tuple[str, tuple[str, ...]], ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "collection": self.collection,
            "index": self.index,
            "key_path": list(self.key_path),
            "rules": [rule.to_dict() for rule in self.rules],
            "search_in": [[name, list(path)] for name, path in self.search_in],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OptionsTrigger:
        return cls(
            name=data["name"],
            collection=data["collection"],
            index=data["index"],
            key_path=tuple(data["key_path"]),
            rules=tuple(rule_from_dict(r) for r in data.get("rules", ())),
            search_in=tuple((name, tuple(path)) for name, path in data.get("search_in", ())),
        )


@dataclass
class CollectionOptions:
    """Options declared for a collection.

    Attributes:
        name: Collection name
        primary_key: Property holding the entity identity
        unique_keys: Property names whose indices are unique
        linked_keys: Property name -> options of the linked collection
        store_content: Write rows; False only creates the structure
        cascade: Policy applied to this collection's rows when an entity
            they embed is deleted
        triggers: Declared triggers
    """

    name: str
    primary_key: str
    unique_keys: tuple[str, ...] = ()
    linked_keys: dict[str, CollectionOptions] = field(default_factory=dict)
    store_content: bool = True
    cascade: DeleteCascade | None = None
    triggers: tuple[IndexTrigger, ...] = ()

    def to_dict(self, include_links: bool = True) -> dict[str, Any]:
        """Convert to dictionary representation.

        Args:
            include_links: Also serialize linked options recursively. The
                registry stores links separately and leaves them out.
        """
        result: dict[str, Any] = {"name": self.name, "primary_key": self.primary_key}
        if self.unique_keys:
            result["unique_keys"] = list(self.unique_keys)
        if include_links and self.linked_keys:
            result["linked_keys"] = {
                prop: linked.to_dict() for prop, linked in self.linked_keys.items()
            }
        if not self.store_content:
            result["store_content"] = False
        if self.cascade is not None:
            result["cascade"] = self.cascade.value
        if self.triggers:
            result["triggers"] = [trigger.to_dict() for trigger in self.triggers]
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CollectionOptions:
        """Create from dictionary representation."""
        cascade = data.get("cascade")
        return cls(
            name=data["name"],
            primary_key=data["primary_key"],
            unique_keys=tuple(data.get("unique_keys", ())),
            linked_keys={
                prop: cls.from_dict(linked) for prop, linked in data.get("linked_keys", {}).items()
            },
            store_content=data.get("store_content", True),
            cascade=DeleteCascade(cascade) if cascade else None,
            triggers=tuple(IndexTrigger.from_dict(t) for t in data.get("triggers", ())),
        )

    def without_links(self) -> CollectionOptions:
        """Copy of these options with linked keys removed."""
        return CollectionOptions(
            name=self.name,
            primary_key=self.primary_key,
            unique_keys=self.unique_keys,
            store_content=self.store_content,
            cascade=self.cascade,
            triggers=self.triggers,
        )


@dataclass
class IndexCleanup:
    """Indices to delete from a collection on the next upgrade."""

    collection: str
    indices: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"collection": self.collection, "indices": list(self.indices)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IndexCleanup:
        return cls(collection=data["collection"], indices=list(data.get("indices", ())))


@dataclass
class Mutations:
    """Structural changes waiting for the next storage upgrade."""

    update: list[str] = field(default_factory=list)
    remove: list[str] = field(default_factory=list)
    indices: list[IndexCleanup] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.update or self.remove or self.indices)

    def to_dict(self) -> dict[str, Any]:
        return {
            "update": list(self.update),
            "remove": list(self.remove),
            "indices": [cleanup.to_dict() for cleanup in self.indices],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Mutations:
        return cls(
            update=list(data.get("update", ())),
            remove=list(data.get("remove", ())),
            indices=[IndexCleanup.from_dict(c) for c in data.get("indices", ())],
        )


@dataclass
class Settings:
    """The durable settings blob.

    Attributes:
        version: Structural version; bumped by every structural change
        options: Collection name -> options without linked keys
        links: Parent collection -> {property: child collection}
        mutations: Pending structural changes
        triggers: Converted triggers of every collection
    """

    version: int = 0
    options: dict[str, CollectionOptions] = field(default_factory=dict)
    links: dict[str, dict[str, str]] = field(default_factory=dict)
    mutations: Mutations = field(default_factory=Mutations)
    triggers: list[OptionsTrigger] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "options": [
                [name, options.to_dict(include_links=False)]
                for name, options in self.options.items()
            ],
            "links": [[name, [[prop, child] for prop, child in props.items()]]
                      for name, props in self.links.items()],
            "mutations": self.mutations.to_dict(),
            "triggers": [trigger.to_dict() for trigger in self.triggers],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Settings:
        return cls(
            version=int(data.get("version", 0)),
            options={
                name: CollectionOptions.from_dict(options)
                for name, options in data.get("options", ())
            },
            links={name: dict(props) for name, props in data.get("links", ())},
            mutations=Mutations.from_dict(data.get("mutations", {})),
            triggers=[OptionsTrigger.from_dict(t) for t in data.get("triggers", ())],
        )


@dataclass(frozen=True)
class AncestorLink:
    """A collection that embeds rows of another collection.

    Attributes:
        collection: The ancestor collection
        child: Collection directly embedded by the ancestor
        property: Property of the ancestor holding the child
        id_key: Primary key property of the child collection
        path: Property path from the ancestor down to the queried collection
        parent_collection: The ancestor's own first parent, if any
    """

    collection: str
    child: str
    property: str
    path: tuple[str, ...]
    id_key: str = ID_KEY
    parent_collection: str | None = None

    @property
    def dotted_path(self) -> str:
        return ".".join(self.path)


@dataclass
class PersistResult:
    """Outcome of a persist call for one collection."""

    collection: str
    rows: int
    indices: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"collection": self.collection, "rows": self.rows, "indices": list(self.indices)}


@dataclass
class DeleteResult:
    """Outcome of a delete or drop for one affected collection."""

    collection: str
    primary_keys: list[Any]
    path: str
    cascade: DeleteCascade

    def to_dict(self) -> dict[str, Any]:
        return {
            "collection": self.collection,
            "primary_keys": list(self.primary_keys),
            "path": self.path,
            "cascade": self.cascade.value,
        }

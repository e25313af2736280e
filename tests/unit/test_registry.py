"""
Unit tests for the schema registry.

Tests cover:
- Trigger conversion
- Registration and link flattening
- Index derivation
- Durability through the sidecar
- Removal planning
- Structural upgrades
"""

import json
import tempfile

import pytest

from linkstore.errors import CollectionNotRegisteredError, LinkCycleError, TriggerNotFoundError
from linkstore.schema.registry import SchemaRegistry, convert_trigger
from linkstore.schema.types import (
    CollectionOptions,
    IndexTrigger,
    ParamRule,
    SearchProperty,
    UuidRule,
)
from linkstore.sidecar import INDEX_MAP_KEY, SETTINGS_KEY, InMemorySidecar
from linkstore.storage.engine import StorageEngine


def person_options(**kwargs) -> CollectionOptions:
    location = CollectionOptions(name="Location", primary_key="@id")
    return CollectionOptions(
        name="Person",
        primary_key="@id",
        linked_keys={"location": location},
        **kwargs,
    )


class TestConvertTrigger:
    """Tests for convert_trigger."""

    def test_primary_key_rule(self):
        """Primary-key rules index the linked identity."""
        trigger = IndexTrigger("byLocation", (UuidRule("location", 0, primary_key=True),))

        converted = convert_trigger("Person", trigger)

        assert converted.index == "location.__pkey__"
        assert converted.key_path == ("location.__pkey__",)
        assert converted.search_in == ()

    def test_compound_key_path(self):
        """Rules contribute their paths in order."""
        trigger = IndexTrigger("byBoth", (UuidRule("location", 0, True), ParamRule("name", "name")))

        assert convert_trigger("Person", trigger).index == "location.__pkey__, name"

    def test_search_indices(self):
        """Search rules add indices without their own path."""
        trigger = IndexTrigger(
            "search",
            (
                ParamRule("location", "location", primary_key=True),
                ParamRule("name", "q", search=True, search_in=("name", SearchProperty("location.city"))),
            ),
        )

        converted = convert_trigger("Person", trigger)

        assert converted.key_path == ("location.__pkey__", "name")
        assert converted.search_in == (
            ("location.__pkey__", ("location.__pkey__",)),
            ("location.__pkey__, name", ("location.__pkey__", "name")),
        )


class TestSchemaRegistry:
    """Tests for SchemaRegistry."""

    @pytest.fixture
    def sidecar(self):
        return InMemorySidecar()

    @pytest.fixture
    def registry(self, sidecar):
        registry = SchemaRegistry(sidecar)
        registry.load()
        return registry

    def test_empty_registry(self, registry):
        """A fresh sidecar means version 0 and no collections."""
        assert registry.version == 0
        assert registry.collection_names() == []
        with pytest.raises(CollectionNotRegisteredError):
            registry.get_options("Person")

    def test_register_flattens_links(self, registry):
        """Linked options are registered and linked from the parent."""
        registry.register_or_update(person_options())

        assert registry.version == 1
        assert registry.has_options("Location")
        assert registry.get_options("Person").linked_keys == {}
        assert registry.graph.children_of("Person") == {"location": "Location"}
        assert registry.mutations.update == ["Person"]

    def test_ancestors_carry_primary_keys(self, registry, sidecar):
        """Ancestor records name the embedded collection's primary key, also after reload."""
        registry.register_or_update(
            CollectionOptions(
                name="Person",
                primary_key="",
                linked_keys={"location": CollectionOptions(name="Location", primary_key="code")},
            )
        )
        reloaded = SchemaRegistry(sidecar)
        reloaded.load()

        assert [a.id_key for a in registry.graph.ancestors_of("Location")] == ["code"]
        assert [a.id_key for a in reloaded.graph.ancestors_of("Location")] == ["code"]

    def test_nested_options_do_not_overwrite(self, registry):
        """Known collections keep their options when seen nested."""
        registry.register_or_update(
            CollectionOptions(name="Location", primary_key="@id", unique_keys=("code",))
        )
        registry.register_or_update(person_options())

        assert registry.get_options("Location").unique_keys == ("code",)
        assert registry.version == 2

    def test_cycle_rejected_without_changes(self, registry):
        """A cyclic registration raises and leaves the registry untouched."""
        node = CollectionOptions(name="Node", primary_key="id")
        node.linked_keys["parent"] = node

        with pytest.raises(LinkCycleError):
            registry.register_or_update(node)

        assert registry.version == 0
        assert not registry.has_options("Node")

    def test_triggers_converted(self, registry):
        """Declared triggers are available by name."""
        trigger = IndexTrigger("byLocation", (UuidRule("location", 0, primary_key=True),))
        registry.register_or_update(person_options(triggers=(trigger,)))

        assert registry.get_trigger("Person", "byLocation").index == "location.__pkey__"
        with pytest.raises(TriggerNotFoundError):
            registry.get_trigger("Person", "missing")

    def test_key_map(self, registry):
        """Indices come from scalar values; linked objects add their identity."""
        registry.register_or_update(person_options(unique_keys=("email",)))
        person = {
            "@id": "/api/people/p1",
            "email": "ann@example.com",
            "name": "Ann",
            "active": True,
            "tags": ["a"],
            "address": {"street": "Main"},
            "location": {"@id": "/api/locations/1", "city": "Utrecht"},
            "__pkey__": "p1",
        }

        key_map = registry.create_key_map("Person", [person])

        assert key_map == {
            "email": True,
            "name": False,
            "address.street": False,
            "location.city": False,
            "location.__pkey__": False,
        }

    def test_key_map_sample_size(self, sidecar):
        """Only the first entities are inspected."""
        registry = SchemaRegistry(sidecar, index_sample_size=1)
        registry.load()

        key_map = registry.create_key_map("Thing", [{"a": 1}, {"b": 2}])

        assert key_map == {"a": False}

    def test_state_survives_reload(self, registry, sidecar):
        """A new registry on the same sidecar sees the same state."""
        trigger = IndexTrigger("byName", (ParamRule("name", "name"),))
        registry.register_or_update(person_options(triggers=(trigger,)))
        registry.update_index_map({"Person": [{"@id": "x", "name": "Ann"}]})

        reloaded = SchemaRegistry(sidecar)
        reloaded.load()

        assert reloaded.version == 1
        assert reloaded.graph.children_of("Person") == {"location": "Location"}
        assert reloaded.get_trigger("Person", "byName").index == "name"
        assert reloaded.index_map == {"Person": {"name": False}}

    def test_settings_layout(self, registry, sidecar):
        """Settings are stored as lists of pairs."""
        registry.register_or_update(person_options())

        settings = json.loads(sidecar.get(SETTINGS_KEY))

        assert settings["version"] == 1
        assert [name for name, _ in settings["options"]] == ["Person", "Location"]
        assert settings["links"] == [["Person", [["location", "Location"]]]]
        assert settings["mutations"] == {"update": ["Person"], "remove": [], "indices": []}
        assert json.loads(sidecar.get(INDEX_MAP_KEY)) == []

    def test_remove_plans_cleanup(self, registry):
        """Removing a collection prunes links and ancestor indices."""
        trigger = IndexTrigger("byLocation", (UuidRule("location", 0, primary_key=True),))
        registry.register_or_update(person_options(triggers=(trigger,)))
        registry.update_index_map({
            "Person": [{"@id": "p", "name": "Ann", "location": {"@id": "l", "city": "X"}}],
            "Location": [{"@id": "l", "city": "X"}],
        })
        ancestors = registry.graph.ancestors_of("Location")

        registry.remove("Location", ancestors)

        assert not registry.has_options("Location")
        assert registry.graph.children_of("Person") == {}
        assert registry.triggers_of("Person") == []
        assert registry.index_map["Person"] == {"name": False}
        assert registry.index_map["Location"] == {}
        assert registry.mutations.remove == ["Location"]
        cleanup = registry.mutations.indices[0]
        assert cleanup.collection == "Person"
        assert set(cleanup.indices) == {"location.city", "location.__pkey__"}

    def test_reset(self, registry, sidecar):
        """Reset forgets everything and clears the sidecar."""
        registry.register_or_update(person_options())

        registry.reset()

        assert registry.version == 0
        assert sidecar.get(SETTINGS_KEY) is None
        assert sidecar.get(INDEX_MAP_KEY) is None


class TestApplyMutations:
    """Tests for structural upgrades driven by the registry."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def engine(self, data_dir):
        return StorageEngine(data_dir, wal_mode=False)

    @pytest.fixture
    def registry(self):
        registry = SchemaRegistry(InMemorySidecar())
        registry.load()
        return registry

    @pytest.mark.asyncio
    async def test_creates_collections_and_indices(self, registry, engine):
        """Collections, derived indices and trigger indices are created."""
        trigger = IndexTrigger("byBoth", (UuidRule("location", 0, True), ParamRule("name", "name")))
        registry.register_or_update(person_options(triggers=(trigger,)))
        registry.update_index_map({
            "Person": [{"@id": "p", "name": "Ann", "location": {"@id": "l"}}],
            "Location": [{"@id": "l", "city": "X"}],
        })

        await engine.open(registry.version, registry.apply_mutations)

        assert await engine.collection_names() == ["Location", "Person"]
        assert set(await engine.index_names("Person")) == {
            "name",
            "location.__pkey__",
            "location.__pkey__, name",
        }
        assert registry.mutations.is_empty()
        await engine.close()

    @pytest.mark.asyncio
    async def test_updated_collection_recreated(self, registry, engine):
        """Re-registering a collection drops its rows on the next upgrade."""
        registry.register_or_update(CollectionOptions(name="Location", primary_key="@id"))
        registry.update_index_map({"Location": [{"@id": "l", "city": "X"}]})
        await engine.open(registry.version, registry.apply_mutations)
        await engine.put_many({"Location": [{"@id": "l", "city": "X", "__pkey__": "l"}]})

        registry.register_or_update(CollectionOptions(name="Location", primary_key="@id"))
        await engine.open(registry.version, registry.apply_mutations)

        assert await engine.count("Location") == 0
        await engine.close()

    @pytest.mark.asyncio
    async def test_removed_collection_deleted(self, registry, engine):
        """Removal deletes the collection and cleaned-up ancestor indices."""
        registry.register_or_update(person_options())
        registry.update_index_map({
            "Person": [{"@id": "p", "name": "Ann", "location": {"@id": "l", "city": "X"}}],
            "Location": [{"@id": "l", "city": "X"}],
        })
        await engine.open(registry.version, registry.apply_mutations)

        registry.remove("Location", registry.graph.ancestors_of("Location"))
        await engine.open(registry.version, registry.apply_mutations)

        assert await engine.collection_names() == ["Person"]
        assert await engine.index_names("Person") == ["name"]
        assert "Location" not in registry.index_map
        await engine.close()

"""
Unit tests for the delete coordinator.

Tests cover:
- Cascade application on single values and lists
- Row deletes with declared ancestor policies
- Collection drops with a caller policy
"""

import tempfile

import pytest

from linkstore.schema.registry import SchemaRegistry
from linkstore.schema.types import CollectionOptions, DeleteCascade
from linkstore.services.delete import DeleteService, apply_cascade
from linkstore.services.store import StoreService
from linkstore.sidecar import InMemorySidecar
from linkstore.storage.engine import StorageEngine

PEOPLE = [
    {"@id": "/api/people/p1", "name": "Ann", "location": {"@id": "/api/locations/1", "city": "Utrecht"}},
    {"@id": "/api/people/p2", "name": "Bob", "location": {"@id": "/api/locations/2", "city": "Delft"}},
]


class TestApplyCascade:
    """Tests for apply_cascade."""

    def row(self):
        return {
            "location": {"__pkey__": "1", "city": "Utrecht"},
            "friends": [{"__pkey__": "f1"}, {"__pkey__": "f2"}],
            "teams": [{"lead": {"__pkey__": "p9"}}, {"lead": {"__pkey__": "p8"}}],
        }

    def test_keep_never_changes(self):
        """KEEP leaves the item untouched."""
        item = self.row()

        assert not apply_cascade(item, ["location"], DeleteCascade.KEEP, ["1"])
        assert item == self.row()

    def test_delete_matching_value(self):
        """DELETE removes the property holding a deleted key."""
        item = self.row()

        assert apply_cascade(item, ["location"], DeleteCascade.DELETE, ["1"])
        assert "location" not in item

    def test_null_matching_value(self):
        """NULL and UNDEFINED leave None behind."""
        for cascade in (DeleteCascade.NULL, DeleteCascade.UNDEFINED):
            item = self.row()

            assert apply_cascade(item, ["location"], cascade, ["1"])
            assert item["location"] is None

    def test_other_keys_untouched(self):
        """Values carrying other keys are not affected."""
        item = self.row()

        assert not apply_cascade(item, ["location"], DeleteCascade.DELETE, ["2"])
        assert item["location"]["city"] == "Utrecht"

    def test_list_elements(self):
        """Matching list elements are removed or replaced by None."""
        deleted = self.row()
        nulled = self.row()

        apply_cascade(deleted, ["friends"], DeleteCascade.DELETE, ["f1"])
        apply_cascade(nulled, ["friends"], DeleteCascade.NULL, ["f1"])

        assert deleted["friends"] == [{"__pkey__": "f2"}]
        assert nulled["friends"] == [None, {"__pkey__": "f2"}]

    def test_walks_lists_on_the_way(self):
        """Intermediate lists are walked element-wise."""
        item = self.row()

        assert apply_cascade(item, ["teams", "lead"], DeleteCascade.DELETE, ["p8"])
        assert item["teams"] == [{"lead": {"__pkey__": "p9"}}, {}]

    def test_without_keys(self):
        """Without keys the value at the path is always affected."""
        item = self.row()

        assert apply_cascade(item, ["location"], DeleteCascade.NULL)
        assert item["location"] is None
        assert not apply_cascade(item, ["missing"], DeleteCascade.NULL)


class TestDeleteService:
    """Tests for DeleteService."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    async def build(self, data_dir, cascade=None):
        registry = SchemaRegistry(InMemorySidecar())
        registry.load()
        location = CollectionOptions(name="Location", primary_key="@id")
        registry.register_or_update(
            CollectionOptions(
                name="Person",
                primary_key="@id",
                linked_keys={"location": location},
                cascade=cascade,
            )
        )
        engine = StorageEngine(data_dir, wal_mode=False)
        store = StoreService(registry, engine)
        queue = store.create_queue("Person", PEOPLE)
        registry.update_index_map(queue)
        await engine.open(registry.version, registry.apply_mutations)
        await store.commit(queue)
        return DeleteService(registry, engine, store)

    @pytest.mark.asyncio
    async def test_delete_keeps_copies_by_default(self, data_dir):
        """Without a declared policy embedded copies stay."""
        service = await self.build(data_dir)

        results = await service.delete_rows("Location", ["1"])

        assert [(r.collection, r.primary_keys, r.path, r.cascade) for r in results] == [
            ("Location", ["1"], "", DeleteCascade.DELETE),
            ("Person", [], "location", DeleteCascade.KEEP),
        ]
        assert await service.engine.get("Location", "1") is None
        assert (await service.engine.get("Person", "p1"))["location"]["city"] == "Utrecht"
        await service.engine.close()

    @pytest.mark.asyncio
    async def test_delete_with_declared_policy(self, data_dir):
        """A declared DELETE policy removes the embedded copy."""
        service = await self.build(data_dir, cascade=DeleteCascade.DELETE)

        results = await service.delete_rows("Location", ["1"])

        assert results[1].primary_keys == ["p1"]
        assert "location" not in await service.engine.get("Person", "p1")
        assert (await service.engine.get("Person", "p2"))["location"]["city"] == "Delft"
        await service.engine.close()

    @pytest.mark.asyncio
    async def test_drop_keep(self, data_dir):
        """Dropping with KEEP removes the collection only."""
        service = await self.build(data_dir)

        results = await service.drop_collection("Location")

        assert [(r.collection, r.cascade) for r in results] == [("Location", DeleteCascade.KEEP)]
        assert await service.engine.collection_names() == ["Person"]
        assert (await service.engine.get("Person", "p2"))["location"]["city"] == "Delft"
        assert not service.registry.has_options("Location")
        await service.engine.close()

    @pytest.mark.asyncio
    async def test_drop_with_null(self, data_dir):
        """The caller policy is applied to every ancestor row."""
        service = await self.build(data_dir)

        results = await service.drop_collection(["Location"], DeleteCascade.NULL)

        assert [(r.collection, r.path) for r in results] == [("Location", ""), ("Person", "location")]
        assert sorted(results[1].primary_keys) == ["p1", "p2"]
        for key in ("p1", "p2"):
            assert (await service.engine.get("Person", key))["location"] is None
        await service.engine.close()

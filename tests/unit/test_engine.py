"""
Unit tests for the SQLite storage engine.

Tests cover:
- Versioned open and upgrade
- Row reads and writes
- Index lookups (exact and range)
- Unique index violations
- Deletes and clearing
- Database deletion
"""

import tempfile

import pytest

from linkstore.errors import StorageOpenError, StoreError, StoreWriteError
from linkstore.storage.engine import StorageEngine


def create_people(tx):
    tx.create_collection("Person")
    tx.create_index("Person", "name", "name")
    tx.create_index("Person", "email", "email", unique=True)
    tx.create_index("Person", "city, name", ["location.city", "name"])


class TestStorageEngine:
    """Tests for StorageEngine."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    async def engine(self, data_dir):
        """Engine opened at version 1 with a Person collection."""
        engine = StorageEngine(data_dir, wal_mode=False)
        await engine.open(1, create_people)
        yield engine
        await engine.close()

    @pytest.fixture
    async def people(self, engine):
        await engine.put_many({
            "Person": [
                {"__pkey__": "p1", "name": "Ann", "email": "ann@x", "location": {"city": "Utrecht"}},
                {"__pkey__": "p2", "name": "Bob", "email": "bob@x", "location": {"city": "Delft"}},
                {"__pkey__": "p3", "name": "Cid", "email": "cid@x", "location": {"city": "Utrecht"}},
            ]
        })
        return engine

    @pytest.mark.asyncio
    async def test_open_creates_structure(self, engine):
        """The upgrade callback runs when the version is raised."""
        assert engine.is_open
        assert engine.version == 1
        assert await engine.collection_names() == ["Person"]
        assert await engine.index_names("Person") == ["city, name", "email", "name"]

    @pytest.mark.asyncio
    async def test_reopen_same_version_skips_upgrade(self, engine):
        """Opening at the stored version does not call the callback."""
        calls = []

        await engine.open(1, calls.append)

        assert calls == []
        assert await engine.has_collection("Person")

    @pytest.mark.asyncio
    async def test_lower_version_fails(self, engine):
        """Opening below the stored version is rejected."""
        with pytest.raises(StorageOpenError) as exc_info:
            await engine.open(0)

        assert "less than the existing version" in exc_info.value.message
        assert not engine.is_open

    @pytest.mark.asyncio
    async def test_failed_upgrade_rolls_back(self, engine):
        """An upgrade raising leaves the stored version unchanged."""
        def broken(tx):
            tx.create_collection("Location")
            raise ValueError("boom")

        with pytest.raises(StorageOpenError):
            await engine.open(2, broken)

        await engine.open(1)
        assert await engine.collection_names() == ["Person"]

    @pytest.mark.asyncio
    async def test_upgrade_indexes_existing_rows(self, people):
        """New indices are filled from rows already stored."""
        await people.open(2, lambda tx: tx.create_index("Person", "location.city", "location.city"))

        rows = await people.get_all_by_index("Person", "location.city", "Utrecht")

        assert [row["__pkey__"] for row in rows] == ["p1", "p3"]

    @pytest.mark.asyncio
    async def test_get_and_get_all(self, people):
        """Rows are read by key and in key order."""
        assert (await people.get("Person", "p2"))["name"] == "Bob"
        assert await people.get("Person", "missing") is None
        assert [row["__pkey__"] for row in await people.get_all("Person")] == ["p1", "p2", "p3"]
        assert await people.count("Person") == 3

    @pytest.mark.asyncio
    async def test_missing_collection(self, engine):
        """Reading an unknown collection raises StoreError."""
        with pytest.raises(StoreError):
            await engine.get_all("Location")

    @pytest.mark.asyncio
    async def test_exact_index_lookup(self, people):
        """A single bound matches equal keys only."""
        rows = await people.get_all_by_index("Person", "name", "Bob")

        assert [row["__pkey__"] for row in rows] == ["p2"]

    @pytest.mark.asyncio
    async def test_range_index_lookup(self, people):
        """Two bounds match the inclusive range, ordered by index key."""
        rows = await people.get_all_by_index("Person", "name", "B", "Cz")

        assert [row["name"] for row in rows] == ["Bob", "Cid"]

    @pytest.mark.asyncio
    async def test_compound_index_lookup(self, people):
        """Compound indices compare element-wise."""
        rows = await people.get_all_by_index(
            "Person", "city, name", ["Utrecht", ""], ["Utrecht", "z"]
        )

        assert [row["name"] for row in rows] == ["Ann", "Cid"]

    @pytest.mark.asyncio
    async def test_unknown_index(self, people):
        """Querying an index that does not exist raises StoreError."""
        with pytest.raises(StoreError):
            await people.get_all_by_index("Person", "age", 3)

    @pytest.mark.asyncio
    async def test_put_replaces_row(self, people):
        """Writing an existing key replaces the row and its index entries."""
        await people.put_many({"Person": [{"__pkey__": "p2", "name": "Rob", "email": "bob@x"}]})

        assert await people.get_all_by_index("Person", "name", "Bob") == []
        assert (await people.get("Person", "p2"))["name"] == "Rob"

    @pytest.mark.asyncio
    async def test_unique_violation_keeps_other_rows(self, people):
        """A clashing row is rejected; the rest of the batch is written."""
        with pytest.raises(StoreWriteError) as exc_info:
            await people.put_many({
                "Person": [
                    {"__pkey__": "p4", "name": "Dee", "email": "dee@x"},
                    {"__pkey__": "p5", "name": "Eve", "email": "ann@x"},
                    {"__pkey__": "p6", "name": "Fay", "email": "fay@x"},
                ]
            })

        assert exc_info.value.collection == "Person"
        assert len(exc_info.value.messages) == 1
        assert await people.get("Person", "p4") is not None
        assert await people.get("Person", "p5") is None
        assert await people.get("Person", "p6") is not None

    @pytest.mark.asyncio
    async def test_invalid_primary_key_rejected(self, engine):
        """Rows without a usable key are reported."""
        with pytest.raises(StoreWriteError):
            await engine.put_many({"Person": [{"name": "Nobody"}]})

    @pytest.mark.asyncio
    async def test_delete_many(self, people):
        """Deleted rows disappear from reads and indices; absent keys are fine."""
        deleted = await people.delete_many("Person", ["p1", "nope"])

        assert deleted == ["p1", "nope"]
        assert await people.get("Person", "p1") is None
        assert await people.get_all_by_index("Person", "name", "Ann") == []

    @pytest.mark.asyncio
    async def test_clear(self, people):
        """Clearing keeps the collection and its indices."""
        await people.clear("Person")

        assert await people.count("Person") == 0
        assert await people.index_names("Person") == ["city, name", "email", "name"]

    @pytest.mark.asyncio
    async def test_find_by_path_scans_lists(self, engine):
        """Without an index the path is scanned through lists."""
        await engine.put_many({
            "Person": [
                {"__pkey__": "p1", "friends": [{"__pkey__": "f1"}, {"__pkey__": "f2"}]},
                {"__pkey__": "p2", "friends": [{"__pkey__": "f3"}]},
            ]
        })

        rows = await engine.find_by_path("Person", "friends.__pkey__", "f2")

        assert [row["__pkey__"] for row in rows] == ["p1"]

    @pytest.mark.asyncio
    async def test_delete_database(self, engine):
        """Deleting removes the file; the next open starts from scratch."""
        path = engine.path
        await engine.delete_database()

        assert not path.exists()
        assert engine.version == 0

        await engine.open(1)
        assert await engine.collection_names() == []

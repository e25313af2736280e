"""
Unit tests for settings sidecars.

Tests cover:
- In-memory get/set/remove
- JSON file durability
- Factory selection from configuration
"""

import json
import tempfile
from pathlib import Path

import pytest

from linkstore.config import StorageConfig
from linkstore.sidecar import InMemorySidecar, JsonFileSidecar, SidecarStore, create_sidecar


class TestInMemorySidecar:
    """Tests for InMemorySidecar."""

    def test_get_set_remove(self):
        """Values round-trip and missing keys read as None."""
        sidecar = InMemorySidecar()

        sidecar.set("a", "1")
        assert sidecar.get("a") == "1"
        sidecar.remove("a")
        sidecar.remove("a")
        assert sidecar.get("a") is None

    def test_implements_protocol(self):
        """The in-memory sidecar satisfies SidecarStore."""
        assert isinstance(InMemorySidecar(), SidecarStore)


class TestJsonFileSidecar:
    """Tests for JsonFileSidecar."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    def test_values_survive_reopen(self, data_dir):
        """A new instance reads what the previous one wrote."""
        path = Path(data_dir) / "nested" / "persistence.json"
        JsonFileSidecar(path).set("persistence->settings", '{"version": 3}')

        reopened = JsonFileSidecar(path)

        assert reopened.get("persistence->settings") == '{"version": 3}'
        assert json.loads(path.read_text()) == {"persistence->settings": '{"version": 3}'}

    def test_remove_persists(self, data_dir):
        """Removed keys stay removed after reopening."""
        path = Path(data_dir) / "persistence.json"
        sidecar = JsonFileSidecar(path)
        sidecar.set("a", "1")
        sidecar.set("b", "2")

        sidecar.remove("a")

        assert JsonFileSidecar(path).get("a") is None
        assert JsonFileSidecar(path).get("b") == "2"

    def test_rejects_non_object(self, data_dir):
        """A file that is not a JSON object is refused."""
        path = Path(data_dir) / "persistence.json"
        path.write_text("[1, 2]")

        with pytest.raises(ValueError):
            JsonFileSidecar(path)


class TestCreateSidecar:
    """Tests for create_sidecar."""

    def test_file_by_default(self):
        """A configured file name selects the JSON file sidecar."""
        sidecar = create_sidecar(StorageConfig(data_dir="/tmp/linkstore-test"))

        assert isinstance(sidecar, JsonFileSidecar)
        assert sidecar.path == Path("/tmp/linkstore-test/persistence.json")

    def test_memory_without_file(self):
        """An empty file name keeps settings in memory."""
        assert isinstance(create_sidecar(StorageConfig(sidecar_file="")), InMemorySidecar)

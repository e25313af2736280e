"""
Integration tests for the seeding CLI.

Tests cover:
- Persisting from YAML options and JSON content
- Reading rows back by key and by page
- Printing the registry state
- Dropping the database
- Error exits
"""

import json
import tempfile
from pathlib import Path

import pytest
import yaml

from linkstore.tools.seed_cli import load_document, main

OPTIONS = {
    "name": "Person",
    "primary_key": "@id",
    "linked_keys": {"location": {"name": "Location", "primary_key": "@id"}},
}
PEOPLE = [
    {"@id": "/api/people/p1", "name": "Ann", "location": {"@id": "/api/locations/1", "city": "Utrecht"}},
    {"@id": "/api/people/p2", "name": "Bob", "location": {"@id": "/api/locations/1", "city": "Utrecht"}},
]


class TestSeedCLI:
    """Tests for the seeding CLI."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def files(self, data_dir):
        """Options as YAML and content as JSON."""
        options_path = Path(data_dir) / "person.yaml"
        content_path = Path(data_dir) / "people.json"
        options_path.write_text(yaml.safe_dump(OPTIONS))
        content_path.write_text(json.dumps(PEOPLE))
        return str(options_path), str(content_path)

    def run(self, capsys, *argv):
        main(list(argv))
        return json.loads(capsys.readouterr().out)

    def test_load_document(self, files):
        """YAML and JSON documents are both read."""
        options_path, content_path = files

        assert load_document(options_path) == OPTIONS
        assert load_document(content_path) == PEOPLE

    def test_persist_and_get(self, data_dir, files, capsys):
        """Seeded rows can be read back by key and by page."""
        options_path, content_path = files
        store_dir = str(Path(data_dir) / "store")

        results = self.run(
            capsys, "--data-dir", store_dir, "persist", "--options", options_path, "--content", content_path
        )
        person = self.run(capsys, "--data-dir", store_dir, "get", "Person", "--key", "/api/people/p2")
        page = self.run(capsys, "--data-dir", store_dir, "get", "Person", "--page-size", "1", "--page", "2")

        assert [(r["collection"], r["rows"]) for r in results] == [("Person", 2), ("Location", 1)]
        assert person == PEOPLE[1]
        assert [row["name"] for row in page] == ["Bob"]

    def test_default_page_size(self, data_dir, files, capsys, monkeypatch):
        """Without --page-size the configured default applies."""
        monkeypatch.setenv("LINKSTORE_DEFAULT_PAGE_SIZE", "1")
        options_path, content_path = files
        self.run(capsys, "--data-dir", data_dir, "persist", "--options", options_path, "--content", content_path)

        page = self.run(capsys, "--data-dir", data_dir, "get", "Person", "--page", "2")

        assert [row["name"] for row in page] == ["Bob"]

    def test_settings(self, data_dir, files, capsys):
        """The registry state is printed as JSON."""
        options_path, content_path = files
        self.run(capsys, "--data-dir", data_dir, "persist", "--options", options_path, "--content", content_path)

        state = self.run(capsys, "--data-dir", data_dir, "settings")

        assert state["settings"]["version"] == 1
        assert state["index_map"]["Location"] == {"city": False}

    def test_drop_database(self, data_dir, files, capsys):
        """Dropping removes the settings."""
        options_path, content_path = files
        self.run(capsys, "--data-dir", data_dir, "persist", "--options", options_path, "--content", content_path)

        main(["--data-dir", data_dir, "drop-database"])
        assert "Database dropped" in capsys.readouterr().err

        state = self.run(capsys, "--data-dir", data_dir, "settings")
        assert state["settings"]["version"] == 0

    def test_unknown_collection_exits(self, data_dir, capsys):
        """Engine errors exit with status 1."""
        with pytest.raises(SystemExit) as exc_info:
            main(["--data-dir", data_dir, "get", "Person", "--key", "p1"])

        assert exc_info.value.code == 1
        assert "STORE_ERROR" in capsys.readouterr().err

    def test_missing_file_exits(self, data_dir, capsys):
        """Unreadable input exits with status 1."""
        with pytest.raises(SystemExit) as exc_info:
            main(["--data-dir", data_dir, "persist", "--options", "missing.yaml", "--content", "missing.json"])

        assert exc_info.value.code == 1
        assert "Cannot read input" in capsys.readouterr().err

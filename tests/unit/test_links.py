"""
Unit tests for the link graph.

Tests cover:
- Children and parents
- Ancestor paths
- Descendants
- Primary keys carried by ancestor records
- Cycle detection
"""

import pytest

from linkstore.errors import LinkCycleError
from linkstore.schema.links import LinkGraph


class TestLinkGraph:
    """Tests for LinkGraph."""

    @pytest.fixture
    def graph(self):
        """Company embeds Person under employees, Person embeds Location."""
        return LinkGraph({
            "Company": {"employees": "Person", "office": "Location"},
            "Person": {"location": "Location"},
        })

    def test_children_and_parents(self, graph):
        """Edges are readable in both directions."""
        assert graph.children_of("Person") == {"location": "Location"}
        assert graph.parents_of("Location") == [("Company", "office"), ("Person", "location")]
        assert graph.linked_collection("Company", "employees") == "Person"
        assert graph.linked_collection("Company", "missing") is None

    def test_ancestors_nearest_first(self, graph):
        """Each parent is followed by its own ancestors."""
        ancestors = graph.ancestors_of("Location")

        assert [(a.collection, a.dotted_path) for a in ancestors] == [
            ("Company", "office"),
            ("Person", "location"),
            ("Company", "employees.location"),
        ]
        assert ancestors[1].parent_collection == "Company"
        assert ancestors[0].parent_collection is None

    def test_no_ancestors(self, graph):
        """A root collection has no ancestors."""
        assert graph.ancestors_of("Company") == []

    def test_descendants(self, graph):
        """Descendants carry the path from the start collection."""
        assert graph.descendants_of("Company") == [
            ("Person", ("employees",)),
            ("Location", ("employees", "location")),
            ("Location", ("office",)),
        ]

    def test_cycle_detected(self):
        """A loop in the links raises instead of recursing."""
        graph = LinkGraph({"A": {"b": "B"}, "B": {"a": "A"}})

        with pytest.raises(LinkCycleError):
            graph.validate()
        with pytest.raises(LinkCycleError):
            graph.ancestors_of("A")

    def test_self_link_is_cycle(self):
        """A collection embedding itself is a cycle."""
        with pytest.raises(LinkCycleError):
            LinkGraph({"Node": {"parent": "Node"}}).validate()

    def test_ancestor_id_keys(self):
        """Each record carries the primary key of the collection it embeds."""
        graph = LinkGraph(
            {"Company": {"boss": "Person"}, "Person": {"location": "Location"}},
            id_keys={"Person": "@id", "Location": "code"},
        )

        ancestors = graph.ancestors_of("Location")

        assert [(a.collection, a.child, a.id_key) for a in ancestors] == [
            ("Person", "Location", "code"),
            ("Company", "Person", "@id"),
        ]

    def test_parent_links(self, graph):
        """Direct parents only, with a single-step path."""
        links = graph.parent_links("Location")

        assert [(link.collection, link.path) for link in links] == [
            ("Company", ("office",)),
            ("Person", ("location",)),
        ]
        assert all(link.id_key == "__pkey__" for link in links)

"""
Unit tests for storage keys.

Tests cover:
- Identity extraction from UUIDs and IRIs
- Key validity and ordering
- Key encoding
- Key path resolution
"""

import pytest

from linkstore.storage.keys import (
    MISSING,
    collect_path_values,
    compare_keys,
    decode_key,
    encode_key,
    extract_primary_key,
    extract_uuid,
    in_range,
    is_valid_key,
    resolve_key_path,
)

UUID_A = "0b7c5e4e-6a4f-4a39-9c57-3f1f0e1b2a11"
UUID_B = "9f1d2c3b-4a5e-4f60-8b71-c2d3e4f5a6b7"


class TestExtractUuid:
    """Tests for extract_uuid."""

    def test_uuid_inside_iri(self):
        """A UUID substring is the identity."""
        assert extract_uuid(f"/api/users/{UUID_A}") == UUID_A

    def test_last_iri_segment(self):
        """IRIs without a UUID yield their last segment."""
        assert extract_uuid("/api/locations/1") == "1"
        assert extract_uuid("/api/locations/1/") == "1"

    def test_plain_values_unchanged(self):
        """Values without a slash are returned as they are."""
        assert extract_uuid("p1") == "p1"
        assert extract_uuid(42) == 42
        assert extract_uuid(None) is None

    def test_first_uuid_wins(self):
        """With several UUIDs the first one is used."""
        assert extract_uuid(f"/a/{UUID_A}/b/{UUID_B}") == UUID_A


class TestExtractPrimaryKey:
    """Tests for extract_primary_key."""

    def test_nth_uuid(self):
        """An index picks the n-th UUID."""
        url = f"/api/locations/{UUID_A}/people/{UUID_B}"
        assert extract_primary_key(url, 0) == UUID_A
        assert extract_primary_key(url, 1) == UUID_B

    def test_missing_uuid(self):
        """Out-of-range indices yield None, or "" when exact."""
        assert extract_primary_key("/api/people", 0) is None
        assert extract_primary_key("/api/people", 0, exact=True) == ""

    def test_no_index_extracts_identity(self):
        """Without an index the identity rule applies."""
        assert extract_primary_key("/api/locations/1") == "1"


class TestKeys:
    """Tests for key validity, ordering and encoding."""

    @pytest.mark.parametrize("value", [1, 2.5, "a", "", [1, "a"], []])
    def test_valid_keys(self, value):
        """Numbers, strings and arrays of keys are valid."""
        assert is_valid_key(value)

    @pytest.mark.parametrize("value", [True, None, {"a": 1}, float("nan"), [1, None]])
    def test_invalid_keys(self, value):
        """Booleans, None, objects and NaN are not valid."""
        assert not is_valid_key(value)

    def test_type_ordering(self):
        """Numbers sort before strings, strings before arrays."""
        assert compare_keys(99, "a") == -1
        assert compare_keys("z", [0]) == -1
        assert compare_keys([1, "a"], [1, "b"]) == -1
        assert compare_keys([1], [1, "a"]) == -1
        assert compare_keys("b", "b") == 0

    def test_equal_numbers_encode_equal(self):
        """1 and 1.0 are the same key."""
        assert encode_key(1) == encode_key(1.0)
        assert decode_key(encode_key(1)) == 1
        assert decode_key(encode_key(["a", 2])) == ["a", 2]

    def test_in_range(self):
        """Bounds are inclusive and None is open."""
        assert in_range("b", "a", "c")
        assert in_range("a", "a", "a")
        assert not in_range("d", "a", "c")
        assert in_range("zzz", "a", None)


class TestKeyPaths:
    """Tests for key path resolution."""

    def test_dotted_path(self):
        """Dot-paths walk nested objects."""
        row = {"location": {"city": "Utrecht"}}
        assert resolve_key_path(row, "location.city") == "Utrecht"

    def test_missing_step(self):
        """Absent steps yield MISSING."""
        assert resolve_key_path({"a": 1}, "b") is MISSING
        assert resolve_key_path({"a": 1}, "a.b") is MISSING

    def test_compound_path(self):
        """List paths yield compound keys."""
        row = {"a": 1, "b": {"c": "x"}}
        assert resolve_key_path(row, ["a", "b.c"]) == [1, "x"]
        assert resolve_key_path(row, ["a", "missing"]) is MISSING

    def test_collect_values_through_lists(self):
        """collect_path_values steps into lists element-wise."""
        row = {"friends": [{"__pkey__": "1"}, {"__pkey__": "2"}, "plain"]}
        assert collect_path_values(row, "friends.__pkey__") == ["1", "2"]

"""Unit tests for dotted field paths."""

from __future__ import annotations

import pytest

from dualdb.domain.value_objects.field_path import (
    MISSING,
    resolve,
    resolve_or_null,
    set_path,
    split_path,
    unset_path,
)


@pytest.mark.unit
class TestFieldPath:
    """Tests for path resolution and assignment."""

    def test_split_rejects_empty_segments(self) -> None:
        """Empty paths and empty segments are invalid."""
        assert split_path("a.b") == ("a", "b")
        for bad in ["", "a..b", ".a", "a."]:
            with pytest.raises(ValueError):
                split_path(bad)

    def test_resolve_nested_and_list_index(self) -> None:
        """Maps are walked by key and lists by numeric segment."""
        doc = {"address": {"city": "Oslo"}, "items": [{"sku": "A"}, {"sku": "B"}]}
        assert resolve(doc, "address.city") == "Oslo"
        assert resolve(doc, "items.1.sku") == "B"
        assert resolve(doc, "items.5.sku") is MISSING
        assert resolve(doc, "address.zip") is MISSING
        assert resolve(doc, "address.city.name") is MISSING

    def test_non_ascii_digits_are_not_list_indexes(self) -> None:
        """Segments such as superscript digits resolve as missing on lists."""
        doc = {"a": [1, 2], "m": {"\u00b2": "sq"}}
        assert resolve(doc, "a.\u00b2") is MISSING
        assert resolve(doc, "a.\u0661") is MISSING
        assert resolve(doc, "m.\u00b2") == "sq"
        with pytest.raises(ValueError):
            set_path(doc, "a.\u00b2", 3)
        assert doc["a"] == [1, 2]

    def test_explicit_null_is_not_missing(self) -> None:
        """A key set to None resolves to None."""
        doc = {"a": None}
        assert resolve(doc, "a") is None
        assert resolve(doc, "b") is MISSING
        assert resolve_or_null(doc, "b") is None
        assert not MISSING
        assert repr(MISSING) == "MISSING"

    def test_set_creates_intermediate_maps(self) -> None:
        """Assignment creates missing parents."""
        doc: dict = {"a": None}
        set_path(doc, "a.b.c", 1)
        set_path(doc, "x", 2)
        assert doc == {"a": {"b": {"c": 1}}, "x": 2}

    def test_set_through_scalar_fails(self) -> None:
        """Assignment cannot descend into a scalar."""
        doc = {"a": 5}
        with pytest.raises(ValueError):
            set_path(doc, "a.b", 1)

    def test_set_list_element(self) -> None:
        """A numeric segment assigns into an existing list slot."""
        doc = {"items": [1, 2]}
        set_path(doc, "items.0", 9)
        assert doc == {"items": [9, 2]}
        with pytest.raises(ValueError):
            set_path(doc, "items.7", 1)

    def test_unset(self) -> None:
        """Unset removes present keys and reports absent ones."""
        doc = {"a": {"b": 1, "c": 2}}
        assert unset_path(doc, "a.b") is True
        assert unset_path(doc, "a.b") is False
        assert unset_path(doc, "z.y") is False
        assert doc == {"a": {"c": 2}}

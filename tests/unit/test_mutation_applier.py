"""Unit tests for update mutations."""

from __future__ import annotations

import pytest

from dualdb.domain.errors import InvalidMutation
from dualdb.domain.services.mutation_applier import apply_mutation, validate_mutation
from dualdb.domain.value_objects.mutations import Mutation, UpdateOp


@pytest.mark.unit
class TestMutationBuilders:
    """Tests for building mutations."""

    def test_from_document(self) -> None:
        """Operator documents expand into ordered operations."""
        mutation = Mutation.from_document({"$set": {"a": 1, "b.c": 2}, "$inc": {"n": 1}})
        assert [(o.op, o.path) for o in mutation.operations] == [
            (UpdateOp.SET, "a"),
            (UpdateOp.SET, "b.c"),
            (UpdateOp.INC, "n"),
        ]
        assert mutation.paths == frozenset({"a", "b", "n"})

    def test_from_document_rejects_unknown_operator(self) -> None:
        """Unknown operators are rejected."""
        with pytest.raises(ValueError):
            Mutation.from_document({"$rename": {"a": "b"}})
        with pytest.raises(ValueError):
            Mutation.from_document({"$set": 5})  # type: ignore[dict-item]


@pytest.mark.unit
class TestApplyMutation:
    """Tests for applying mutations."""

    def test_set_and_unset(self) -> None:
        """SET creates nested paths and UNSET removes keys."""
        doc = {"_id": 1, "a": 1, "b": {"c": 2}}
        updated, changed = apply_mutation(doc, Mutation.set(**{"x": 5}).then(Mutation.unset("a")))
        assert changed
        assert updated == {"_id": 1, "b": {"c": 2}, "x": 5}
        assert doc == {"_id": 1, "a": 1, "b": {"c": 2}}

        nested, _ = apply_mutation(doc, Mutation.from_document({"$set": {"b.d.e": 3}}))
        assert nested["b"] == {"c": 2, "d": {"e": 3}}

    def test_inc(self) -> None:
        """INC adds to numbers and treats a missing field as zero."""
        updated, _ = apply_mutation({"n": 2}, Mutation.inc(n=3, m=1.5))
        assert updated == {"n": 5, "m": 1.5}
        with pytest.raises(InvalidMutation):
            apply_mutation({"n": "two"}, Mutation.inc(n=1))
        with pytest.raises(InvalidMutation):
            apply_mutation({"n": None}, Mutation.inc(n=1))
        with pytest.raises(InvalidMutation):
            apply_mutation({"n": float("inf")}, Mutation.inc(n=float("-inf")))

    def test_list_operators(self) -> None:
        """PUSH appends, ADD_TO_SET dedupes and PULL removes all equal items."""
        doc = {"tags": ["a", "b", "a"]}
        updated, _ = apply_mutation(doc, Mutation.push(tags="c"))
        assert updated["tags"] == ["a", "b", "a", "c"]
        updated, changed = apply_mutation(doc, Mutation.add_to_set(tags="b"))
        assert updated["tags"] == ["a", "b", "a"]
        assert not changed
        updated, _ = apply_mutation(doc, Mutation.pull(tags="a"))
        assert updated["tags"] == ["b"]

    def test_list_operators_on_missing(self) -> None:
        """PUSH creates a list and PULL on a missing field is a no-op."""
        updated, _ = apply_mutation({}, Mutation.push(tags=1))
        assert updated == {"tags": [1]}
        updated, changed = apply_mutation({}, Mutation.pull(tags=1))
        assert updated == {}
        assert not changed

    def test_push_on_scalar_fails(self) -> None:
        """List operators reject non-list fields."""
        with pytest.raises(InvalidMutation):
            apply_mutation({"tags": "a"}, Mutation.push(tags="b"))

    def test_unchanged(self) -> None:
        """Setting an equal value reports no change."""
        _, changed = apply_mutation({"a": 1}, Mutation.set(a=1.0))
        assert not changed


@pytest.mark.unit
class TestValidateMutation:
    """Tests for mutation validation."""

    @pytest.mark.parametrize(
        "mutation",
        [
            Mutation(),
            Mutation.set(_id=5),
            Mutation.from_document({"$set": {"_id.x": 1}}),
            Mutation.from_document({"$set": {"a..b": 1}}),
            Mutation.inc(n="1"),
            Mutation.inc(n=True),
            Mutation.set(a=object()),
        ],
    )
    def test_rejected(self, mutation: Mutation) -> None:
        """Invalid mutations raise InvalidMutation."""
        with pytest.raises(InvalidMutation):
            validate_mutation(mutation)

    def test_not_a_mutation(self) -> None:
        """Plain dicts must be converted first."""
        with pytest.raises(InvalidMutation):
            validate_mutation({"$set": {"a": 1}})  # type: ignore[arg-type]

    def test_accepted(self) -> None:
        """A valid mutation passes."""
        validate_mutation(Mutation.set(a=[1, {"b": None}]).then(Mutation.unset("c")))

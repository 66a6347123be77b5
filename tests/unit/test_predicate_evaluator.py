"""Unit tests for predicate evaluation."""

from __future__ import annotations

import pytest

from dualdb.domain.errors import InvalidPredicate
from dualdb.domain.services.predicate_evaluator import (
    Truth,
    evaluate,
    evaluate_truth,
    like_to_regex,
    validate_predicate,
)
from dualdb.domain.value_objects.predicates import (
    Comparison,
    and_,
    between,
    eq,
    exists,
    gt,
    gte,
    in_,
    like,
    lt,
    match_all,
    ne,
    not_,
    or_,
    regex,
)

PERSON = {"_id": 1, "name": "Alice", "age": 30, "email": None, "address": {"city": "Oslo"}}


@pytest.mark.unit
class TestComparisons:
    """Tests for comparison nodes."""

    def test_equality_and_ordering(self) -> None:
        """Basic comparisons on present fields."""
        assert evaluate(eq("name", "Alice"), PERSON)
        assert evaluate(gt("age", 18), PERSON)
        assert not evaluate(lt("age", 30), PERSON)
        assert evaluate(gte("age", 30.0), PERSON)
        assert evaluate(eq("address.city", "Oslo"), PERSON)

    def test_null_comparisons_are_unknown(self) -> None:
        """Comparing a null field with a non-null literal yields UNKNOWN."""
        assert evaluate_truth(eq("email", "a@b.c"), PERSON) == Truth.UNKNOWN
        assert evaluate_truth(gt("missing", 3), PERSON) == Truth.UNKNOWN
        assert not evaluate(eq("email", "a@b.c"), PERSON)

    def test_only_eq_matches_null_literal(self) -> None:
        """Only EQ null matches; every other comparison with null is UNKNOWN."""
        assert evaluate(eq("email", None), PERSON)
        assert evaluate(eq("missing", None), PERSON)
        assert evaluate_truth(ne("name", None), PERSON) == Truth.UNKNOWN
        assert evaluate_truth(ne("email", None), PERSON) == Truth.UNKNOWN
        assert not evaluate(not_(ne("name", None)), PERSON)
        assert evaluate_truth(gt("age", None), PERSON) == Truth.UNKNOWN

    def test_cross_kind(self) -> None:
        """A type mismatch is FALSE for every operator."""
        assert not evaluate(eq("age", "30"), PERSON)
        assert evaluate_truth(ne("age", "30"), PERSON) == Truth.FALSE
        assert evaluate(ne("age", 31), PERSON)
        assert not evaluate(ne("age", 30.0), PERSON)
        assert evaluate_truth(lt("age", "zzz"), PERSON) == Truth.FALSE


@pytest.mark.unit
class TestLogic:
    """Tests for Kleene three-valued logic."""

    def test_and_or_with_unknown(self) -> None:
        """FALSE dominates AND, TRUE dominates OR."""
        unknown = eq("email", "x")
        assert evaluate_truth(and_(unknown, eq("age", 1)), PERSON) == Truth.FALSE
        assert evaluate_truth(and_(unknown, eq("age", 30)), PERSON) == Truth.UNKNOWN
        assert evaluate_truth(or_(unknown, eq("age", 30)), PERSON) == Truth.TRUE
        assert evaluate_truth(or_(unknown, eq("age", 1)), PERSON) == Truth.UNKNOWN

    def test_not_unknown_stays_unknown(self) -> None:
        """NOT of UNKNOWN is UNKNOWN, so neither side matches."""
        unknown = eq("email", "x")
        assert not evaluate(unknown, PERSON)
        assert not evaluate(not_(unknown), PERSON)
        assert evaluate(not_(eq("age", 1)), PERSON)

    def test_match_all(self) -> None:
        """The empty filter matches everything."""
        assert evaluate(match_all(), {})


@pytest.mark.unit
class TestOtherNodes:
    """Tests for IN, patterns, EXISTS and ranges."""

    def test_in(self) -> None:
        """Membership uses value equality."""
        assert evaluate(in_("age", [10, 30.0]), PERSON)
        assert not evaluate(in_("age", [10, 20]), PERSON)
        assert evaluate_truth(in_("email", ["x"]), PERSON) == Truth.UNKNOWN
        assert evaluate(in_("email", ["x", None]), PERSON)

    def test_like(self) -> None:
        """LIKE matches the whole string with % and _ wildcards."""
        assert evaluate(like("name", "A%"), PERSON)
        assert evaluate(like("name", "_lice"), PERSON)
        assert not evaluate(like("name", "lic"), PERSON)
        assert evaluate(like("name", "al%", case_insensitive=True), PERSON)
        assert evaluate(like("pct", "100\\%"), {"pct": "100%"})
        assert not evaluate(like("pct", "100\\%"), {"pct": "1000"})

    def test_like_translation_escapes_metacharacters(self) -> None:
        """Regex metacharacters in a LIKE pattern are literal."""
        assert like_to_regex("a.b%") == "a\\.b.*"

    def test_regex_searches(self) -> None:
        """REGEX matches anywhere unless anchored."""
        assert evaluate(regex("name", "lic"), PERSON)
        assert not evaluate(regex("name", "^lic"), PERSON)
        assert evaluate(regex("name", "^ALI", case_insensitive=True), PERSON)

    def test_pattern_on_non_string(self) -> None:
        """A non-string field never matches and a null one is UNKNOWN."""
        assert evaluate_truth(like("age", "3%"), PERSON) == Truth.FALSE
        assert evaluate_truth(like("email", "%"), PERSON) == Truth.UNKNOWN

    def test_exists(self) -> None:
        """An explicit null counts as present."""
        assert evaluate(exists("email"), PERSON)
        assert evaluate(exists("phone", False), PERSON)
        assert not evaluate(exists("address.city", False), PERSON)

    def test_between(self) -> None:
        """Range bounds are inclusive and must share the field's kind."""
        assert evaluate(between("age", 30, 40), PERSON)
        assert evaluate(between("age", 20, 30), PERSON)
        assert not evaluate(between("age", 31, 40), PERSON)
        assert evaluate_truth(between("age", "a", "z"), PERSON) == Truth.FALSE
        assert evaluate_truth(between("email", 1, 2), PERSON) == Truth.UNKNOWN


@pytest.mark.unit
class TestValidation:
    """Tests for up-front predicate validation."""

    def test_valid_tree(self) -> None:
        """A well-formed tree passes."""
        validate_predicate(and_(eq("a", 1), or_(like("b", "x%"), not_(exists("c")))))

    @pytest.mark.parametrize(
        "predicate",
        [
            eq("", 1),
            eq("a..b", 1),
            Comparison("a", "==", 1),  # type: ignore[arg-type]
            eq("a", object()),
            regex("a", "("),
            between("a", 5, 1),
            and_(),
            or_(),
            "not a predicate",
        ],
    )
    def test_invalid_trees(self, predicate: object) -> None:
        """Malformed predicates raise InvalidPredicate."""
        with pytest.raises(InvalidPredicate):
            validate_predicate(predicate)

"""Predicate evaluation with three-valued logic.

Every predicate node evaluates to TRUE, FALSE or UNKNOWN. UNKNOWN arises
from comparisons against Null (SQL semantics) and propagates through
AND/OR/NOT by Kleene's rules; ``evaluate`` collapses it to ``False`` at the
top so a record only matches when its predicate is definitely TRUE.

Type mismatches never raise during evaluation. Malformed trees are rejected
up front by ``validate_predicate``.
"""

from __future__ import annotations

import re
from enum import Enum
from functools import lru_cache
from typing import Any

from dualdb.domain.errors import InvalidPredicate
from dualdb.domain.value_objects.field_path import MISSING, resolve, split_path
from dualdb.domain.value_objects.predicates import (
    And,
    Comparison,
    ComparisonOp,
    Exists,
    In,
    MatchAll,
    Not,
    Or,
    Pattern,
    PatternSyntax,
    Predicate,
    Range,
)
from dualdb.domain.value_objects.values import (
    compare_values,
    kind_of,
    validate_value,
    values_equal,
)


class Truth(Enum):
    """Three-valued logic."""

    TRUE = "true"
    FALSE = "false"
    UNKNOWN = "unknown"

    @classmethod
    def of(cls, flag: bool) -> Truth:
        return cls.TRUE if flag else cls.FALSE

    def negate(self) -> Truth:
        if self == Truth.TRUE:
            return Truth.FALSE
        if self == Truth.FALSE:
            return Truth.TRUE
        return Truth.UNKNOWN


def like_to_regex(pattern: str) -> str:
    """Translate a SQL LIKE pattern into an equivalent regular expression.

    ``%`` matches any sequence, ``_`` any single character and ``\\``
    escapes the next character. The result must be used with
    ``re.fullmatch``.
    """
    out: list[str] = []
    escaped = False
    for ch in pattern:
        if escaped:
            out.append(re.escape(ch))
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == "%":
            out.append(".*")
        elif ch == "_":
            out.append(".")
        else:
            out.append(re.escape(ch))
    if escaped:
        # trailing escape character matches itself
        out.append(re.escape("\\"))
    return "".join(out)


@lru_cache(maxsize=256)
def compile_pattern(pattern: str, syntax: PatternSyntax, case_insensitive: bool) -> re.Pattern[str]:
    """Compile (and cache) a LIKE or REGEX pattern.

    Raises:
        re.error: If a REGEX pattern does not compile.
    """
    flags = re.IGNORECASE if case_insensitive else 0
    if syntax == PatternSyntax.LIKE:
        return re.compile(like_to_regex(pattern), flags | re.DOTALL)
    return re.compile(pattern, flags)


def compare(value: Any, op: ComparisonOp, literal: Any) -> Truth:
    """Compare a field value (Null for missing) against a literal."""
    if literal is None:
        if op == ComparisonOp.EQ:
            return Truth.of(value is None)
        return Truth.UNKNOWN
    if value is None:
        return Truth.UNKNOWN

    if op == ComparisonOp.EQ:
        return Truth.of(values_equal(value, literal))
    # a type mismatch is FALSE for every other operator, NE included
    if kind_of(value) != kind_of(literal):
        return Truth.FALSE
    if op == ComparisonOp.NE:
        return Truth.of(not values_equal(value, literal))
    cmp = compare_values(value, literal)
    if op == ComparisonOp.LT:
        return Truth.of(cmp < 0)
    if op == ComparisonOp.LTE:
        return Truth.of(cmp <= 0)
    if op == ComparisonOp.GT:
        return Truth.of(cmp > 0)
    if op == ComparisonOp.GTE:
        return Truth.of(cmp >= 0)
    raise InvalidPredicate(f"Unknown comparison operator: {op!r}")


def compare_fields(left: Any, op: ComparisonOp, right: Any) -> Truth:
    """Compare two field values where Null on either side never matches."""
    if left is None or left is MISSING or right is None or right is MISSING:
        return Truth.UNKNOWN
    return compare(left, op, right)


def _field(document: dict[str, Any], path: str) -> Any:
    value = resolve(document, path)
    return None if value is MISSING else value


def evaluate_truth(predicate: Predicate, document: dict[str, Any]) -> Truth:
    """Evaluate a predicate against a document under three-valued logic."""
    if isinstance(predicate, Comparison):
        return compare(_field(document, predicate.path), predicate.op, predicate.value)

    if isinstance(predicate, And):
        result = Truth.TRUE
        for child in predicate.children:
            truth = evaluate_truth(child, document)
            if truth == Truth.FALSE:
                return Truth.FALSE
            if truth == Truth.UNKNOWN:
                result = Truth.UNKNOWN
        return result

    if isinstance(predicate, Or):
        result = Truth.FALSE
        for child in predicate.children:
            truth = evaluate_truth(child, document)
            if truth == Truth.TRUE:
                return Truth.TRUE
            if truth == Truth.UNKNOWN:
                result = Truth.UNKNOWN
        return result

    if isinstance(predicate, Not):
        return evaluate_truth(predicate.child, document).negate()

    if isinstance(predicate, In):
        value = _field(document, predicate.path)
        if value is None:
            return Truth.TRUE if any(v is None for v in predicate.values) else Truth.UNKNOWN
        return Truth.of(any(v is not None and values_equal(value, v) for v in predicate.values))

    if isinstance(predicate, Pattern):
        value = _field(document, predicate.path)
        if value is None:
            return Truth.UNKNOWN
        if not isinstance(value, str):
            return Truth.FALSE
        regex = compile_pattern(predicate.pattern, predicate.syntax, predicate.case_insensitive)
        if predicate.syntax == PatternSyntax.LIKE:
            return Truth.of(regex.fullmatch(value) is not None)
        return Truth.of(regex.search(value) is not None)

    if isinstance(predicate, Exists):
        present = resolve(document, predicate.path) is not MISSING
        return Truth.of(present == predicate.exists)

    if isinstance(predicate, Range):
        value = _field(document, predicate.path)
        if value is None or predicate.low is None or predicate.high is None:
            return Truth.UNKNOWN
        kind = kind_of(value)
        if kind != kind_of(predicate.low) or kind != kind_of(predicate.high):
            return Truth.FALSE
        return Truth.of(
            compare_values(predicate.low, value) <= 0 and compare_values(value, predicate.high) <= 0
        )

    if isinstance(predicate, MatchAll):
        return Truth.TRUE

    raise InvalidPredicate(f"Unknown predicate node: {type(predicate).__name__}")


def evaluate(predicate: Predicate, document: dict[str, Any]) -> bool:
    """Evaluate a predicate; UNKNOWN counts as no match."""
    return evaluate_truth(predicate, document) == Truth.TRUE


def _check_path(path: Any) -> None:
    try:
        split_path(path)
    except (TypeError, ValueError) as e:
        raise InvalidPredicate(str(e)) from e


def _check_literal(value: Any, where: str) -> None:
    try:
        validate_value(value)
    except TypeError as e:
        raise InvalidPredicate(f"Invalid literal in {where}: {e}") from e


def validate_predicate(predicate: Any) -> None:
    """Reject a malformed predicate tree before any record is scanned.

    Raises:
        InvalidPredicate: For a bad path, operator, operand or structure.
    """
    if isinstance(predicate, MatchAll):
        return

    if isinstance(predicate, Comparison):
        _check_path(predicate.path)
        if not isinstance(predicate.op, ComparisonOp):
            raise InvalidPredicate(f"Unknown comparison operator: {predicate.op!r}")
        _check_literal(predicate.value, str(predicate.path))
        return

    if isinstance(predicate, In):
        _check_path(predicate.path)
        if not isinstance(predicate.values, (list, tuple)):
            raise InvalidPredicate(f"IN on {predicate.path} requires a list of values")
        for value in predicate.values:
            _check_literal(value, f"IN on {predicate.path}")
        return

    if isinstance(predicate, Pattern):
        _check_path(predicate.path)
        if not isinstance(predicate.pattern, str):
            raise InvalidPredicate(f"Pattern on {predicate.path} must be a string")
        if not isinstance(predicate.syntax, PatternSyntax):
            raise InvalidPredicate(f"Unknown pattern syntax: {predicate.syntax!r}")
        try:
            compile_pattern(predicate.pattern, predicate.syntax, bool(predicate.case_insensitive))
        except re.error as e:
            raise InvalidPredicate(f"Invalid regular expression {predicate.pattern!r}: {e}") from e
        return

    if isinstance(predicate, Exists):
        _check_path(predicate.path)
        return

    if isinstance(predicate, Range):
        _check_path(predicate.path)
        _check_literal(predicate.low, f"range on {predicate.path}")
        _check_literal(predicate.high, f"range on {predicate.path}")
        low, high = predicate.low, predicate.high
        if (
            low is not None
            and high is not None
            and kind_of(low) == kind_of(high)
            and compare_values(low, high) > 0
        ):
            raise InvalidPredicate(f"Range on {predicate.path} has low > high")
        return

    if isinstance(predicate, (And, Or)):
        if not predicate.children:
            raise InvalidPredicate(f"{type(predicate).__name__} requires at least one child")
        for child in predicate.children:
            validate_predicate(child)
        return

    if isinstance(predicate, Not):
        validate_predicate(predicate.child)
        return

    raise InvalidPredicate(f"Unknown predicate node: {type(predicate).__name__}")

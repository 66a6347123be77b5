"""Join engine combining records from two collections.

Equality joins build a hash table over the inner side keyed by the Value
sort key of the join field; any other operator, or a residual predicate,
falls back to a nested loop. Null or missing join keys never match, as in
SQL.

Output records have the shape ``{left_alias: left_doc, right_alias:
right_doc}`` with the unmatched side bound to ``None``.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Iterator, Sequence

from dualdb.domain.errors import InvalidPredicate
from dualdb.domain.services.predicate_evaluator import (
    Truth,
    compare_fields,
    evaluate,
    validate_predicate,
)
from dualdb.domain.value_objects.field_path import MISSING, resolve, split_path
from dualdb.domain.value_objects.predicates import ComparisonOp, Predicate
from dualdb.domain.value_objects.values import copy_value, sort_key


class JoinKind(Enum):
    """Join types."""

    INNER = "INNER"
    LEFT = "LEFT"
    RIGHT = "RIGHT"
    FULL = "FULL"


@dataclass(frozen=True)
class JoinCondition:
    """``left.left_path <op> right.right_path``, optionally AND a residual.

    The residual is evaluated against the combined record, so its paths are
    prefixed with the side aliases (``"orders.amount"``).
    """

    left_path: str
    right_path: str
    op: ComparisonOp = ComparisonOp.EQ
    residual: Predicate | None = None

    def validate(self) -> None:
        """Raises ``InvalidPredicate`` for bad paths, operator or residual."""
        for path in (self.left_path, self.right_path):
            try:
                split_path(path)
            except (TypeError, ValueError) as e:
                raise InvalidPredicate(f"Invalid join path: {e}") from e
        if not isinstance(self.op, ComparisonOp):
            raise InvalidPredicate(f"Unknown join operator: {self.op!r}")
        if self.residual is not None:
            validate_predicate(self.residual)


def on(
    left_path: str,
    right_path: str,
    op: ComparisonOp = ComparisonOp.EQ,
    residual: Predicate | None = None,
) -> JoinCondition:
    return JoinCondition(left_path, right_path, op, residual)


def _key(document: dict[str, Any], path: str) -> Any:
    value = resolve(document, path)
    return None if value is MISSING else value


class _Matcher:
    """Finds the inner records matching an outer record."""

    def __init__(
        self,
        inner: Sequence[dict[str, Any]],
        condition: JoinCondition,
        inner_is_right: bool,
        left_alias: str,
        right_alias: str,
    ) -> None:
        self.inner = inner
        self.condition = condition
        self.inner_is_right = inner_is_right
        self.left_alias = left_alias
        self.right_alias = right_alias
        self.outer_path = condition.left_path if inner_is_right else condition.right_path
        self.inner_path = condition.right_path if inner_is_right else condition.left_path

        self._table: dict[tuple, list[int]] | None = None
        if condition.op == ComparisonOp.EQ:
            table: dict[tuple, list[int]] = defaultdict(list)
            for i, doc in enumerate(inner):
                value = _key(doc, self.inner_path)
                if value is not None:
                    table[sort_key(value)].append(i)
            self._table = table

    def combine(self, outer: dict[str, Any] | None, inner: dict[str, Any] | None) -> dict[str, Any]:
        if self.inner_is_right:
            return {self.left_alias: outer, self.right_alias: inner}
        return {self.left_alias: inner, self.right_alias: outer}

    def _condition_holds(self, outer_value: Any, inner_doc: dict[str, Any]) -> bool:
        inner_value = _key(inner_doc, self.inner_path)
        if self.inner_is_right:
            truth = compare_fields(outer_value, self.condition.op, inner_value)
        else:
            truth = compare_fields(inner_value, self.condition.op, outer_value)
        return truth == Truth.TRUE

    def matches(self, outer: dict[str, Any]) -> list[int]:
        """Inner positions matching an outer record, in inner order."""
        outer_value = _key(outer, self.outer_path)
        if outer_value is None:
            return []
        if self._table is not None:
            candidates = self._table.get(sort_key(outer_value), [])
        else:
            candidates = [
                i for i, doc in enumerate(self.inner) if self._condition_holds(outer_value, doc)
            ]
        residual = self.condition.residual
        if residual is None:
            return list(candidates)
        return [i for i in candidates if evaluate(residual, self.combine(outer, self.inner[i]))]


def join(
    left: Iterable[dict[str, Any]],
    right: Iterable[dict[str, Any]],
    condition: JoinCondition,
    kind: JoinKind = JoinKind.INNER,
    left_alias: str = "left",
    right_alias: str = "right",
) -> Iterator[dict[str, Any]]:
    """Join two record sequences lazily.

    The condition is validated eagerly; rows are produced on demand.

    INNER, LEFT and FULL rows follow the left sequence, with FULL appending
    the unmatched right records in right order. RIGHT rows follow the right
    sequence.

    Args:
        left: Left records (consumed lazily except for RIGHT joins).
        right: Right records (materialised).
        condition: Join condition.
        kind: Join type.
        left_alias: Key of the left record in each output row.
        right_alias: Key of the right record in each output row.

    Returns:
        Iterator of combined records ``{left_alias: doc | None, right_alias: doc | None}``.
    """
    if left_alias == right_alias:
        raise InvalidPredicate(f"Join aliases must differ, both are '{left_alias}'")
    condition.validate()
    return _join_rows(left, right, condition, JoinKind(kind), left_alias, right_alias)


def _join_rows(
    left: Iterable[dict[str, Any]],
    right: Iterable[dict[str, Any]],
    condition: JoinCondition,
    kind: JoinKind,
    left_alias: str,
    right_alias: str,
) -> Iterator[dict[str, Any]]:
    if kind == JoinKind.RIGHT:
        matcher = _Matcher(list(left), condition, False, left_alias, right_alias)
        for record in right:
            hits = matcher.matches(record)
            if not hits:
                yield matcher.combine(copy_value(record), None)
            for i in hits:
                yield matcher.combine(copy_value(record), copy_value(matcher.inner[i]))
        return

    right_docs = list(right)
    matcher = _Matcher(right_docs, condition, True, left_alias, right_alias)
    matched_right: set[int] = set()
    for record in left:
        hits = matcher.matches(record)
        if not hits and kind in (JoinKind.LEFT, JoinKind.FULL):
            yield matcher.combine(copy_value(record), None)
        for i in hits:
            matched_right.add(i)
            yield matcher.combine(copy_value(record), copy_value(right_docs[i]))

    if kind == JoinKind.FULL:
        for i, r in enumerate(right_docs):
            if i not in matched_right:
                yield {left_alias: None, right_alias: copy_value(r)}

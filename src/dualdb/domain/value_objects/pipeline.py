"""Aggregation pipeline stages and their expressions.

A pipeline is an ordered sequence of stages. Each stage consumes the record
stream produced by the previous one:

    [Match(eq("status", "paid")),
     group(ref("customer"), {"total": sum_("amount")}),
     sort(("total", DESC)),
     Limit(5)]
"""

from __future__ import annotations

from abc import ABC
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Sequence, Union

from dualdb.domain.value_objects.predicates import Predicate


# Expressions


@dataclass(frozen=True)
class FieldRef:
    """Reference to a field of the incoming record."""

    path: str

    @property
    def root(self) -> str:
        return self.path.split(".", 1)[0]


@dataclass(frozen=True)
class Literal:
    """A constant value."""

    value: Any


@dataclass(frozen=True)
class ObjectExpr:
    """A map of named sub-expressions, nested one level only."""

    fields: tuple[tuple[str, Union[FieldRef, Literal]], ...]


Expr = Union[FieldRef, Literal, ObjectExpr]


def ref(path: str) -> FieldRef:
    """Field reference; a leading ``$`` is accepted and stripped."""
    return FieldRef(path[1:] if path.startswith("$") else path)


def lit(value: Any) -> Literal:
    return Literal(value)


def obj(fields: Mapping[str, FieldRef | Literal]) -> ObjectExpr:
    return ObjectExpr(tuple(fields.items()))


def as_expr(value: Any) -> Expr:
    """Coerce shorthand into an expression: ``"$path"`` is a reference."""
    if isinstance(value, (FieldRef, Literal, ObjectExpr)):
        return value
    if isinstance(value, str) and value.startswith("$"):
        return ref(value)
    return Literal(value)


def expr_refs(expr: Expr) -> list[FieldRef]:
    """All field references used by an expression."""
    if isinstance(expr, FieldRef):
        return [expr]
    if isinstance(expr, ObjectExpr):
        return [e for _, e in expr.fields if isinstance(e, FieldRef)]
    return []


# Accumulators


class AccumulatorFunc(Enum):
    """Group accumulators."""

    SUM = "$sum"
    AVG = "$avg"
    MIN = "$min"
    MAX = "$max"
    COUNT = "$count"
    PUSH = "$push"
    ADD_TO_SET = "$addToSet"
    FIRST = "$first"
    LAST = "$last"


@dataclass(frozen=True)
class Accumulator:
    """An accumulator function over an expression (none for COUNT)."""

    func: AccumulatorFunc
    expr: Expr | None = None


def _path_expr(value: Any) -> Expr:
    # accumulators take a bare path where pipelines elsewhere need "$path"
    if isinstance(value, str) and not value.startswith("$"):
        return FieldRef(value)
    return as_expr(value)


def sum_(value: Any) -> Accumulator:
    return Accumulator(AccumulatorFunc.SUM, _path_expr(value))


def avg(value: Any) -> Accumulator:
    return Accumulator(AccumulatorFunc.AVG, _path_expr(value))


def min_(value: Any) -> Accumulator:
    return Accumulator(AccumulatorFunc.MIN, _path_expr(value))


def max_(value: Any) -> Accumulator:
    return Accumulator(AccumulatorFunc.MAX, _path_expr(value))


def count() -> Accumulator:
    return Accumulator(AccumulatorFunc.COUNT)


def push(value: Any) -> Accumulator:
    return Accumulator(AccumulatorFunc.PUSH, _path_expr(value))


def add_to_set(value: Any) -> Accumulator:
    return Accumulator(AccumulatorFunc.ADD_TO_SET, _path_expr(value))


def first(value: Any) -> Accumulator:
    return Accumulator(AccumulatorFunc.FIRST, _path_expr(value))


def last(value: Any) -> Accumulator:
    return Accumulator(AccumulatorFunc.LAST, _path_expr(value))


# Stages


class SortDirection(Enum):
    ASC = 1
    DESC = -1


ASC = SortDirection.ASC
DESC = SortDirection.DESC


@dataclass(frozen=True)
class SortSpec:
    path: str
    direction: SortDirection = SortDirection.ASC


@dataclass(frozen=True)
class Stage(ABC):
    """Base class for pipeline stages."""


@dataclass(frozen=True)
class Match(Stage):
    predicate: Predicate


@dataclass(frozen=True)
class Group(Stage):
    """Partition by ``key`` and fold each partition with the accumulators.

    Output records carry the key under ``_id`` and each accumulator result
    under its declared name.
    """

    key: Expr
    accumulators: tuple[tuple[str, Accumulator], ...] = ()


@dataclass(frozen=True)
class Project(Stage):
    """Keep only the listed output fields.

    Each entry is ``True`` (pass the same-named field through), ``False``
    (only valid for ``_id``) or an expression.
    """

    fields: tuple[tuple[str, Union[bool, Expr]], ...]


@dataclass(frozen=True)
class Sort(Stage):
    keys: tuple[SortSpec, ...]


@dataclass(frozen=True)
class Limit(Stage):
    count: int


@dataclass(frozen=True)
class Skip(Stage):
    count: int


@dataclass(frozen=True)
class Count(Stage):
    """Replace the stream with a single ``{field: n}`` record."""

    field: str = "count"


@dataclass(frozen=True)
class Unwind(Stage):
    """Emit one record per element of the list at ``path``."""

    path: str
    preserve_empty: bool = False


@dataclass(frozen=True)
class Lookup(Stage):
    """Left outer join against another collection, embedding matches as a list."""

    from_collection: str
    local_field: str
    foreign_field: str
    as_field: str


# Stage constructors


def group(key: Any, accumulators: Mapping[str, Accumulator] | None = None) -> Group:
    return Group(as_expr(key), tuple((accumulators or {}).items()))


def project(fields: Mapping[str, Any]) -> Project:
    entries: list[tuple[str, Union[bool, Expr]]] = []
    for name, value in fields.items():
        if isinstance(value, bool):
            entries.append((name, value))
        elif isinstance(value, Mapping):
            entries.append((name, obj({k: as_expr(v) for k, v in value.items()})))  # type: ignore[misc]
        else:
            entries.append((name, as_expr(value)))
    return Project(tuple(entries))


def sort_specs(keys: Sequence[SortSpec | tuple[str, Any] | str]) -> tuple[SortSpec, ...]:
    """Normalise ``"path"``, ``(path, ASC|DESC|1|-1)`` and ``SortSpec`` entries."""
    specs: list[SortSpec] = []
    for key in keys:
        if isinstance(key, SortSpec):
            specs.append(key)
        elif isinstance(key, str):
            specs.append(SortSpec(key))
        else:
            path, direction = key
            specs.append(SortSpec(path, SortDirection(direction) if not isinstance(direction, SortDirection) else direction))
    return tuple(specs)


def sort(*keys: SortSpec | tuple[str, Any] | str) -> Sort:
    return Sort(sort_specs(keys))

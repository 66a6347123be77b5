"""Predicate trees evaluated against records.

Predicates are immutable tagged nodes built by the caller (or by a query
front end) and only read by the engine. The same tree drives the
relational WHERE path, the document filter path, update/delete matching
and the ``Match`` pipeline stage.

Example:
    >>> p = and_(eq("status", "active"), gte("age", 18), like("name", "A%"))
    >>> str(p)
    "(status = 'active' AND age >= 18 AND name LIKE 'A%')"
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable


class ComparisonOp(Enum):
    """Comparison operators for predicates."""

    EQ = "="
    NE = "<>"
    LT = "<"
    LTE = "<="
    GT = ">"
    GTE = ">="

    @property
    def is_range(self) -> bool:
        return self in (ComparisonOp.LT, ComparisonOp.LTE, ComparisonOp.GT, ComparisonOp.GTE)


class PatternSyntax(Enum):
    """Pattern dialects."""

    LIKE = "LIKE"
    REGEX = "REGEX"


def _fmt(value: Any) -> str:
    if isinstance(value, str):
        return f"'{value}'"
    if value is None:
        return "NULL"
    return repr(value)


@dataclass(frozen=True)
class Predicate(ABC):
    """Base class for predicate nodes."""

    @abstractmethod
    def __str__(self) -> str:
        pass


@dataclass(frozen=True)
class MatchAll(Predicate):
    """Matches every record (the empty filter)."""

    def __str__(self) -> str:
        return "TRUE"


@dataclass(frozen=True)
class Comparison(Predicate):
    """Compare the value at a field path with a literal."""

    path: str
    op: ComparisonOp
    value: Any

    def __str__(self) -> str:
        if self.value is None and self.op == ComparisonOp.EQ:
            return f"{self.path} IS NULL"
        return f"{self.path} {self.op.value} {_fmt(self.value)}"


@dataclass(frozen=True)
class In(Predicate):
    """Membership of the value at a field path in a list of literals."""

    path: str
    values: tuple[Any, ...]

    def __str__(self) -> str:
        return f"{self.path} IN ({', '.join(_fmt(v) for v in self.values)})"


@dataclass(frozen=True)
class Pattern(Predicate):
    """String pattern match (SQL LIKE or regular expression)."""

    path: str
    pattern: str
    syntax: PatternSyntax = PatternSyntax.LIKE
    case_insensitive: bool = False

    def __str__(self) -> str:
        op = "LIKE" if self.syntax == PatternSyntax.LIKE else "REGEXP"
        if self.case_insensitive:
            op = "I" + op
        return f"{self.path} {op} {_fmt(self.pattern)}"


@dataclass(frozen=True)
class Exists(Predicate):
    """Presence (or absence) of a key; an explicit null counts as present."""

    path: str
    exists: bool = True

    def __str__(self) -> str:
        return f"{self.path} {'EXISTS' if self.exists else 'NOT EXISTS'}"


@dataclass(frozen=True)
class Range(Predicate):
    """Inclusive range test ``low <= value <= high``."""

    path: str
    low: Any
    high: Any

    def __str__(self) -> str:
        return f"{self.path} BETWEEN {_fmt(self.low)} AND {_fmt(self.high)}"


@dataclass(frozen=True)
class And(Predicate):
    """Conjunction of child predicates."""

    children: tuple[Predicate, ...] = field(default_factory=tuple)

    def __str__(self) -> str:
        return f"({' AND '.join(str(c) for c in self.children)})"


@dataclass(frozen=True)
class Or(Predicate):
    """Disjunction of child predicates."""

    children: tuple[Predicate, ...] = field(default_factory=tuple)

    def __str__(self) -> str:
        return f"({' OR '.join(str(c) for c in self.children)})"


@dataclass(frozen=True)
class Not(Predicate):
    """Negation of a child predicate."""

    child: Predicate

    def __str__(self) -> str:
        return f"NOT ({self.child})"


# Convenience constructors


def match_all() -> MatchAll:
    return MatchAll()


def eq(path: str, value: Any) -> Comparison:
    return Comparison(path, ComparisonOp.EQ, value)


def ne(path: str, value: Any) -> Comparison:
    return Comparison(path, ComparisonOp.NE, value)


def lt(path: str, value: Any) -> Comparison:
    return Comparison(path, ComparisonOp.LT, value)


def lte(path: str, value: Any) -> Comparison:
    return Comparison(path, ComparisonOp.LTE, value)


def gt(path: str, value: Any) -> Comparison:
    return Comparison(path, ComparisonOp.GT, value)


def gte(path: str, value: Any) -> Comparison:
    return Comparison(path, ComparisonOp.GTE, value)


def in_(path: str, values: Iterable[Any]) -> In:
    return In(path, tuple(values))


def like(path: str, pattern: str, case_insensitive: bool = False) -> Pattern:
    return Pattern(path, pattern, PatternSyntax.LIKE, case_insensitive)


def regex(path: str, pattern: str, case_insensitive: bool = False) -> Pattern:
    return Pattern(path, pattern, PatternSyntax.REGEX, case_insensitive)


def exists(path: str, present: bool = True) -> Exists:
    return Exists(path, present)


def between(path: str, low: Any, high: Any) -> Range:
    return Range(path, low, high)


def and_(*children: Predicate) -> And:
    return And(tuple(children))


def or_(*children: Predicate) -> Or:
    return Or(tuple(children))


def not_(child: Predicate) -> Not:
    return Not(child)

"""Secondary indexes and access-path selection.

A ``SecondaryIndex`` maps the tuple of a record's values at the indexed
field paths (missing fields index as Null) to the keys of the records
sharing that tuple. ``choose_index`` picks the index whose leading fields
are best constrained by the equality and range clauses at the top level of
a predicate.

The chosen plan only narrows the candidates. The full predicate is always
re-evaluated against them, so an index scan and a full scan return the
same records.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, Sequence

from dualdb.domain.entities.record import Record
from dualdb.domain.services.btree_index import DEFAULT_MAX_KEYS, BTreeIndex
from dualdb.domain.value_objects.field_path import resolve_or_null
from dualdb.domain.value_objects.predicates import (
    And,
    Comparison,
    ComparisonOp,
    Predicate,
    Range,
)
from dualdb.domain.value_objects.values import KEY_MAX, kind_of, sort_key
from dualdb.ports.inbound.index_manager import Index, IndexMetadata


def index_name(fields: Sequence[str]) -> str:
    """Conventional index name: the field paths joined by ``_``."""
    return "_".join(fields)


class SecondaryIndex(Index):
    """A B+Tree index over one or more field paths of a collection."""

    def __init__(
        self,
        collection: str,
        fields: Sequence[str],
        name: str | None = None,
        max_keys: int = DEFAULT_MAX_KEYS,
    ) -> None:
        if not fields:
            raise ValueError("An index needs at least one field")
        self.collection = collection
        self.fields = tuple(fields)
        self.name = name or index_name(self.fields)
        self.tree = BTreeIndex(max_keys=max_keys)
        self.scans = 0

    def __repr__(self) -> str:
        return f"SecondaryIndex({self.collection}.{self.name})"

    @property
    def metadata(self) -> IndexMetadata:
        return IndexMetadata(
            name=self.name,
            collection=self.collection,
            fields=self.fields,
            height=self.tree.height,
            num_keys=self.tree.num_keys,
            num_entries=self.tree.num_entries,
            scans=self.scans,
        )

    def key_for(self, document: dict[str, Any]) -> tuple:
        return tuple(sort_key(resolve_or_null(document, f)) for f in self.fields)

    def add(self, record: Record) -> None:
        self.tree.insert(self.key_for(record.document), record.key)

    def move(self, old: Record, new: Record) -> None:
        old_key = self.key_for(old.document)
        new_key = self.key_for(new.document)
        if old_key != new_key:
            self.tree.delete(old_key, old.key)
            self.tree.insert(new_key, new.key)

    def remove(self, record: Record) -> None:
        self.tree.delete(self.key_for(record.document), record.key)

    def entries(self) -> Iterator[tuple[tuple, list[tuple]]]:
        return self.tree.scan_all()

    def contains(self, record: Record) -> bool:
        """Check whether the record is indexed under its current key."""
        return record.key in self.tree.search(self.key_for(record.document))

    def lookup(self, plan: IndexPlan) -> list[tuple]:
        """Record keys satisfying the plan's bounds, in index order."""
        self.scans += 1
        prefix = tuple(sort_key(v) for v in plan.equality)

        if plan.range is None:
            if len(prefix) == len(self.fields):
                return self.tree.search(prefix)
            # a shorter prefix sorts below every full key extending it
            scan = self.tree.range_scan(prefix, prefix + (KEY_MAX,))
        else:
            low, high, include_high = plan.range.bounds(prefix)
            scan = self.tree.range_scan(low, high, include_high=include_high)

        keys: list[tuple] = []
        for _, record_keys in scan:
            keys.extend(record_keys)
        return keys


@dataclass(frozen=True)
class RangeBound:
    """Combined range constraint on one indexed field.

    A bound is ``(value, inclusive)``; ``None`` means that side is open.
    """

    low: tuple[Any, bool] | None = None
    high: tuple[Any, bool] | None = None

    def bounds(self, prefix: tuple) -> tuple[tuple, tuple, bool]:
        """Composite (low, high, include_high) keys for a B+Tree scan.

        An open side is closed at the edge of the other side's kind, since
        ordering comparisons never match across kinds.
        """
        if self.low is not None:
            value, inclusive = self.low
            low = prefix + (sort_key(value),) if inclusive else prefix + (sort_key(value), KEY_MAX)
        else:
            assert self.high is not None
            low = prefix + ((kind_of(self.high[0]),),)

        if self.high is not None:
            value, inclusive = self.high
            if inclusive:
                return low, prefix + (sort_key(value), KEY_MAX), True
            return low, prefix + (sort_key(value),), False
        assert self.low is not None
        return low, prefix + ((kind_of(self.low[0]) + 1,),), False

    def tighten(self, other: RangeBound) -> RangeBound:
        return RangeBound(
            low=_pick(self.low, other.low, lower=True),
            high=_pick(self.high, other.high, lower=False),
        )

    def __str__(self) -> str:
        parts = []
        if self.low is not None:
            parts.append(f"{'>=' if self.low[1] else '>'} {self.low[0]!r}")
        if self.high is not None:
            parts.append(f"{'<=' if self.high[1] else '<'} {self.high[0]!r}")
        return " AND ".join(parts)


def _pick(
    a: tuple[Any, bool] | None, b: tuple[Any, bool] | None, lower: bool
) -> tuple[Any, bool] | None:
    # keep the tighter of two bounds on the same side
    if a is None:
        return b
    if b is None:
        return a
    ka, kb = sort_key(a[0]), sort_key(b[0])
    if ka == kb:
        return (a[0], a[1] and b[1])
    if lower:
        return a if ka > kb else b
    return a if ka < kb else b


@dataclass(frozen=True)
class IndexPlan:
    """Access path chosen for a predicate.

    Attributes:
        index: The index to scan.
        equality: Values bound by equality to the leading fields.
        range: Range on the field following the equality prefix, if any.
    """

    index: SecondaryIndex
    equality: tuple[Any, ...] = ()
    range: RangeBound | None = None

    @property
    def prefix_length(self) -> int:
        return len(self.equality) + (1 if self.range is not None else 0)

    @property
    def score(self) -> tuple[int, int]:
        return (self.prefix_length, len(self.equality))

    def describe(self) -> dict[str, Any]:
        fields = self.index.fields
        out: dict[str, Any] = {
            "access": "index_scan",
            "index": self.index.name,
            "fields": list(fields),
            "equality": {f: v for f, v in zip(fields, self.equality)},
        }
        if self.range is not None:
            out["range"] = {fields[len(self.equality)]: str(self.range)}
        return out


def _conjuncts(predicate: Predicate) -> list[Predicate]:
    if isinstance(predicate, And):
        out: list[Predicate] = []
        for child in predicate.children:
            out.extend(_conjuncts(child))
        return out
    return [predicate]


_LOWER_OPS = {ComparisonOp.GT: False, ComparisonOp.GTE: True}
_UPPER_OPS = {ComparisonOp.LT: False, ComparisonOp.LTE: True}


def _collect_clauses(
    predicate: Predicate,
) -> tuple[dict[str, Any], dict[str, RangeBound]]:
    """Equality values and merged ranges per path from the top-level AND."""
    equalities: dict[str, Any] = {}
    ranges: dict[str, RangeBound] = {}

    def add_range(path: str, bound: RangeBound) -> None:
        ranges[path] = ranges[path].tighten(bound) if path in ranges else bound

    for clause in _conjuncts(predicate):
        if isinstance(clause, Comparison):
            if clause.op == ComparisonOp.EQ:
                equalities.setdefault(clause.path, clause.value)
            elif clause.value is None:
                # ordering against Null never matches; not an index bound
                continue
            elif clause.op in _LOWER_OPS:
                add_range(clause.path, RangeBound(low=(clause.value, _LOWER_OPS[clause.op])))
            elif clause.op in _UPPER_OPS:
                add_range(clause.path, RangeBound(high=(clause.value, _UPPER_OPS[clause.op])))
        elif isinstance(clause, Range):
            if clause.low is None or clause.high is None:
                continue
            add_range(clause.path, RangeBound(low=(clause.low, True), high=(clause.high, True)))
    return equalities, ranges


def plan_for(index: SecondaryIndex, predicate: Predicate) -> IndexPlan | None:
    """Match one index against a predicate, or None if its first field is unbound."""
    equalities, ranges = _collect_clauses(predicate)
    bound: list[Any] = []
    for field_path in index.fields:
        if field_path in equalities:
            bound.append(equalities[field_path])
            continue
        if field_path in ranges:
            return IndexPlan(index, tuple(bound), ranges[field_path])
        break
    if not bound:
        return None
    return IndexPlan(index, tuple(bound))


def choose_index(predicate: Predicate, indexes: Sequence[SecondaryIndex]) -> IndexPlan | None:
    """Pick the best index for a predicate.

    Each index is scored by (matched prefix length, equality count). The
    highest score wins; ties go to the index declared first.

    Returns:
        The plan, or None if no index has a usable leading field.
    """
    best: IndexPlan | None = None
    for index in indexes:
        plan = plan_for(index, predicate)
        if plan is not None and (best is None or plan.score > best.score):
            best = plan
    return best

"""Physical operators using the Volcano iterator model.

Every read path (``find``, ``join`` and ``aggregate``) is a tree of
operators:
    - Each operator is an iterator with open(), next(), close() methods
    - Operators pull records from their children on demand
    - Only Sort, Group and Count materialise their input

Scans start from a snapshot (a list of immutable record versions captured
under the collection latch), so operators never take locks themselves and
an abandoned tree holds nothing but memory.

Records flowing between operators may be the stored documents themselves.
Operators never modify their input; the cursor copies each output record
before it reaches the caller.

References:
    - Graefe, "Volcano" (1994)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Iterator, Sequence

from dualdb.domain.entities.record import Record
from dualdb.domain.services.index_manager import IndexPlan
from dualdb.domain.services.join_engine import JoinCondition, JoinKind, join
from dualdb.domain.services.pipeline_engine import (
    LookupTable,
    group_records,
    project_record,
    sort_records,
    unwind_record,
)
from dualdb.domain.services.predicate_evaluator import evaluate
from dualdb.domain.value_objects.pipeline import (
    Count,
    Group,
    Limit,
    Lookup,
    Match,
    Project,
    Skip,
    Sort,
    SortSpec,
    Stage,
    Unwind,
)
from dualdb.domain.value_objects.predicates import MatchAll, Predicate
from dualdb.domain.value_objects.projection import Projection

Document = dict[str, Any]


class Operator(ABC):
    """Base class for executor operators (Volcano model)."""

    @abstractmethod
    def open(self) -> None:
        """Initialize the operator."""
        pass

    @abstractmethod
    def next(self) -> Document | None:
        """Return the next record or None if exhausted."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Clean up resources."""
        pass

    def describe(self) -> list[str]:
        """Operator tree as indented lines, root first."""
        lines = [self.label()]
        for child in self.children():
            lines.extend("  " + line for line in child.describe())
        return lines

    def label(self) -> str:
        return type(self).__name__.removesuffix("Operator")

    def children(self) -> list[Operator]:
        return []

    def __iter__(self) -> Iterator[Document]:
        """Allow iteration over operator results."""
        self.open()
        try:
            while True:
                record = self.next()
                if record is None:
                    break
                yield record
        finally:
            self.close()


class UnaryOperator(Operator):
    """An operator with a single child."""

    def __init__(self, child: Operator) -> None:
        self._child = child

    def children(self) -> list[Operator]:
        return [self._child]

    def open(self) -> None:
        self._child.open()

    def close(self) -> None:
        self._child.close()


class SeqScanOperator(Operator):
    """Sequential scan over a snapshot of record versions."""

    def __init__(self, collection: str, records: Sequence[Record]) -> None:
        self._collection = collection
        self._records = records
        self._pos = 0

    def label(self) -> str:
        return f"SeqScan({self._collection})"

    def open(self) -> None:
        self._pos = 0

    def next(self) -> Document | None:
        if self._pos >= len(self._records):
            return None
        record = self._records[self._pos]
        self._pos += 1
        return record.document

    def close(self) -> None:
        self._pos = len(self._records)


class IndexScanOperator(SeqScanOperator):
    """Scan over the candidates an index produced for a plan, in insertion order."""

    def __init__(self, collection: str, records: Sequence[Record], plan: IndexPlan) -> None:
        super().__init__(collection, records)
        self.plan = plan

    def label(self) -> str:
        return f"IndexScan({self._collection}.{self.plan.index.name})"


class FilterOperator(UnaryOperator):
    """Filter operator that applies a predicate."""

    def __init__(self, child: Operator, predicate: Predicate) -> None:
        super().__init__(child)
        self._predicate = predicate

    def label(self) -> str:
        return f"Filter({self._predicate})"

    def next(self) -> Document | None:
        while True:
            record = self._child.next()
            if record is None:
                return None
            if evaluate(self._predicate, record):
                return record


class ProjectOperator(UnaryOperator):
    """Shapes each record with a find projection or a pipeline Project stage."""

    def __init__(self, child: Operator, projection: Projection | Project) -> None:
        super().__init__(child)
        self._projection = projection

    def next(self) -> Document | None:
        record = self._child.next()
        if record is None:
            return None
        if isinstance(self._projection, Projection):
            return self._projection.apply(record)
        return project_record(self._projection, record)


class SortOperator(UnaryOperator):
    """Sort operator that orders records (materialises its input)."""

    def __init__(self, child: Operator, keys: Sequence[SortSpec]) -> None:
        super().__init__(child)
        self._keys = tuple(keys)
        self._sorted: list[Document] = []
        self._pos = 0

    def label(self) -> str:
        keys = ", ".join(f"{k.path} {k.direction.name}" for k in self._keys)
        return f"Sort({keys})"

    def open(self) -> None:
        self._child.open()
        self._sorted = sort_records(_drain(self._child), self._keys)
        self._pos = 0

    def next(self) -> Document | None:
        if self._pos >= len(self._sorted):
            return None
        record = self._sorted[self._pos]
        self._pos += 1
        return record

    def close(self) -> None:
        self._child.close()
        self._sorted = []
        self._pos = 0


class SkipOperator(UnaryOperator):
    """Discards the first ``count`` records."""

    def __init__(self, child: Operator, count: int) -> None:
        super().__init__(child)
        self._count = count
        self._skipped = 0

    def label(self) -> str:
        return f"Skip({self._count})"

    def open(self) -> None:
        super().open()
        self._skipped = 0

    def next(self) -> Document | None:
        while self._skipped < self._count:
            if self._child.next() is None:
                self._skipped = self._count
                return None
            self._skipped += 1
        return self._child.next()


class LimitOperator(UnaryOperator):
    """Limit operator that restricts record count."""

    def __init__(self, child: Operator, limit: int) -> None:
        super().__init__(child)
        self._limit = limit
        self._returned = 0

    def label(self) -> str:
        return f"Limit({self._limit})"

    def open(self) -> None:
        super().open()
        self._returned = 0

    def next(self) -> Document | None:
        if self._returned >= self._limit:
            return None
        record = self._child.next()
        if record is None:
            return None
        self._returned += 1
        return record


class BufferedOperator(UnaryOperator):
    """Materialises a transformation of the whole input on open."""

    def __init__(self, child: Operator) -> None:
        super().__init__(child)
        self._rows: list[Document] = []
        self._pos = 0

    @abstractmethod
    def transform(self, records: Iterator[Document]) -> list[Document]:
        """Produce all output records from the child's records."""

    def open(self) -> None:
        self._child.open()
        self._rows = self.transform(_drain(self._child))
        self._pos = 0

    def next(self) -> Document | None:
        if self._pos >= len(self._rows):
            return None
        record = self._rows[self._pos]
        self._pos += 1
        return record

    def close(self) -> None:
        self._child.close()
        self._rows = []
        self._pos = 0


class GroupOperator(BufferedOperator):
    """Hash aggregation of a Group stage."""

    def __init__(self, child: Operator, stage: Group) -> None:
        super().__init__(child)
        self._stage = stage

    def label(self) -> str:
        names = ", ".join(name for name, _ in self._stage.accumulators)
        return f"Group({names})" if names else "Group"

    def transform(self, records: Iterator[Document]) -> list[Document]:
        return group_records(self._stage, records)


class CountOperator(BufferedOperator):
    """Replaces the stream with one ``{field: n}`` record."""

    def __init__(self, child: Operator, field: str) -> None:
        super().__init__(child)
        self._field = field

    def transform(self, records: Iterator[Document]) -> list[Document]:
        return [{self._field: sum(1 for _ in records)}]


class UnwindOperator(UnaryOperator):
    """Emits one record per element of a list field."""

    def __init__(self, child: Operator, stage: Unwind) -> None:
        super().__init__(child)
        self._stage = stage
        self._pending: Iterator[Document] = iter(())

    def label(self) -> str:
        return f"Unwind({self._stage.path})"

    def open(self) -> None:
        super().open()
        self._pending = iter(())

    def next(self) -> Document | None:
        while True:
            record = next(self._pending, None)
            if record is not None:
                return record
            source = self._child.next()
            if source is None:
                return None
            self._pending = unwind_record(self._stage, source)


class LookupOperator(UnaryOperator):
    """Embeds matching records of another collection as a list field."""

    def __init__(self, child: Operator, stage: Lookup, foreign: Sequence[Record]) -> None:
        super().__init__(child)
        self._stage = stage
        self._foreign = foreign
        self._table: LookupTable | None = None

    def label(self) -> str:
        return f"Lookup({self._stage.from_collection} as {self._stage.as_field})"

    def open(self) -> None:
        super().open()
        self._table = LookupTable(self._stage, (r.document for r in self._foreign))

    def next(self) -> Document | None:
        record = self._child.next()
        if record is None or self._table is None:
            return None
        return self._table.embed(record)

    def close(self) -> None:
        super().close()
        self._table = None


class JoinOperator(Operator):
    """Joins a left operator with a right snapshot."""

    def __init__(
        self,
        left: Operator,
        right: Operator,
        condition: JoinCondition,
        kind: JoinKind,
        left_alias: str,
        right_alias: str,
    ) -> None:
        self._left = left
        self._right = right
        self._condition = condition
        self._kind = kind
        self._aliases = (left_alias, right_alias)
        self._rows: Iterator[Document] | None = None

    def label(self) -> str:
        c = self._condition
        return f"{self._kind.value}Join({c.left_path} {c.op.value} {c.right_path})"

    def children(self) -> list[Operator]:
        return [self._left, self._right]

    def open(self) -> None:
        self._left.open()
        self._right.open()
        right_rows = list(_drain(self._right))
        self._rows = join(
            _drain(self._left),
            right_rows,
            self._condition,
            self._kind,
            left_alias=self._aliases[0],
            right_alias=self._aliases[1],
        )

    def next(self) -> Document | None:
        if self._rows is None:
            return None
        return next(self._rows, None)

    def close(self) -> None:
        self._left.close()
        self._right.close()
        self._rows = None


def _drain(operator: Operator) -> Iterator[Document]:
    """Pull every remaining record from an already opened operator."""
    while True:
        record = operator.next()
        if record is None:
            return
        yield record


def build_stage(
    child: Operator,
    stage: Stage,
    lookup_source: Callable[[str], Sequence[Record]],
) -> Operator:
    """Wrap ``child`` with the operator implementing one pipeline stage."""
    if isinstance(stage, Match):
        if isinstance(stage.predicate, MatchAll):
            return child
        return FilterOperator(child, stage.predicate)
    if isinstance(stage, Group):
        return GroupOperator(child, stage)
    if isinstance(stage, Project):
        return ProjectOperator(child, stage)
    if isinstance(stage, Sort):
        return SortOperator(child, stage.keys)
    if isinstance(stage, Limit):
        return LimitOperator(child, stage.count)
    if isinstance(stage, Skip):
        return SkipOperator(child, stage.count)
    if isinstance(stage, Count):
        return CountOperator(child, stage.field)
    if isinstance(stage, Unwind):
        return UnwindOperator(child, stage)
    if isinstance(stage, Lookup):
        return LookupOperator(child, stage, lookup_source(stage.from_collection))
    raise TypeError(f"Unsupported stage: {type(stage).__name__}")


def build_pipeline(
    source: Operator,
    stages: Sequence[Stage],
    lookup_source: Callable[[str], Sequence[Record]],
) -> Operator:
    """Chain the operators of a validated pipeline on top of a source."""
    operator = source
    for stage in stages:
        operator = build_stage(operator, stage, lookup_source)
    return operator

"""Aggregation pipeline semantics.

This module holds the per-stage semantics of aggregation pipelines:
validation of a stage sequence, expression evaluation, group accumulators,
projection, sorting, unwinding and lookup embedding. The application layer
threads these through pull-based operators so ``find`` and ``aggregate``
share one implementation of sort/skip/limit.

Validation tracks which top-level fields each stage produces. Before any
reshaping stage the stream carries whole collection records, whose fields
are unknown up front, so every reference is accepted. After ``Group``,
``Project`` or ``Count`` only the fields those stages emit may be
referenced.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Callable, Iterable, Iterator, Sequence

from dualdb.domain.errors import InvalidPipelineStage
from dualdb.domain.services.predicate_evaluator import validate_predicate
from dualdb.domain.value_objects.field_path import MISSING, resolve, set_path, split_path
from dualdb.domain.value_objects.pipeline import (
    Accumulator,
    AccumulatorFunc,
    Count,
    Expr,
    FieldRef,
    Group,
    Limit,
    Literal,
    Lookup,
    Match,
    ObjectExpr,
    Project,
    Skip,
    Sort,
    SortDirection,
    SortSpec,
    Stage,
    Unwind,
    expr_refs,
)
from dualdb.domain.value_objects.predicates import And, MatchAll, Not, Or, Predicate
from dualdb.domain.value_objects.projection import ID_FIELD
from dualdb.domain.value_objects.values import (
    ValueKind,
    compare_values,
    copy_value,
    kind_of,
    sort_key,
    validate_value,
)

# Expressions


def eval_expr(expr: Expr, document: dict[str, Any]) -> Any:
    """Evaluate an expression; a reference to an absent field yields ``MISSING``."""
    if isinstance(expr, FieldRef):
        return resolve(document, expr.path)
    if isinstance(expr, Literal):
        return expr.value
    if isinstance(expr, ObjectExpr):
        out: dict[str, Any] = {}
        for name, sub in expr.fields:
            value = eval_expr(sub, document)
            out[name] = None if value is MISSING else value
        return out
    raise InvalidPipelineStage(f"Unknown expression: {expr!r}")


def _value(expr: Expr, document: dict[str, Any]) -> Any:
    value = eval_expr(expr, document)
    return None if value is MISSING else value


# Accumulators


class AccumulatorState(ABC):
    """Running state of one accumulator within one group."""

    @abstractmethod
    def step(self, value: Any) -> None:
        """Fold one input (``MISSING`` when the field is absent)."""

    @abstractmethod
    def result(self) -> Any:
        """Final value of the accumulator."""


def _is_number(value: Any) -> bool:
    return value is not MISSING and value is not None and kind_of(value) == ValueKind.NUMBER


class SumState(AccumulatorState):
    def __init__(self) -> None:
        self.total: int | float = 0

    def step(self, value: Any) -> None:
        if _is_number(value):
            self.total += value

    def result(self) -> Any:
        return self.total


class AvgState(AccumulatorState):
    def __init__(self) -> None:
        self.total: int | float = 0
        self.n = 0

    def step(self, value: Any) -> None:
        if _is_number(value):
            self.total += value
            self.n += 1

    def result(self) -> Any:
        return self.total / self.n if self.n else None


class ExtremeState(AccumulatorState):
    """Min or max under the Value order, ignoring Null and missing."""

    def __init__(self, want: int) -> None:
        self.want = want
        self.best: Any = MISSING

    def step(self, value: Any) -> None:
        if value is MISSING or value is None:
            return
        if self.best is MISSING or compare_values(value, self.best) == self.want:
            self.best = value

    def result(self) -> Any:
        return None if self.best is MISSING else self.best


class CountState(AccumulatorState):
    def __init__(self) -> None:
        self.n = 0

    def step(self, value: Any) -> None:
        self.n += 1

    def result(self) -> Any:
        return self.n


class PushState(AccumulatorState):
    def __init__(self, unique: bool) -> None:
        self.unique = unique
        self.items: list[Any] = []
        self.seen: set[tuple] = set()

    def step(self, value: Any) -> None:
        if value is MISSING:
            return
        if self.unique:
            key = sort_key(value)
            if key in self.seen:
                return
            self.seen.add(key)
        self.items.append(value)

    def result(self) -> Any:
        return self.items


class FirstState(AccumulatorState):
    def __init__(self) -> None:
        self.value: Any = MISSING

    def step(self, value: Any) -> None:
        if self.value is MISSING:
            self.value = None if value is MISSING else value

    def result(self) -> Any:
        return None if self.value is MISSING else self.value


class LastState(AccumulatorState):
    def __init__(self) -> None:
        self.value: Any = None

    def step(self, value: Any) -> None:
        self.value = None if value is MISSING else value

    def result(self) -> Any:
        return self.value


_STATES: dict[AccumulatorFunc, Callable[[], AccumulatorState]] = {
    AccumulatorFunc.SUM: SumState,
    AccumulatorFunc.AVG: AvgState,
    AccumulatorFunc.MIN: lambda: ExtremeState(-1),
    AccumulatorFunc.MAX: lambda: ExtremeState(1),
    AccumulatorFunc.COUNT: CountState,
    AccumulatorFunc.PUSH: lambda: PushState(unique=False),
    AccumulatorFunc.ADD_TO_SET: lambda: PushState(unique=True),
    AccumulatorFunc.FIRST: FirstState,
    AccumulatorFunc.LAST: LastState,
}


def new_state(accumulator: Accumulator) -> AccumulatorState:
    return _STATES[accumulator.func]()


def group_records(stage: Group, records: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Partition records by the group key and fold each partition.

    Groups are emitted in order of first occurrence of their key.
    """
    keys: dict[tuple, Any] = {}
    states: dict[tuple, list[AccumulatorState]] = {}
    for document in records:
        value = _value(stage.key, document)
        key = sort_key(value)
        if key not in states:
            keys[key] = value
            states[key] = [new_state(acc) for _, acc in stage.accumulators]
        for state, (_, acc) in zip(states[key], stage.accumulators):
            state.step(eval_expr(acc.expr, document) if acc.expr is not None else None)

    out: list[dict[str, Any]] = []
    for key, group_states in states.items():
        row: dict[str, Any] = {ID_FIELD: keys[key]}
        for (name, _), state in zip(stage.accumulators, group_states):
            row[name] = state.result()
        out.append(row)
    return out


# Per-record stages


def project_record(stage: Project, document: dict[str, Any]) -> dict[str, Any]:
    """Shape one record by a ``Project`` stage."""
    specs = dict(stage.fields)
    out: dict[str, Any] = {}
    id_spec = specs.pop(ID_FIELD, True)
    if id_spec is True:
        if ID_FIELD in document:
            out[ID_FIELD] = document[ID_FIELD]
    elif id_spec is not False:
        out[ID_FIELD] = _value(id_spec, document)

    for name, spec in specs.items():
        if spec is True:
            value = resolve(document, name)
            if value is not MISSING:
                set_path(out, name, copy_value(value))
        elif spec is not False:
            out[name] = _value(spec, document)
    return out


def sort_records(records: Iterable[dict[str, Any]], keys: Sequence[SortSpec]) -> list[dict[str, Any]]:
    """Stable multi-key sort under the Value order; Null and missing sort lowest."""
    rows = list(records)
    # one stable pass per key, least significant first
    for spec in reversed(keys):
        rows.sort(
            key=lambda d, path=spec.path: field_sort_key(d, path),
            reverse=spec.direction == SortDirection.DESC,
        )
    return rows


def field_sort_key(document: dict[str, Any], path: str) -> tuple:
    value = resolve(document, path)
    return sort_key(None if value is MISSING else value)


def unwind_record(stage: Unwind, document: dict[str, Any]) -> Iterator[dict[str, Any]]:
    """One record per element of the list at the stage path."""
    value = resolve(document, stage.path)
    if not isinstance(value, list) or not value:
        if stage.preserve_empty:
            yield document
        return
    for item in value:
        out = copy_value(document)
        set_path(out, stage.path, item)
        yield out


class LookupTable:
    """Foreign records hashed on the lookup's foreign field."""

    def __init__(self, stage: Lookup, foreign: Iterable[dict[str, Any]]) -> None:
        self.stage = stage
        self._table: dict[tuple, list[dict[str, Any]]] = defaultdict(list)
        for document in foreign:
            value = resolve(document, stage.foreign_field)
            if value is not MISSING and value is not None:
                self._table[sort_key(value)].append(document)

    def embed(self, document: dict[str, Any]) -> dict[str, Any]:
        """Copy of the record with the matching foreign records attached."""
        value = resolve(document, self.stage.local_field)
        matches: list[dict[str, Any]] = []
        if value is not MISSING and value is not None:
            matches = [copy_value(m) for m in self._table.get(sort_key(value), [])]
        out = copy_value(document)
        set_path(out, self.stage.as_field, matches)
        return out


# Validation


def _check_ref_root(path: str, available: set[str] | None, index: int, what: str) -> None:
    try:
        root = split_path(path)[0]
    except (TypeError, ValueError) as e:
        raise InvalidPipelineStage(f"Invalid {what} {path!r}: {e}", index) from e
    if available is not None and root not in available:
        raise InvalidPipelineStage(
            f"{what.capitalize()} '{path}' refers to field '{root}' which is not produced "
            f"by the preceding stage (available: {sorted(available)})",
            index,
        )


def _check_expr(expr: Any, available: set[str] | None, index: int) -> None:
    if isinstance(expr, Literal):
        try:
            validate_value(expr.value)
        except TypeError as e:
            raise InvalidPipelineStage(f"Invalid literal: {e}", index) from e
        return
    if isinstance(expr, ObjectExpr):
        for name, sub in expr.fields:
            if not isinstance(name, str) or not name:
                raise InvalidPipelineStage(f"Invalid object field name {name!r}", index)
            if isinstance(sub, ObjectExpr) or not isinstance(sub, (FieldRef, Literal)):
                raise InvalidPipelineStage("Object expressions nest one level only", index)
            _check_expr(sub, available, index)
        return
    if not isinstance(expr, FieldRef):
        raise InvalidPipelineStage(f"Unknown expression: {expr!r}", index)
    for field_ref in expr_refs(expr):
        _check_ref_root(field_ref.path, available, index, "field reference")


def _predicate_paths(predicate: Predicate) -> Iterator[str]:
    if isinstance(predicate, (And, Or)):
        for child in predicate.children:
            yield from _predicate_paths(child)
    elif isinstance(predicate, Not):
        yield from _predicate_paths(predicate.child)
    elif not isinstance(predicate, MatchAll):
        yield predicate.path


def _check_count(value: Any, stage: str, index: int) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise InvalidPipelineStage(f"{stage} requires a non-negative integer, got {value!r}", index)


def validate_pipeline(
    stages: Sequence[Stage],
    collection_exists: Callable[[str], bool] | None = None,
    max_stages: int | None = None,
) -> None:
    """Validate a pipeline before execution.

    Args:
        stages: The stage sequence.
        collection_exists: Checks ``Lookup`` targets (skipped when None).
        max_stages: Upper bound on the number of stages.

    Raises:
        InvalidPipelineStage: For a malformed stage or an undefined field
            reference.
        InvalidPredicate: For a malformed ``Match`` predicate.
    """
    if not isinstance(stages, (list, tuple)):
        raise InvalidPipelineStage(f"Pipeline must be a list of stages, got {type(stages).__name__}")
    if max_stages is not None and len(stages) > max_stages:
        raise InvalidPipelineStage(f"Pipeline has {len(stages)} stages, limit is {max_stages}")

    available: set[str] | None = None
    for i, stage in enumerate(stages):
        if isinstance(stage, Match):
            validate_predicate(stage.predicate)
            for path in _predicate_paths(stage.predicate):
                _check_ref_root(path, available, i, "match field")

        elif isinstance(stage, Group):
            _check_expr(stage.key, available, i)
            produced = {ID_FIELD}
            for name, acc in stage.accumulators:
                if not isinstance(name, str) or not name or "." in name:
                    raise InvalidPipelineStage(f"Invalid accumulator name {name!r}", i)
                if name == ID_FIELD:
                    raise InvalidPipelineStage("Accumulator name collides with _id", i)
                if name in produced:
                    raise InvalidPipelineStage(f"Duplicate accumulator name '{name}'", i)
                if not isinstance(acc, Accumulator) or not isinstance(acc.func, AccumulatorFunc):
                    raise InvalidPipelineStage(f"Invalid accumulator for '{name}': {acc!r}", i)
                if acc.expr is None:
                    if acc.func != AccumulatorFunc.COUNT:
                        raise InvalidPipelineStage(f"{acc.func.value} requires an expression", i)
                else:
                    _check_expr(acc.expr, available, i)
                produced.add(name)
            available = produced

        elif isinstance(stage, Project):
            if not stage.fields:
                raise InvalidPipelineStage("Project requires at least one field", i)
            produced = set()
            id_excluded = False
            for name, spec in stage.fields:
                try:
                    root = split_path(name)[0]
                except (TypeError, ValueError) as e:
                    raise InvalidPipelineStage(f"Invalid output field {name!r}: {e}", i) from e
                if spec is False:
                    if name != ID_FIELD:
                        raise InvalidPipelineStage(
                            f"Only _id can be excluded in a Project stage, got '{name}'", i
                        )
                    id_excluded = True
                    continue
                if spec is True:
                    _check_ref_root(name, available, i, "field")
                else:
                    if "." in name:
                        raise InvalidPipelineStage(f"Computed field '{name}' cannot be a path", i)
                    _check_expr(spec, available, i)
                produced.add(root)
            if not id_excluded and (available is None or ID_FIELD in available):
                produced.add(ID_FIELD)
            available = produced

        elif isinstance(stage, Sort):
            if not stage.keys:
                raise InvalidPipelineStage("Sort requires at least one key", i)
            for spec in stage.keys:
                if not isinstance(spec, SortSpec) or not isinstance(spec.direction, SortDirection):
                    raise InvalidPipelineStage(f"Invalid sort key {spec!r}", i)
                _check_ref_root(spec.path, available, i, "sort key")

        elif isinstance(stage, Limit):
            _check_count(stage.count, "Limit", i)

        elif isinstance(stage, Skip):
            _check_count(stage.count, "Skip", i)

        elif isinstance(stage, Count):
            if not isinstance(stage.field, str) or not stage.field or "." in stage.field or stage.field.startswith("$"):
                raise InvalidPipelineStage(f"Invalid count field {stage.field!r}", i)
            available = {stage.field}

        elif isinstance(stage, Unwind):
            _check_ref_root(stage.path, available, i, "unwind path")

        elif isinstance(stage, Lookup):
            if collection_exists is not None and not collection_exists(stage.from_collection):
                raise InvalidPipelineStage(f"Unknown lookup collection '{stage.from_collection}'", i)
            _check_ref_root(stage.local_field, available, i, "lookup field")
            try:
                split_path(stage.foreign_field)
                as_root = split_path(stage.as_field)[0]
            except (TypeError, ValueError) as e:
                raise InvalidPipelineStage(f"Invalid lookup field: {e}", i) from e
            if available is not None:
                available = available | {as_root}

        else:
            raise InvalidPipelineStage(f"Unknown stage type: {type(stage).__name__}", i)

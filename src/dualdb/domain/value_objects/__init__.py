"""Value objects for the query engine domain.

Value objects are immutable types that represent domain concepts.

Exports:
    Values:
        - ValueKind, kind_of, sort_key, values_equal, compare_values
        - MISSING, resolve, set_path, unset_path: dotted field paths

    Trees built by callers:
        - Predicate nodes and constructors (eq, gt, in_, like, and_, ...)
        - Mutation, UpdateOperation, UpdateOp
        - Projection
        - Pipeline stages, expressions and accumulators
"""

from dualdb.domain.value_objects.field_path import (
    MISSING,
    resolve,
    resolve_or_null,
    set_path,
    split_path,
    unset_path,
)
from dualdb.domain.value_objects.mutations import Mutation, UpdateOp, UpdateOperation
from dualdb.domain.value_objects.pipeline import (
    ASC,
    DESC,
    Accumulator,
    AccumulatorFunc,
    Count,
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
)
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
from dualdb.domain.value_objects.projection import ID_FIELD, Projection
from dualdb.domain.value_objects.values import (
    KEY_MAX,
    KEY_MIN,
    ValueKind,
    compare_values,
    copy_value,
    kind_of,
    sort_key,
    validate_value,
    values_equal,
)

__all__ = [
    # Values
    "ValueKind",
    "KEY_MIN",
    "KEY_MAX",
    "kind_of",
    "sort_key",
    "values_equal",
    "compare_values",
    "copy_value",
    "validate_value",
    # Field paths
    "MISSING",
    "resolve",
    "resolve_or_null",
    "set_path",
    "split_path",
    "unset_path",
    # Predicates
    "Predicate",
    "MatchAll",
    "Comparison",
    "ComparisonOp",
    "In",
    "Pattern",
    "PatternSyntax",
    "Exists",
    "Range",
    "And",
    "Or",
    "Not",
    # Mutations / projection
    "Mutation",
    "UpdateOp",
    "UpdateOperation",
    "Projection",
    "ID_FIELD",
    # Pipeline
    "Stage",
    "Match",
    "Group",
    "Project",
    "Sort",
    "SortSpec",
    "SortDirection",
    "ASC",
    "DESC",
    "Limit",
    "Skip",
    "Count",
    "Unwind",
    "Lookup",
    "FieldRef",
    "Literal",
    "ObjectExpr",
    "Accumulator",
    "AccumulatorFunc",
]

"""
dualdb - Dual-Model In-Memory Query Engine

An embeddable engine that stores records once and queries them either as
relational rows (predicates, joins) or as documents (nested updates,
aggregation pipelines), with B+Tree indexes over one or more fields.
"""

__version__ = "0.1.0"
__author__ = "Systems Engineering Portfolio"

from dualdb.application import Cursor, StorageEngine
from dualdb.domain.errors import (
    DualDBError,
    DuplicateCollection,
    DuplicateIdentifier,
    DuplicateIndex,
    EngineNotStarted,
    InvalidMutation,
    InvalidPipelineStage,
    InvalidPredicate,
    InvalidProjection,
    InvalidRecord,
    LockTimeout,
    UnknownCollection,
    UnknownIndex,
)
from dualdb.domain.services.join_engine import JoinCondition, JoinKind, on
from dualdb.domain.value_objects.mutations import Mutation
from dualdb.domain.value_objects.pipeline import (
    ASC,
    DESC,
    Count,
    Limit,
    Lookup,
    Match,
    Skip,
    Unwind,
    add_to_set,
    avg,
    count,
    first,
    group,
    last,
    lit,
    max_,
    min_,
    project,
    push,
    ref,
    sort,
    sum_,
)
from dualdb.domain.value_objects.predicates import (
    and_,
    between,
    eq,
    exists,
    gt,
    gte,
    in_,
    like,
    lt,
    lte,
    match_all,
    ne,
    not_,
    or_,
    regex,
)
from dualdb.domain.value_objects.projection import Projection

__all__ = [
    "StorageEngine",
    "Cursor",
    # Errors
    "DualDBError",
    "DuplicateCollection",
    "DuplicateIdentifier",
    "DuplicateIndex",
    "EngineNotStarted",
    "InvalidMutation",
    "InvalidPipelineStage",
    "InvalidPredicate",
    "InvalidProjection",
    "InvalidRecord",
    "LockTimeout",
    "UnknownCollection",
    "UnknownIndex",
    # Predicates
    "eq",
    "ne",
    "lt",
    "lte",
    "gt",
    "gte",
    "in_",
    "like",
    "regex",
    "exists",
    "between",
    "and_",
    "or_",
    "not_",
    "match_all",
    # Mutations and projections
    "Mutation",
    "Projection",
    # Joins
    "JoinKind",
    "JoinCondition",
    "on",
    # Pipelines
    "Match",
    "Limit",
    "Skip",
    "Count",
    "Unwind",
    "Lookup",
    "group",
    "project",
    "sort",
    "ref",
    "lit",
    "sum_",
    "avg",
    "min_",
    "max_",
    "count",
    "push",
    "add_to_set",
    "first",
    "last",
    "ASC",
    "DESC",
]

"""Domain services for the query engine.

Services:
    - BTreeIndex: ordered multimap backing secondary indexes
    - SecondaryIndex / choose_index: index maintenance and access paths
    - CollectionLatch: shared/exclusive latch per collection
    - evaluate / validate_predicate: three-valued predicate evaluation
    - apply_mutation: copy-on-write document updates
    - join: hash and nested-loop joins
    - validate_pipeline and stage semantics for aggregation
"""

from dualdb.domain.services.btree_index import BTreeIndex
from dualdb.domain.services.collection_latch import CollectionLatch, LatchMode
from dualdb.domain.services.index_manager import (
    IndexPlan,
    RangeBound,
    SecondaryIndex,
    choose_index,
    index_name,
)
from dualdb.domain.services.join_engine import JoinCondition, JoinKind, join, on
from dualdb.domain.services.mutation_applier import apply_mutation, validate_mutation
from dualdb.domain.services.pipeline_engine import (
    eval_expr,
    group_records,
    project_record,
    sort_records,
    validate_pipeline,
)
from dualdb.domain.services.predicate_evaluator import (
    Truth,
    evaluate,
    evaluate_truth,
    validate_predicate,
)

__all__ = [
    "BTreeIndex",
    "CollectionLatch",
    "LatchMode",
    "SecondaryIndex",
    "IndexPlan",
    "RangeBound",
    "choose_index",
    "index_name",
    "Truth",
    "evaluate",
    "evaluate_truth",
    "validate_predicate",
    "apply_mutation",
    "validate_mutation",
    "JoinKind",
    "JoinCondition",
    "join",
    "on",
    "eval_expr",
    "group_records",
    "project_record",
    "sort_records",
    "validate_pipeline",
]

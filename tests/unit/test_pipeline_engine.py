"""Unit tests for aggregation pipeline semantics."""

from __future__ import annotations

import pytest

from dualdb.domain.errors import InvalidPipelineStage, InvalidPredicate
from dualdb.domain.services.pipeline_engine import (
    LookupTable,
    eval_expr,
    group_records,
    project_record,
    sort_records,
    unwind_record,
    validate_pipeline,
)
from dualdb.domain.value_objects.field_path import MISSING
from dualdb.domain.value_objects.pipeline import (
    ASC,
    DESC,
    Count,
    Limit,
    Lookup,
    Match,
    Skip,
    Sort,
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
from dualdb.domain.value_objects.predicates import and_, eq, exists, not_

ORDERS = [
    {"_id": 10, "user_id": 1, "amount": 50, "tags": ["a", "b"]},
    {"_id": 11, "user_id": 1, "amount": 30, "tags": ["b"]},
    {"_id": 12, "user_id": 2, "amount": 70, "tags": []},
    {"_id": 13, "user_id": 2},
]


@pytest.mark.unit
class TestExpressions:
    """Tests for expression evaluation."""

    def test_ref_and_literal(self) -> None:
        """References resolve paths; a leading $ is stripped."""
        assert ref("$amount") == ref("amount")
        assert eval_expr(ref("amount"), ORDERS[0]) == 50
        assert eval_expr(ref("missing"), ORDERS[0]) is MISSING
        assert eval_expr(lit(5), ORDERS[0]) == 5


@pytest.mark.unit
class TestGroup:
    """Tests for Group and its accumulators."""

    def test_sum_per_key(self) -> None:
        """Sums per user in first-occurrence order."""
        rows = group_records(group("$user_id", {"total": sum_("amount")}), ORDERS)
        assert rows == [{"_id": 1, "total": 80}, {"_id": 2, "total": 70}]

    def test_group_all(self) -> None:
        """A literal key puts every record in one group."""
        rows = group_records(group(None, {"total": sum_("amount"), "n": count()}), ORDERS[:2])
        assert rows == [{"_id": None, "total": 80, "n": 2}]

    def test_statistics(self) -> None:
        """Average, min and max skip missing values."""
        stage = group(
            "$user_id",
            {"avg": avg("amount"), "lo": min_("amount"), "hi": max_("amount")},
        )
        rows = group_records(stage, ORDERS)
        assert rows[0] == {"_id": 1, "avg": 40, "lo": 30, "hi": 50}
        assert rows[1] == {"_id": 2, "avg": 70, "lo": 70, "hi": 70}

    def test_avg_of_nothing_is_null(self) -> None:
        """A group with no numeric inputs averages to None."""
        rows = group_records(group("$user_id", {"avg": avg("amount")}), ORDERS[3:])
        assert rows == [{"_id": 2, "avg": None}]

    def test_collection_accumulators(self) -> None:
        """Push keeps duplicates, add-to-set does not; first/last follow input order."""
        stage = group(
            "$user_id",
            {
                "ids": push("_id"),
                "amounts": add_to_set("amount"),
                "first": first("_id"),
                "last": last("_id"),
            },
        )
        docs = ORDERS[:2] + [{"_id": 14, "user_id": 1, "amount": 50}]
        assert group_records(stage, docs) == [
            {"_id": 1, "ids": [10, 11, 14], "amounts": [50, 30], "first": 10, "last": 14}
        ]

    def test_missing_key_groups_as_null(self) -> None:
        """Missing and null group keys share one group."""
        rows = group_records(group("$region", {"n": count()}), [{"a": 1}, {"region": None}])
        assert rows == [{"_id": None, "n": 2}]


@pytest.mark.unit
class TestRecordStages:
    """Tests for Project, Sort, Unwind and Lookup semantics."""

    def test_project(self) -> None:
        """Pass-through, computed and excluded fields."""
        stage = project({"_id": False, "user_id": True, "double": "$amount", "k": 1.5})
        assert project_record(stage, ORDERS[0]) == {"user_id": 1, "double": 50, "k": 1.5}

    def test_project_missing(self) -> None:
        """Missing pass-through fields are omitted; missing computed fields are null."""
        stage = project({"amount": True, "calc": "$amount"})
        assert project_record(stage, ORDERS[3]) == {"_id": 13, "calc": None}

    def test_sort_multi_key(self) -> None:
        """Later keys break ties and missing sorts first ascending."""
        rows = sort_records(ORDERS, sort(("user_id", DESC), ("amount", ASC)).keys)
        assert [r["_id"] for r in rows] == [13, 12, 11, 10]

    def test_unwind(self) -> None:
        """One record per element; empty lists drop unless preserved."""
        out = list(unwind_record(Unwind("tags"), ORDERS[0]))
        assert [r["tags"] for r in out] == ["a", "b"]
        assert ORDERS[0]["tags"] == ["a", "b"]
        assert list(unwind_record(Unwind("tags"), ORDERS[2])) == []
        assert list(unwind_record(Unwind("tags", preserve_empty=True), ORDERS[2])) == [ORDERS[2]]

    def test_lookup(self) -> None:
        """Matches are embedded as a list; null keys never match."""
        table = LookupTable(Lookup("orders", "_id", "user_id", "orders"), ORDERS)
        alice = table.embed({"_id": 1, "name": "Alice"})
        assert [o["_id"] for o in alice["orders"]] == [10, 11]
        assert table.embed({"_id": 5})["orders"] == []
        assert table.embed({"name": "nobody"})["orders"] == []

    def test_lookup_into_nested_field_copies_record(self) -> None:
        """Embedding under a dotted path leaves the input record untouched."""
        table = LookupTable(Lookup("orders", "_id", "user_id", "info.orders"), ORDERS)
        user = {"_id": 1, "info": {"name": "Alice"}}
        out = table.embed(user)
        assert [o["_id"] for o in out["info"]["orders"]] == [10, 11]
        assert user == {"_id": 1, "info": {"name": "Alice"}}
        out["info"]["orders"][0]["amount"] = 0
        assert ORDERS[0]["amount"] == 50

    def test_project_nested_pass_through_copies(self) -> None:
        """A pass-through subtree is copied before nested paths are set under it."""
        doc = {"_id": 1, "a": {"b": 1, "c": 2}}
        out = project_record(project({"a": True, "a.b": True}), doc)
        out["a"]["c"] = 99
        assert doc == {"_id": 1, "a": {"b": 1, "c": 2}}


@pytest.mark.unit
class TestValidatePipeline:
    """Tests for pipeline validation."""

    def test_valid_pipeline(self) -> None:
        """References to fields produced upstream pass."""
        validate_pipeline(
            [
                Match(eq("status", "paid")),
                group("$user_id", {"total": sum_("amount")}),
                sort(("total", DESC)),
                project({"total": True, "user": "$_id"}),
                Skip(1),
                Limit(5),
            ]
        )

    @pytest.mark.parametrize(
        "stages, stage_index",
        [
            ([Limit(-1)], 0),
            ([Skip(1.5)], 0),  # type: ignore[arg-type]
            ([Sort(())], 0),
            ([group("$a", {"_id": sum_("x")})], 0),
            ([group("$a", {"a.b": sum_("x")})], 0),
            ([project({})], 0),
            ([project({"name": False})], 0),
            ([project({"a.b": "$x"})], 0),
            ([Count("")], 0),
            ([group("$a", {"n": count()}), sort("a")], 1),
            ([group("$a", {"n": count()}), project({"a": True})], 1),
            ([Count("n"), Unwind("items")], 1),
            ([Match(eq("a", 1)), "not a stage"], 1),
            ([group("$a", {"n": count()}), Match(eq("nosuch", 1))], 1),
            ([project({"a": True}), Match(and_(eq("a", 1), not_(exists("b"))))], 1),
        ],
    )
    def test_invalid_stages(self, stages: list, stage_index: int) -> None:
        """Malformed stages report their position."""
        with pytest.raises(InvalidPipelineStage) as exc_info:
            validate_pipeline(stages)
        assert exc_info.value.stage_index == stage_index

    def test_bad_match_predicate(self) -> None:
        """Match stages validate their predicates."""
        with pytest.raises(InvalidPredicate):
            validate_pipeline([Match(eq("", 1))])

    def test_unknown_lookup_collection(self) -> None:
        """Lookup targets are checked when a resolver is given."""
        stage = Lookup("missing", "_id", "user_id", "orders")
        with pytest.raises(InvalidPipelineStage):
            validate_pipeline([stage], collection_exists=lambda name: name == "orders")
        validate_pipeline([stage])

    def test_stage_limit(self) -> None:
        """Pipelines longer than the configured limit are rejected."""
        with pytest.raises(InvalidPipelineStage):
            validate_pipeline([Limit(1)] * 3, max_stages=2)

    def test_match_after_group_uses_group_fields(self) -> None:
        """A Match following a Group may filter on its key and accumulators."""
        validate_pipeline(
            [group("$a", {"n": count()}), Match(and_(eq("_id", 1), exists("n")))]
        )

    def test_lookup_extends_available_fields(self) -> None:
        """The lookup output field can be referenced downstream."""
        validate_pipeline(
            [
                project({"name": True}),
                Lookup("orders", "_id", "user_id", "orders"),
                Unwind("orders"),
            ]
        )

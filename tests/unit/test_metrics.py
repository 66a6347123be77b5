"""Unit tests for engine metrics."""

from __future__ import annotations

import pytest

from dualdb.application import StorageEngine
from dualdb.domain.errors import UnknownCollection
from dualdb.domain.value_objects.predicates import eq
from dualdb.infrastructure.config import Config
from dualdb.infrastructure.metrics import MetricsRegistry


def _sample(metrics: MetricsRegistry, name: str, **labels: str) -> float:
    value = metrics.registry.get_sample_value(name, labels)
    return 0.0 if value is None else value


@pytest.mark.unit
class TestMetricsRegistry:
    """Tests for MetricsRegistry helpers."""

    def test_record_operation(self, metrics_registry: MetricsRegistry) -> None:
        """Operations are counted by status and timed."""
        metrics_registry.record_operation("find", "success", 0.002)
        metrics_registry.record_operation("find", "error", 0.001)
        assert _sample(metrics_registry, "dualdb_operations_total", operation="find", status="success") == 1
        assert _sample(metrics_registry, "dualdb_operations_total", operation="find", status="error") == 1
        assert _sample(metrics_registry, "dualdb_operation_latency_seconds_count", operation="find") == 2

    def test_record_mutation_ignores_zero(self, metrics_registry: MetricsRegistry) -> None:
        """Zero-record mutations do not create samples."""
        metrics_registry.record_mutation("update", 0)
        metrics_registry.record_mutation("insert", 3)
        assert _sample(metrics_registry, "dualdb_records_mutated_total", operation="update") == 0
        assert _sample(metrics_registry, "dualdb_records_mutated_total", operation="insert") == 3

    def test_record_scan(self, metrics_registry: MetricsRegistry) -> None:
        """Full and index scans are counted separately."""
        metrics_registry.record_scan("users", None)
        metrics_registry.record_scan("users", "age")
        assert _sample(metrics_registry, "dualdb_full_scans_total", collection="users") == 1
        assert (
            _sample(metrics_registry, "dualdb_index_scans_total", collection="users", index_name="age")
            == 1
        )


@pytest.mark.unit
class TestEngineMetrics:
    """Tests for metrics emitted by the engine."""

    def test_engine_counts_operations(
        self, test_config: Config, metrics_registry: MetricsRegistry
    ) -> None:
        """Engine calls feed the operation, mutation and scan metrics."""
        with StorageEngine(config=test_config, metrics=metrics_registry) as db:
            db.create_collection("users")
            db.insert("users", {"name": "Ann", "age": 30})
            db.create_index("users", "age")
            db.find("users", eq("age", 30)).to_list()
            db.find("users", eq("name", "Ann")).to_list()
            with pytest.raises(UnknownCollection):
                db.find("nope")

        m = metrics_registry
        assert _sample(m, "dualdb_operations_total", operation="insert", status="success") == 1
        assert _sample(m, "dualdb_operations_total", operation="find", status="success") == 2
        assert _sample(m, "dualdb_operations_total", operation="find", status="error") == 1
        assert _sample(m, "dualdb_records_mutated_total", operation="insert") == 1
        assert _sample(m, "dualdb_index_scans_total", collection="users", index_name="age") == 1
        assert _sample(m, "dualdb_full_scans_total", collection="users") == 1
        assert _sample(m, "dualdb_collections") == 1

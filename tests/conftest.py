"""Pytest configuration and fixtures for dualdb tests."""

from __future__ import annotations

from typing import Generator

import pytest
from prometheus_client import CollectorRegistry

from dualdb.application import StorageEngine
from dualdb.infrastructure.config import Config, QueryConfig, StorageConfig
from dualdb.infrastructure.metrics import MetricsRegistry


@pytest.fixture
def test_config() -> Config:
    """Provide a test configuration with small B+Tree nodes to force splits."""
    return Config(
        storage=StorageConfig(btree_max_keys=4),
        query=QueryConfig(lock_timeout_seconds=1.0),
    )


@pytest.fixture
def metrics_registry() -> MetricsRegistry:
    """Provide a fresh metrics registry for each test."""
    # Use a separate registry to avoid conflicts between tests
    registry = CollectorRegistry(auto_describe=True)
    return MetricsRegistry(registry=registry)


@pytest.fixture
def engine(
    test_config: Config, metrics_registry: MetricsRegistry
) -> Generator[StorageEngine, None, None]:
    """Provide a started storage engine."""
    with StorageEngine(config=test_config, metrics=metrics_registry) as db:
        yield db


@pytest.fixture
def users_orders(engine: StorageEngine) -> StorageEngine:
    """Engine seeded with the users/orders example."""
    engine.create_collection("users")
    engine.create_collection("orders")
    engine.insert_many(
        "users",
        [
            {"_id": 1, "name": "Alice"},
            {"_id": 2, "name": "Bob"},
        ],
    )
    engine.insert_many(
        "orders",
        [
            {"_id": 10, "user_id": 1, "amount": 50},
            {"_id": 11, "user_id": 1, "amount": 30},
        ],
    )
    return engine


# Markers for test categories
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests")

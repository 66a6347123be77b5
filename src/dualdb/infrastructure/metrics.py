"""Prometheus metrics for the query engine."""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    start_http_server,
    REGISTRY,
    CollectorRegistry,
)


class MetricsRegistry:
    """Registry of all query engine metrics."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """Initialize metrics registry."""
        self._registry = registry or REGISTRY

        # Operation metrics
        self.operations_total = Counter(
            "dualdb_operations_total",
            "Total number of engine operations",
            ["operation", "status"],  # status: success, error
            registry=self._registry,
        )

        self.operation_latency_seconds = Histogram(
            "dualdb_operation_latency_seconds",
            "Operation latency in seconds",
            ["operation"],  # insert, find, update, delete, join, aggregate
            buckets=(0.0001, 0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
            registry=self._registry,
        )

        self.records_mutated_total = Counter(
            "dualdb_records_mutated_total",
            "Total records inserted, updated or deleted",
            ["operation"],
            registry=self._registry,
        )

        # Access path metrics
        self.index_scans_total = Counter(
            "dualdb_index_scans_total",
            "Total index-assisted scans",
            ["collection", "index_name"],
            registry=self._registry,
        )

        self.full_scans_total = Counter(
            "dualdb_full_scans_total",
            "Total full collection scans",
            ["collection"],
            registry=self._registry,
        )

        # Catalog metrics
        self.collections = Gauge(
            "dualdb_collections",
            "Number of collections in the store",
            registry=self._registry,
        )

        self.info = Info(
            "dualdb_engine",
            "Query engine information",
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record_operation(self, operation: str, status: str, duration_seconds: float) -> None:
        """Record one engine call.

        Args:
            operation: Engine method name (e.g. 'find').
            status: 'success' or 'error'.
            duration_seconds: Wall time spent in the call.
        """
        self.operations_total.labels(operation=operation, status=status).inc()
        self.operation_latency_seconds.labels(operation=operation).observe(duration_seconds)

    def record_mutation(self, operation: str, count: int) -> None:
        """Record records inserted, updated or deleted by one call."""
        if count > 0:
            self.records_mutated_total.labels(operation=operation).inc(count)

    def record_scan(self, collection: str, index_name: str | None) -> None:
        """Record the access path of one scan (None for a full scan)."""
        if index_name is None:
            self.full_scans_total.labels(collection=collection).inc()
        else:
            self.index_scans_total.labels(collection=collection, index_name=index_name).inc()


# Global metrics registry
_metrics: MetricsRegistry | None = None


def setup_metrics(port: int = 8001, registry: CollectorRegistry | None = None) -> MetricsRegistry:
    """
    Set up the Prometheus scrape endpoint.

    Args:
        port: Port for the metrics HTTP server
        registry: Optional custom registry

    Returns:
        The metrics registry
    """
    global _metrics
    # collectors can only be registered once per registry
    if _metrics is None or registry is not None:
        _metrics = MetricsRegistry(registry)

    from dualdb import __version__
    _metrics.info.info({
        "version": __version__,
    })

    start_http_server(port, registry=registry or REGISTRY)

    return _metrics


def get_metrics() -> MetricsRegistry:
    """Get the global metrics registry."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsRegistry()
    return _metrics

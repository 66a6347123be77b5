"""Infrastructure layer - cross-cutting concerns."""

from dualdb.infrastructure.config import Config, get_config
from dualdb.infrastructure.logging import setup_logging, setup_logging_from_config, get_logger
from dualdb.infrastructure.metrics import setup_metrics, get_metrics, MetricsRegistry
from dualdb.infrastructure.tracing import (
    setup_tracing,
    setup_tracing_from_config,
    get_tracer,
    operation_span,
)

__all__ = [
    "Config",
    "get_config",
    "setup_logging",
    "setup_logging_from_config",
    "get_logger",
    "setup_metrics",
    "get_metrics",
    "MetricsRegistry",
    "setup_tracing",
    "setup_tracing_from_config",
    "get_tracer",
    "operation_span",
]

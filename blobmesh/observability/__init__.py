"""
Observability module: Metrics and structured logging.
"""

from blobmesh.observability.metrics import (
    MetricsCollector,
    Counter,
    Gauge,
    Histogram,
    StorageMetrics,
)
from blobmesh.observability.logging import (
    StructuredLogger,
    JsonFormatter,
    LogLevel,
    setup_logging,
)

__all__ = [
    "MetricsCollector",
    "Counter",
    "Gauge",
    "Histogram",
    "StorageMetrics",
    "StructuredLogger",
    "JsonFormatter",
    "LogLevel",
    "setup_logging",
]

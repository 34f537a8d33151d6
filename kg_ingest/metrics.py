"""
Prometheus metrics for kg_ingest monitoring.

Usage:
    from kg_ingest.metrics import track_latency, INGEST_LATENCY

    @track_latency(INGEST_LATENCY)
    def run(...):
        ...
"""

from __future__ import annotations

import logging
import time
from functools import wraps
from typing import Callable, TypeVar

from prometheus_client import Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)

T = TypeVar("T")

INGEST_LATENCY = Histogram(
    "kg_ingest_run_latency_seconds",
    "Full ingestion pipeline latency",
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 25.0, 50.0, 100.0, 300.0],
)

PASS_LATENCY = Histogram(
    "kg_ingest_pass_latency_seconds",
    "Latency of a single ingestion pass",
    ["stage"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 50.0],
)

FILES_TOTAL = Counter(
    "kg_ingest_files_total",
    "Files seen by the parsing pass",
    ["status"],  # processed | failed | skipped
)

CACHE_LOOKUPS = Counter(
    "kg_ingest_cache_lookups_total",
    "Parsed-file cache lookups",
    ["result"],  # hit | miss
)

CALL_SITES_TOTAL = Counter(
    "kg_ingest_call_sites_total",
    "Call sites by final classification",
    ["classification"],
)

IMPORTS_TOTAL = Counter(
    "kg_ingest_imports_total",
    "Import statements by resolution status",
    ["status"],  # resolved | unresolved
)

GRAPH_NODES_TOTAL = Gauge(
    "kg_ingest_graph_nodes_total",
    "Nodes in the last produced graph",
)

GRAPH_EDGES_TOTAL = Gauge(
    "kg_ingest_graph_edges_total",
    "Relationships in the last produced graph",
)


def track_latency(metric: Histogram) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator to track function latency."""

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: object, **kwargs: object) -> T:
            start = time.time()
            try:
                return func(*args, **kwargs)
            except Exception as e:
                logger.error("%s failed: %s", func.__name__, e)
                raise
            finally:
                metric.observe(time.time() - start)

        return wrapper  # type: ignore[return-value]

    return decorator


def start_metrics_server(port: int = 8000) -> None:
    """Start Prometheus metrics HTTP server."""
    start_http_server(port)
    logger.info("Metrics server started on port %d", port)

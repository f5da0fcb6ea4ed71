"""Prometheus metrics for the submission vault.

Exposes /metrics with HTTP and migration counters and histograms.
Uses the prometheus_client library directly (no heavy framework wrappers).
"""

import logging
import time
from typing import Callable

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

REGISTRY = CollectorRegistry()

# HTTP request metrics
REQUEST_COUNT = Counter(
    "vault_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
    registry=REGISTRY,
)
REQUEST_LATENCY = Histogram(
    "vault_request_duration_seconds",
    "HTTP request latency",
    ["method", "path"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=REGISTRY,
)

# Migration metrics
MIGRATION_BATCHES = Counter(
    "vault_migration_batches_total",
    "Migration batches executed",
    ["migration", "outcome"],  # success, partial, failed, refused
    registry=REGISTRY,
)
MIGRATION_RECORDS = Counter(
    "vault_migration_records_total",
    "Records changed by migration batches",
    ["migration"],
    registry=REGISTRY,
)
MIGRATION_BATCH_LATENCY = Histogram(
    "vault_migration_batch_duration_seconds",
    "Migration batch duration",
    ["migration"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=REGISTRY,
)
IRREVERSIBLE_OPS = Counter(
    "vault_irreversible_operations_total",
    "Irreversible operations attempted",
    ["operation", "outcome"],
    registry=REGISTRY,
)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Record request count and latency per route."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start

        route = request.scope.get("route")
        path = getattr(route, "path", request.url.path)
        REQUEST_COUNT.labels(method=request.method, path=path, status=response.status_code).inc()
        REQUEST_LATENCY.labels(method=request.method, path=path).observe(elapsed)
        return response


def record_migration_batch(migration: str, outcome: str, processed: int, duration: float) -> None:
    """Record one executed migration batch."""
    MIGRATION_BATCHES.labels(migration=migration, outcome=outcome).inc()
    if processed:
        MIGRATION_RECORDS.labels(migration=migration).inc(processed)
    MIGRATION_BATCH_LATENCY.labels(migration=migration).observe(duration)


def record_irreversible_operation(operation: str, outcome: str) -> None:
    """Record a bulk nullify or column drop attempt."""
    IRREVERSIBLE_OPS.labels(operation=operation, outcome=outcome).inc()


def get_metrics_response() -> Response:
    """Generate Prometheus metrics response."""
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)

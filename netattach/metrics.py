"""Prometheus metrics for interface reconciliation.

Exposes timing for backend interface operations and whole reconciliations,
plus error and retry counters. Callers that run an HTTP server can serve
``get_metrics()`` in Prometheus exposition format.
"""
from __future__ import annotations

import logging

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)


interface_operation_duration = Histogram(
    "netattach_interface_operation_seconds",
    "Duration of interface operations (attach, detach, port security, task wait)",
    ["operation", "status"],
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300, 600, float("inf")),
)

reconcile_duration = Histogram(
    "netattach_reconcile_seconds",
    "Duration of a full interface reconciliation of one instance",
    ["resource_class", "status"],
    buckets=(1, 5, 10, 30, 60, 120, 300, 600, 1200, float("inf")),
)

interface_operation_errors = Counter(
    "netattach_interface_operation_errors_total",
    "Total failed interface operations",
    ["operation"],
)

retry_attempts = Counter(
    "netattach_retry_attempts_total",
    "Total retried attempts of converging operations",
    ["operation"],
)


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST

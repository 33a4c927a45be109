"""
Prometheus metrics collection for org-authority.

Provides observability into authorization decisions, delegations, audit
volume and storage contention.
"""

import time
from collections.abc import Callable
from functools import wraps
from typing import ParamSpec, TypeVar

from prometheus_client import Counter, Histogram, start_http_server

# ============================================================================
# Event Store Metrics
# ============================================================================

events_appended_total = Counter(
    "orgauth_events_appended_total",
    "Total number of events appended to the event store",
    ["stream_type", "event_type"],
)

stream_version_conflicts_total = Counter(
    "orgauth_stream_version_conflicts_total",
    "Total number of optimistic locking version conflicts",
    ["stream_type"],
)

# ============================================================================
# Authority Metrics
# ============================================================================

authorization_decisions_total = Counter(
    "orgauth_authorization_decisions_total",
    "Authorization decisions by outcome and the rule that decided them",
    ["resource", "action", "outcome", "path"],  # path: super_admin, permission, delegation, none
)

delegations_total = Counter(
    "orgauth_delegations_total",
    "Delegation lifecycle transitions",
    ["transition"],  # granted, revoked, expired, rejected
)

corrupt_hierarchy_total = Counter(
    "orgauth_corrupt_hierarchy_total",
    "Number of times corrupt hierarchy data was detected",
    ["hierarchy"],
)

# ============================================================================
# Audit & Operation Metrics
# ============================================================================

audit_records_total = Counter(
    "orgauth_audit_records_total",
    "Total number of audit records written",
    ["resource", "action"],
)

operation_duration_seconds = Histogram(
    "orgauth_operation_duration_seconds",
    "Duration of engine operations in seconds",
    ["operation"],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

operations_total = Counter(
    "orgauth_operations_total",
    "Total number of engine operations",
    ["operation", "status"],  # status: success, failure
)

# ============================================================================
# Helper Functions
# ============================================================================

P = ParamSpec("P")
R = TypeVar("R")


def track_operation(operation: str) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """
    Decorator to track operation duration and outcome.

    Args:
        operation: Operation name used as metric label
    """

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            start = time.perf_counter()
            status = "success"
            try:
                return func(*args, **kwargs)
            except Exception:
                status = "failure"
                raise
            finally:
                operation_duration_seconds.labels(operation=operation).observe(
                    time.perf_counter() - start
                )
                operations_total.labels(operation=operation, status=status).inc()

        return wrapper

    return decorator


def start_metrics_server(port: int = 9090) -> None:
    """
    Start Prometheus metrics HTTP server.

    Args:
        port: Port to listen on (default: 9090)
    """
    start_http_server(port)

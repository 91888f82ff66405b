"""
Prometheus metrics for the IAV monitor.

Provides observability into eligibility decisions, stick control, the
ingest queue and event delivery.
"""

import time
from collections.abc import Callable
from functools import wraps
from typing import ParamSpec, TypeVar

from prometheus_client import Counter, Gauge, Histogram, start_http_server

# ============================================================================
# Eligibility Metrics
# ============================================================================

eligibility_decisions_total = Counter(
    "iav_eligibility_decisions_total",
    "Total number of eligibility checks by outcome",
    ["outcome"],  # granted, not_eligible, already_registered, unknown_person
)

# ============================================================================
# Stick Control Metrics
# ============================================================================

stick_transitions_total = Counter(
    "iav_stick_transitions_total",
    "Total number of monthly income events processed by resulting state",
    ["state"],  # unmonitored, monitored, revoked
)

stick_control_duration_seconds = Histogram(
    "iav_stick_control_duration_seconds",
    "Duration of a single stick control transition in seconds",
    buckets=(0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
)

# ============================================================================
# Ingest Queue Metrics
# ============================================================================

income_batches_received_total = Counter(
    "iav_income_batches_received_total",
    "Total number of monthly income batches accepted for processing",
)

ingest_queue_depth = Gauge(
    "iav_ingest_queue_depth",
    "Number of income batches waiting in the ingest queue",
)

# ============================================================================
# Dispatch Metrics
# ============================================================================

dispatch_attempts_total = Counter(
    "iav_dispatch_attempts_total",
    "Total number of delivery attempts by event type and result",
    ["event_type", "status"],  # status: delivered, transient_failure, failed
)

dispatch_pending = Gauge(
    "iav_dispatch_pending",
    "Number of lifecycle events not yet delivered",
)

dispatch_dead_letters_total = Counter(
    "iav_dispatch_dead_letters_total",
    "Total number of events abandoned by a bounded retry policy",
    ["event_type"],
)

# ============================================================================
# Helper Functions
# ============================================================================

P = ParamSpec("P")
R = TypeVar("R")


def track_duration(histogram: Histogram) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """
    Decorator observing a function's wall-clock duration on a histogram.

    Args:
        histogram: Histogram without labels

    Returns:
        Decorated function that records its duration, successful or not
    """

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            start = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                histogram.observe(time.perf_counter() - start)

        return wrapper

    return decorator


def start_metrics_server(port: int = 9090) -> None:
    """
    Start Prometheus metrics HTTP server.

    Args:
        port: Port to listen on (default: 9090)
    """
    start_http_server(port)

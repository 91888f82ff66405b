"""
Retry logic for transient failures.

Two kinds of transient failure show up in the monitor:
- SQLite lock contention between the intake threads and the queue consumer
- Downstream services whose listener is not bound yet

Both are handled with tenacity.
"""

import sqlite3
import threading
import time
from collections.abc import Callable
from typing import Any, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    stop_never,
    stop_when_event_set,
    wait_exponential,
    wait_fixed,
)

from iav_monitor.kernel.errors import TransientDeliveryFailure
from iav_monitor.kernel.logging import get_logger
from iav_monitor.kernel.policy import RetryPolicy

logger = get_logger(__name__)

T = TypeVar("T")

# ============================================================================
# Store Retries
# ============================================================================


def retry_on_sqlite_lock(
    max_attempts: int = 3,
    min_wait_ms: int = 100,
    max_wait_ms: int = 1000,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Retry decorator for SQLite lock contention (OperationalError).

    Args:
        max_attempts: Maximum number of attempts (default: 3)
        min_wait_ms: Minimum wait time in milliseconds (default: 100)
        max_wait_ms: Maximum wait time in milliseconds (default: 1000)

    Returns:
        Decorated function that retries on sqlite3.OperationalError

    Example:
        @retry_on_sqlite_lock()
        def revoke_certificate(...):
            conn.execute(...)
    """
    return retry(
        retry=retry_if_exception_type(sqlite3.OperationalError),
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(
            multiplier=1,
            min=min_wait_ms / 1000.0,
            max=max_wait_ms / 1000.0,
        ),
        before_sleep=lambda retry_state: logger.warning(
            "SQLite lock detected, retrying",
            attempt=retry_state.attempt_number,
            exception=str(retry_state.outcome.exception()) if retry_state.outcome else None,
        ),
        reraise=True,
    )


# ============================================================================
# Delivery Retries
# ============================================================================


def delivery_retrying(
    policy: RetryPolicy,
    delay_seconds: float,
    *,
    stop_event: threading.Event | None = None,
    sleep: Callable[[float], Any] = time.sleep,
    before_sleep: Callable[[RetryCallState], Any] | None = None,
) -> Retrying:
    """
    Build the retry controller for one event delivery.

    Only TransientDeliveryFailure is retried; anything else propagates on
    the first attempt. An unbounded policy waits a fixed delay_seconds
    between attempts and never stops on its own. A bounded policy backs
    off exponentially from delay_seconds up to policy.max_delay_seconds
    and re-raises the last failure once max_attempts is reached.

    Args:
        policy: Retry policy from the dispatch configuration
        delay_seconds: The endpoint's fixed retry delay
        stop_event: When set, no further attempt is made (used on shutdown)
        sleep: Function used to wait between attempts
        before_sleep: Optional hook called before every wait

    Returns:
        A tenacity.Retrying to call the send function with
    """
    if policy.bounded:
        stop = stop_after_attempt(policy.max_attempts)
        wait = wait_exponential(
            multiplier=max(delay_seconds, 0.001),
            min=delay_seconds,
            max=policy.max_delay_seconds,
        )
    else:
        stop = stop_never
        wait = wait_fixed(delay_seconds)

    if stop_event is not None:
        stop = stop | stop_when_event_set(stop_event)

    kwargs: dict[str, Any] = {}
    if before_sleep is not None:
        kwargs["before_sleep"] = before_sleep

    return Retrying(
        retry=retry_if_exception_type(TransientDeliveryFailure),
        stop=stop,
        wait=wait,
        sleep=sleep,
        reraise=True,
        **kwargs,
    )

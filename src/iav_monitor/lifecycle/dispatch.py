"""
Event Dispatcher - at-least-once delivery of lifecycle notifications

Callers hand over an event and move on; the dispatcher delivers it on a
supervised worker pool, retrying transient failures according to the
RetryPolicy. Every delivery is a DispatchTask whose status, attempt count
and final error stay observable after the fact, so a stuck or leaked
delivery shows up in pending() instead of disappearing into a detached
thread.

Fun fact: "at-least-once" is the cheapest delivery guarantee that never
loses a letter - the postal service on the other end just has to
recognize a letter it has already read.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from enum import Enum
from typing import Any, Callable

from tenacity import RetryCallState

from iav_monitor.kernel.errors import (
    DeliveryAbandoned,
    TransientDeliveryFailure,
    UnknownEndpoint,
)
from iav_monitor.kernel.logging import get_logger, get_correlation_id, set_correlation_id
from iav_monitor.kernel.metrics import (
    dispatch_attempts_total,
    dispatch_dead_letters_total,
    dispatch_pending,
)
from iav_monitor.kernel.policy import DispatchPolicy, Endpoint
from iav_monitor.kernel.retry import delivery_retrying
from iav_monitor.lifecycle.events import LifecycleEvent
from iav_monitor.lifecycle.sinks import EventSink

logger = get_logger(__name__)


class DispatchStatus(str, Enum):
    """Where a delivery stands"""

    PENDING = "PENDING"  # Queued or between attempts
    DELIVERED = "DELIVERED"  # Endpoint accepted the event
    FAILED = "FAILED"  # Non-transient failure, not retried
    DEAD_LETTERED = "DEAD_LETTERED"  # Retries exhausted or dispatcher shut down


class DispatchTask:
    """
    One event on its way to one endpoint

    Attributes:
        event: The lifecycle event being delivered
        endpoint: Resolved endpoint configuration
        attempts: Number of send attempts made so far
        status: Current DispatchStatus
        error: Final error for FAILED / DEAD_LETTERED tasks
        future: Completion handle from the worker pool
    """

    def __init__(self, event: LifecycleEvent, endpoint: Endpoint) -> None:
        self.event = event
        self.endpoint = endpoint
        self.attempts = 0
        self.status = DispatchStatus.PENDING
        self.error: BaseException | None = None
        self.future: Future[Any] | None = None

    @property
    def done(self) -> bool:
        return self.status != DispatchStatus.PENDING

    def result(self, timeout: float | None = None) -> DispatchStatus:
        """Block until the task finishes and return its final status"""
        if self.future is not None:
            self.future.result(timeout=timeout)
        return self.status

    def __repr__(self) -> str:
        return (
            f"DispatchTask(event_id={self.event.event_id!r}, "
            f"kind={self.event.kind.value!r}, "
            f"endpoint={self.endpoint.name!r}, status={self.status.value}, attempts={self.attempts})"
        )


class EventDispatcher:
    """
    Supervised, retrying dispatcher for lifecycle events

    dispatch() never blocks on delivery and never raises delivery errors
    to the caller. Outcomes are recorded on the returned DispatchTask,
    in metrics and in logs.
    """

    def __init__(
        self,
        sink: EventSink,
        policy: DispatchPolicy | None = None,
        sleep: Callable[[float], Any] | None = None,
    ) -> None:
        """
        Args:
            sink: Transport that performs a single delivery attempt
            policy: Endpoints, retry policy and pool size (defaults if None)
            sleep: Wait function between attempts (defaults to an
                interruptible wait that returns early on shutdown)
        """
        self.sink = sink
        self.policy = policy or DispatchPolicy()
        self._closed = threading.Event()
        self._sleep = sleep or self._closed.wait
        self._executor = ThreadPoolExecutor(
            max_workers=self.policy.max_workers,
            thread_name_prefix="iav-dispatch",
        )
        self._lock = threading.Lock()
        self._pending: dict[str, DispatchTask] = {}
        self._dead_letters: list[DispatchTask] = []
        self._failed: list[DispatchTask] = []
        self._delivered = 0

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def dispatch(
        self, event: LifecycleEvent, endpoint_name: str | None = None
    ) -> DispatchTask:
        """
        Submit an event for background delivery

        An event submitted after shutdown() is not sent; its task comes
        back already DEAD_LETTERED with zero attempts.

        Args:
            event: Event to deliver
            endpoint_name: Override of the event kind's default endpoint

        Returns:
            The DispatchTask tracking this delivery

        Raises:
            UnknownEndpoint: If the endpoint name is not configured
        """
        name = endpoint_name or event.endpoint
        endpoint = self.policy.endpoints.get(name)
        if endpoint is None:
            raise UnknownEndpoint(name)

        task = DispatchTask(event, endpoint)
        # _closed only changes under this lock, so check and submit are one step
        with self._lock:
            accepted = not self._closed.is_set()
            if accepted:
                self._pending[event.event_id] = task
                dispatch_pending.inc()
                try:
                    task.future = self._executor.submit(
                        self._deliver, task, get_correlation_id()
                    )
                except RuntimeError:
                    self._pending.pop(event.event_id, None)
                    dispatch_pending.dec()
                    accepted = False

        if not accepted:
            self._dead_letter(task)
            return task

        logger.debug(
            "Event submitted for dispatch",
            event_id=event.event_id,
            event_type=event.kind.value,
            endpoint=endpoint.name,
        )
        return task

    # ------------------------------------------------------------------
    # Delivery (runs on the pool)
    # ------------------------------------------------------------------

    def _deliver(self, task: DispatchTask, correlation_id: str) -> None:
        set_correlation_id(correlation_id)
        retrying = delivery_retrying(
            self.policy.retry,
            task.endpoint.retry_delay_seconds,
            stop_event=self._closed,
            sleep=self._sleep,
            before_sleep=self._log_retry(task),
        )

        try:
            retrying(self._attempt, task)
        except TransientDeliveryFailure:
            self._dead_letter(task)
        except Exception as e:
            task.error = e
            task.status = DispatchStatus.FAILED
            with self._lock:
                self._failed.append(task)
            logger.error(
                "Event delivery failed",
                event_id=task.event.event_id,
                event_type=task.event.kind.value,
                endpoint=task.endpoint.name,
                attempts=task.attempts,
                error=str(e),
                exc_info=True,
            )
        else:
            task.status = DispatchStatus.DELIVERED
            with self._lock:
                self._delivered += 1
            logger.info(
                "Event delivered",
                event_id=task.event.event_id,
                event_type=task.event.kind.value,
                endpoint=task.endpoint.name,
                attempts=task.attempts,
            )
        finally:
            with self._lock:
                self._pending.pop(task.event.event_id, None)
            dispatch_pending.dec()

    def _dead_letter(self, task: DispatchTask) -> None:
        task.error = DeliveryAbandoned(task.endpoint.name, task.event.event_id, task.attempts)
        task.status = DispatchStatus.DEAD_LETTERED
        dispatch_dead_letters_total.labels(event_type=task.event.kind.value).inc()
        with self._lock:
            self._dead_letters.append(task)
        logger.error(
            "Event dead-lettered",
            event_id=task.event.event_id,
            event_type=task.event.kind.value,
            endpoint=task.endpoint.name,
            attempts=task.attempts,
            shutting_down=self._closed.is_set(),
        )

    def _attempt(self, task: DispatchTask) -> None:
        task.attempts += 1
        event_type = task.event.kind.value
        try:
            self.sink.send(task.endpoint, task.event)
        except TransientDeliveryFailure:
            dispatch_attempts_total.labels(
                event_type=event_type, status="transient_failure"
            ).inc()
            raise
        except Exception:
            dispatch_attempts_total.labels(event_type=event_type, status="failed").inc()
            raise
        dispatch_attempts_total.labels(event_type=event_type, status="delivered").inc()

    def _log_retry(self, task: DispatchTask) -> Callable[[RetryCallState], None]:
        def before_sleep(retry_state: RetryCallState) -> None:
            logger.warning(
                "Endpoint unreachable, retrying",
                event_id=task.event.event_id,
                endpoint=task.endpoint.name,
                attempt=retry_state.attempt_number,
                wait_seconds=round(retry_state.upcoming_sleep, 3),
                exception=str(retry_state.outcome.exception()) if retry_state.outcome else None,
            )

        return before_sleep

    # ------------------------------------------------------------------
    # Supervision
    # ------------------------------------------------------------------

    def pending(self) -> list[DispatchTask]:
        """Tasks not yet delivered, failed or dead-lettered"""
        with self._lock:
            return list(self._pending.values())

    def dead_letters(self) -> list[DispatchTask]:
        """Tasks abandoned after exhausting their retries"""
        with self._lock:
            return list(self._dead_letters)

    def failures(self) -> list[DispatchTask]:
        """Tasks that hit a non-transient failure"""
        with self._lock:
            return list(self._failed)

    def delivered(self) -> int:
        """Number of events delivered so far"""
        with self._lock:
            return self._delivered

    def wait_idle(self, timeout: float | None = None) -> bool:
        """
        Wait until every submitted task has finished

        Args:
            timeout: Seconds to wait, or None to wait indefinitely

        Returns:
            True if no task is pending anymore
        """
        with self._lock:
            futures = [t.future for t in self._pending.values() if t.future is not None]
        if futures:
            wait(futures, timeout=timeout)
        return not self.pending()

    def shutdown(self, wait: bool = True) -> None:
        """
        Stop accepting events and stop retrying

        Tasks between attempts give up after their current attempt and
        are dead-lettered, as is anything dispatched afterwards.

        Args:
            wait: Block until the pool threads have exited
        """
        with self._lock:
            self._closed.set()
        self._executor.shutdown(wait=wait)
        logger.info(
            "Dispatcher shut down",
            delivered=self.delivered(),
            dead_letters=len(self.dead_letters()),
            failures=len(self.failures()),
        )

"""
IAVMonitor - Main façade class

This is the primary interface to the certificate monitor. It wires the
registry, the lifecycle components and the dispatcher together and
exposes the three operations other services call: eligibility requests,
monthly income batches and certificate checks.

Example:
    >>> from iav_monitor import IAVMonitor
    >>> monitor = IAVMonitor("iav.db")
    >>> monitor.register_person(IncomeSnapshot(personal_number="19850612-4417",
    ...                                        salary_income=90000, capital_income=0))
    >>> decision = monitor.request_eligibility_check("19850612-4417")
    >>> monitor.submit_income_batch(7, [income_event])
    >>> monitor.process_pending()  # or monitor.start() for a background consumer
    >>> monitor.query_certificate_valid("19850612-4417", decision.certificate.id)
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from iav_monitor.kernel.logging import get_logger
from iav_monitor.kernel.policy import DispatchPolicy, MonitoringPolicy, ServiceSettings
from iav_monitor.kernel.time import RealTimeProvider, TimeProvider, epoch_millis
from iav_monitor.lifecycle.dispatch import EventDispatcher
from iav_monitor.lifecycle.eligibility import (
    EligibilityDecision,
    EligibilityEvaluator,
    EligibilityOutcome,
)
from iav_monitor.lifecycle.ingest import IngestQueue, MonitoringWorker
from iav_monitor.lifecycle.sinks import EventSink, HttpEventSink
from iav_monitor.lifecycle.sticks import StickAccumulator, StickResult
from iav_monitor.registry.directory import SQLitePersonDirectory
from iav_monitor.registry.models import (
    Certificate,
    CorrelationInfo,
    IncomeSnapshot,
    MonthlyIncomeEvent,
)
from iav_monitor.registry.store import SQLiteCertificateStore

logger = get_logger(__name__)


@dataclass
class ScanProgress:
    """
    Counter threaded through an eligibility scan

    Attributes:
        total: Persons within the income limits when the scan started
        requested: Eligibility requests made so far
        granted: Certificates issued by this scan
        already_registered: Persons who already held a certificate
    """

    total: int
    requested: int = 0
    granted: int = 0
    already_registered: int = 0

    @property
    def is_last(self) -> bool:
        return self.requested == self.total


class IAVMonitor:
    """
    IAV certificate monitor main façade

    Provides a unified API for:
    - Eligibility checks and certificate issuing
    - Monthly income intake and stick control
    - Certificate validity queries
    - Eligibility scans over the person directory
    - Background processing and health status
    """

    def __init__(
        self,
        sqlite_path: str | Path,
        monitoring_policy: MonitoringPolicy | None = None,
        dispatch_policy: DispatchPolicy | None = None,
        sink: EventSink | None = None,
        time_provider: TimeProvider | None = None,
        partitions: int = 1,
        dispatch_sleep: Callable[[float], Any] | None = None,
    ) -> None:
        """
        Initialize the monitor

        Args:
            sqlite_path: Path to SQLite database
            monitoring_policy: Eligibility and stick thresholds (defaults if None)
            dispatch_policy: Endpoints, retry policy and pool size (defaults if None)
            sink: Event transport (HTTP if None)
            time_provider: Time provider (uses real time if None)
            partitions: Number of ingest partitions, one consumer each
            dispatch_sleep: Wait function between delivery attempts (tests)
        """
        self.sqlite_path = Path(sqlite_path)
        self.monitoring_policy = monitoring_policy or MonitoringPolicy()
        self.dispatch_policy = dispatch_policy or DispatchPolicy()
        self.time_provider = time_provider or RealTimeProvider()

        # Registry
        self.store = SQLiteCertificateStore(self.sqlite_path)
        self.directory = SQLitePersonDirectory(self.sqlite_path)

        # Delivery
        self.sink = sink or HttpEventSink(
            timeout=self.dispatch_policy.request_timeout_seconds
        )
        self.dispatcher = EventDispatcher(
            self.sink, self.dispatch_policy, sleep=dispatch_sleep
        )

        # Lifecycle
        self.evaluator = EligibilityEvaluator(
            self.store,
            self.directory,
            self.dispatcher,
            self.time_provider,
            self.monitoring_policy,
        )
        self.accumulator = StickAccumulator(
            self.store, self.dispatcher, self.time_provider, self.monitoring_policy
        )
        self.ingest = IngestQueue(partitions)
        self.workers = [
            MonitoringWorker(self.ingest, self.accumulator, partition)
            for partition in range(partitions)
        ]

    @classmethod
    def from_settings(
        cls, settings: ServiceSettings, sink: EventSink | None = None
    ) -> "IAVMonitor":
        """Build a monitor from process settings"""
        return cls(
            settings.db_path,
            monitoring_policy=settings.monitoring,
            dispatch_policy=settings.dispatch,
            sink=sink,
        )

    # Eligibility

    def request_eligibility_check(
        self,
        personal_number: str,
        snapshot: IncomeSnapshot | None = None,
        correlation: CorrelationInfo | None = None,
    ) -> EligibilityDecision:
        """
        Evaluate a person and issue a certificate if they qualify

        Args:
            personal_number: Person to evaluate
            snapshot: Five-year income totals (looked up in the directory if None)
            correlation: Metadata passed through to CertificateGranted

        Returns:
            EligibilityDecision
        """
        return self.evaluator.evaluate(personal_number, snapshot, correlation)

    def scan_eligible_persons(self) -> ScanProgress:
        """
        Request eligibility for every directory person within the limits

        The final request carries last_one=True; each request carries its
        own start_time in epoch milliseconds.

        Returns:
            ScanProgress with the final counts
        """
        candidates = self.directory.list_within_limits(
            self.monitoring_policy.max_salary_income,
            self.monitoring_policy.max_capital_income,
        )
        progress = ScanProgress(total=len(candidates))
        logger.info("Eligibility scan started", candidates=progress.total)

        for snapshot in candidates:
            start_time = epoch_millis(self.time_provider)
            progress.requested += 1
            decision = self.evaluator.evaluate(
                snapshot.personal_number,
                snapshot,
                CorrelationInfo(last_one=progress.is_last, start_time=start_time),
            )
            if decision.outcome == EligibilityOutcome.GRANTED:
                progress.granted += 1
            elif decision.outcome == EligibilityOutcome.ALREADY_REGISTERED:
                progress.already_registered += 1

        logger.info(
            "Eligibility scan finished",
            requested=progress.requested,
            granted=progress.granted,
            already_registered=progress.already_registered,
        )
        return progress

    # Income intake

    def submit_income_batch(
        self, employer_id: int, income_events: Sequence[MonthlyIncomeEvent]
    ) -> int:
        """
        Queue an employer's monthly incomes for stick control

        Every event is queued. The employer's has_certificate flag is
        informational only: stick control checks the registry itself, so a
        holder is monitored and a non-holder is reported as invalid
        whatever the employer believes.

        Args:
            employer_id: Reporting employer
            income_events: Monthly incomes, processed in list order

        Returns:
            Number of events queued
        """
        events = list(income_events)
        self.ingest.submit(events)
        logger.info(
            "Income batch received",
            employer_id=employer_id,
            queued=len(events),
        )
        return len(events)

    def process_pending(self) -> list[StickResult]:
        """
        Run stick control on everything queued, in the calling thread

        Use either this or start(), not both.
        """
        results: list[StickResult] = []
        for worker in self.workers:
            results.extend(worker.process_pending())
        return results

    # Queries

    def query_certificate_valid(self, personal_number: str, certificate_id: int) -> bool:
        """True if the person holds exactly this certificate"""
        return self.store.certificate_exists(personal_number, certificate_id)

    def get_certificate(self, personal_number: str) -> Certificate | None:
        return self.store.get_certificate(personal_number)

    def register_person(self, snapshot: IncomeSnapshot) -> None:
        """Add or replace a person's five-year income totals in the directory"""
        self.directory.register(snapshot)

    # Lifecycle

    def start(self) -> None:
        """Start the background consumers"""
        for worker in self.workers:
            worker.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop consumers, then the dispatcher (pending retries are dead-lettered)

        The dispatcher stays up while a consumer is still running, so an
        event it is processing keeps its notification.
        """
        for worker in self.workers:
            worker.stop(timeout=timeout)
        busy = [w.partition for w in self.workers if w.running]
        if busy:
            logger.warning("Consumers still running, dispatcher left open", partitions=busy)
            return
        self.dispatcher.shutdown(wait=True)
        if isinstance(self.sink, HttpEventSink):
            self.sink.close()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait for pending deliveries; True when none remain"""
        return self.dispatcher.wait_idle(timeout)

    def status(self) -> dict[str, Any]:
        """
        Operational snapshot for health checks

        Returns:
            Dict with registry counts, queue depth, dispatch and consumer state
        """
        failures = [w for w in self.workers if w.failure is not None]
        return {
            "certificates": self.store.count_certificates(),
            "stick_sets": self.store.count_stick_sets(),
            "persons": self.directory.count(),
            "queue_depth": self.ingest.depth,
            "dispatch": {
                "pending": len(self.dispatcher.pending()),
                "delivered": self.dispatcher.delivered(),
                "dead_letters": len(self.dispatcher.dead_letters()),
                "failures": len(self.dispatcher.failures()),
            },
            "consumers": [
                {
                    "partition": w.partition,
                    "running": w.running,
                    "processed": w.processed,
                    "failure": str(w.failure) if w.failure else None,
                }
                for w in self.workers
            ],
            "healthy": not failures,
        }

"""
Test Helper Functions - Builders and test doubles

Builders for income records and in-memory sinks that stand in for the
postal service and tax agency.
"""

import threading
from pathlib import Path

from iav_monitor.kernel.errors import DeliveryError, TransientDeliveryFailure
from iav_monitor.kernel.policy import Endpoint
from iav_monitor.lifecycle.events import LifecycleEvent
from iav_monitor.registry.models import IncomeSnapshot, MonthlyIncomeEvent

PERSON = "19850612-4417"


def income_event(
    income: int,
    personal_number: str = PERSON,
    month: int = 1,
    year: int = 2025,
    employer_id: int = 7,
    has_certificate: bool = True,
    certificate_id: int = 1,
) -> MonthlyIncomeEvent:
    """
    Builder for monthly income events

    Args:
        income: Reported monthly income
        personal_number: Person the income belongs to
        month: Month 1-12
        year: Income year
        employer_id: Reporting employer
        has_certificate: What the employer believes
        certificate_id: Certificate id as known to the employer

    Returns:
        MonthlyIncomeEvent
    """
    return MonthlyIncomeEvent(
        employer_id=employer_id,
        personal_number=personal_number,
        has_certificate=has_certificate,
        certificate_id=certificate_id,
        year=year,
        month=month,
        income=income,
    )


def snapshot(
    personal_number: str = PERSON,
    salary_income: int = 90000,
    capital_income: int = 15000,
) -> IncomeSnapshot:
    """Builder for five-year income snapshots (eligible by default)"""
    return IncomeSnapshot(
        personal_number=personal_number,
        salary_income=salary_income,
        capital_income=capital_income,
    )


def corrupt(db_path: Path) -> None:
    """Overwrite a database file (and any WAL leftovers) with junk"""
    for suffix in ("-wal", "-shm"):
        Path(f"{db_path}{suffix}").unlink(missing_ok=True)
    db_path.write_bytes(b"this is not a sqlite database " * 200)


class RecordingSink:
    """Accepts every event and records (endpoint name, event) pairs"""

    def __init__(self) -> None:
        self.sent: list[tuple[str, LifecycleEvent]] = []
        self._lock = threading.Lock()

    def send(self, endpoint: Endpoint, event: LifecycleEvent) -> None:
        with self._lock:
            self.sent.append((endpoint.name, event))

    def events(self, kind: str | None = None) -> list[LifecycleEvent]:
        """Recorded events, optionally filtered by EventKind value"""
        with self._lock:
            return [e for _, e in self.sent if kind is None or e.kind.value == kind]


class FlakySink(RecordingSink):
    """
    Fails with a transient failure `failures` times, then accepts

    Models a downstream service whose listener is not bound yet.
    """

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures
        self.attempts = 0

    def send(self, endpoint: Endpoint, event: LifecycleEvent) -> None:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise TransientDeliveryFailure(endpoint.name, "connection refused")
        super().send(endpoint, event)


class BrokenSink:
    """Fails every attempt with a non-transient delivery error"""

    def __init__(self) -> None:
        self.attempts = 0

    def send(self, endpoint: Endpoint, event: LifecycleEvent) -> None:
        self.attempts += 1
        raise DeliveryError(endpoint.name, "HTTP 400: malformed payload")


class SleepRecorder:
    """Callable recording requested delays instead of sleeping"""

    def __init__(self) -> None:
        self.delays: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)

"""
Tests for eligibility evaluation and certificate issuing
"""

import threading
from datetime import date

import pytest

from iav_monitor.kernel.errors import CertificateAlreadyRegistered
from iav_monitor.kernel.time import FrozenTimeProvider
from iav_monitor.lifecycle.dispatch import DispatchStatus, EventDispatcher
from iav_monitor.lifecycle.eligibility import EligibilityEvaluator, EligibilityOutcome
from iav_monitor.lifecycle.events import EventKind
from iav_monitor.registry.directory import SQLitePersonDirectory
from iav_monitor.registry.models import CorrelationInfo
from iav_monitor.registry.store import SQLiteCertificateStore
from tests.helpers import PERSON, RecordingSink, snapshot


@pytest.fixture
def evaluator(
    store: SQLiteCertificateStore,
    directory: SQLitePersonDirectory,
    dispatcher: EventDispatcher,
    test_time: FrozenTimeProvider,
) -> EligibilityEvaluator:
    return EligibilityEvaluator(store, directory, dispatcher, test_time)


def test_eligible_person_gets_certificate(
    evaluator: EligibilityEvaluator,
    store: SQLiteCertificateStore,
    recording_sink: RecordingSink,
) -> None:
    decision = evaluator.evaluate(
        PERSON, snapshot(), CorrelationInfo(last_one=True, start_time=1736942400000)
    )

    assert decision.eligible
    assert decision.outcome == EligibilityOutcome.GRANTED
    assert decision.certificate.issue_date == date(2025, 1, 15)
    assert decision.certificate.expiration_date == date(2031, 1, 15)
    assert store.get_certificate(PERSON) == decision.certificate

    assert decision.dispatch.result(timeout=5) == DispatchStatus.DELIVERED
    [event] = recording_sink.events()
    assert event.kind == EventKind.CERTIFICATE_GRANTED
    assert event.payload["lastOne"] is True
    assert event.payload["startTime"] == 1736942400000
    assert event.payload["certificate"]["id"] == decision.certificate.id


def test_limits_are_inclusive(evaluator: EligibilityEvaluator) -> None:
    decision = evaluator.evaluate(
        PERSON, snapshot(salary_income=100000, capital_income=20000)
    )

    assert decision.eligible


@pytest.mark.parametrize(
    "salary,capital",
    [(100001, 0), (0, 20001), (500000, 500000)],
)
def test_over_the_limit_is_not_eligible(
    evaluator: EligibilityEvaluator,
    store: SQLiteCertificateStore,
    dispatcher: EventDispatcher,
    recording_sink: RecordingSink,
    salary: int,
    capital: int,
) -> None:
    decision = evaluator.evaluate(
        PERSON, snapshot(salary_income=salary, capital_income=capital)
    )

    assert decision.outcome == EligibilityOutcome.NOT_ELIGIBLE
    assert not decision.eligible
    assert decision.certificate is None
    assert store.get_certificate(PERSON) is None
    dispatcher.wait_idle(timeout=5)
    assert recording_sink.sent == []


def test_repeat_request_is_a_no_op(
    evaluator: EligibilityEvaluator,
    store: SQLiteCertificateStore,
    dispatcher: EventDispatcher,
    recording_sink: RecordingSink,
) -> None:
    first = evaluator.evaluate(PERSON, snapshot())
    first.dispatch.result(timeout=5)

    second = evaluator.evaluate(PERSON, snapshot())

    assert second.already_registered
    assert not second.eligible
    assert second.certificate == first.certificate
    assert second.dispatch is None
    assert store.count_certificates() == 1
    dispatcher.wait_idle(timeout=5)
    assert len(recording_sink.sent) == 1


def test_snapshot_resolved_from_directory(
    evaluator: EligibilityEvaluator, directory: SQLitePersonDirectory
) -> None:
    directory.register(snapshot(salary_income=42000, capital_income=0))

    decision = evaluator.evaluate(PERSON)

    assert decision.eligible


def test_unknown_person_is_not_eligible(
    evaluator: EligibilityEvaluator, store: SQLiteCertificateStore
) -> None:
    decision = evaluator.evaluate("19000101-0000")

    assert decision.outcome == EligibilityOutcome.UNKNOWN_PERSON
    assert not decision.eligible
    assert store.count_certificates() == 0


def test_leap_day_issue_expires_on_28_february(
    evaluator: EligibilityEvaluator, test_time: FrozenTimeProvider
) -> None:
    test_time.set_time(test_time.now().replace(year=2024, month=2, day=29))

    decision = evaluator.evaluate(PERSON, snapshot())

    assert decision.certificate.issue_date == date(2024, 2, 29)
    assert decision.certificate.expiration_date == date(2030, 2, 28)


def test_insert_race_resolves_to_already_registered(
    store: SQLiteCertificateStore,
    directory: SQLitePersonDirectory,
    dispatcher: EventDispatcher,
    test_time: FrozenTimeProvider,
    recording_sink: RecordingSink,
) -> None:
    """Another writer registers the person between the check and the insert"""

    class RacingStore:
        def __init__(self, inner: SQLiteCertificateStore) -> None:
            self.inner = inner
            self.raced = False

        def __getattr__(self, name: str):
            return getattr(self.inner, name)

        def insert_certificate(self, personal_number, issue_date, expiration_date):
            self.inner.insert_certificate(personal_number, issue_date, expiration_date)
            self.raced = True
            raise CertificateAlreadyRegistered(personal_number)

    racing = RacingStore(store)
    evaluator = EligibilityEvaluator(racing, directory, dispatcher, test_time)

    decision = evaluator.evaluate(PERSON, snapshot())

    assert racing.raced
    assert decision.already_registered
    assert decision.certificate == store.get_certificate(PERSON)
    dispatcher.wait_idle(timeout=5)
    assert recording_sink.sent == []


def test_concurrent_requests_issue_one_certificate(
    evaluator: EligibilityEvaluator,
    store: SQLiteCertificateStore,
    dispatcher: EventDispatcher,
    recording_sink: RecordingSink,
) -> None:
    outcomes: list[EligibilityOutcome] = []
    lock = threading.Lock()

    def request() -> None:
        decision = evaluator.evaluate(PERSON, snapshot())
        with lock:
            outcomes.append(decision.outcome)

    threads = [threading.Thread(target=request) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert outcomes.count(EligibilityOutcome.GRANTED) == 1
    assert outcomes.count(EligibilityOutcome.ALREADY_REGISTERED) == 7
    assert store.count_certificates() == 1
    dispatcher.wait_idle(timeout=5)
    assert len(recording_sink.sent) == 1

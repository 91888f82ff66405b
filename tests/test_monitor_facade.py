"""
Tests for the IAVMonitor façade

End-to-end flows through the public API: eligibility, income batches,
certificate queries, scans and background processing.
"""

import threading
import time
from datetime import date

from iav_monitor import IAVMonitor
from iav_monitor.lifecycle.dispatch import DispatchStatus
from iav_monitor.lifecycle.eligibility import EligibilityOutcome
from iav_monitor.lifecycle.events import EventKind
from iav_monitor.lifecycle.sticks import StickOutcome
from tests.helpers import PERSON, RecordingSink, income_event, snapshot


def test_certificate_lifecycle(monitor: IAVMonitor, recording_sink: RecordingSink) -> None:
    """Grant, monitor, revoke, then report as invalid"""
    decision = monitor.request_eligibility_check(PERSON, snapshot())
    cert = decision.certificate
    assert monitor.query_certificate_valid(PERSON, cert.id)
    assert monitor.wait_idle(timeout=5)

    monitor.submit_income_batch(
        7, [income_event(30000, month=m, certificate_id=cert.id) for m in (1, 2, 3)]
    )
    results = monitor.process_pending()

    assert [r.state for r in results] == [
        StickOutcome.MONITORED,
        StickOutcome.MONITORED,
        StickOutcome.REVOKED,
    ]
    assert not monitor.query_certificate_valid(PERSON, cert.id)
    assert monitor.wait_idle(timeout=5)

    monitor.submit_income_batch(7, [income_event(6000, month=4, certificate_id=cert.id)])
    assert monitor.process_pending()[0].state == StickOutcome.UNMONITORED

    assert monitor.wait_idle(timeout=5)
    assert [e.kind for e in recording_sink.events()] == [
        EventKind.CERTIFICATE_GRANTED,
        EventKind.CERTIFICATE_UNREGISTERED,
        EventKind.CERTIFICATE_INVALID_REPORTED,
    ]


def test_expiration_is_six_years_after_issue(monitor: IAVMonitor) -> None:
    decision = monitor.request_eligibility_check(PERSON, snapshot())

    assert decision.certificate.issue_date == date(2025, 1, 15)
    assert decision.certificate.expiration_date == date(2031, 1, 15)


def test_query_certificate_valid_for_unknown(monitor: IAVMonitor) -> None:
    assert not monitor.query_certificate_valid(PERSON, 1)


def test_employer_certificate_flag_does_not_bypass_stick_control(
    monitor: IAVMonitor, recording_sink: RecordingSink
) -> None:
    """The registry decides who is monitored, not the employer's hasCert flag"""
    cert = monitor.request_eligibility_check(PERSON, snapshot()).certificate

    queued = monitor.submit_income_batch(
        7,
        [
            income_event(30000, month=m, has_certificate=False, certificate_id=0)
            for m in (1, 2, 3)
        ],
    )

    assert queued == 3
    results = monitor.process_pending()
    assert [r.state for r in results][-1] == StickOutcome.REVOKED
    assert not monitor.query_certificate_valid(PERSON, cert.id)
    assert monitor.wait_idle(timeout=5)
    assert len(recording_sink.events("CertificateUnregistered")) == 1


def test_unflagged_income_without_certificate_is_reported_invalid(
    monitor: IAVMonitor, recording_sink: RecordingSink
) -> None:
    queued = monitor.submit_income_batch(
        7, [income_event(7000, personal_number="19900101-1234", has_certificate=False)]
    )

    assert queued == 1
    [result] = monitor.process_pending()
    assert result.state == StickOutcome.UNMONITORED
    assert monitor.wait_idle(timeout=5)
    [event] = recording_sink.events("CertificateInvalidReported")
    assert event.personal_number == "19900101-1234"
    assert event.payload["income"]["hasCert"] is False


def test_revocation_after_dispatcher_shutdown_is_dead_lettered(monitor: IAVMonitor) -> None:
    cert = monitor.request_eligibility_check(PERSON, snapshot()).certificate
    monitor.submit_income_batch(7, [income_event(30000, month=m) for m in (1, 2)])
    monitor.process_pending()
    monitor.dispatcher.shutdown()

    monitor.submit_income_batch(7, [income_event(30000, month=3)])
    [result] = monitor.process_pending()

    assert result.state == StickOutcome.REVOKED
    assert not monitor.query_certificate_valid(PERSON, cert.id)
    assert result.dispatch.status == DispatchStatus.DEAD_LETTERED
    assert monitor.dispatcher.dead_letters() == [result.dispatch]
    assert monitor.workers[0].failure is None


def test_stop_keeps_dispatcher_open_while_consumer_is_busy(
    monitor: IAVMonitor, recording_sink: RecordingSink, monkeypatch
) -> None:
    worker = monitor.workers[0]
    picked_up = threading.Event()
    release = threading.Event()
    process = worker.accumulator.process

    def slow_process(event):
        picked_up.set()
        release.wait(5)
        return process(event)

    monkeypatch.setattr(worker.accumulator, "process", slow_process)
    cert = monitor.request_eligibility_check(PERSON, snapshot()).certificate
    monitor.submit_income_batch(7, [income_event(30000, month=m) for m in (1, 2, 3)])
    monitor.start()
    assert picked_up.wait(5)

    monitor.stop(timeout=0.05)
    assert worker.running

    release.set()
    deadline = time.monotonic() + 5
    while worker.running and time.monotonic() < deadline:
        time.sleep(0.01)
    monitor.stop()

    assert not monitor.query_certificate_valid(PERSON, cert.id)
    assert len(recording_sink.events("CertificateUnregistered")) == 1
    assert monitor.dispatcher.dead_letters() == []


def test_scan_marks_last_request(monitor: IAVMonitor, recording_sink: RecordingSink) -> None:
    monitor.directory.register_many(
        [
            snapshot("p1"),
            snapshot("p2", salary_income=200000),
            snapshot("p3"),
            snapshot("p4"),
        ]
    )
    monitor.request_eligibility_check("p3")

    progress = monitor.scan_eligible_persons()

    assert progress.total == 3
    assert progress.requested == 3
    assert progress.granted == 2
    assert progress.already_registered == 1
    assert monitor.wait_idle(timeout=5)

    granted = {
        e.personal_number: e.payload for e in recording_sink.events("CertificateGranted")
    }
    assert granted["p4"]["lastOne"] is True
    assert granted["p1"]["lastOne"] is False
    assert granted["p4"]["startTime"] == 1736942400000
    assert "p2" not in granted


def test_scans_do_not_share_counters(monitor: IAVMonitor) -> None:
    monitor.directory.register_many([snapshot("p1"), snapshot("p2")])

    first = monitor.scan_eligible_persons()
    second = monitor.scan_eligible_persons()

    assert first.granted == 2
    assert second.requested == 2
    assert second.already_registered == 2


def test_background_processing(monitor: IAVMonitor) -> None:
    decision = monitor.request_eligibility_check(PERSON, snapshot())
    monitor.start()

    monitor.submit_income_batch(7, [income_event(6000, month=m) for m in range(1, 4)])

    deadline = time.monotonic() + 5
    while monitor.workers[0].processed < 3 and time.monotonic() < deadline:
        time.sleep(0.01)

    sticks = monitor.store.get_stick_set(PERSON)
    assert sticks.minor_sticks == 3
    assert monitor.query_certificate_valid(PERSON, decision.certificate.id)


def test_status(monitor: IAVMonitor) -> None:
    monitor.register_person(snapshot())
    monitor.request_eligibility_check(PERSON)
    monitor.wait_idle(timeout=5)

    status = monitor.status()

    assert status["certificates"] == 1
    assert status["persons"] == 1
    assert status["queue_depth"] == 0
    assert status["dispatch"]["delivered"] == 1
    assert status["dispatch"]["pending"] == 0
    assert status["healthy"] is True


def test_partitioned_monitor(temp_db, recording_sink, test_time, sleeps) -> None:
    monitor = IAVMonitor(
        temp_db,
        sink=recording_sink,
        time_provider=test_time,
        dispatch_sleep=sleeps,
        partitions=3,
    )
    people = [f"1990010{i}-0000" for i in range(5)]
    for pn in people:
        monitor.request_eligibility_check(pn, snapshot(pn))

    monitor.submit_income_batch(
        7, [income_event(30000, personal_number=pn, month=m) for m in (1, 2) for pn in people]
    )
    monitor.process_pending()

    assert all(monitor.store.get_stick_set(pn).major_sticks == 2 for pn in people)
    assert len(monitor.workers) == 3
    monitor.stop()


def test_unknown_person_outcome(monitor: IAVMonitor) -> None:
    decision = monitor.request_eligibility_check("19000101-0000")

    assert decision.outcome == EligibilityOutcome.UNKNOWN_PERSON

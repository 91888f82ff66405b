"""
Pytest configuration and shared fixtures

Every fixture that touches the network is replaced here: delivery goes to
a RecordingSink and the retry wait goes to a SleepRecorder, so no test
ever waits on a real clock.
"""

import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

import pytest

from iav_monitor.kernel.policy import DispatchPolicy, MonitoringPolicy
from iav_monitor.kernel.time import FrozenTimeProvider
from iav_monitor.lifecycle.dispatch import EventDispatcher
from iav_monitor.monitor import IAVMonitor
from iav_monitor.registry.directory import SQLitePersonDirectory
from iav_monitor.registry.store import SQLiteCertificateStore
from tests.helpers import RecordingSink, SleepRecorder


@pytest.fixture
def temp_db() -> Iterator[Path]:
    """Provide a temporary database file that's cleaned up after test"""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)

    yield db_path

    # Cleanup (WAL side files included)
    for path in (db_path, Path(f"{db_path}-wal"), Path(f"{db_path}-shm")):
        if path.exists():
            path.unlink()


@pytest.fixture
def test_time() -> FrozenTimeProvider:
    """
    Provide a controllable time provider for deterministic tests

    Default time: 2025-01-15 12:00:00 UTC, so certificates issued in tests
    expire on 2031-01-15.
    """
    return FrozenTimeProvider(datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def monitoring_policy() -> MonitoringPolicy:
    """Default thresholds: 100000/20000 eligibility, 5000/28000 sticks, 24/3 limits"""
    return MonitoringPolicy()


@pytest.fixture
def store(temp_db: Path) -> SQLiteCertificateStore:
    """Provide a fresh certificate store for each test"""
    return SQLiteCertificateStore(temp_db)


@pytest.fixture
def directory(temp_db: Path) -> SQLitePersonDirectory:
    """Provide a fresh person directory for each test"""
    return SQLitePersonDirectory(temp_db)


@pytest.fixture
def recording_sink() -> RecordingSink:
    """Sink that accepts every event and remembers it"""
    return RecordingSink()


@pytest.fixture
def sleeps() -> SleepRecorder:
    """
    Replacement for the dispatcher's wait between attempts

    Records requested delays instead of sleeping, so retry tests run
    instantly and can assert on the schedule.
    """
    return SleepRecorder()


@pytest.fixture
def dispatcher(recording_sink: RecordingSink, sleeps: SleepRecorder) -> Iterator[EventDispatcher]:
    """Dispatcher delivering to the recording sink"""
    dispatcher = EventDispatcher(recording_sink, DispatchPolicy(), sleep=sleeps)
    yield dispatcher
    dispatcher.shutdown(wait=True)


@pytest.fixture
def monitor(
    temp_db: Path,
    recording_sink: RecordingSink,
    test_time: FrozenTimeProvider,
    sleeps: SleepRecorder,
) -> Iterator[IAVMonitor]:
    """
    Fully wired monitor with in-memory delivery and frozen time

    No consumer thread is started; tests drain the queue with
    process_pending() unless they call start() themselves.
    """
    monitor = IAVMonitor(
        temp_db,
        sink=recording_sink,
        time_provider=test_time,
        dispatch_sleep=sleeps,
    )
    yield monitor
    monitor.stop()

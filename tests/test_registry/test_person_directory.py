"""
Tests for the SQLite person directory
"""

import pytest

from iav_monitor.kernel.errors import StoreError
from iav_monitor.registry.directory import SQLitePersonDirectory
from iav_monitor.registry.models import IncomeSnapshot, MonthlyIncomeEvent
from tests.helpers import corrupt, snapshot


def test_lookup_unknown_person(directory: SQLitePersonDirectory) -> None:
    assert directory.lookup("19850612-4417") is None


def test_register_and_lookup(directory: SQLitePersonDirectory) -> None:
    directory.register(snapshot(salary_income=50000, capital_income=100))

    found = directory.lookup("19850612-4417")

    assert found == IncomeSnapshot(
        personal_number="19850612-4417", salary_income=50000, capital_income=100
    )


def test_register_replaces_existing(directory: SQLitePersonDirectory) -> None:
    directory.register(snapshot(salary_income=50000))
    directory.register(snapshot(salary_income=150000))

    assert directory.lookup("19850612-4417").salary_income == 150000
    assert directory.count() == 1


def test_register_many_rejects_duplicates(directory: SQLitePersonDirectory) -> None:
    assert directory.register_many([snapshot("a"), snapshot("b")]) == 2

    with pytest.raises(StoreError):
        directory.register_many([snapshot("c"), snapshot("a")])

    # The failed batch is rolled back as a whole
    assert directory.lookup("c") is None
    assert directory.count() == 2


def test_list_within_limits_is_inclusive_and_ordered(
    directory: SQLitePersonDirectory,
) -> None:
    directory.register_many(
        [
            snapshot("p1", salary_income=100000, capital_income=20000),
            snapshot("p2", salary_income=100001, capital_income=0),
            snapshot("p3", salary_income=0, capital_income=20001),
            snapshot("p4", salary_income=10, capital_income=10),
        ]
    )

    within = directory.list_within_limits(100000, 20000)

    assert [s.personal_number for s in within] == ["p1", "p4"]


class TestWireFormat:
    """Records accept and produce the camelCase JSON used between services"""

    def test_income_event_from_camel_case(self) -> None:
        event = MonthlyIncomeEvent.model_validate(
            {
                "employerId": 7,
                "personalNumber": "19850612-4417",
                "hasCert": True,
                "certId": 42,
                "year": 2025,
                "month": 3,
                "income": 6000,
            }
        )

        assert event.has_certificate is True
        assert event.certificate_id == 42

    def test_income_event_dumps_camel_case(self) -> None:
        event = MonthlyIncomeEvent(
            employer_id=7,
            personal_number="19850612-4417",
            year=2025,
            month=3,
            income=6000,
        )

        data = event.model_dump(by_alias=True)

        assert data["personalNumber"] == "19850612-4417"
        assert data["hasCert"] is False
        assert data["certId"] == 0

    def test_month_is_validated(self) -> None:
        with pytest.raises(ValueError):
            MonthlyIncomeEvent(
                employer_id=7, personal_number="x", year=2025, month=13, income=1
            )


def test_database_errors_raise_store_error(temp_db) -> None:
    directory = SQLitePersonDirectory(temp_db)
    corrupt(temp_db)

    with pytest.raises(StoreError):
        directory.lookup("19850612-4417")
    with pytest.raises(StoreError):
        directory.count()

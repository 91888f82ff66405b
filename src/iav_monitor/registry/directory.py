"""
Person Directory - five-year income records

Resolves a personal number to the income attributes that decide IAV
eligibility. Backed by its own SQLite table so the monitor can run
standalone; in a full deployment this is the population register.
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator

from iav_monitor.kernel.errors import StoreError
from iav_monitor.kernel.logging import get_logger
from iav_monitor.kernel.retry import retry_on_sqlite_lock
from iav_monitor.registry.models import IncomeSnapshot

logger = get_logger(__name__)


class SQLitePersonDirectory:
    """
    SQLite-based directory of five-year income snapshots

    Schema:
    - five_year_incomes: personal_number (unique), salary_income, capital_income
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self._initialize_schema()

    def _initialize_schema(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS five_year_incomes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    personal_number TEXT NOT NULL UNIQUE,
                    salary_income INTEGER NOT NULL,
                    capital_income INTEGER NOT NULL
                )
            """)
            conn.commit()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.db_path), timeout=5.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.OperationalError:
            raise
        except sqlite3.DatabaseError as e:
            raise StoreError(f"Person directory error: {e}") from e
        finally:
            conn.close()

    def lookup(self, personal_number: str) -> IncomeSnapshot | None:
        """
        Resolve a personal number to its income snapshot

        Args:
            personal_number: Person to look up

        Returns:
            IncomeSnapshot, or None if the person is unknown
        """
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT personal_number, salary_income, capital_income
                FROM five_year_incomes
                WHERE personal_number = ?
            """,
                (personal_number,),
            ).fetchone()
            return self._row_to_snapshot(row) if row else None

    @retry_on_sqlite_lock()
    def register(self, snapshot: IncomeSnapshot) -> None:
        """Insert or replace a person's income snapshot"""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO five_year_incomes (personal_number, salary_income, capital_income)
                VALUES (?, ?, ?)
                ON CONFLICT(personal_number) DO UPDATE SET
                    salary_income = excluded.salary_income,
                    capital_income = excluded.capital_income
            """,
                (snapshot.personal_number, snapshot.salary_income, snapshot.capital_income),
            )
            conn.commit()

    @retry_on_sqlite_lock()
    def register_many(self, snapshots: Iterable[IncomeSnapshot]) -> int:
        """
        Bulk insert income snapshots in a single transaction

        Returns:
            Number of snapshots written

        Raises:
            StoreError: If any personal number is already present
        """
        rows = [
            (s.personal_number, s.salary_income, s.capital_income) for s in snapshots
        ]
        with self._connect() as conn:
            try:
                conn.executemany(
                    """
                    INSERT INTO five_year_incomes (personal_number, salary_income, capital_income)
                    VALUES (?, ?, ?)
                """,
                    rows,
                )
                conn.commit()
            except sqlite3.IntegrityError as e:
                conn.rollback()
                raise StoreError(f"Failed to register incomes: {e}") from e

        logger.info("Registered income snapshots", count=len(rows))
        return len(rows)

    def list_within_limits(
        self, max_salary_income: int, max_capital_income: int
    ) -> list[IncomeSnapshot]:
        """
        All persons whose five-year incomes are within both limits

        Ordered by insertion, so an eligibility scan is reproducible.
        """
        with self._connect() as conn:
            cursor = conn.execute(
                """
                SELECT personal_number, salary_income, capital_income
                FROM five_year_incomes
                WHERE salary_income <= ? AND capital_income <= ?
                ORDER BY id ASC
            """,
                (max_salary_income, max_capital_income),
            )
            return [self._row_to_snapshot(row) for row in cursor.fetchall()]

    def count(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM five_year_incomes").fetchone()[0]

    def _row_to_snapshot(self, row: sqlite3.Row) -> IncomeSnapshot:
        return IncomeSnapshot(
            personal_number=row["personal_number"],
            salary_income=row["salary_income"],
            capital_income=row["capital_income"],
        )

"""
SQLite Certificate Store - the IAV registry

Holds the active certificates and their stick sets. The store enforces
the uniqueness invariant (one certificate per personal number) with a
UNIQUE constraint, and offers two whole-transition operations so a
crash can never leave a stick set without its certificate:

- save_stick_set: insert-or-update in one statement
- revoke_certificate: delete stick set and certificate in one transaction

Fun fact: SQLite's WAL mode lets the intake threads read certificates
while the queue consumer is writing stick sets - readers never block the
single writer.
"""

import sqlite3
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Iterator

from iav_monitor.kernel.errors import (
    CertificateAlreadyRegistered,
    CertificateNotFound,
    StoreError,
)
from iav_monitor.kernel.retry import retry_on_sqlite_lock
from iav_monitor.registry.models import Certificate, StickSet


class SQLiteCertificateStore:
    """
    SQLite-based certificate registry

    Schema:
    - certificates: id (autoincrement), personal_number (unique), dates
    - stick_sets: personal_number (primary key, references certificates)
    """

    def __init__(self, db_path: str | Path) -> None:
        """
        Initialize the store, creating the schema if needed

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self._initialize_schema()

    def _initialize_schema(self) -> None:
        """Create tables and indices if they don't exist"""
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS certificates (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    personal_number TEXT NOT NULL UNIQUE,
                    issue_date TEXT NOT NULL,
                    expiration_date TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS stick_sets (
                    personal_number TEXT PRIMARY KEY,
                    minor_sticks INTEGER NOT NULL DEFAULT 0,
                    major_sticks INTEGER NOT NULL DEFAULT 0
                )
            """)

            conn.commit()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """
        Context manager for database connections

        Connections are per call so the store can be shared between the
        intake threads and the queue consumer. Database errors other than
        lock contention surface as StoreError.
        """
        conn = sqlite3.connect(str(self.db_path), timeout=5.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.OperationalError:
            # Lock contention is retried by the decorator
            raise
        except sqlite3.DatabaseError as e:
            raise StoreError(f"Certificate store error: {e}") from e
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Certificates
    # ------------------------------------------------------------------

    @retry_on_sqlite_lock()
    def insert_certificate(
        self,
        personal_number: str,
        issue_date: date,
        expiration_date: date,
    ) -> Certificate:
        """
        Insert a new certificate and return it with its computed id

        Raises:
            CertificateAlreadyRegistered: If the person already holds one
            StoreError: On other database errors
        """
        with self._connect() as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO certificates (personal_number, issue_date, expiration_date)
                    VALUES (?, ?, ?)
                """,
                    (personal_number, issue_date.isoformat(), expiration_date.isoformat()),
                )
                conn.commit()
            except sqlite3.IntegrityError as e:
                conn.rollback()
                if "personal_number" in str(e).lower():
                    raise CertificateAlreadyRegistered(personal_number) from e
                raise StoreError(f"Failed to insert certificate: {e}") from e
            except sqlite3.OperationalError:
                # Lock contention is retried by the decorator
                conn.rollback()
                raise
            except sqlite3.DatabaseError as e:
                conn.rollback()
                raise StoreError(f"Failed to insert certificate: {e}") from e

            return Certificate(
                id=cursor.lastrowid,
                personal_number=personal_number,
                issue_date=issue_date,
                expiration_date=expiration_date,
            )

    def get_certificate(self, personal_number: str) -> Certificate | None:
        """Get the active certificate for a person, or None"""
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT id, personal_number, issue_date, expiration_date
                FROM certificates
                WHERE personal_number = ?
            """,
                (personal_number,),
            ).fetchone()
            return self._row_to_certificate(row) if row else None

    def get_certificate_by_id(self, certificate_id: int) -> Certificate | None:
        """Get a certificate by its id, or None"""
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT id, personal_number, issue_date, expiration_date
                FROM certificates
                WHERE id = ?
            """,
                (certificate_id,),
            ).fetchone()
            return self._row_to_certificate(row) if row else None

    def certificate_exists(self, personal_number: str, certificate_id: int) -> bool:
        """Check that the given certificate id is the person's active certificate"""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM certificates WHERE personal_number = ? AND id = ?",
                (personal_number, certificate_id),
            ).fetchone()
            return row is not None

    @retry_on_sqlite_lock()
    def remove_certificate(self, certificate_id: int) -> None:
        """Delete a certificate by id (no-op if it does not exist)"""
        with self._connect() as conn:
            conn.execute("DELETE FROM certificates WHERE id = ?", (certificate_id,))
            conn.commit()

    def list_certificates(self) -> list[Certificate]:
        """All active certificates ordered by id"""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                SELECT id, personal_number, issue_date, expiration_date
                FROM certificates
                ORDER BY id ASC
            """
            )
            return [self._row_to_certificate(row) for row in cursor.fetchall()]

    def count_certificates(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM certificates").fetchone()[0]

    # ------------------------------------------------------------------
    # Stick sets
    # ------------------------------------------------------------------

    def get_stick_set(self, personal_number: str) -> StickSet | None:
        """Get a person's stick set, or None if not created yet"""
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT personal_number, minor_sticks, major_sticks
                FROM stick_sets
                WHERE personal_number = ?
            """,
                (personal_number,),
            ).fetchone()
            return self._row_to_stick_set(row) if row else None

    @retry_on_sqlite_lock()
    def insert_stick_set(self, stick_set: StickSet) -> None:
        """
        Insert a new stick set

        Raises:
            StoreError: If the person already has a stick set
        """
        with self._connect() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO stick_sets (personal_number, minor_sticks, major_sticks)
                    VALUES (?, ?, ?)
                """,
                    (stick_set.personal_number, stick_set.minor_sticks, stick_set.major_sticks),
                )
                conn.commit()
            except sqlite3.IntegrityError as e:
                conn.rollback()
                raise StoreError(f"Failed to insert stick set: {e}") from e

    @retry_on_sqlite_lock()
    def update_stick_set(self, stick_set: StickSet) -> None:
        """
        Overwrite the counts of an existing stick set

        Raises:
            StoreError: If no stick set exists for the person
        """
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE stick_sets
                SET minor_sticks = ?, major_sticks = ?
                WHERE personal_number = ?
            """,
                (stick_set.minor_sticks, stick_set.major_sticks, stick_set.personal_number),
            )
            if cursor.rowcount == 0:
                conn.rollback()
                raise StoreError(f"No stick set to update for {stick_set.personal_number}")
            conn.commit()

    @retry_on_sqlite_lock()
    def save_stick_set(self, stick_set: StickSet) -> None:
        """
        Insert or update a stick set in one statement

        Only stores the set while its certificate exists, which keeps the
        "stick set implies certificate" invariant even if a revocation
        slipped in between read and write.

        Raises:
            CertificateNotFound: If the person has no certificate on file
            StoreError: On other database errors
        """
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO stick_sets (personal_number, minor_sticks, major_sticks)
                SELECT ?, ?, ?
                WHERE EXISTS (SELECT 1 FROM certificates WHERE personal_number = ?)
                ON CONFLICT(personal_number) DO UPDATE SET
                    minor_sticks = excluded.minor_sticks,
                    major_sticks = excluded.major_sticks
            """,
                (
                    stick_set.personal_number,
                    stick_set.minor_sticks,
                    stick_set.major_sticks,
                    stick_set.personal_number,
                ),
            )
            if cursor.rowcount == 0:
                conn.rollback()
                raise CertificateNotFound(stick_set.personal_number)
            conn.commit()

    @retry_on_sqlite_lock()
    def remove_stick_set(self, personal_number: str) -> None:
        """Delete a person's stick set (no-op if it does not exist)"""
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM stick_sets WHERE personal_number = ?", (personal_number,)
            )
            conn.commit()

    def count_stick_sets(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM stick_sets").fetchone()[0]

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    @retry_on_sqlite_lock()
    def revoke_certificate(self, personal_number: str) -> Certificate:
        """
        Delete a person's stick set and certificate atomically

        Args:
            personal_number: Person whose certificate is revoked

        Returns:
            Snapshot of the certificate as it was before deletion

        Raises:
            CertificateNotFound: If the person holds no certificate
        """
        with self._connect() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute(
                    """
                    SELECT id, personal_number, issue_date, expiration_date
                    FROM certificates
                    WHERE personal_number = ?
                """,
                    (personal_number,),
                ).fetchone()
                if row is None:
                    conn.rollback()
                    raise CertificateNotFound(personal_number)

                certificate = self._row_to_certificate(row)
                conn.execute(
                    "DELETE FROM stick_sets WHERE personal_number = ?", (personal_number,)
                )
                conn.execute("DELETE FROM certificates WHERE id = ?", (certificate.id,))
                conn.commit()
                return certificate

            except sqlite3.OperationalError:
                conn.rollback()
                raise

            except sqlite3.DatabaseError as e:
                conn.rollback()
                raise StoreError(f"Failed to revoke certificate: {e}") from e

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    def _row_to_certificate(self, row: sqlite3.Row) -> Certificate:
        return Certificate(
            id=row["id"],
            personal_number=row["personal_number"],
            issue_date=date.fromisoformat(row["issue_date"]),
            expiration_date=date.fromisoformat(row["expiration_date"]),
        )

    def _row_to_stick_set(self, row: sqlite3.Row) -> StickSet:
        return StickSet(
            personal_number=row["personal_number"],
            minor_sticks=row["minor_sticks"],
            major_sticks=row["major_sticks"],
        )

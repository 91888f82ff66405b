"""
Collaborator protocols consumed by the lifecycle components

The SQLite classes in this package satisfy them; tests and alternative
deployments can plug in anything with the same shape.
"""

from datetime import date
from typing import Protocol

from iav_monitor.registry.models import Certificate, IncomeSnapshot, StickSet


class PersonDirectory(Protocol):
    """Resolves a personal number to income-eligibility attributes"""

    def lookup(self, personal_number: str) -> IncomeSnapshot | None:
        ...


class CertificateStore(Protocol):
    """Persists certificates and stick sets"""

    def insert_certificate(
        self, personal_number: str, issue_date: date, expiration_date: date
    ) -> Certificate:
        ...

    def get_certificate(self, personal_number: str) -> Certificate | None:
        ...

    def remove_certificate(self, certificate_id: int) -> None:
        ...

    def certificate_exists(self, personal_number: str, certificate_id: int) -> bool:
        ...

    def get_stick_set(self, personal_number: str) -> StickSet | None:
        ...

    def insert_stick_set(self, stick_set: StickSet) -> None:
        ...

    def update_stick_set(self, stick_set: StickSet) -> None:
        ...

    def save_stick_set(self, stick_set: StickSet) -> None:
        ...

    def remove_stick_set(self, personal_number: str) -> None:
        ...

    def revoke_certificate(self, personal_number: str) -> Certificate:
        ...

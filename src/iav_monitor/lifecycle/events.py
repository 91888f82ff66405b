"""
Lifecycle Events - notifications sent to downstream services

Three things happen to a certificate that other services care about:
it is granted (the postal service mails it out), it is revoked (the
postal service mails a notice), or income is reported for a person the
monitor has no certificate for (the tax agency corrects withholding).

Events are named in past tense because they describe facts that
already happened.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from iav_monitor.kernel.ids import generate_event_id
from iav_monitor.kernel.policy import (
    POSTAL_CERT_GRANTED,
    POSTAL_CERT_UNREGISTERED,
    TAX_CERT_INVALID,
)
from iav_monitor.registry.models import (
    WIRE_CONFIG,
    Certificate,
    CorrelationInfo,
    MonthlyIncomeEvent,
)


class EventKind(str, Enum):
    """Lifecycle notifications and the endpoint each one goes to"""

    CERTIFICATE_GRANTED = "CertificateGranted"
    CERTIFICATE_UNREGISTERED = "CertificateUnregistered"
    CERTIFICATE_INVALID_REPORTED = "CertificateInvalidReported"

    @property
    def endpoint(self) -> str:
        return _ENDPOINTS[self]


_ENDPOINTS = {
    EventKind.CERTIFICATE_GRANTED: POSTAL_CERT_GRANTED,
    EventKind.CERTIFICATE_UNREGISTERED: POSTAL_CERT_UNREGISTERED,
    EventKind.CERTIFICATE_INVALID_REPORTED: TAX_CERT_INVALID,
}


# Payloads


class CertificateGranted(BaseModel):
    """A certificate was issued; correlation metadata passes through unchanged"""

    certificate: Certificate
    last_one: bool
    start_time: int

    model_config = WIRE_CONFIG


class CertificateUnregistered(BaseModel):
    """A certificate was revoked; carries its final snapshot"""

    certificate: Certificate

    model_config = WIRE_CONFIG


class CertificateInvalidReported(BaseModel):
    """Income was reported for a person with no certificate on file"""

    income: MonthlyIncomeEvent

    model_config = WIRE_CONFIG


# Envelope


class LifecycleEvent(BaseModel):
    """
    A notification ready for dispatch

    The event_id is stable across retries of the same event, so receivers
    can deduplicate at-least-once deliveries.
    """

    event_id: str = Field(default_factory=generate_event_id)
    kind: EventKind
    occurred_at: datetime
    payload: dict[str, Any]

    model_config = {"frozen": True}

    @property
    def endpoint(self) -> str:
        return self.kind.endpoint

    @property
    def personal_number(self) -> str | None:
        """The person the event is about, for logging"""
        for key in ("certificate", "income"):
            if key in self.payload:
                return self.payload[key].get("personalNumber")
        return None


def certificate_granted(
    certificate: Certificate, correlation: CorrelationInfo, occurred_at: datetime
) -> LifecycleEvent:
    payload = CertificateGranted(
        certificate=certificate,
        last_one=correlation.last_one,
        start_time=correlation.start_time,
    ).model_dump(mode="json", by_alias=True)
    return LifecycleEvent(
        kind=EventKind.CERTIFICATE_GRANTED, occurred_at=occurred_at, payload=payload
    )


def certificate_unregistered(
    certificate: Certificate, occurred_at: datetime
) -> LifecycleEvent:
    payload = CertificateUnregistered(certificate=certificate).model_dump(
        mode="json", by_alias=True
    )
    return LifecycleEvent(
        kind=EventKind.CERTIFICATE_UNREGISTERED, occurred_at=occurred_at, payload=payload
    )


def certificate_invalid_reported(
    income: MonthlyIncomeEvent, occurred_at: datetime
) -> LifecycleEvent:
    payload = CertificateInvalidReported(income=income).model_dump(mode="json", by_alias=True)
    return LifecycleEvent(
        kind=EventKind.CERTIFICATE_INVALID_REPORTED,
        occurred_at=occurred_at,
        payload=payload,
    )

"""
Eligibility Evaluation - deciding who gets a certificate

A person qualifies when both five-year income totals are within the
policy limits. Qualifying creates the certificate and hands a
CertificateGranted event to the dispatcher. Asking again for someone
who already holds a certificate changes nothing.
"""

import threading
from dataclasses import dataclass
from enum import Enum

from iav_monitor.kernel.errors import CertificateAlreadyRegistered
from iav_monitor.kernel.logging import LogOperation, get_logger
from iav_monitor.kernel.metrics import eligibility_decisions_total
from iav_monitor.kernel.policy import MonitoringPolicy, default_monitoring_policy
from iav_monitor.kernel.time import TimeProvider, add_years, today
from iav_monitor.lifecycle.dispatch import DispatchTask, EventDispatcher
from iav_monitor.lifecycle.events import certificate_granted
from iav_monitor.registry.models import Certificate, CorrelationInfo, IncomeSnapshot
from iav_monitor.registry.ports import CertificateStore, PersonDirectory

logger = get_logger(__name__)


class EligibilityOutcome(str, Enum):
    GRANTED = "granted"
    NOT_ELIGIBLE = "not_eligible"
    ALREADY_REGISTERED = "already_registered"
    UNKNOWN_PERSON = "unknown_person"


@dataclass(frozen=True)
class EligibilityDecision:
    """
    Result of one eligibility check

    Attributes:
        outcome: What happened
        certificate: The new certificate (GRANTED) or the one already on
            file (ALREADY_REGISTERED)
        dispatch: Delivery task of the CertificateGranted event, if any
    """

    outcome: EligibilityOutcome
    certificate: Certificate | None = None
    dispatch: DispatchTask | None = None

    @property
    def eligible(self) -> bool:
        return self.outcome == EligibilityOutcome.GRANTED

    @property
    def already_registered(self) -> bool:
        return self.outcome == EligibilityOutcome.ALREADY_REGISTERED


class EligibilityEvaluator:
    """
    Grants certificates to persons within the income limits

    Decisions are serialized by a writer lock so two concurrent requests
    for the same person cannot both pass the "not yet registered" check.
    The store's uniqueness constraint backs this up across processes.
    """

    def __init__(
        self,
        store: CertificateStore,
        directory: PersonDirectory,
        dispatcher: EventDispatcher,
        time_provider: TimeProvider,
        policy: MonitoringPolicy | None = None,
    ) -> None:
        self.store = store
        self.directory = directory
        self.dispatcher = dispatcher
        self.time_provider = time_provider
        self.policy = policy or default_monitoring_policy
        self._lock = threading.Lock()

    def evaluate(
        self,
        personal_number: str,
        snapshot: IncomeSnapshot | None = None,
        correlation: CorrelationInfo | None = None,
    ) -> EligibilityDecision:
        """
        Evaluate one person and issue a certificate if they qualify

        Args:
            personal_number: Person to evaluate
            snapshot: Five-year income totals; looked up in the directory
                when omitted
            correlation: Metadata forwarded unchanged into CertificateGranted

        Returns:
            EligibilityDecision describing the outcome

        Raises:
            StoreError: If the certificate could not be persisted
        """
        correlation = correlation or CorrelationInfo()
        with self._lock, LogOperation(
            logger, "eligibility_check", personal_number=personal_number
        ):
            decision = self._decide(personal_number, snapshot, correlation)

        eligibility_decisions_total.labels(outcome=decision.outcome.value).inc()
        logger.info(
            "Eligibility decided",
            outcome=decision.outcome.value,
            certificate_id=decision.certificate.id if decision.certificate else None,
        )
        return decision

    def _decide(
        self,
        personal_number: str,
        snapshot: IncomeSnapshot | None,
        correlation: CorrelationInfo,
    ) -> EligibilityDecision:
        existing = self.store.get_certificate(personal_number)
        if existing is not None:
            return EligibilityDecision(
                EligibilityOutcome.ALREADY_REGISTERED, certificate=existing
            )

        if snapshot is None:
            snapshot = self.directory.lookup(personal_number)
            if snapshot is None:
                return EligibilityDecision(EligibilityOutcome.UNKNOWN_PERSON)

        if not self.policy.is_eligible(snapshot.salary_income, snapshot.capital_income):
            return EligibilityDecision(EligibilityOutcome.NOT_ELIGIBLE)

        issue_date = today(self.time_provider)
        try:
            certificate = self.store.insert_certificate(
                personal_number,
                issue_date,
                add_years(issue_date, self.policy.validity_years),
            )
        except CertificateAlreadyRegistered:
            # Another process registered the person between check and insert
            return EligibilityDecision(
                EligibilityOutcome.ALREADY_REGISTERED,
                certificate=self.store.get_certificate(personal_number),
            )

        event = certificate_granted(certificate, correlation, self.time_provider.now())
        task = self.dispatcher.dispatch(event)
        return EligibilityDecision(
            EligibilityOutcome.GRANTED, certificate=certificate, dispatch=task
        )

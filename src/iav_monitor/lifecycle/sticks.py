"""
Stick Control - the monitoring state machine

Every monthly income report for a certificate holder may earn a stick:
a minor one from 5000, a major one from 28000 (both at once for high
incomes). Three major or twenty-four minor sticks revoke the certificate.

States per person:
    UNMONITORED -> no certificate; income is reported as invalid
    MONITORED   -> certificate on file, sticks accumulating
    REVOKED     -> certificate and sticks just deleted (terminal for this
                   certificate; the next report starts over as UNMONITORED)

Fun fact: sticks never decay. A person who earned two major sticks in
their first year carries them for the whole validity period.
"""

from dataclasses import dataclass
from enum import Enum

from iav_monitor.kernel.errors import CertificateNotFound
from iav_monitor.kernel.logging import LogOperation, get_logger
from iav_monitor.kernel.metrics import (
    stick_control_duration_seconds,
    stick_transitions_total,
    track_duration,
)
from iav_monitor.kernel.policy import MonitoringPolicy, default_monitoring_policy
from iav_monitor.kernel.time import TimeProvider
from iav_monitor.lifecycle.dispatch import DispatchTask, EventDispatcher
from iav_monitor.lifecycle.events import (
    certificate_invalid_reported,
    certificate_unregistered,
)
from iav_monitor.registry.models import Certificate, MonthlyIncomeEvent, StickSet
from iav_monitor.registry.ports import CertificateStore

logger = get_logger(__name__)


class StickOutcome(str, Enum):
    UNMONITORED = "unmonitored"
    MONITORED = "monitored"
    REVOKED = "revoked"


@dataclass(frozen=True)
class StickResult:
    """
    Outcome of processing one income event

    Attributes:
        state: Resulting state for the person
        stick_set: Counters after the event (for REVOKED, the final counts
            that triggered revocation)
        certificate: The monitored certificate, or the revoked snapshot
        dispatch: Delivery task of the emitted event, if any
    """

    state: StickOutcome
    stick_set: StickSet | None = None
    certificate: Certificate | None = None
    dispatch: DispatchTask | None = None


class StickAccumulator:
    """Applies monthly income events to the certificate registry"""

    def __init__(
        self,
        store: CertificateStore,
        dispatcher: EventDispatcher,
        time_provider: TimeProvider,
        policy: MonitoringPolicy | None = None,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.time_provider = time_provider
        self.policy = policy or default_monitoring_policy

    @track_duration(stick_control_duration_seconds)
    def process(self, event: MonthlyIncomeEvent) -> StickResult:
        """
        Run stick control for one income event

        Args:
            event: The reported monthly income

        Returns:
            StickResult with the resulting state

        Raises:
            StoreError: If a stick set or revocation could not be persisted
        """
        with LogOperation(
            logger,
            "stick_control",
            personal_number=event.personal_number,
            employer_id=event.employer_id,
            year=event.year,
            month=event.month,
        ):
            result = self._transition(event)

        stick_transitions_total.labels(state=result.state.value).inc()
        return result

    def _transition(self, event: MonthlyIncomeEvent) -> StickResult:
        personal_number = event.personal_number
        certificate = self.store.get_certificate(personal_number)
        if certificate is None:
            return self._report_invalid(event)

        current = self.store.get_stick_set(personal_number) or StickSet.empty(
            personal_number
        )
        minor, major = self.policy.sticks_for(event.income)
        updated = StickSet(
            personal_number=personal_number,
            minor_sticks=current.minor_sticks + minor,
            major_sticks=current.major_sticks + major,
        )

        if self.policy.within_stick_limits(updated.minor_sticks, updated.major_sticks):
            try:
                self.store.save_stick_set(updated)
            except CertificateNotFound:
                # Certificate vanished between read and write
                return self._report_invalid(event)
            logger.debug(
                "Sticks updated",
                certificate_id=certificate.id,
                minor_sticks=updated.minor_sticks,
                major_sticks=updated.major_sticks,
            )
            return StickResult(
                StickOutcome.MONITORED, stick_set=updated, certificate=certificate
            )

        try:
            revoked = self.store.revoke_certificate(personal_number)
        except CertificateNotFound:
            return self._report_invalid(event)

        logger.info(
            "Certificate revoked",
            certificate_id=revoked.id,
            minor_sticks=updated.minor_sticks,
            major_sticks=updated.major_sticks,
        )
        task = self.dispatcher.dispatch(
            certificate_unregistered(revoked, self.time_provider.now())
        )
        return StickResult(
            StickOutcome.REVOKED, stick_set=updated, certificate=revoked, dispatch=task
        )

    def _report_invalid(self, event: MonthlyIncomeEvent) -> StickResult:
        logger.warning(
            "Income reported for person without certificate",
            employer_id=event.employer_id,
            claimed_certificate_id=event.certificate_id,
        )
        task = self.dispatcher.dispatch(
            certificate_invalid_reported(event, self.time_provider.now())
        )
        return StickResult(StickOutcome.UNMONITORED, dispatch=task)

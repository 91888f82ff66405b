"""
Kernel - Shared infrastructure for the IAV monitor

Errors, structured logging, metrics, retry policies, configuration and
time/ID providers used by every lifecycle component.
"""

from iav_monitor.kernel.errors import (
    CertificateAlreadyRegistered,
    CertificateNotFound,
    DeliveryAbandoned,
    DeliveryError,
    IAVError,
    StoreError,
    TransientDeliveryFailure,
    UnknownEndpoint,
)
from iav_monitor.kernel.ids import generate_event_id
from iav_monitor.kernel.policy import (
    DispatchPolicy,
    Endpoint,
    MonitoringPolicy,
    RetryPolicy,
    ServiceSettings,
)
from iav_monitor.kernel.time import FrozenTimeProvider, RealTimeProvider, TimeProvider

__all__ = [
    # IDs & time
    "generate_event_id",
    "TimeProvider",
    "RealTimeProvider",
    "FrozenTimeProvider",
    # Policy
    "MonitoringPolicy",
    "RetryPolicy",
    "Endpoint",
    "DispatchPolicy",
    "ServiceSettings",
    # Errors
    "IAVError",
    "StoreError",
    "CertificateAlreadyRegistered",
    "CertificateNotFound",
    "DeliveryError",
    "TransientDeliveryFailure",
    "DeliveryAbandoned",
    "UnknownEndpoint",
]

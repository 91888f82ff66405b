"""
Custom exceptions for the IAV monitor

Decision-level conditions (not eligible, already registered, no certificate
on file) are resolved where they occur and never escape the component that
detects them. Persistence failures propagate. Delivery failures are absorbed
by the dispatcher's retry loop.

Fun fact: "IAV" certificates were designed around a five-year income
window - the same horizon most tax authorities keep records for.
"""


class IAVError(Exception):
    """Base exception for all IAV monitor errors"""

    pass


# Persistence


class StoreError(IAVError):
    """
    Raised when the certificate store cannot complete an operation

    Treated as a defect: the enclosing transition is aborted and the
    error propagates to the caller.
    """

    pass


class CertificateAlreadyRegistered(StoreError):
    """Raised when inserting a second certificate for the same personal number"""

    def __init__(self, personal_number: str) -> None:
        self.personal_number = personal_number
        super().__init__(
            f"Person {personal_number} already holds an active certificate"
        )


class CertificateNotFound(StoreError):
    """Raised when an operation needs a certificate that is not on file"""

    def __init__(self, personal_number: str) -> None:
        self.personal_number = personal_number
        super().__init__(f"No active certificate for person {personal_number}")


# Delivery


class DeliveryError(IAVError):
    """Raised when an event cannot be delivered and retrying will not help"""

    def __init__(self, endpoint: str, message: str) -> None:
        self.endpoint = endpoint
        super().__init__(f"Delivery to {endpoint} failed: {message}")


class TransientDeliveryFailure(DeliveryError):
    """
    Raised when the remote endpoint is not reachable yet

    The listener may not be bound yet or the connection was refused.
    The dispatcher retries these.
    """

    pass


class DeliveryAbandoned(DeliveryError):
    """Raised when a bounded retry policy gives up on an event"""

    def __init__(self, endpoint: str, event_id: str, attempts: int) -> None:
        self.event_id = event_id
        self.attempts = attempts
        super().__init__(
            endpoint, f"event {event_id} abandoned after {attempts} attempts"
        )


class UnknownEndpoint(IAVError):
    """Raised when dispatching to an endpoint name with no configuration"""

    def __init__(self, endpoint: str) -> None:
        self.endpoint = endpoint
        super().__init__(f"Endpoint {endpoint} is not configured")

"""
Event Sinks - the last hop of a lifecycle notification

A sink delivers one event to one endpoint. It returns on success and
raises TransientDeliveryFailure when the endpoint is not reachable yet
(listener not bound, connection refused, service starting up). Other
failures raise DeliveryError and are not retried.
"""

import threading
from typing import Protocol

import httpx

from iav_monitor.kernel.errors import DeliveryError, TransientDeliveryFailure
from iav_monitor.kernel.logging import get_logger
from iav_monitor.kernel.policy import Endpoint
from iav_monitor.lifecycle.events import LifecycleEvent

logger = get_logger(__name__)

# Status codes meaning "not ready yet, try again"
TRANSIENT_STATUS_CODES = frozenset({502, 503, 504})


class EventSink(Protocol):
    """Delivers a lifecycle event to a named endpoint"""

    def send(self, endpoint: Endpoint, event: LifecycleEvent) -> None:
        ...


class HttpEventSink:
    """
    Sink POSTing event payloads as JSON with httpx

    The event id and type travel as headers so the receiver can
    deduplicate redelivered events without parsing the body.
    """

    def __init__(
        self, timeout: float = 10.0, transport: httpx.BaseTransport | None = None
    ) -> None:
        """
        Args:
            timeout: Per-request timeout in seconds
            transport: Custom httpx transport (e.g. httpx.MockTransport in tests)
        """
        self.timeout = timeout
        self.transport = transport
        self._client: httpx.Client | None = None
        self._lock = threading.Lock()

    def _get_client(self) -> httpx.Client:
        """Get or create the shared HTTP client."""
        with self._lock:
            if self._client is None or self._client.is_closed:
                self._client = httpx.Client(
                    timeout=self.timeout,
                    transport=self.transport,
                    headers={"Accept": "application/json"},
                )
            return self._client

    def close(self) -> None:
        """Close the HTTP client."""
        with self._lock:
            if self._client and not self._client.is_closed:
                self._client.close()

    def send(self, endpoint: Endpoint, event: LifecycleEvent) -> None:
        """
        POST the event payload to the endpoint URL

        Raises:
            TransientDeliveryFailure: Connection refused/timed out or 502-504
            DeliveryError: Any other HTTP error response or protocol failure
        """
        client = self._get_client()
        try:
            response = client.post(
                endpoint.url,
                json=event.payload,
                headers={
                    "X-Event-Id": event.event_id,
                    "X-Event-Type": event.kind.value,
                },
            )
        except (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout) as e:
            raise TransientDeliveryFailure(endpoint.name, str(e)) from e
        except httpx.HTTPError as e:
            raise DeliveryError(endpoint.name, str(e)) from e

        if response.status_code in TRANSIENT_STATUS_CODES:
            raise TransientDeliveryFailure(
                endpoint.name, f"HTTP {response.status_code}"
            )
        if response.status_code >= 400:
            raise DeliveryError(
                endpoint.name, f"HTTP {response.status_code}: {response.text[:200]}"
            )

        logger.debug(
            "Event delivered",
            endpoint=endpoint.name,
            event_id=event.event_id,
            status_code=response.status_code,
        )

"""
Lifecycle Module - Certificate issuing, monitoring and notification

- Eligibility evaluation (who gets a certificate)
- Stick control (who keeps it)
- Income ingest (queue + single consumer per partition)
- Supervised, retrying event dispatch to downstream services
"""

from iav_monitor.lifecycle.dispatch import DispatchStatus, DispatchTask, EventDispatcher
from iav_monitor.lifecycle.eligibility import (
    EligibilityDecision,
    EligibilityEvaluator,
    EligibilityOutcome,
)
from iav_monitor.lifecycle.events import EventKind, LifecycleEvent
from iav_monitor.lifecycle.ingest import IngestQueue, MonitoringWorker
from iav_monitor.lifecycle.sinks import EventSink, HttpEventSink
from iav_monitor.lifecycle.sticks import StickAccumulator, StickOutcome, StickResult

__all__ = [
    "DispatchStatus",
    "DispatchTask",
    "EventDispatcher",
    "EligibilityDecision",
    "EligibilityEvaluator",
    "EligibilityOutcome",
    "EventKind",
    "LifecycleEvent",
    "IngestQueue",
    "MonitoringWorker",
    "EventSink",
    "HttpEventSink",
    "StickAccumulator",
    "StickOutcome",
    "StickResult",
]

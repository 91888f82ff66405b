"""
Registry Module - Persisted state of the IAV monitor

- Certificates (one per personal number)
- Stick sets (strike counters, co-owned with a certificate)
- Five-year income snapshots (the person directory)
"""

from iav_monitor.registry.directory import SQLitePersonDirectory
from iav_monitor.registry.models import (
    Certificate,
    CorrelationInfo,
    IncomeSnapshot,
    MonthlyIncomeEvent,
    StickSet,
)
from iav_monitor.registry.store import SQLiteCertificateStore

__all__ = [
    "Certificate",
    "CorrelationInfo",
    "IncomeSnapshot",
    "MonthlyIncomeEvent",
    "StickSet",
    "SQLiteCertificateStore",
    "SQLitePersonDirectory",
]

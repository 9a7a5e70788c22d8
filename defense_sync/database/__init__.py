"""
Persistence layer for the sync engine
"""

from .connection import Database
from .models import (
    Base,
    Chargeback,
    EvidenceDocument,
    FolioLineItemRecord,
    Integration,
    Reservation,
    ReservationMatch,
    SyncLog,
    TimelineEvent,
)

__all__ = [
    "Base",
    "Chargeback",
    "Database",
    "EvidenceDocument",
    "FolioLineItemRecord",
    "Integration",
    "Reservation",
    "ReservationMatch",
    "SyncLog",
    "TimelineEvent",
]

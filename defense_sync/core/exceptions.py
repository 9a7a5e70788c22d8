"""
Core exceptions for the Chargeback Defense sync engine

Adapter-level failures use the taxonomy in pms_connectors.errors; this module
covers the engine's own state and lookup errors.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional


class DefenseSyncError(Exception):
    """Base exception for all sync engine errors"""

    def __init__(self, message: str, error_code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}


class IntegrationNotFoundError(DefenseSyncError):
    """No integration with the given id"""

    def __init__(self, integration_id: str):
        super().__init__(f"Integration {integration_id} not found", details={"integration_id": integration_id})
        self.integration_id = integration_id


class InvalidStateTransitionError(DefenseSyncError):
    """Integration lifecycle transition not allowed from the current state"""

    def __init__(self, integration_id: str, current: str, target: str):
        super().__init__(
            f"Integration {integration_id} cannot move from {current} to {target}",
            details={"integration_id": integration_id, "current": current, "target": target},
        )
        self.current = current
        self.target = target


class IntegrationNotConnectedError(DefenseSyncError):
    """Operation needs a connected integration"""

    def __init__(self, integration_id: str, status: str):
        super().__init__(
            f"Integration {integration_id} is {status}, not connected",
            details={"integration_id": integration_id, "status": status},
        )
        self.status = status


class TwoWaySyncDisabledError(DefenseSyncError):
    """Outbound push requested for an integration without two-way sync"""

    def __init__(self, integration_id: str):
        super().__init__(
            f"Integration {integration_id} does not have two-way sync enabled",
            details={"integration_id": integration_id},
        )


class InvalidSyncIntervalError(DefenseSyncError):
    """Sync interval outside the supported tiers"""

    pass


class ChargebackNotFoundError(DefenseSyncError):
    """No chargeback with the given id"""

    def __init__(self, chargeback_id: str):
        super().__init__(f"Chargeback {chargeback_id} not found", details={"chargeback_id": chargeback_id})


class ReservationNotFoundError(DefenseSyncError):
    """No stored reservation with the given id"""

    def __init__(self, reservation_id: str):
        super().__init__(f"Reservation {reservation_id} not found", details={"reservation_id": reservation_id})


class EvidenceDocumentNotFoundError(DefenseSyncError):
    pass


class MatchNotFoundError(DefenseSyncError):
    """
    Chargeback has no active reservation match.

    Absence of a match is a valid outcome; this is raised only where a caller
    needs a linked reservation to continue.
    """

    def __init__(self, chargeback_id: str):
        super().__init__(
            f"Chargeback {chargeback_id} is not linked to a reservation", details={"chargeback_id": chargeback_id}
        )


class PartialEvidenceCollectionError(DefenseSyncError):
    """Informational: some evidence types could not be collected"""

    def __init__(self, case_id: str, missing: List[str], failed: Dict[str, str]):
        super().__init__(
            f"Evidence for case {case_id} is incomplete: "
            f"{len(missing)} unavailable, {len(failed)} failed",
            details={"case_id": case_id, "missing": missing, "failed": failed},
        )
        self.missing = missing
        self.failed = failed


class SyncLogFinalizedError(DefenseSyncError):
    """Sync logs are append-only once finalized"""

    def __init__(self, log_id: str, completed_at: Optional[datetime] = None):
        super().__init__(
            f"Sync log {log_id} was already finalized",
            details={"log_id": log_id, "completed_at": completed_at.isoformat() if completed_at else None},
        )


class FolioBalanceMismatchError(DefenseSyncError):
    """Folio line items do not add up to the vendor's reported balance"""

    def __init__(self, reservation_external_id: str, expected: Decimal, actual: Decimal):
        super().__init__(
            f"Folio for reservation {reservation_external_id} does not reconcile: "
            f"reported {expected}, computed {actual}",
            details={"expected": str(expected), "actual": str(actual)},
        )
        self.expected = expected
        self.actual = actual

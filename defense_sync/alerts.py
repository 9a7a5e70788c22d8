"""
Chargeback alert intake

Alerts from PMS webhooks and dispute networks open or refresh a case,
leave an entry on its timeline and run reservation matching.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from pms_connectors.contracts import ChargebackAlert, DisputeStatus
from pms_connectors.utils.logging import get_safe_logger

from .database.connection import Database
from .database.models import Chargeback, ReservationMatch
from .database.repository import ChargebackRepository, TimelineRepository
from .matching import MatchingService
from .metrics import chargeback_alerts_total

logger = get_safe_logger("defense_sync.alerts")


@dataclass
class AlertIntakeResult:
    chargeback: Chargeback
    created: bool
    match: Optional[ReservationMatch]


class ChargebackAlertIntake:
    """Turns a ChargebackAlert into a matched case"""

    def __init__(self, database: Database, matching: Optional[MatchingService] = None):
        self.database = database
        self.matching = matching or MatchingService(database)

    async def receive(self, property_id: str, alert: ChargebackAlert) -> AlertIntakeResult:
        async with self.database.session() as session:
            chargeback, created = await ChargebackRepository(session).upsert_alert(property_id, alert)
            # A pending alert leaves the case status alone
            if alert.status != DisputeStatus.PENDING:
                chargeback.status = alert.status.value
            action = "opened" if created else "updated"
            await TimelineRepository(session).append(
                chargeback.id,
                "chargeback_alert",
                f"Chargeback alert from {alert.source} {action} case {alert.alert_id}",
                _alert_details(alert),
            )

        chargeback_alerts_total.labels(source=alert.source, outcome=action).inc()
        match = await self.matching.match_reservation(chargeback.id)
        logger.info(
            "chargeback_alert_received",
            chargeback_id=chargeback.id,
            source=alert.source,
            external_case_id=alert.alert_id,
            created=created,
            reservation_id=match.reservation_id if match else None,
        )
        return AlertIntakeResult(chargeback=chargeback, created=created, match=match)


def _alert_details(alert: ChargebackAlert) -> Dict[str, Any]:
    details: Dict[str, Any] = {
        "source": alert.source,
        "external_case_id": alert.alert_id,
        "status": alert.status.value,
        "pre_chargeback": alert.pre_chargeback,
    }
    if alert.amount is not None:
        details["amount"] = str(alert.amount)
    if alert.reason_code:
        details["reason_code"] = alert.reason_code
    if alert.reservation_external_id:
        details["reservation_external_id"] = alert.reservation_external_id
    return details

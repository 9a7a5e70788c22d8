"""
Integration health derived from sync logs
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Sequence

from ..database.models import SyncLog


@dataclass
class IntegrationHealth:
    integration_id: str
    success_rate: Optional[float]
    syncs_last_24h: int
    failures_last_24h: int
    consecutive_failures: int
    last_sync: Optional[Dict[str, Any]]
    window_hours: int = 24

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success_rate": self.success_rate,
            "syncs_last_24h": self.syncs_last_24h,
            "failures_last_24h": self.failures_last_24h,
            "consecutive_failures": self.consecutive_failures,
            "last_sync": self.last_sync,
            "window_hours": self.window_hours,
        }


def consecutive_failures(finalized_newest_first: Iterable[SyncLog]) -> int:
    """Leading run of failed logs, newest first"""
    count = 0
    for log in finalized_newest_first:
        if log.status != "failed":
            break
        count += 1
    return count


def compute_health(
    integration_id: str,
    window_logs: Sequence[SyncLog],
    latest: Optional[SyncLog],
    consecutive: int,
    window_hours: int = 24,
) -> IntegrationHealth:
    """
    Success rate is completed / (completed + failed) over the window.

    Partial runs count toward the sync total but not the rate; with no
    completed or failed runs the rate is None.
    """
    completed = sum(1 for log in window_logs if log.status == "completed")
    failed = sum(1 for log in window_logs if log.status == "failed")
    rate = round(completed / (completed + failed), 4) if completed + failed else None
    return IntegrationHealth(
        integration_id=integration_id,
        success_rate=rate,
        syncs_last_24h=len(window_logs),
        failures_last_24h=failed,
        consecutive_failures=consecutive,
        last_sync=latest.to_dict() if latest is not None else None,
        window_hours=window_hours,
    )

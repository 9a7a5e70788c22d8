"""
Sync orchestration: lifecycle state, per-integration job queue, scheduling and health
"""

from .health import IntegrationHealth, compute_health, consecutive_failures
from .job_queue import IntegrationJobQueue, JobPriority, SyncJob
from .orchestrator import SyncOrchestrator
from .scheduler import SyncScheduler
from .state import IntegrationState, IntegrationStateMachine

__all__ = [
    "IntegrationHealth",
    "IntegrationJobQueue",
    "IntegrationState",
    "IntegrationStateMachine",
    "JobPriority",
    "SyncJob",
    "SyncOrchestrator",
    "SyncScheduler",
    "compute_health",
    "consecutive_failures",
]

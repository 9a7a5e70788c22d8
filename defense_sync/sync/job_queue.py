"""
Per-integration job queue

Each integration has a FIFO with a priority lane in front of it and at most
one drain task, so its jobs run strictly one after another. Drain tasks for
different integrations run in parallel, bounded by a shared semaphore.
"""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Tuple
from uuid import uuid4

from pms_connectors.utils.logging import get_safe_logger

from ..metrics import sync_queue_depth

logger = get_safe_logger("defense_sync.sync.job_queue")


class JobPriority(IntEnum):
    HIGH = 0  # webhooks and manual triggers
    NORMAL = 1  # scheduled polls and outbound pushes


@dataclass
class SyncJob:
    integration_id: str
    sync_log_id: str
    direction: str = "inbound"
    sync_type: str = "incremental"
    entity_type: str = "reservation"
    trigger: str = "manual"
    priority: JobPriority = JobPriority.NORMAL
    payload: Dict[str, Any] = field(default_factory=dict)
    job_id: str = field(default_factory=lambda: str(uuid4()))
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class QueueStats:
    completed: int = 0
    crashed: int = 0
    cancelled: int = 0
    coalesced: int = 0


JobRunner = Callable[[SyncJob], Awaitable[None]]


class IntegrationJobQueue:
    """FIFO per integration with a priority lane and a bounded worker pool"""

    def __init__(self, runner: JobRunner, max_workers: int = 8):
        self._runner = runner
        self._semaphore = asyncio.Semaphore(max_workers)
        self._lanes: Dict[str, Dict[JobPriority, Deque[SyncJob]]] = {}
        self._drainers: Dict[str, asyncio.Task] = {}
        self._running: Dict[str, Tuple[SyncJob, asyncio.Task]] = {}
        self._stats: Dict[str, QueueStats] = {}
        self._closed = False

    def _lanes_for(self, integration_id: str) -> Dict[JobPriority, Deque[SyncJob]]:
        if integration_id not in self._lanes:
            self._lanes[integration_id] = {JobPriority.HIGH: deque(), JobPriority.NORMAL: deque()}
        return self._lanes[integration_id]

    def _stats_for(self, integration_id: str) -> QueueStats:
        return self._stats.setdefault(integration_id, QueueStats())

    def _update_depth(self) -> None:
        for priority, lane in ((JobPriority.HIGH, "priority"), (JobPriority.NORMAL, "normal")):
            sync_queue_depth.labels(lane=lane).set(sum(len(lanes[priority]) for lanes in self._lanes.values()))

    def enqueue(self, job: SyncJob) -> None:
        if self._closed:
            raise RuntimeError("job queue is shut down")
        self._lanes_for(job.integration_id)[job.priority].append(job)
        self._update_depth()
        drainer = self._drainers.get(job.integration_id)
        if drainer is None or drainer.done():
            self._drainers[job.integration_id] = asyncio.create_task(
                self._drain(job.integration_id), name=f"sync-drain-{job.integration_id}"
            )
        logger.debug(
            "sync_job_enqueued",
            integration_id=job.integration_id,
            job_id=job.job_id,
            priority=job.priority.name,
            trigger=job.trigger,
        )

    def has_pending_poll(self, integration_id: str) -> bool:
        """A scheduled poll is already waiting; a new one would only repeat it"""
        lanes = self._lanes.get(integration_id)
        if not lanes:
            return False
        return any(job.trigger == "scheduled" for job in lanes[JobPriority.NORMAL])

    def note_coalesced(self, integration_id: str) -> None:
        self._stats_for(integration_id).coalesced += 1

    def pending(self, integration_id: str) -> int:
        lanes = self._lanes.get(integration_id)
        if not lanes:
            return 0
        return len(lanes[JobPriority.HIGH]) + len(lanes[JobPriority.NORMAL])

    def running_job(self, integration_id: str) -> Optional[SyncJob]:
        running = self._running.get(integration_id)
        return running[0] if running else None

    def _next(self, integration_id: str) -> Optional[SyncJob]:
        lanes = self._lanes.get(integration_id)
        if not lanes:
            return None
        for priority in (JobPriority.HIGH, JobPriority.NORMAL):
            if lanes[priority]:
                return lanes[priority].popleft()
        return None

    async def _drain(self, integration_id: str) -> None:
        while True:
            async with self._semaphore:
                job = self._next(integration_id)
                if job is None:
                    break
                self._update_depth()
                task = asyncio.create_task(self._runner(job), name=f"sync-job-{job.job_id}")
                self._running[integration_id] = (job, task)
                try:
                    await asyncio.wait({task})
                finally:
                    self._running.pop(integration_id, None)
            self._record(job, task)
        if self._drainers.get(integration_id) is asyncio.current_task():
            del self._drainers[integration_id]

    def _record(self, job: SyncJob, task: asyncio.Task) -> None:
        stats = self._stats_for(job.integration_id)
        if task.cancelled():
            stats.cancelled += 1
            return
        error = task.exception()
        if error is not None:
            stats.crashed += 1
            logger.error(
                "sync_job_crashed",
                integration_id=job.integration_id,
                job_id=job.job_id,
                error=str(error),
                error_type=type(error).__name__,
            )
            return
        stats.completed += 1

    def drop_pending(self, integration_id: str) -> List[SyncJob]:
        """Remove queued jobs that have not started"""
        lanes = self._lanes.pop(integration_id, None)
        self._update_depth()
        if not lanes:
            return []
        return list(lanes[JobPriority.HIGH]) + list(lanes[JobPriority.NORMAL])

    def cancel_integration(
        self, integration_id: str
    ) -> Tuple[List[SyncJob], Optional[SyncJob], Optional[asyncio.Task]]:
        """
        Drop queued jobs and cancel the running one.

        Returns the dropped jobs, the running job and its cancelled task,
        which the caller should await so the job can record its cancellation.
        """
        dropped = self.drop_pending(integration_id)
        running = self._running.get(integration_id)
        job, task = running if running is not None else (None, None)
        if task is not None:
            task.cancel()
        if dropped or task is not None:
            logger.info(
                "sync_jobs_cancelled",
                integration_id=integration_id,
                dropped=len(dropped),
                running_cancelled=task is not None,
            )
        return dropped, job, task

    async def join(self, integration_id: Optional[str] = None) -> None:
        """Wait until the queue (or one integration's queue) is empty and idle"""
        while True:
            if integration_id is None:
                tasks = list(self._drainers.values())
            else:
                tasks = [self._drainers[integration_id]] if integration_id in self._drainers else []
            tasks = [task for task in tasks if not task.done()]
            if not tasks:
                return
            await asyncio.wait(tasks)

    def stats(self, integration_id: Optional[str] = None) -> Dict[str, Dict[str, Any]]:
        ids = [integration_id] if integration_id else sorted(set(self._lanes) | set(self._stats) | set(self._running))
        result = {}
        for key in ids:
            lanes = self._lanes.get(key)
            stats = self._stats_for(key)
            running = self.running_job(key)
            result[key] = {
                "pending_priority": len(lanes[JobPriority.HIGH]) if lanes else 0,
                "pending_normal": len(lanes[JobPriority.NORMAL]) if lanes else 0,
                "running": running.job_id if running else None,
                "completed": stats.completed,
                "crashed": stats.crashed,
                "cancelled": stats.cancelled,
                "coalesced": stats.coalesced,
            }
        return result

    async def shutdown(self) -> List[SyncJob]:
        """Cancel everything; returns every job that was queued or running"""
        self._closed = True
        affected: List[SyncJob] = []
        tasks = []
        for integration_id in list(set(self._lanes) | set(self._running)):
            dropped, job, task = self.cancel_integration(integration_id)
            affected.extend(dropped)
            if job is not None:
                affected.append(job)
                tasks.append(task)
        if tasks:
            await asyncio.wait(tasks)
        drainers = [task for task in self._drainers.values() if not task.done()]
        if drainers:
            await asyncio.wait(drainers)
        return affected

"""
Polling scheduler: one asyncio task per scheduled integration
"""

import asyncio
from typing import Awaitable, Callable, Dict, Optional

from pms_connectors.utils.logging import get_safe_logger

logger = get_safe_logger("defense_sync.sync.scheduler")

Tick = Callable[[str], Awaitable[None]]


class SyncScheduler:
    """Fires ``on_tick(integration_id)`` every interval until unscheduled"""

    def __init__(self, on_tick: Tick, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self._on_tick = on_tick
        self._sleep = sleep
        self._tasks: Dict[str, asyncio.Task] = {}
        self._intervals: Dict[str, int] = {}

    def schedule(self, integration_id: str, interval_minutes: int, initial_delay: Optional[float] = None) -> None:
        """(Re)schedule polling; an existing loop for the integration is replaced"""
        self.unschedule(integration_id)
        self._intervals[integration_id] = interval_minutes
        self._tasks[integration_id] = asyncio.create_task(
            self._loop(integration_id, interval_minutes * 60, initial_delay),
            name=f"sync-schedule-{integration_id}",
        )
        logger.info("sync_scheduled", integration_id=integration_id, interval_minutes=interval_minutes)

    def unschedule(self, integration_id: str) -> bool:
        task = self._tasks.pop(integration_id, None)
        self._intervals.pop(integration_id, None)
        if task is None:
            return False
        task.cancel()
        logger.info("sync_unscheduled", integration_id=integration_id)
        return True

    def is_scheduled(self, integration_id: str) -> bool:
        task = self._tasks.get(integration_id)
        return task is not None and not task.done()

    def interval_for(self, integration_id: str) -> Optional[int]:
        return self._intervals.get(integration_id)

    async def _loop(self, integration_id: str, interval_seconds: float, initial_delay: Optional[float]) -> None:
        await self._sleep(interval_seconds if initial_delay is None else initial_delay)
        while True:
            try:
                await self._on_tick(integration_id)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # One bad tick must not stop polling
                logger.error("scheduled_sync_failed", integration_id=integration_id, error=str(e), error_type=type(e).__name__)
            await self._sleep(interval_seconds)

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for integration_id in list(self._tasks):
            self.unschedule(integration_id)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

"""
Tests for lifecycle state, polling schedule and health metrics
"""

import asyncio

import pytest

from defense_sync.core.exceptions import InvalidStateTransitionError
from defense_sync.database.models import SyncLog
from defense_sync.sync.health import compute_health, consecutive_failures
from defense_sync.sync.scheduler import SyncScheduler
from defense_sync.sync.state import IntegrationState, IntegrationStateMachine, persisted_status


class TestStateMachine:
    def test_happy_path(self):
        states = IntegrationStateMachine()
        assert states.get("int-1") == IntegrationState.DISCONNECTED

        for target in (
            IntegrationState.CONNECTING,
            IntegrationState.CONNECTED,
            IntegrationState.IDLE,
            IntegrationState.SYNCING,
            IntegrationState.IDLE,
        ):
            states.transition("int-1", target)

        assert states.is_active("int-1")
        assert states.snapshot() == {"int-1": "idle"}

    @pytest.mark.parametrize(
        "path",
        [
            [IntegrationState.SYNCING],
            [IntegrationState.CONNECTING, IntegrationState.SYNCING],
            [IntegrationState.CONNECTING, IntegrationState.ERROR, IntegrationState.IDLE],
        ],
    )
    def test_illegal_transitions(self, path):
        states = IntegrationStateMachine()
        *allowed, illegal = path
        for target in allowed:
            states.transition("int-1", target)

        with pytest.raises(InvalidStateTransitionError):
            states.transition("int-1", illegal)
        assert states.get("int-1") == (allowed[-1] if allowed else IntegrationState.DISCONNECTED)

    def test_error_recovers_only_through_connecting(self):
        states = IntegrationStateMachine()
        states.restore("int-1", "error")

        assert not states.is_active("int-1")
        states.ensure_can("int-1", IntegrationState.CONNECTING)
        with pytest.raises(InvalidStateTransitionError):
            states.ensure_can("int-1", IntegrationState.CONNECTED)

    def test_restore_and_persisted_projection(self):
        states = IntegrationStateMachine()
        assert states.restore("a", "connected") == IntegrationState.IDLE
        assert states.restore("b", "disconnected") == IntegrationState.DISCONNECTED
        assert persisted_status(IntegrationState.SYNCING) == "connected"
        assert persisted_status(IntegrationState.ERROR) == "error"
        with pytest.raises(ValueError):
            persisted_status(IntegrationState.CONNECTING)


class TestScheduler:
    @pytest.mark.asyncio
    async def test_ticks_every_interval_until_unscheduled(self):
        sleeps = []
        ticks = []

        async def fake_sleep(seconds: float) -> None:
            sleeps.append(seconds)
            await asyncio.sleep(0)

        async def on_tick(integration_id: str) -> None:
            ticks.append(integration_id)
            if len(ticks) == 2:
                raise RuntimeError("vendor down")

        scheduler = SyncScheduler(on_tick, sleep=fake_sleep)
        scheduler.schedule("int-1", 15, initial_delay=0)
        for _ in range(50):
            if len(ticks) >= 3:
                break
            await asyncio.sleep(0)

        assert scheduler.is_scheduled("int-1")
        assert scheduler.interval_for("int-1") == 15
        assert scheduler.unschedule("int-1") is True
        await asyncio.sleep(0)
        assert not scheduler.is_scheduled("int-1")
        assert len(ticks) >= 3
        assert sleeps[0] == 0
        assert set(sleeps[1:]) == {900}
        assert scheduler.unschedule("int-1") is False

    @pytest.mark.asyncio
    async def test_reschedule_replaces_loop_and_shutdown_stops_all(self):
        async def on_tick(integration_id: str) -> None:
            return None

        scheduler = SyncScheduler(on_tick)
        scheduler.schedule("int-1", 60)
        scheduler.schedule("int-1", 5)
        scheduler.schedule("int-2", 30)

        assert scheduler.interval_for("int-1") == 5
        await scheduler.shutdown()
        assert not scheduler.is_scheduled("int-1")
        assert not scheduler.is_scheduled("int-2")


def log(status: str) -> SyncLog:
    return SyncLog(integration_id="int-1", direction="inbound", sync_type="incremental", status=status)


class TestHealth:
    def test_success_rate_ignores_partial_runs(self):
        logs = [log("completed"), log("completed"), log("completed"), log("failed"), log("partial")]

        health = compute_health("int-1", logs, None, consecutive=1)

        assert health.success_rate == 0.75
        assert health.syncs_last_24h == 5
        assert health.failures_last_24h == 1
        assert health.to_dict()["last_sync"] is None

    def test_no_finished_runs_has_no_rate(self):
        assert compute_health("int-1", [log("partial")], None, consecutive=0).success_rate is None
        assert compute_health("int-1", [], None, consecutive=0).syncs_last_24h == 0

    def test_consecutive_failures_counts_leading_run(self):
        assert consecutive_failures([log("failed"), log("failed"), log("completed"), log("failed")]) == 2
        assert consecutive_failures([log("partial"), log("failed")]) == 0
        assert consecutive_failures([]) == 0

"""
Integration lifecycle state machine

disconnected -> connecting -> connected -> (syncing <-> idle), any -> error.
error and disconnected go back to connecting on reconnect. Only the
connected/error/disconnected projection is persisted.
"""

from enum import Enum
from typing import Dict, FrozenSet

from pms_connectors.utils.logging import get_safe_logger

from ..core.exceptions import InvalidStateTransitionError

logger = get_safe_logger("defense_sync.sync.state")


class IntegrationState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    SYNCING = "syncing"
    IDLE = "idle"
    ERROR = "error"


ALLOWED_TRANSITIONS: Dict[IntegrationState, FrozenSet[IntegrationState]] = {
    IntegrationState.DISCONNECTED: frozenset({IntegrationState.CONNECTING}),
    IntegrationState.CONNECTING: frozenset(
        {IntegrationState.CONNECTED, IntegrationState.ERROR, IntegrationState.DISCONNECTED}
    ),
    IntegrationState.CONNECTED: frozenset(
        {
            IntegrationState.SYNCING,
            IntegrationState.IDLE,
            IntegrationState.ERROR,
            IntegrationState.CONNECTING,
            IntegrationState.DISCONNECTED,
        }
    ),
    IntegrationState.SYNCING: frozenset(
        {IntegrationState.IDLE, IntegrationState.ERROR, IntegrationState.DISCONNECTED}
    ),
    IntegrationState.IDLE: frozenset(
        {
            IntegrationState.SYNCING,
            IntegrationState.ERROR,
            IntegrationState.CONNECTING,
            IntegrationState.DISCONNECTED,
        }
    ),
    IntegrationState.ERROR: frozenset({IntegrationState.CONNECTING, IntegrationState.DISCONNECTED}),
}

# States in which jobs may be queued and run
ACTIVE_STATES = frozenset({IntegrationState.CONNECTED, IntegrationState.SYNCING, IntegrationState.IDLE})

_PERSISTED = {
    IntegrationState.CONNECTED: "connected",
    IntegrationState.SYNCING: "connected",
    IntegrationState.IDLE: "connected",
    IntegrationState.ERROR: "error",
    IntegrationState.DISCONNECTED: "disconnected",
}


def persisted_status(state: IntegrationState) -> str:
    """Status stored on the integration row; connecting keeps the previous value"""
    if state not in _PERSISTED:
        raise ValueError(f"{state.value} is not persisted")
    return _PERSISTED[state]


class IntegrationStateMachine:
    """In-memory lifecycle state per integration id"""

    def __init__(self):
        self._states: Dict[str, IntegrationState] = {}

    def get(self, integration_id: str) -> IntegrationState:
        return self._states.get(integration_id, IntegrationState.DISCONNECTED)

    def is_active(self, integration_id: str) -> bool:
        return self.get(integration_id) in ACTIVE_STATES

    def restore(self, integration_id: str, status: str) -> IntegrationState:
        """Seed state from a persisted status at startup"""
        state = {
            "connected": IntegrationState.IDLE,
            "error": IntegrationState.ERROR,
        }.get(status, IntegrationState.DISCONNECTED)
        self._states[integration_id] = state
        return state

    def ensure_can(self, integration_id: str, target: IntegrationState) -> None:
        current = self.get(integration_id)
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidStateTransitionError(integration_id, current.value, target.value)

    def transition(self, integration_id: str, target: IntegrationState) -> IntegrationState:
        current = self.get(integration_id)
        self.ensure_can(integration_id, target)
        self._states[integration_id] = target
        logger.debug("integration_state_changed", integration_id=integration_id, previous=current.value, state=target.value)
        return target

    def forget(self, integration_id: str) -> None:
        self._states.pop(integration_id, None)

    def snapshot(self) -> Dict[str, str]:
        return {integration_id: state.value for integration_id, state in self._states.items()}

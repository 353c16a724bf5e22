"""Client connection state machine."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable

from .errors import InvalidTransitionError

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    INITIALIZING = "initializing"
    READY = "ready"
    SEARCHING = "searching"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    DISCONNECTED = "disconnected"
    ERROR = "error"

    def __str__(self) -> str:
        return self.value


# States in which a signaling socket is open; losing it leads to RECONNECTING.
OPERATIONAL_STATES = frozenset(
    {
        ConnectionState.READY,
        ConnectionState.SEARCHING,
        ConnectionState.CONNECTING,
        ConnectionState.CONNECTED,
    }
)

# Every state may additionally move to ERROR.
TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.INITIALIZING: frozenset({ConnectionState.READY}),
    ConnectionState.READY: frozenset(
        {
            ConnectionState.READY,
            ConnectionState.SEARCHING,
            ConnectionState.RECONNECTING,
            ConnectionState.DISCONNECTED,
        }
    ),
    ConnectionState.SEARCHING: frozenset(
        {
            ConnectionState.CONNECTING,
            ConnectionState.READY,
            ConnectionState.RECONNECTING,
            ConnectionState.DISCONNECTED,
        }
    ),
    ConnectionState.CONNECTING: frozenset(
        {
            ConnectionState.CONNECTED,
            ConnectionState.RECONNECTING,
            ConnectionState.DISCONNECTED,
        }
    ),
    ConnectionState.CONNECTED: frozenset(
        {ConnectionState.DISCONNECTED, ConnectionState.RECONNECTING}
    ),
    ConnectionState.RECONNECTING: OPERATIONAL_STATES | {ConnectionState.DISCONNECTED},
    ConnectionState.DISCONNECTED: frozenset(
        {ConnectionState.DISCONNECTED, ConnectionState.READY, ConnectionState.SEARCHING}
    ),
    ConnectionState.ERROR: frozenset(),
}


def can_transition(current: ConnectionState, target: ConnectionState) -> bool:
    if target is ConnectionState.ERROR:
        return current is not ConnectionState.ERROR
    return target in TRANSITIONS[current]


class ConnectionStateMachine:
    """Holds the single connection state and notifies on every change.

    ``ERROR`` is terminal: only :meth:`reset` (external reinitialisation)
    leaves it.
    """

    def __init__(self, on_change: Callable[[ConnectionState], None] | None = None) -> None:
        self._state = ConnectionState.INITIALIZING
        self._resume_state: ConnectionState | None = None
        self._on_change = on_change

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def resume_state(self) -> ConnectionState | None:
        """Operational state to restore once a reconnection succeeds."""

        return self._resume_state

    def can(self, target: ConnectionState) -> bool:
        return can_transition(self._state, target)

    def transition(self, target: ConnectionState) -> bool:
        """Move to *target*; return False when the request was a same-state no-op."""

        current = self._state
        if not can_transition(current, target):
            if target is current:
                return False
            raise InvalidTransitionError(current, target)
        if target is ConnectionState.RECONNECTING:
            self._resume_state = current
        elif current is ConnectionState.RECONNECTING or target is ConnectionState.ERROR:
            self._resume_state = None
        self._state = target
        logger.debug("Connection state %s -> %s", current, target)
        if self._on_change is not None:
            self._on_change(target)
        return True

    def set_resume_state(self, target: ConnectionState) -> None:
        """Change where a pending reconnection resumes, e.g. after the call ended meanwhile."""

        if self._state is not ConnectionState.RECONNECTING:
            raise InvalidTransitionError(self._state, target)
        if not can_transition(ConnectionState.RECONNECTING, target) or target is ConnectionState.ERROR:
            raise InvalidTransitionError(ConnectionState.RECONNECTING, target)
        self._resume_state = target

    def resume(self) -> ConnectionState:
        """Leave RECONNECTING for the state that was active before the link dropped."""

        target = self._resume_state or ConnectionState.READY
        self.transition(target)
        return target

    def reset(self) -> None:
        self._state = ConnectionState.INITIALIZING
        self._resume_state = None
        if self._on_change is not None:
            self._on_change(self._state)

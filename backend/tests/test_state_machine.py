from __future__ import annotations

import pytest

from starlight.voice.errors import InvalidTransitionError
from starlight.voice.state import ConnectionState, ConnectionStateMachine


def test_happy_path_emits_every_transition() -> None:
    seen: list[ConnectionState] = []
    machine = ConnectionStateMachine(seen.append)

    for state in (
        ConnectionState.READY,
        ConnectionState.SEARCHING,
        ConnectionState.CONNECTING,
        ConnectionState.CONNECTED,
        ConnectionState.DISCONNECTED,
        ConnectionState.SEARCHING,
    ):
        assert machine.transition(state) is True

    assert seen == [
        ConnectionState.READY,
        ConnectionState.SEARCHING,
        ConnectionState.CONNECTING,
        ConnectionState.CONNECTED,
        ConnectionState.DISCONNECTED,
        ConnectionState.SEARCHING,
    ]


@pytest.mark.parametrize(
    ("path", "target"),
    [
        ((), ConnectionState.SEARCHING),
        ((ConnectionState.READY,), ConnectionState.CONNECTED),
        ((ConnectionState.READY, ConnectionState.SEARCHING), ConnectionState.CONNECTED),
        (
            (ConnectionState.READY, ConnectionState.SEARCHING, ConnectionState.CONNECTING, ConnectionState.CONNECTED),
            ConnectionState.SEARCHING,
        ),
        ((ConnectionState.READY, ConnectionState.DISCONNECTED), ConnectionState.CONNECTED),
    ],
)
def test_edges_outside_the_table_are_rejected(path, target) -> None:
    machine = ConnectionStateMachine()
    for state in path:
        machine.transition(state)

    with pytest.raises(InvalidTransitionError):
        machine.transition(target)


def test_error_is_terminal_until_reset() -> None:
    seen: list[ConnectionState] = []
    machine = ConnectionStateMachine(seen.append)
    machine.transition(ConnectionState.ERROR)

    with pytest.raises(InvalidTransitionError):
        machine.transition(ConnectionState.READY)
    assert machine.transition(ConnectionState.ERROR) is False
    assert seen == [ConnectionState.ERROR]

    machine.reset()
    assert machine.state is ConnectionState.INITIALIZING
    machine.transition(ConnectionState.READY)


def test_reconnecting_resumes_previous_operational_state() -> None:
    machine = ConnectionStateMachine()
    machine.transition(ConnectionState.READY)
    machine.transition(ConnectionState.SEARCHING)

    machine.transition(ConnectionState.RECONNECTING)
    assert machine.resume_state is ConnectionState.SEARCHING

    assert machine.resume() is ConnectionState.SEARCHING
    assert machine.state is ConnectionState.SEARCHING
    assert machine.resume_state is None


def test_resume_target_can_be_downgraded_while_reconnecting() -> None:
    machine = ConnectionStateMachine()
    machine.transition(ConnectionState.READY)
    with pytest.raises(InvalidTransitionError):
        machine.set_resume_state(ConnectionState.DISCONNECTED)

    machine.transition(ConnectionState.SEARCHING)
    machine.transition(ConnectionState.CONNECTING)
    machine.transition(ConnectionState.CONNECTED)
    machine.transition(ConnectionState.RECONNECTING)
    machine.set_resume_state(ConnectionState.DISCONNECTED)
    with pytest.raises(InvalidTransitionError):
        machine.set_resume_state(ConnectionState.ERROR)

    assert machine.resume() is ConnectionState.DISCONNECTED
    assert machine.state is ConnectionState.DISCONNECTED


def test_reconnecting_cannot_be_entered_without_a_socket() -> None:
    machine = ConnectionStateMachine()

    with pytest.raises(InvalidTransitionError):
        machine.transition(ConnectionState.RECONNECTING)


def test_same_state_requests() -> None:
    seen: list[ConnectionState] = []
    machine = ConnectionStateMachine(seen.append)
    machine.transition(ConnectionState.READY)

    assert machine.transition(ConnectionState.READY) is True
    machine.transition(ConnectionState.SEARCHING)
    assert machine.transition(ConnectionState.SEARCHING) is False

    assert seen == [ConnectionState.READY, ConnectionState.READY, ConnectionState.SEARCHING]

"""Server side of the call signaling: registry, matchmaking, relay and liveness."""

from .errors import PairingError, ProtocolError, RealtimeError  # noqa: F401
from .liveness import LivenessMonitor  # noqa: F401
from .managers import Room, SessionManager, safe_send_json  # noqa: F401
from .matchmaking import MatchmakingQueue, QueueEntry  # noqa: F401
from .registry import Client, ConnectionRegistry  # noqa: F401

__all__ = [
    "Client",
    "ConnectionRegistry",
    "LivenessMonitor",
    "MatchmakingQueue",
    "PairingError",
    "ProtocolError",
    "QueueEntry",
    "RealtimeError",
    "Room",
    "SessionManager",
    "safe_send_json",
]

"""Exceptions raised by the signaling server core."""

from __future__ import annotations


class RealtimeError(RuntimeError):
    """Base class for signaling server errors."""


class ProtocolError(RealtimeError):
    """An inbound frame could not be turned into a known message.

    ``str(error)`` is safe to send back to the originating client; ``reason``
    is a short machine label used for metrics.
    """

    def __init__(self, message: str, *, reason: str = "invalid_payload") -> None:
        super().__init__(message)
        self.reason = reason


class PairingError(RealtimeError):
    """Two clients could not be paired into a room."""

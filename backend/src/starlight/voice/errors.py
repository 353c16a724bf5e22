"""Exceptions raised by the client call controller."""

from __future__ import annotations


class VoiceError(RuntimeError):
    """Base class for client-side call errors."""


class InvalidTransitionError(VoiceError):
    """A connection state change outside the permitted edges was requested."""

    def __init__(self, current: object, target: object) -> None:
        super().__init__(f"Cannot move from {current} to {target}")
        self.current = current
        self.target = target


class MediaAcquisitionError(VoiceError):
    """Camera/microphone or display capture could not be obtained."""


class SignalingConnectionError(VoiceError):
    """The signaling socket could not be opened or was lost."""


class PeerSessionError(VoiceError):
    """The peer-session primitive failed to start or to answer a request."""

"""Client-side call controller for the Starlight signaling service."""

from .config import ClientSettings, get_client_settings
from .controller import ConnectionController, ControllerCallbacks
from .errors import (
    InvalidTransitionError,
    MediaAcquisitionError,
    PeerSessionError,
    SignalingConnectionError,
    VoiceError,
)
from .quality import QualityLevel, QualityMonitor, QualitySample
from .signaling import SignalingClient, fetch_ice_servers
from .state import ConnectionState, ConnectionStateMachine

__all__ = [
    "ClientSettings",
    "ConnectionController",
    "ConnectionState",
    "ConnectionStateMachine",
    "ControllerCallbacks",
    "InvalidTransitionError",
    "MediaAcquisitionError",
    "PeerSessionError",
    "QualityLevel",
    "QualityMonitor",
    "QualitySample",
    "SignalingClient",
    "SignalingConnectionError",
    "VoiceError",
    "fetch_ice_servers",
    "get_client_settings",
]

"""Capabilities the call controller depends on but does not implement.

The media transport engine (ICE, DTLS/SRTP, codecs) and device capture are
provided by the host application. The controller only talks to them through
the protocols below, which keeps it testable with plain fakes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Protocol, runtime_checkable


@dataclass(slots=True)
class InboundRtpCounters:
    """Cumulative receive counters for one media kind."""

    bytes_received: int = 0
    timestamp_ms: float = 0.0
    packets_received: int = 0
    packets_lost: int = 0
    jitter_ms: float = 0.0
    codec: str = "unknown"
    frames_per_second: float = 0.0
    frame_width: int = 0
    frame_height: int = 0


@dataclass(slots=True)
class CandidatePairStats:
    """Nominated ICE candidate pair."""

    round_trip_time_ms: float = 0.0
    local_candidate_type: str = "unknown"
    remote_candidate_type: str = "unknown"
    protocol: str = "unknown"


@dataclass(slots=True)
class TransportStats:
    """Raw counters returned by :meth:`PeerSession.get_stats`."""

    audio: InboundRtpCounters | None = None
    video: InboundRtpCounters | None = None
    candidate_pair: CandidatePairStats | None = None


SignalHandler = Callable[[Dict[str, Any]], Awaitable[None]]
StreamHandler = Callable[[Any], Awaitable[None]]
ErrorHandler = Callable[[BaseException], Awaitable[None]]
CloseHandler = Callable[[], Awaitable[None]]
MessageHandler = Callable[[Dict[str, Any]], Awaitable[None]]


@runtime_checkable
class MediaSource(Protocol):
    """Local capture (camera/microphone or display)."""

    @property
    def audio_enabled(self) -> bool: ...

    @property
    def video_enabled(self) -> bool: ...

    @property
    def video_track(self) -> Any: ...

    def set_audio_enabled(self, enabled: bool) -> None: ...

    def set_video_enabled(self, enabled: bool) -> None: ...

    def stop(self) -> None: ...


class MediaProvider(Protocol):
    """Acquires capture sources; failures raise ``MediaAcquisitionError``."""

    async def acquire_user_media(self) -> MediaSource: ...

    async def acquire_display_media(self) -> MediaSource: ...


@runtime_checkable
class PeerSession(Protocol):
    """One negotiated media path to the partner."""

    async def signal(self, data: Mapping[str, Any]) -> None: ...

    async def get_stats(self) -> TransportStats: ...

    async def set_outbound_bitrate_ceiling(
        self, video_bps: int | None, audio_bps: int | None
    ) -> None:
        """Cap outbound encodings; ``None`` removes the cap for that kind."""

    async def replace_outbound_video_track(self, track: Any) -> None: ...

    async def close(self) -> None: ...


class PeerSessionFactory(Protocol):
    async def create(
        self,
        *,
        initiator: bool,
        media: MediaSource,
        ice_servers: List[Dict[str, Any]],
        on_signal: SignalHandler,
        on_stream: StreamHandler,
        on_error: ErrorHandler,
        on_close: CloseHandler,
    ) -> PeerSession: ...


class SignalingChannel(Protocol):
    """Message channel to the signaling server."""

    @property
    def is_open(self) -> bool: ...

    async def connect(self) -> None: ...

    async def send(self, message_type: str, payload: Mapping[str, Any] | None = None) -> bool: ...

    async def close(self) -> None: ...


SignalingFactory = Callable[[str, MessageHandler, CloseHandler], SignalingChannel]
IceServerLoader = Callable[[], Awaitable[List[Dict[str, Any]]]]


__all__ = [
    "CandidatePairStats",
    "CloseHandler",
    "ErrorHandler",
    "IceServerLoader",
    "InboundRtpCounters",
    "MediaProvider",
    "MediaSource",
    "MessageHandler",
    "PeerSession",
    "PeerSessionFactory",
    "SignalHandler",
    "SignalingChannel",
    "SignalingFactory",
    "StreamHandler",
    "TransportStats",
]

"""Link quality sampling, classification and bitrate adaptation."""

from __future__ import annotations

import math
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterable, List, Sequence

from .peer import CandidatePairStats, InboundRtpCounters, TransportStats


class QualityLevel(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    UNKNOWN = "unknown"

    def __str__(self) -> str:
        return self.value


@dataclass(slots=True)
class AudioStats:
    bitrate: int = 0
    packet_loss: float = 0.0
    jitter_ms: float = 0.0
    codec: str = "unknown"


@dataclass(slots=True)
class VideoStats:
    bitrate: int = 0
    frame_rate: float = 0.0
    width: int = 0
    height: int = 0
    codec: str = "unknown"

    @property
    def resolution(self) -> Dict[str, int]:
        return {"width": self.width, "height": self.height}


@dataclass(slots=True)
class LinkStats:
    round_trip_time_ms: float = 0.0
    local_candidate_type: str = "unknown"
    remote_candidate_type: str = "unknown"
    protocol: str = "unknown"


@dataclass(slots=True)
class QualitySample:
    """One periodic measurement of the media path."""

    timestamp: float = field(default_factory=lambda: time.time() * 1000)
    audio: AudioStats = field(default_factory=AudioStats)
    video: VideoStats = field(default_factory=VideoStats)
    connection: LinkStats = field(default_factory=LinkStats)

    def to_summary(self) -> Dict[str, Any]:
        """Wire form sent to the partner inside ``quality-report``."""

        return {
            "timestamp": int(self.timestamp),
            "audio": {
                "bitrate": self.audio.bitrate,
                "packetLoss": self.audio.packet_loss,
                "jitter": self.audio.jitter_ms,
                "codec": self.audio.codec,
            },
            "video": {
                "bitrate": self.video.bitrate,
                "frameRate": self.video.frame_rate,
                "resolution": self.video.resolution,
                "codec": self.video.codec,
            },
            "connection": {
                "roundTripTime": self.connection.round_trip_time_ms,
                "localCandidateType": self.connection.local_candidate_type,
                "remoteCandidateType": self.connection.remote_candidate_type,
                "protocol": self.connection.protocol,
            },
        }


class BitrateMeter:
    """Turns a cumulative byte counter into bits per second."""

    def __init__(self) -> None:
        self._previous_bytes = 0
        self._previous_timestamp: float | None = None

    def update(self, total_bytes: int, timestamp_ms: float) -> int:
        previous_bytes, previous_timestamp = self._previous_bytes, self._previous_timestamp
        self._previous_bytes = total_bytes
        self._previous_timestamp = timestamp_ms
        if previous_timestamp is None:
            return 0
        elapsed_ms = timestamp_ms - previous_timestamp
        if elapsed_ms <= 0:
            return 0
        return math.ceil((total_bytes - previous_bytes) * 8 * 1000 / elapsed_ms)

    def reset(self) -> None:
        self._previous_bytes = 0
        self._previous_timestamp = None


def packet_loss_percent(counters: InboundRtpCounters) -> float:
    total = counters.packets_received + counters.packets_lost
    if total <= 0:
        return 0.0
    return counters.packets_lost * 100 / total


def sample_from_stats(
    raw: TransportStats,
    audio_meter: BitrateMeter,
    video_meter: BitrateMeter,
    *,
    timestamp: float | None = None,
) -> QualitySample:
    audio_raw = raw.audio or InboundRtpCounters()
    video_raw = raw.video or InboundRtpCounters()
    pair = raw.candidate_pair or CandidatePairStats()

    audio = AudioStats(
        bitrate=audio_meter.update(audio_raw.bytes_received, audio_raw.timestamp_ms)
        if raw.audio is not None
        else 0,
        packet_loss=packet_loss_percent(audio_raw),
        jitter_ms=audio_raw.jitter_ms,
        codec=audio_raw.codec,
    )
    video = VideoStats(
        bitrate=video_meter.update(video_raw.bytes_received, video_raw.timestamp_ms)
        if raw.video is not None
        else 0,
        frame_rate=video_raw.frames_per_second,
        width=video_raw.frame_width,
        height=video_raw.frame_height,
        codec=video_raw.codec,
    )
    link = LinkStats(
        round_trip_time_ms=pair.round_trip_time_ms,
        local_candidate_type=pair.local_candidate_type,
        remote_candidate_type=pair.remote_candidate_type,
        protocol=pair.protocol,
    )
    sample = QualitySample(audio=audio, video=video, connection=link)
    if timestamp is not None:
        sample.timestamp = timestamp
    return sample


# (level, max rtt ms, max audio loss %, max audio jitter ms); bounds are exclusive.
THRESHOLDS: Sequence[tuple[QualityLevel, float, float, float]] = (
    (QualityLevel.EXCELLENT, 150, 1, 30),
    (QualityLevel.GOOD, 300, 3, 50),
    (QualityLevel.FAIR, 500, 5, 100),
)


def _mean(values: Iterable[float]) -> float:
    items = list(values)
    return sum(items) / len(items)


def classify(samples: Sequence[QualitySample], window: int = 3) -> QualityLevel:
    """Classify the averages of the last *window* samples."""

    if not samples:
        return QualityLevel.UNKNOWN
    recent = list(samples)[-window:]
    rtt = _mean(sample.connection.round_trip_time_ms for sample in recent)
    loss = _mean(sample.audio.packet_loss for sample in recent)
    jitter = _mean(sample.audio.jitter_ms for sample in recent)
    for level, max_rtt, max_loss, max_jitter in THRESHOLDS:
        if rtt < max_rtt and loss < max_loss and jitter < max_jitter:
            return level
    return QualityLevel.POOR


class QualityMonitor:
    """Bounded sample history feeding a quality callback on every sample."""

    def __init__(
        self,
        on_quality: Callable[[QualityLevel], None] | None = None,
        *,
        history_size: int = 10,
        window: int = 3,
    ) -> None:
        self._on_quality = on_quality
        self._window = window
        self._history: Deque[QualitySample] = deque(maxlen=history_size)
        self._level = QualityLevel.UNKNOWN

    @property
    def history(self) -> List[QualitySample]:
        return list(self._history)

    @property
    def latest(self) -> QualitySample | None:
        return self._history[-1] if self._history else None

    @property
    def level(self) -> QualityLevel:
        return self._level

    def add_sample(self, sample: QualitySample) -> QualityLevel:
        self._history.append(sample)
        self._level = classify(self._history, self._window)
        if self._on_quality is not None:
            self._on_quality(self._level)
        return self._level

    def reset(self) -> None:
        self._history.clear()
        self._level = QualityLevel.UNKNOWN


@dataclass(frozen=True, slots=True)
class BitrateCeiling:
    video_bps: int
    audio_bps: int


BITRATE_CEILINGS: Dict[QualityLevel, BitrateCeiling] = {
    QualityLevel.GOOD: BitrateCeiling(video_bps=800_000, audio_bps=48_000),
    QualityLevel.FAIR: BitrateCeiling(video_bps=500_000, audio_bps=32_000),
    QualityLevel.POOR: BitrateCeiling(video_bps=250_000, audio_bps=16_000),
    QualityLevel.UNKNOWN: BitrateCeiling(video_bps=500_000, audio_bps=32_000),
}


def ceiling_for(level: QualityLevel) -> BitrateCeiling | None:
    """Outbound cap for *level*; ``None`` means uncapped."""

    return BITRATE_CEILINGS.get(level)


__all__ = [
    "AudioStats",
    "BITRATE_CEILINGS",
    "BitrateCeiling",
    "BitrateMeter",
    "LinkStats",
    "QualityLevel",
    "QualityMonitor",
    "QualitySample",
    "VideoStats",
    "ceiling_for",
    "classify",
    "packet_loss_percent",
    "sample_from_stats",
]

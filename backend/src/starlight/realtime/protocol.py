"""Wire protocol of the signaling socket.

Every frame is a JSON envelope ``{"type": ..., "payload": ...}``. Inbound
frames are validated into one of the message models below; the union is
discriminated on ``type`` so adding a message kind means adding a model and a
``case`` in the dispatcher, never a silent default branch.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .errors import ProtocolError
from .registry import now_ms


class _Message(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class _Payload(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)


class JoinQueuePayload(_Payload):
    preferences: dict[str, Any] = Field(default_factory=dict)


class SignalPayload(_Payload):
    to: str = Field(min_length=1)
    signal: Any


class QualityReportPayload(_Payload):
    stats: dict[str, Any]


class ToggleMediaPayload(_Payload):
    type: Literal["audio", "video"]
    enabled: bool


class JoinQueueMessage(_Message):
    type: Literal["join-queue"]
    payload: JoinQueuePayload = Field(default_factory=JoinQueuePayload)


class LeaveQueueMessage(_Message):
    type: Literal["leave-queue"]


class SignalMessage(_Message):
    type: Literal["signal"]
    payload: SignalPayload


class QualityReportMessage(_Message):
    type: Literal["quality-report"]
    payload: QualityReportPayload


class ToggleMediaMessage(_Message):
    type: Literal["toggle-media"]
    payload: ToggleMediaPayload


class RequestStatsMessage(_Message):
    type: Literal["request-stats"]


class HeartbeatMessage(_Message):
    type: Literal["heartbeat"]


class PongMessage(_Message):
    type: Literal["pong"]


InboundMessage = Annotated[
    Union[
        JoinQueueMessage,
        LeaveQueueMessage,
        SignalMessage,
        QualityReportMessage,
        ToggleMediaMessage,
        RequestStatsMessage,
        HeartbeatMessage,
        PongMessage,
    ],
    Field(discriminator="type"),
]

INBOUND_TYPES = frozenset(
    {
        "join-queue",
        "leave-queue",
        "signal",
        "quality-report",
        "toggle-media",
        "request-stats",
        "heartbeat",
        "pong",
    }
)

_inbound_adapter: TypeAdapter[InboundMessage] = TypeAdapter(InboundMessage)


def parse_inbound(raw: str | bytes) -> InboundMessage:
    """Decode and validate one inbound frame or raise :class:`ProtocolError`."""

    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ProtocolError("Invalid message format", reason="invalid_json") from exc

    if not isinstance(data, dict):
        raise ProtocolError("Message payload must be a JSON object", reason="not_object")

    message_type = data.get("type")
    if not isinstance(message_type, str) or not message_type:
        raise ProtocolError("Message type must be provided", reason="missing_type")
    if message_type not in INBOUND_TYPES:
        raise ProtocolError(f"Unknown message type: {message_type}", reason="unknown_type")

    if data.get("payload") is None:
        data = {key: value for key, value in data.items() if key != "payload"}

    try:
        return _inbound_adapter.validate_python(data)
    except ValidationError as exc:
        raise ProtocolError(f"Invalid payload for {message_type}", reason="invalid_payload") from exc


# ---------------------------------------------------------------------------
# Outbound envelopes
# ---------------------------------------------------------------------------


def envelope(message_type: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {"type": message_type}
    if payload is not None:
        body["payload"] = payload
    return body


def connected(client_id: str) -> dict[str, Any]:
    return envelope("connected", {"clientId": client_id, "timestamp": now_ms()})


def waiting(position: int) -> dict[str, Any]:
    return envelope("waiting", {"position": position, "timestamp": now_ms()})


def left_queue() -> dict[str, Any]:
    return envelope("left-queue")


def matched(partner_id: str, room_id: str, *, initiator: bool) -> dict[str, Any]:
    return envelope(
        "matched",
        {
            "partnerId": partner_id,
            "roomId": room_id,
            "initiator": initiator,
            "timestamp": now_ms(),
        },
    )


def signal(from_id: str, signal_data: Any) -> dict[str, Any]:
    return envelope("signal", {"from": from_id, "signal": signal_data})


def partner_quality(stats: dict[str, Any]) -> dict[str, Any]:
    return envelope("partner-quality", {"stats": stats})


def partner_media_toggle(media_type: str, enabled: bool) -> dict[str, Any]:
    return envelope("partner-media-toggle", {"type": media_type, "enabled": enabled})


def partner_disconnected(partner_id: str) -> dict[str, Any]:
    return envelope("partner-disconnected", {"partnerId": partner_id, "timestamp": now_ms()})


def stats_response(stats: dict[str, Any]) -> dict[str, Any]:
    return envelope("stats-response", stats)


def heartbeat_ack() -> dict[str, Any]:
    return envelope("heartbeat-ack", {"timestamp": now_ms()})


def ping() -> dict[str, Any]:
    return envelope("ping", {"timestamp": now_ms()})


def error(message: str) -> dict[str, Any]:
    return envelope("error", {"message": message})

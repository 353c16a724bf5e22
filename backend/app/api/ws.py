"""WebSocket endpoint carrying matchmaking and call signaling."""

from __future__ import annotations

import logging
from typing import assert_never

from fastapi import APIRouter, Depends, WebSocket
from fastapi.websockets import WebSocketDisconnect

from app.api.deps import get_session_manager
from app.monitoring.metrics import signaling_messages_total, signaling_protocol_errors_total
from starlight.realtime import ProtocolError, SessionManager, protocol
from starlight.realtime.protocol import (
    HeartbeatMessage,
    JoinQueueMessage,
    LeaveQueueMessage,
    PongMessage,
    QualityReportMessage,
    RequestStatsMessage,
    SignalMessage,
    ToggleMediaMessage,
    parse_inbound,
)

router = APIRouter(tags=["ws"])

logger = logging.getLogger(__name__)


async def dispatch_message(manager: SessionManager, client_id: str, raw_message: str | bytes) -> None:
    """Apply one inbound frame from *client_id*.

    Protocol errors are answered with an ``error`` event to the sender only;
    they never close the socket.
    """

    client = manager.registry.get(client_id)
    if client is None:
        return
    client.touch()

    try:
        message = parse_inbound(raw_message)
    except ProtocolError as exc:
        signaling_protocol_errors_total.labels(exc.reason).inc()
        logger.warning("Protocol error from %s: %s", client_id, exc)
        await manager.send(client_id, protocol.error(str(exc)))
        return

    signaling_messages_total.labels(message.type, "in").inc()

    match message:
        case JoinQueueMessage(payload=payload):
            await manager.join_queue(client_id, dict(payload.preferences))
        case LeaveQueueMessage():
            await manager.leave_queue(client_id)
        case SignalMessage(payload=payload):
            await manager.relay_signal(client_id, payload.to, payload.signal)
        case QualityReportMessage(payload=payload):
            await manager.relay_quality_report(client_id, dict(payload.stats))
        case ToggleMediaMessage(payload=payload):
            await manager.relay_media_toggle(client_id, payload.type, payload.enabled)
        case RequestStatsMessage():
            await manager.send(client_id, protocol.stats_response(manager.stats_for(client_id)))
        case HeartbeatMessage():
            await manager.send(client_id, protocol.heartbeat_ack())
        case PongMessage():
            pass
        case _:
            assert_never(message)


@router.websocket("/ws")
async def websocket_signaling(
    websocket: WebSocket,
    manager: SessionManager = Depends(get_session_manager),
) -> None:
    """Register the socket, then feed every inbound frame to the dispatcher."""

    await websocket.accept()
    client = await manager.connect(websocket)
    try:
        while True:
            try:
                message = await websocket.receive()
            except (RuntimeError, WebSocketDisconnect):
                break
            if message["type"] == "websocket.disconnect":
                logger.info("Socket closed by %s (code %s)", client.id, message.get("code"))
                break
            raw_message = message.get("text")
            if raw_message is None:
                raw_message = message.get("bytes") or b""
            await dispatch_message(manager, client.id, raw_message)
    finally:
        await manager.handle_disconnect(client.id)

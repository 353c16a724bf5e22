"""Matchmaking, room bookkeeping and partner relay for the signaling server.

A single :class:`SessionManager` is created per process and handed to the
websocket layer. It owns the connection registry, the waiting queue and the
room map. Handlers run on one event loop, so every read-modify-write of those
maps below happens without an ``await`` in between; socket sends are issued
only once the state change is complete.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from fastapi import status
from fastapi.websockets import WebSocketDisconnect, WebSocketState

from app.monitoring.metrics import (
    matchmaking_active_rooms,
    matchmaking_matches_total,
    matchmaking_waiting_clients,
    relay_rejections_total,
    signaling_active_connections,
    signaling_messages_total,
)

from . import protocol
from .errors import PairingError
from .matchmaking import MatchmakingQueue
from .registry import Client, ConnectionRegistry, now_ms, random_suffix

logger = logging.getLogger(__name__)


async def safe_send_json(websocket: Any, data: dict[str, Any]) -> bool:
    """Send JSON through *websocket*, returning False instead of raising when it is gone."""

    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
        return True
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug("Failed to send websocket message: %s", e)
        return False


def generate_room_id() -> str:
    return f"room_{now_ms()}_{random_suffix(6)}"


@dataclass(slots=True)
class Room:
    id: str
    participant_ids: tuple[str, str]
    created_at: int = field(default_factory=now_ms)
    # Last quality summary reported by each participant; informational only.
    quality: dict[str, dict[str, Any]] = field(default_factory=dict)

    def duration_ms(self, at: int | None = None) -> int:
        return (at if at is not None else now_ms()) - self.created_at


class SessionManager:
    """Pairs waiting clients into rooms and relays messages between partners."""

    def __init__(
        self,
        registry: ConnectionRegistry | None = None,
        queue: MatchmakingQueue | None = None,
    ) -> None:
        self.registry = registry or ConnectionRegistry()
        self.queue = queue or MatchmakingQueue()
        self._rooms: dict[str, Room] = {}

    @property
    def rooms(self) -> Mapping[str, Room]:
        return self._rooms

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------
    async def connect(self, websocket: Any) -> Client:
        client = self.registry.register(websocket)
        signaling_active_connections.set(len(self.registry))
        logger.info("New connection %s", client.id)
        await self.send(client.id, protocol.connected(client.id))
        return client

    async def send(self, client_id: str, message: dict[str, Any]) -> bool:
        client = self.registry.get(client_id)
        if client is None:
            return False
        sent = await safe_send_json(client.socket, message)
        if sent:
            signaling_messages_total.labels(message.get("type", "unknown"), "out").inc()
        return sent

    async def terminate(self, client_id: str, *, reason: str = "Liveness check failed") -> None:
        """Forcibly close a client's socket and run disconnect cleanup."""

        client = self.registry.get(client_id)
        if client is None:
            return
        socket = client.socket
        if socket.application_state == WebSocketState.CONNECTED:
            try:
                await socket.close(code=status.WS_1001_GOING_AWAY, reason=reason)
            except RuntimeError as exc:
                logger.debug("Closing socket for %s failed: %s", client_id, exc)
        await self.handle_disconnect(client_id)

    async def handle_disconnect(self, client_id: str) -> None:
        """Release everything held by *client_id*; safe to call more than once."""

        client = self.registry.get(client_id)
        if client is None:
            return
        if self.queue.remove(client_id):
            self._update_queue_gauges()
        if client.partner_id is not None or client.room_id is not None:
            await self._end_pairing(client, reason="disconnect")
        self.registry.remove(client_id)
        signaling_active_connections.set(len(self.registry))
        logger.info("Client disconnected: %s", client_id)

    # ------------------------------------------------------------------
    # Matchmaking
    # ------------------------------------------------------------------
    async def join_queue(
        self, client_id: str, preferences: dict[str, Any] | None = None
    ) -> Room | None:
        """Pair *client_id* with the oldest waiting client, or queue it.

        Returns the created room, or ``None`` when the client was queued.
        """

        client = self.registry.get(client_id)
        if client is None:
            return None
        if client.partner_id is not None or client.room_id is not None:
            # Re-joining while still paired means leaving the current call first.
            await self._end_pairing(client, reason="rejoin")

        self.queue.remove(client_id)
        client.joined_queue_at = None
        match_id = self.find_match(client_id, preferences or {})
        if match_id is not None:
            return await self.create_room(match_id, client_id)

        joined_at = now_ms()
        position = self.queue.push(client_id, joined_at, preferences)
        client.joined_queue_at = joined_at
        self._update_queue_gauges()
        logger.info("Client %s joined queue. Queue size: %s", client_id, len(self.queue))
        await self.send(client_id, protocol.waiting(position))
        return None

    def find_match(self, client_id: str, preferences: Mapping[str, Any]) -> str | None:
        """Pop the oldest waiting client that can still be paired.

        Matching is strict FIFO. ``preferences`` are accepted so a filtering
        matcher can be plugged in later; they do not influence the choice.
        """

        while True:
            entry = self.queue.pop_oldest()
            if entry is None:
                self._update_queue_gauges()
                return None
            if entry.client_id == client_id:
                continue
            candidate = self.registry.get(entry.client_id)
            if candidate is None or candidate.partner_id is not None:
                logger.warning("Dropping stale queue entry %s", entry.client_id)
                continue
            candidate.joined_queue_at = None
            self._update_queue_gauges()
            return candidate.id

    async def leave_queue(self, client_id: str) -> None:
        client = self.registry.get(client_id)
        if client is None:
            return
        if self.queue.remove(client_id):
            client.joined_queue_at = None
            self._update_queue_gauges()
            logger.info("Client %s left queue", client_id)
            await self.send(client_id, protocol.left_queue())
            return
        if client.partner_id is not None or client.room_id is not None:
            # Hanging up an active call.
            await self._end_pairing(client, reason="hangup")

    async def create_room(self, waiting_id: str, requester_id: str) -> Room:
        """Pair two clients; ``waiting_id`` becomes the negotiation initiator."""

        waiting_client = self.registry.get(waiting_id)
        requester = self.registry.get(requester_id)
        if waiting_client is None or requester is None:
            raise PairingError("Both clients must be connected to create a room")
        if waiting_id == requester_id:
            raise PairingError("A client cannot be paired with itself")
        if waiting_client.partner_id is not None or requester.partner_id is not None:
            raise PairingError("Both clients must be unpaired to create a room")

        self.queue.remove(waiting_id)
        self.queue.remove(requester_id)
        room = Room(id=generate_room_id(), participant_ids=(waiting_id, requester_id))
        self._rooms[room.id] = room
        waiting_client.pair_with(requester_id, room.id)
        requester.pair_with(waiting_id, room.id)
        matchmaking_matches_total.inc()
        self._update_queue_gauges()
        logger.info("Room created: %s with %s and %s", room.id, waiting_id, requester_id)

        await self.send(waiting_id, protocol.matched(requester_id, room.id, initiator=True))
        await self.send(requester_id, protocol.matched(waiting_id, room.id, initiator=False))
        return room

    async def _end_pairing(self, client: Client, *, reason: str) -> None:
        partner_id = client.partner_id
        room_id = client.room_id
        client.clear_pairing()

        partner = self.registry.get(partner_id)
        if partner is not None and partner.partner_id == client.id:
            partner.clear_pairing()
            await self.send(partner.id, protocol.partner_disconnected(client.id))

        room = self._rooms.get(room_id) if room_id is not None else None
        if room is not None:
            duration = room.duration_ms()
            logger.info("Room %s ended (%s). Duration: %sms", room.id, reason, duration)
            self._rooms.pop(room.id, None)
        self._update_queue_gauges()

    # ------------------------------------------------------------------
    # Relay
    # ------------------------------------------------------------------
    async def relay_signal(self, from_id: str, to_id: str, signal_data: Any) -> bool:
        """Forward negotiation data only to the sender's current partner."""

        target = self.registry.get(to_id)
        if target is None or target.partner_id != from_id:
            relay_rejections_total.inc()
            logger.warning("Rejected signal from %s to %s: not current partner", from_id, to_id)
            await self.send(from_id, protocol.error("Invalid signal target"))
            return False
        await self.send(target.id, protocol.signal(from_id, signal_data))
        return True

    async def relay_quality_report(self, client_id: str, stats: dict[str, Any]) -> bool:
        client = self.registry.get(client_id)
        if client is None or client.partner_id is None:
            return False
        room = self._rooms.get(client.room_id) if client.room_id else None
        if room is not None:
            room.quality[client_id] = stats
        partner = self.registry.get(client.partner_id)
        if partner is None:
            return False
        return await self.send(partner.id, protocol.partner_quality(stats))

    async def relay_media_toggle(self, client_id: str, media_type: str, enabled: bool) -> bool:
        client = self.registry.get(client_id)
        if client is None or client.partner_id is None:
            return False
        partner = self.registry.get(client.partner_id)
        if partner is None:
            return False
        return await self.send(partner.id, protocol.partner_media_toggle(media_type, enabled))

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    def stats_for(self, client_id: str) -> dict[str, Any]:
        client = self.registry.get(client_id)
        now = now_ms()
        stats: dict[str, Any] = {
            "serverTime": now,
            "totalConnections": len(self.registry),
            "totalRooms": len(self._rooms),
        }
        if client is None:
            return stats
        stats["connectionDuration"] = now - client.connected_at
        stats["messagesExchanged"] = client.message_count
        room = self._rooms.get(client.room_id) if client.room_id else None
        if room is not None:
            stats["roomDuration"] = room.duration_ms(now)
            stats["roomQuality"] = dict(room.quality)
        return stats

    def health(self) -> dict[str, int]:
        return {
            "connections": len(self.registry),
            "rooms": len(self._rooms),
            "waiting": len(self.queue),
        }

    def _update_queue_gauges(self) -> None:
        matchmaking_waiting_clients.set(len(self.queue))
        matchmaking_active_rooms.set(len(self._rooms))


__all__ = ["Room", "SessionManager", "generate_room_id", "safe_send_json"]

"""Registry of live signaling sockets."""

from __future__ import annotations

import random
import string
import time
from dataclasses import dataclass, field
from typing import Any, Iterator

_ALPHABET = string.ascii_lowercase + string.digits


def now_ms() -> int:
    """Wall clock in integer milliseconds, the unit used on the wire."""

    return int(time.time() * 1000)


def random_suffix(length: int) -> str:
    return "".join(random.choice(_ALPHABET) for _ in range(length))


def generate_client_id() -> str:
    return f"{now_ms()}_{random_suffix(9)}"


@dataclass(slots=True, eq=False)
class Client:
    """Server-side record of one connected socket."""

    id: str
    socket: Any
    partner_id: str | None = None
    room_id: str | None = None
    joined_queue_at: int | None = None
    connected_at: int = field(default_factory=now_ms)
    last_activity_at: int = field(default_factory=now_ms)
    message_count: int = 0
    is_alive: bool = True

    @property
    def is_paired(self) -> bool:
        return self.partner_id is not None

    def touch(self) -> None:
        """Record an inbound frame; any frame also proves the socket is alive."""

        self.last_activity_at = now_ms()
        self.message_count += 1
        self.is_alive = True

    def pair_with(self, partner_id: str, room_id: str) -> None:
        self.partner_id = partner_id
        self.room_id = room_id
        self.joined_queue_at = None

    def clear_pairing(self) -> None:
        self.partner_id = None
        self.room_id = None


class ConnectionRegistry:
    """Owns every :class:`Client`; other components refer to clients by id."""

    def __init__(self) -> None:
        self._clients: dict[str, Client] = {}

    def register(self, socket: Any, *, client_id: str | None = None) -> Client:
        client_id = client_id or generate_client_id()
        while client_id in self._clients:
            client_id = generate_client_id()
        client = Client(id=client_id, socket=socket)
        self._clients[client_id] = client
        return client

    def get(self, client_id: str | None) -> Client | None:
        if client_id is None:
            return None
        return self._clients.get(client_id)

    def remove(self, client_id: str) -> Client | None:
        return self._clients.pop(client_id, None)

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._clients

    def __len__(self) -> int:
        return len(self._clients)

    def __iter__(self) -> Iterator[Client]:
        return iter(list(self._clients.values()))

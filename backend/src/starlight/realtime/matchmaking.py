"""FIFO pool of clients waiting for a partner."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class QueueEntry:
    client_id: str
    enqueued_at: int
    # Stored for a future preference-aware matcher; FIFO order ignores them.
    preferences: dict[str, Any] = field(default_factory=dict)


class MatchmakingQueue:
    """Insertion-ordered waiting set; a client id appears at most once."""

    def __init__(self) -> None:
        self._entries: OrderedDict[str, QueueEntry] = OrderedDict()

    def push(self, client_id: str, enqueued_at: int, preferences: dict[str, Any] | None = None) -> int:
        """Append ``client_id`` to the tail and return its 1-based position."""

        self._entries.pop(client_id, None)
        self._entries[client_id] = QueueEntry(client_id, enqueued_at, dict(preferences or {}))
        return len(self._entries)

    def pop_oldest(self) -> QueueEntry | None:
        if not self._entries:
            return None
        _, entry = self._entries.popitem(last=False)
        return entry

    def remove(self, client_id: str) -> bool:
        return self._entries.pop(client_id, None) is not None

    def position(self, client_id: str) -> int | None:
        for index, queued_id in enumerate(self._entries, start=1):
            if queued_id == client_id:
                return index
        return None

    def entries(self) -> list[QueueEntry]:
        return list(self._entries.values())

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

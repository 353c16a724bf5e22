"""Shared pytest fixtures for backend tests."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Iterator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from fastapi.websockets import WebSocketState

ROOT_DIR = Path(__file__).resolve().parents[1]
for path in (ROOT_DIR, ROOT_DIR / "src"):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from app.config import Settings
from app.main import create_app
from app.monitoring.registry import registry
from starlight.realtime import SessionManager


class DummyWebSocket:
    """Stand-in for a server-side websocket that records outgoing frames."""

    def __init__(self) -> None:
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[dict[str, Any]] = []
        self.close_code: int | None = None

    async def send_json(self, payload: dict[str, Any]) -> None:
        self.sent.append(payload)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.close_code = code
        self.application_state = WebSocketState.DISCONNECTED

    def types(self) -> list[str]:
        return [message["type"] for message in self.sent]

    def last(self, message_type: str) -> dict[str, Any]:
        for message in reversed(self.sent):
            if message["type"] == message_type:
                return message
        raise AssertionError(f"No {message_type!r} frame among {self.types()}")


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_metrics() -> Iterator[None]:
    for metric in registry._metrics.values():
        metric.clear()
    yield
    for metric in registry._metrics.values():
        metric.clear()


@pytest.fixture()
def settings() -> Settings:
    """Settings isolated from the developer's ``.env`` with liveness disabled."""

    return Settings(_env_file=None, heartbeat_interval_seconds=0)


@pytest.fixture()
def application(settings: Settings) -> FastAPI:
    return create_app(settings)


@pytest.fixture()
def client(application: FastAPI) -> Iterator[TestClient]:
    with TestClient(application) as test_client:
        yield test_client


@pytest.fixture()
def manager() -> SessionManager:
    return SessionManager()


@pytest.fixture()
def connect_client(manager: SessionManager):
    """Register a :class:`DummyWebSocket` with the manager and return ``(client, socket)``."""

    async def _connect():
        websocket = DummyWebSocket()
        registered = await manager.connect(websocket)
        return registered, websocket

    return _connect

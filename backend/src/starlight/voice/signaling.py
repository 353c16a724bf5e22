"""Client side of the signaling websocket and the ICE server lookup."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping
from urllib.parse import urlsplit, urlunsplit

import httpx
import websockets
from websockets.exceptions import ConnectionClosed

from .errors import SignalingConnectionError
from .peer import CloseHandler, MessageHandler

logger = logging.getLogger(__name__)

FALLBACK_ICE_SERVERS: List[Dict[str, Any]] = [
    {"urls": "stun:stun.l.google.com:19302"},
    {"urls": "stun:stun1.l.google.com:19302"},
]

Connector = Callable[[str, float], Awaitable[Any]]


async def _default_connector(url: str, open_timeout: float) -> Any:
    # Keepalive is handled at the application level with heartbeat/ping frames.
    return await websockets.connect(url, open_timeout=open_timeout, ping_interval=None)


def http_base_url(ws_url: str) -> str:
    """Map ``ws://host/ws`` to ``http://host`` (and ``wss`` to ``https``)."""

    parts = urlsplit(ws_url)
    scheme = {"ws": "http", "wss": "https"}.get(parts.scheme, parts.scheme)
    return urlunsplit((scheme, parts.netloc, "", "", ""))


async def fetch_ice_servers(
    base_url: str,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    timeout: float = 5.0,
) -> List[Dict[str, Any]]:
    """Return the server's ICE list, or public STUN defaults when unavailable."""

    try:
        async with httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout) as client:
            response = await client.get("/api/ice-servers")
            response.raise_for_status()
            servers = response.json()["iceServers"]
    except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
        logger.warning("Failed to fetch ICE servers, using defaults: %s", exc)
        return [dict(server) for server in FALLBACK_ICE_SERVERS]
    if not isinstance(servers, list) or not servers:
        logger.warning("ICE server response was empty, using defaults")
        return [dict(server) for server in FALLBACK_ICE_SERVERS]
    return servers


class SignalingClient:
    """JSON envelope channel to the signaling server.

    ``on_message`` receives every decoded envelope except server ``ping``
    frames, which are answered with ``pong`` here. ``on_close`` fires once
    when the socket drops without :meth:`close` having been called.
    """

    def __init__(
        self,
        url: str,
        on_message: MessageHandler,
        on_close: CloseHandler | None = None,
        *,
        heartbeat_interval: float = 30.0,
        open_timeout: float = 10.0,
        connector: Connector | None = None,
    ) -> None:
        self._url = url
        self._on_message = on_message
        self._on_close = on_close
        self._heartbeat_interval = heartbeat_interval
        self._open_timeout = open_timeout
        self._connector = connector or _default_connector
        self._websocket: Any | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._closing = False
        self._close_notified = False

    @property
    def url(self) -> str:
        return self._url

    @property
    def is_open(self) -> bool:
        return self._websocket is not None and not self._closing

    async def connect(self) -> None:
        if self.is_open:
            return
        try:
            self._websocket = await self._connector(self._url, self._open_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise SignalingConnectionError(f"Could not open signaling socket {self._url}: {exc}") from exc
        self._closing = False
        self._close_notified = False
        logger.info("Connected to signaling server %s", self._url)
        self._reader_task = asyncio.create_task(self._read_loop(), name="starlight-signaling-reader")
        if self._heartbeat_interval > 0:
            self._heartbeat_task = asyncio.create_task(
                self._heartbeat_loop(), name="starlight-signaling-heartbeat"
            )

    async def send(self, message_type: str, payload: Mapping[str, Any] | None = None) -> bool:
        websocket = self._websocket
        if websocket is None or self._closing:
            return False
        envelope: Dict[str, Any] = {"type": message_type}
        if payload is not None:
            envelope["payload"] = dict(payload)
        try:
            await websocket.send(json.dumps(envelope))
        except (ConnectionClosed, OSError, RuntimeError) as exc:
            logger.debug("Dropping %s frame, socket unavailable: %s", message_type, exc)
            return False
        return True

    async def close(self) -> None:
        if self._closing and self._websocket is None:
            return
        self._closing = True
        websocket, self._websocket = self._websocket, None
        await self._cancel_tasks()
        if websocket is not None:
            with contextlib.suppress(ConnectionClosed, OSError, RuntimeError):
                await websocket.close()
            logger.info("Signaling socket closed")

    async def _cancel_tasks(self) -> None:
        current = asyncio.current_task()
        tasks = [self._heartbeat_task, self._reader_task]
        self._heartbeat_task = None
        self._reader_task = None
        for task in tasks:
            if task is None or task.done():
                continue
            task.cancel()
            if task is current:
                continue
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _read_loop(self) -> None:
        websocket = self._websocket
        try:
            async for raw in websocket:
                try:
                    message = json.loads(raw)
                except (TypeError, ValueError):
                    logger.warning("Skipping undecodable signaling frame")
                    continue
                if not isinstance(message, dict):
                    logger.warning("Skipping non-object signaling frame")
                    continue
                if message.get("type") == "ping":
                    await self.send("pong")
                    continue
                try:
                    await self._on_message(message)
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception("Signaling handler failed for %s", message.get("type"))
        except ConnectionClosed as exc:
            logger.info("Signaling socket dropped: %s", exc)
        finally:
            if self._websocket is websocket:
                await self._handle_drop()

    async def _handle_drop(self) -> None:
        if self._closing or self._close_notified:
            return
        self._close_notified = True
        self._websocket = None
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None
        self._reader_task = None
        logger.warning("Lost connection to signaling server %s", self._url)
        if self._on_close is not None:
            await self._on_close()

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            await self.send("heartbeat")


__all__ = [
    "FALLBACK_ICE_SERVERS",
    "SignalingClient",
    "fetch_ice_servers",
    "http_base_url",
]

"""Periodic liveness sweep reclaiming sockets whose close event never fired."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from app.monitoring.metrics import liveness_terminations_total

from . import protocol
from .managers import SessionManager

logger = logging.getLogger(__name__)


class LivenessMonitor:
    """Ping every client on a fixed interval and terminate silent ones.

    A client is marked not-alive when pinged; any inbound frame (normally the
    ``pong`` answer) marks it alive again. A client still not-alive at the
    next sweep is terminated.
    """

    def __init__(self, manager: SessionManager, interval_seconds: float) -> None:
        self._manager = manager
        self._interval = float(interval_seconds)
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running or self._interval <= 0:
            return
        self._task = asyncio.create_task(self._run(), name="starlight-liveness")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.sweep()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Liveness sweep failed")

    async def sweep(self) -> list[str]:
        """Run one ping round; return the ids of terminated clients."""

        terminated: list[str] = []
        for client in self._manager.registry:
            if not client.is_alive:
                logger.warning("Terminating unresponsive client %s", client.id)
                terminated.append(client.id)
                liveness_terminations_total.inc()
                await self._manager.terminate(client.id)
                continue
            client.is_alive = False
            await self._manager.send(client.id, protocol.ping())
        return terminated

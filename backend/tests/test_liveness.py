from __future__ import annotations

import asyncio

import pytest
from fastapi import status

from app.monitoring.metrics import liveness_terminations_total
from starlight.realtime import LivenessMonitor


@pytest.mark.anyio("asyncio")
async def test_sweep_pings_and_terminates_silent_clients(manager, connect_client) -> None:
    responsive, responsive_socket = await connect_client()
    silent, silent_socket = await connect_client()
    monitor = LivenessMonitor(manager, interval_seconds=30)

    assert await monitor.sweep() == []
    assert responsive_socket.types()[-1] == "ping"
    assert silent_socket.types()[-1] == "ping"
    assert responsive.is_alive is False and silent.is_alive is False

    responsive.touch()
    terminated = await monitor.sweep()

    assert terminated == [silent.id]
    assert silent_socket.close_code == status.WS_1001_GOING_AWAY
    assert silent.id not in manager.registry
    assert responsive.id in manager.registry
    assert liveness_terminations_total.value() == 1


@pytest.mark.anyio("asyncio")
async def test_terminated_client_releases_its_partner(manager, connect_client) -> None:
    first, first_socket = await connect_client()
    second, _ = await connect_client()
    await manager.join_queue(first.id)
    await manager.join_queue(second.id)
    monitor = LivenessMonitor(manager, interval_seconds=30)

    await monitor.sweep()
    first.touch()
    await monitor.sweep()

    assert first.partner_id is None
    assert first_socket.last("partner-disconnected")["payload"]["partnerId"] == second.id
    assert len(manager.rooms) == 0


@pytest.mark.anyio("asyncio")
async def test_monitor_with_zero_interval_does_not_start(manager) -> None:
    monitor = LivenessMonitor(manager, interval_seconds=0)

    monitor.start()

    assert monitor.running is False
    await monitor.stop()


@pytest.mark.anyio("asyncio")
async def test_monitor_runs_sweeps_until_stopped(manager, connect_client) -> None:
    _, socket = await connect_client()
    monitor = LivenessMonitor(manager, interval_seconds=0.01)

    monitor.start()
    monitor.start()
    assert monitor.running is True
    for _ in range(100):
        if "ping" in socket.types():
            break
        await asyncio.sleep(0.01)
    await monitor.stop()

    assert "ping" in socket.types()
    assert monitor.running is False

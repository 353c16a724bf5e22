from __future__ import annotations

import pytest

from app.monitoring.metrics import relay_rejections_total


async def _paired(manager, connect_client):
    first, first_socket = await connect_client()
    second, second_socket = await connect_client()
    await manager.join_queue(first.id)
    room = await manager.join_queue(second.id)
    return (first, first_socket), (second, second_socket), room


@pytest.mark.anyio("asyncio")
async def test_signal_is_delivered_to_current_partner(manager, connect_client) -> None:
    (first, _), (second, second_socket), _ = await _paired(manager, connect_client)
    offer = {"type": "offer", "sdp": "v=0"}

    delivered = await manager.relay_signal(first.id, second.id, offer)

    assert delivered is True
    assert second_socket.last("signal")["payload"] == {"from": first.id, "signal": offer}


@pytest.mark.anyio("asyncio")
async def test_signal_to_non_partner_is_rejected_with_error(manager, connect_client) -> None:
    (first, first_socket), _, _ = await _paired(manager, connect_client)
    stranger, stranger_socket = await connect_client()

    delivered = await manager.relay_signal(first.id, stranger.id, {"candidate": "x"})

    assert delivered is False
    assert "signal" not in stranger_socket.types()
    assert first_socket.last("error")["payload"]["message"] == "Invalid signal target"
    assert relay_rejections_total.value() == 1


@pytest.mark.anyio("asyncio")
async def test_stale_signal_after_repairing_is_rejected(manager, connect_client) -> None:
    (first, first_socket), (second, _), _ = await _paired(manager, connect_client)
    stale_id = second.id
    await manager.handle_disconnect(second.id)

    newcomer, _ = await connect_client()
    await manager.join_queue(first.id)
    await manager.join_queue(newcomer.id)
    assert first.partner_id == newcomer.id

    delivered = await manager.relay_signal(stale_id, first.id, {"type": "answer"})

    assert delivered is False
    assert "signal" not in first_socket.types()
    assert relay_rejections_total.value() == 1


@pytest.mark.anyio("asyncio")
async def test_signal_to_unknown_client_is_rejected(manager, connect_client) -> None:
    client, socket = await connect_client()

    assert await manager.relay_signal(client.id, "nobody", {}) is False
    assert socket.last("error")["payload"]["message"] == "Invalid signal target"


@pytest.mark.anyio("asyncio")
async def test_quality_report_is_forwarded_and_recorded(manager, connect_client) -> None:
    (first, _), (second, second_socket), room = await _paired(manager, connect_client)
    stats = {"connection": {"roundTripTime": 42}}

    assert await manager.relay_quality_report(first.id, stats) is True

    assert second_socket.last("partner-quality")["payload"] == {"stats": stats}
    assert room.quality[first.id] == stats
    assert manager.stats_for(first.id)["roomQuality"] == {first.id: stats}


@pytest.mark.anyio("asyncio")
async def test_quality_report_without_partner_is_dropped(manager, connect_client) -> None:
    client, socket = await connect_client()

    assert await manager.relay_quality_report(client.id, {"audio": {}}) is False
    assert socket.types() == ["connected"]


@pytest.mark.anyio("asyncio")
async def test_media_toggle_is_forwarded(manager, connect_client) -> None:
    (first, first_socket), (second, second_socket), _ = await _paired(manager, connect_client)

    assert await manager.relay_media_toggle(first.id, "audio", False) is True
    assert await manager.relay_media_toggle(second.id, "video", True) is True

    assert second_socket.last("partner-media-toggle")["payload"] == {"type": "audio", "enabled": False}
    assert first_socket.last("partner-media-toggle")["payload"] == {"type": "video", "enabled": True}


@pytest.mark.anyio("asyncio")
async def test_stats_for_reports_connection_and_room(manager, connect_client) -> None:
    (first, _), _, _ = await _paired(manager, connect_client)
    first.touch()
    first.touch()

    stats = manager.stats_for(first.id)

    assert stats["totalConnections"] == 2
    assert stats["totalRooms"] == 1
    assert stats["messagesExchanged"] == 2
    assert stats["connectionDuration"] >= 0
    assert stats["roomDuration"] >= 0

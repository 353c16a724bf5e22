"""Service health and WebRTC bootstrap endpoints."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from app.api.deps import get_app_settings, get_session_manager
from app.config import Settings
from starlight.realtime import SessionManager

router = APIRouter(tags=["system"])


@router.get("/health")
def read_health(manager: SessionManager = Depends(get_session_manager)) -> dict[str, object]:
    """Report liveness together with connection, room and queue counters."""

    return {
        "status": "healthy",
        **manager.health(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/ice-servers")
def read_ice_servers(settings: Settings = Depends(get_app_settings)) -> dict[str, object]:
    """Expose the static ICE server list.

    Dynamic TURN credential issuance would plug in here; credentials come
    from settings as-is.
    """

    return {"iceServers": settings.webrtc_ice_servers_payload}

"""Client-side call lifecycle: signaling, peer session, quality and reconnection."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping

from .config import ClientSettings, get_client_settings
from .errors import MediaAcquisitionError, PeerSessionError, SignalingConnectionError, VoiceError
from .peer import (
    IceServerLoader,
    MediaProvider,
    MediaSource,
    PeerSession,
    PeerSessionFactory,
    SignalingChannel,
    SignalingFactory,
)
from .quality import BitrateMeter, QualityLevel, QualityMonitor, ceiling_for, sample_from_stats
from .signaling import SignalingClient, fetch_ice_servers, http_base_url
from .state import OPERATIONAL_STATES, ConnectionState, ConnectionStateMachine

logger = logging.getLogger(__name__)


def _noop(*_args: Any, **_kwargs: Any) -> None:
    return None


@dataclass(slots=True)
class ControllerCallbacks:
    """Integration points for the UI layer; all are optional."""

    on_state_change: Callable[[ConnectionState], None] = _noop
    on_local_stream: Callable[[MediaSource], None] = _noop
    on_remote_stream: Callable[[Any], None] = _noop
    on_quality_change: Callable[[QualityLevel], None] = _noop
    on_error: Callable[[BaseException], None] = _noop
    on_partner_quality: Callable[[Dict[str, Any]], None] = _noop
    on_partner_media_toggle: Callable[[str, bool], None] = _noop
    on_stats_response: Callable[[Dict[str, Any]], None] = _noop


class ConnectionController:
    """Drives one client through a call.

    All work happens on the running event loop; handlers for signaling and
    peer-session events are coroutines scheduled by their producers. Events
    from a peer session that has since been replaced or torn down are dropped.
    """

    def __init__(
        self,
        media_provider: MediaProvider,
        session_factory: PeerSessionFactory,
        settings: ClientSettings | None = None,
        callbacks: ControllerCallbacks | None = None,
        signaling_factory: SignalingFactory | None = None,
        ice_server_loader: IceServerLoader | None = None,
    ) -> None:
        self._settings = settings or get_client_settings()
        self._callbacks = callbacks or ControllerCallbacks()
        self._media_provider = media_provider
        self._session_factory = session_factory
        self._signaling_factory = signaling_factory or self._default_signaling_factory
        self._ice_server_loader = ice_server_loader or self._default_ice_server_loader

        self._state = ConnectionStateMachine(lambda state: self._callbacks.on_state_change(state))
        self._quality = QualityMonitor(
            lambda level: self._callbacks.on_quality_change(level),
            history_size=self._settings.history_size,
            window=self._settings.quality_window,
        )
        self._audio_meter = BitrateMeter()
        self._video_meter = BitrateMeter()

        self._signaling: SignalingChannel | None = None
        self._session: PeerSession | None = None
        self._session_generation = 0
        self._local_media: MediaSource | None = None
        self._screen_media: MediaSource | None = None
        self._ice_servers: List[Dict[str, Any]] = []
        self._preferences: Dict[str, Any] = {}

        self._sampling_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._reconnect_attempts = 0
        self._destroyed = False

        self.client_id: str | None = None
        self.partner_id: str | None = None
        self.room_id: str | None = None
        self.queue_position: int | None = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------
    @property
    def state(self) -> ConnectionState:
        return self._state.state

    @property
    def quality(self) -> QualityMonitor:
        return self._quality

    @property
    def local_media(self) -> MediaSource | None:
        return self._local_media

    @property
    def session(self) -> PeerSession | None:
        return self._session

    @property
    def ice_servers(self) -> List[Dict[str, Any]]:
        return list(self._ice_servers)

    @property
    def is_screen_sharing(self) -> bool:
        return self._screen_media is not None

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    async def initialize(self) -> None:
        """Load ICE servers, capture local media and open signaling."""

        if self._state.state is not ConnectionState.INITIALIZING:
            raise VoiceError(f"Controller already initialised ({self._state.state})")
        try:
            self._ice_servers = await self._ice_server_loader()
            try:
                self._local_media = await self._media_provider.acquire_user_media()
            except MediaAcquisitionError:
                raise
            except Exception as exc:
                raise MediaAcquisitionError(f"Could not access camera/microphone: {exc}") from exc
            self._callbacks.on_local_stream(self._local_media)
            await self._open_signaling()
        except Exception as exc:
            logger.error("Initialisation failed: %s", exc)
            self._release_local_media()
            self._fail(exc)
            raise
        self._state.transition(ConnectionState.READY)

    async def connect(self, preferences: Mapping[str, Any] | None = None) -> None:
        """Join the matchmaking queue."""

        current = self._state.state
        if current not in (ConnectionState.READY, ConnectionState.DISCONNECTED):
            raise VoiceError(f"Cannot search for a partner while {current}")
        if self._signaling is None or not self._signaling.is_open:
            await self._open_signaling()
        self._preferences = dict(preferences or {})
        self._state.transition(ConnectionState.SEARCHING)
        await self._send("join-queue", {"preferences": self._preferences})

    async def disconnect(self) -> None:
        """Hang up or stop searching; safe in any state."""

        current = self._state.state
        if current is ConnectionState.RECONNECTING:
            self._cancel_reconnect()
            self._reconnect_attempts = 0
            await self._teardown_peer()
            self._clear_pairing()
            self._state.transition(ConnectionState.DISCONNECTED)
            return
        if current not in (
            ConnectionState.SEARCHING,
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
        ):
            return
        await self._send("leave-queue")
        await self._teardown_peer()
        self._clear_pairing()
        if current is ConnectionState.SEARCHING:
            self._state.transition(ConnectionState.READY)
        else:
            self._state.transition(ConnectionState.DISCONNECTED)

    async def toggle_audio(self) -> bool:
        media = self._local_media
        if media is None:
            return False
        enabled = not media.audio_enabled
        media.set_audio_enabled(enabled)
        await self._send("toggle-media", {"type": "audio", "enabled": enabled})
        return enabled

    async def toggle_video(self) -> bool:
        media = self._local_media
        if media is None:
            return False
        enabled = not media.video_enabled
        media.set_video_enabled(enabled)
        await self._send("toggle-media", {"type": "video", "enabled": enabled})
        return enabled

    async def start_screen_share(self) -> bool:
        """Send the display instead of the camera; False when capture failed."""

        if self._screen_media is not None:
            return True
        session = self._session
        if session is None:
            raise PeerSessionError("No active call to share the screen into")
        try:
            screen = await self._media_provider.acquire_display_media()
        except Exception as exc:
            error = exc if isinstance(exc, MediaAcquisitionError) else MediaAcquisitionError(str(exc))
            logger.warning("Screen capture unavailable: %s", error)
            self._callbacks.on_error(error)
            return False
        if session is not self._session:
            screen.stop()
            return False
        await session.replace_outbound_video_track(screen.video_track)
        self._screen_media = screen
        return True

    async def stop_screen_share(self) -> None:
        screen, self._screen_media = self._screen_media, None
        if screen is None:
            return
        screen.stop()
        if self._session is not None and self._local_media is not None:
            await self._session.replace_outbound_video_track(self._local_media.video_track)

    async def request_stats(self) -> bool:
        return await self._send("request-stats")

    async def destroy(self) -> None:
        """Release everything; idempotent and never raises."""

        if self._destroyed:
            return
        self._destroyed = True
        self._cancel_reconnect()
        self._stop_sampling()
        try:
            await self._teardown_peer()
        except Exception:
            logger.exception("Failed to tear down peer session")
        for media in (self._screen_media, self._local_media):
            if media is None:
                continue
            try:
                media.stop()
            except Exception:
                logger.exception("Failed to stop local media")
        self._screen_media = None
        self._local_media = None
        signaling, self._signaling = self._signaling, None
        if signaling is not None:
            try:
                await signaling.close()
            except Exception:
                logger.exception("Failed to close signaling channel")

    async def sample_once(self) -> QualityLevel | None:
        """Take one quality sample; None when there is no live call to measure."""

        session = self._session
        if session is None or self._state.state is not ConnectionState.CONNECTED:
            return None
        generation = self._session_generation
        raw = await session.get_stats()
        if generation != self._session_generation:
            return None
        sample = sample_from_stats(raw, self._audio_meter, self._video_meter)
        level = self._quality.add_sample(sample)
        await self._adapt_bitrate(session, level)
        await self._send("quality-report", {"stats": sample.to_summary()})
        return level

    # ------------------------------------------------------------------
    # Signaling
    # ------------------------------------------------------------------
    def _default_signaling_factory(self, url, on_message, on_close) -> SignalingChannel:
        return SignalingClient(
            url,
            on_message,
            on_close,
            heartbeat_interval=self._settings.heartbeat_interval,
            open_timeout=self._settings.open_timeout,
        )

    async def _default_ice_server_loader(self) -> List[Dict[str, Any]]:
        return await fetch_ice_servers(http_base_url(self._settings.server_url))

    async def _open_signaling(self) -> None:
        channel = self._signaling_factory(
            self._settings.server_url, self._handle_message, self._handle_signaling_close
        )
        await channel.connect()
        self._signaling = channel

    async def _send(self, message_type: str, payload: Mapping[str, Any] | None = None) -> bool:
        channel = self._signaling
        if channel is None or not channel.is_open:
            logger.debug("Not sending %s, signaling is closed", message_type)
            return False
        return await channel.send(message_type, payload)

    async def _handle_message(self, message: Dict[str, Any]) -> None:
        payload = message.get("payload") or {}
        match message.get("type"):
            case "connected":
                self.client_id = payload.get("clientId")
                logger.info("Registered as %s", self.client_id)
            case "waiting":
                self.queue_position = payload.get("position")
            case "left-queue":
                self.queue_position = None
            case "matched":
                await self._on_matched(payload)
            case "signal":
                await self._on_remote_signal(payload)
            case "partner-disconnected":
                if payload.get("partnerId") in (None, self.partner_id):
                    logger.info("Partner %s left", self.partner_id)
                    await self._end_call()
            case "partner-quality":
                self._callbacks.on_partner_quality(payload.get("stats") or {})
            case "partner-media-toggle":
                self._callbacks.on_partner_media_toggle(
                    str(payload.get("type")), bool(payload.get("enabled"))
                )
            case "stats-response":
                self._callbacks.on_stats_response(payload)
            case "heartbeat-ack":
                pass
            case "error":
                logger.warning("Signaling server error: %s", payload.get("message"))
            case other:
                logger.debug("Ignoring unknown signaling message %s", other)

    async def _on_matched(self, payload: Mapping[str, Any]) -> None:
        if self._state.state is not ConnectionState.SEARCHING:
            logger.warning("Ignoring match into %s while %s", payload.get("roomId"), self._state.state)
            await self._send("leave-queue")
            return

        self.partner_id = payload.get("partnerId")
        self.room_id = payload.get("roomId")
        self.queue_position = None
        initiator = bool(payload.get("initiator"))
        self._state.transition(ConnectionState.CONNECTING)

        self._session_generation += 1
        generation = self._session_generation
        try:
            session = await self._session_factory.create(
                initiator=initiator,
                media=self._local_media,
                ice_servers=self._ice_servers,
                on_signal=self._session_handler(generation, self._on_session_signal),
                on_stream=self._session_handler(generation, self._on_session_stream),
                on_error=self._session_handler(generation, self._on_session_error),
                on_close=self._session_handler(generation, self._on_session_close),
            )
        except Exception as exc:
            error = exc if isinstance(exc, PeerSessionError) else PeerSessionError(str(exc))
            logger.error("Could not create peer session: %s", error)
            await self._send("leave-queue")
            self._clear_pairing()
            self._fail(error)
            return
        if generation != self._session_generation:
            await session.close()
            return
        self._session = session
        logger.info("Matched with %s in %s (initiator=%s)", self.partner_id, self.room_id, initiator)

    async def _on_remote_signal(self, payload: Mapping[str, Any]) -> None:
        session = self._session
        if session is None or payload.get("from") != self.partner_id:
            logger.debug("Dropping signal from %s", payload.get("from"))
            return
        await session.signal(payload.get("signal") or {})

    async def _handle_signaling_close(self) -> None:
        self._signaling = None
        if self._destroyed:
            return
        await self._schedule_reconnect()

    # ------------------------------------------------------------------
    # Reconnection
    # ------------------------------------------------------------------
    async def _schedule_reconnect(self) -> None:
        current = self._state.state
        if current not in OPERATIONAL_STATES and current is not ConnectionState.RECONNECTING:
            return
        if self._reconnect_attempts >= self._settings.max_reconnect_attempts:
            await self._give_up_reconnecting()
            return
        self._reconnect_attempts += 1
        if current is not ConnectionState.RECONNECTING:
            self._state.transition(ConnectionState.RECONNECTING)
        self._reconnect_task = asyncio.create_task(
            self._reconnect(self._reconnect_attempts), name="starlight-reconnect"
        )

    async def _reconnect(self, attempt: int) -> None:
        delay = attempt * self._settings.reconnect_base_delay
        logger.info(
            "Reconnecting in %.1fs (attempt %s/%s)",
            delay,
            attempt,
            self._settings.max_reconnect_attempts,
        )
        await asyncio.sleep(delay)
        try:
            await self._open_signaling()
        except SignalingConnectionError as exc:
            logger.warning("Reconnect attempt %s failed: %s", attempt, exc)
            self._reconnect_task = None
            await self._schedule_reconnect()
            return
        self._reconnect_task = None
        self._reconnect_attempts = 0
        resumed = self._state.resume()
        logger.info("Signaling restored, resuming %s", resumed)
        if resumed is ConnectionState.SEARCHING:
            await self._send("join-queue", {"preferences": self._preferences})

    async def _give_up_reconnecting(self) -> None:
        error = SignalingConnectionError(
            f"Gave up reconnecting after {self._settings.max_reconnect_attempts} attempts"
        )
        logger.error("%s", error)
        self._reconnect_attempts = 0
        await self._teardown_peer()
        self._clear_pairing()
        self._state.transition(ConnectionState.DISCONNECTED)
        self._callbacks.on_error(error)

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # ------------------------------------------------------------------
    # Peer session
    # ------------------------------------------------------------------
    def _session_handler(self, generation: int, handler):
        async def dispatch(*args: Any) -> None:
            if generation != self._session_generation:
                logger.debug("Ignoring event from a stale peer session")
                return
            await handler(*args)

        return dispatch

    async def _on_session_signal(self, data: Dict[str, Any]) -> None:
        await self._send("signal", {"to": self.partner_id, "signal": data})

    async def _on_session_stream(self, stream: Any) -> None:
        self._callbacks.on_remote_stream(stream)
        if self._state.state is ConnectionState.CONNECTING:
            self._state.transition(ConnectionState.CONNECTED)
            self._start_sampling()

    async def _on_session_error(self, error: BaseException) -> None:
        logger.warning("Peer session error: %s", error)
        self._callbacks.on_error(error)
        await self._send("leave-queue")
        await self._end_call()

    async def _on_session_close(self) -> None:
        await self._end_call()

    async def _end_call(self) -> None:
        await self._teardown_peer()
        self._clear_pairing()
        if self._state.state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            self._state.transition(ConnectionState.DISCONNECTED)
        elif self._state.state is ConnectionState.RECONNECTING:
            self._state.set_resume_state(ConnectionState.DISCONNECTED)

    async def _teardown_peer(self) -> None:
        self._session_generation += 1
        self._stop_sampling()
        session, self._session = self._session, None
        screen, self._screen_media = self._screen_media, None
        if screen is not None:
            screen.stop()
        self._quality.reset()
        self._audio_meter.reset()
        self._video_meter.reset()
        if session is None:
            return
        try:
            await session.close()
        except Exception:
            logger.exception("Failed to close peer session")

    def _release_local_media(self) -> None:
        media, self._local_media = self._local_media, None
        if media is None:
            return
        try:
            media.stop()
        except Exception:
            logger.exception("Failed to stop local media")

    def _clear_pairing(self) -> None:
        self.partner_id = None
        self.room_id = None
        self.queue_position = None

    # ------------------------------------------------------------------
    # Quality
    # ------------------------------------------------------------------
    def _start_sampling(self) -> None:
        if self._sampling_task is not None and not self._sampling_task.done():
            return
        self._sampling_task = asyncio.create_task(self._sampling_loop(), name="starlight-quality")

    def _stop_sampling(self) -> None:
        task, self._sampling_task = self._sampling_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _sampling_loop(self) -> None:
        while True:
            await asyncio.sleep(self._settings.sample_interval)
            try:
                await self.sample_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Quality sampling failed")

    async def _adapt_bitrate(self, session: PeerSession, level: QualityLevel) -> None:
        ceiling = ceiling_for(level)
        if ceiling is None:
            await session.set_outbound_bitrate_ceiling(None, None)
        else:
            await session.set_outbound_bitrate_ceiling(ceiling.video_bps, ceiling.audio_bps)
        logger.debug("Applied %s bitrate ceiling", level)

    def _fail(self, error: BaseException) -> None:
        if self._state.can(ConnectionState.ERROR):
            self._state.transition(ConnectionState.ERROR)
        self._callbacks.on_error(error)


__all__ = ["ConnectionController", "ControllerCallbacks"]

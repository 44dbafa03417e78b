"""
Client sync agent

Bridges one page's video and the relay connection:

- authenticates with the shared access key when the socket opens
- reports local play / pause / seek / rate changes as state-update events
- applies state-updates from other participants, suppressing the echo the
  apply would otherwise produce
- reconnects on a fixed delay after the connection drops
"""
import asyncio
import contextlib
import enum
import json
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

import aiohttp

from relay import protocol
from relay.errors import ProtocolError
from relay.protocol import PlaybackState

from .video import TIME_UPDATE, USER_EVENTS, VideoHandle, find_video, read_state

logger = logging.getLogger("syncwatch.agent")


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    AUTHENTICATED = "authenticated"


@dataclass
class AgentConfig:
    """Timings in seconds"""

    check_interval: float = 1.0
    state_update_interval: float = 0.5
    reconnect_delay: float = 5.0
    suppress_window: float = 0.2
    # outgoing: report when local time moved this far from the last report
    drift_threshold: float = 1.0
    # incoming: only seek when further off than this
    seek_tolerance: float = 0.5


class SyncAgent:
    """Keeps one page video in step with the other room participants

    `discover` returns the video handles currently on the page.
    """

    def __init__(self, discover: Callable[[], Sequence[VideoHandle]],
                 config: Optional[AgentConfig] = None,
                 session: Optional[aiohttp.ClientSession] = None):
        self.discover = discover
        self.config = config or AgentConfig()
        self._session = session
        self._owns_session = session is None

        self.web_socket_url: Optional[str] = None
        self.access_key: Optional[str] = None
        self.connection_state = ConnectionState.DISCONNECTED
        self.participants = 0
        self.error: Optional[str] = None

        self.video: Optional[VideoHandle] = None
        self.last_reported: Optional[PlaybackState] = None
        self.suppress_outgoing = False
        self.active = False

        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        # bumped by every connect/disconnect; stale readers check it
        self._generation = 0
        self._reader: Optional[asyncio.Task] = None
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._release_handle: Optional[asyncio.TimerHandle] = None
        self._pending_state: Optional[PlaybackState] = None
        self._detect_task: Optional[asyncio.Task] = None
        self._poll_task: Optional[asyncio.Task] = None

    @property
    def connected(self) -> bool:
        return self.connection_state in (
            ConnectionState.CONNECTED, ConnectionState.AUTHENTICATED
        )

    @property
    def authenticated(self) -> bool:
        return self.connection_state == ConnectionState.AUTHENTICATED

    # ============================================================
    # EXTENSION ENTRY POINTS
    # ============================================================

    def get_state(self) -> dict:
        return {
            "connected": self.connected,
            "authenticated": self.authenticated,
            "participants": self.participants,
            "webSocketUrl": self.web_socket_url,
            "accessKey": self.access_key,
            "error": self.error,
            "videoDetected": self.video is not None,
            "hasVideo": self.video is not None,
        }

    async def handle_extension_message(self, request: dict) -> Optional[dict]:
        """Answer the popup's get-state and connect requests"""
        request_type = request.get("type")
        if request_type == "get-state":
            return self.get_state()
        if request_type == "connect":
            logger.info("Received connect request from popup: %s", request.get("wsUrl"))
            success = await self.connect(request.get("wsUrl"), request.get("accessKey"))
            return {"success": success}
        return None

    # ============================================================
    # CONNECTION LIFECYCLE
    # ============================================================

    async def connect(self, url: Optional[str], access_key: Optional[str]) -> bool:
        """Connect to the relay, replacing any existing connection"""
        if not url or not access_key:
            logger.warning("WebSocket URL or access key not configured")
            return False

        self.web_socket_url = url
        self.access_key = access_key
        self.error = None
        await self._open()
        return True

    async def disconnect(self) -> None:
        logger.info("Disconnecting from server")
        self._cancel_reconnect()
        self._generation += 1
        await self._close_transport()
        self.connection_state = ConnectionState.DISCONNECTED
        await self._stop_detection()

    async def close(self) -> None:
        """Disconnect and release the HTTP session if the agent made it"""
        await self.disconnect()
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def _open(self) -> None:
        self._cancel_reconnect()
        self._generation += 1
        generation = self._generation

        await self._close_transport()
        if generation != self._generation:
            return

        self.connection_state = ConnectionState.CONNECTING
        self._start_detection()
        logger.info("Attempting WebSocket connection: %s", self.web_socket_url)
        self._reader = asyncio.create_task(self._run(generation))

    async def _run(self, generation: int) -> None:
        try:
            ws = await self._get_session().ws_connect(self.web_socket_url)
        except (aiohttp.ClientError, OSError) as e:
            logger.error("WebSocket connection failed: %s", e)
            self.error = "Connection error"
            self._on_close(generation)
            return

        self._ws = ws
        try:
            logger.info("WebSocket connected successfully")
            self.connection_state = ConnectionState.CONNECTED
            await ws.send_json(protocol.auth_event(self.access_key))
            logger.debug("Sent authentication request")

            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._handle_message(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.error("WebSocket error: %s", ws.exception())
                    self.error = "Connection error"
        except ConnectionResetError as e:
            logger.error("WebSocket error: %s", e)
            self.error = "Connection error"
        finally:
            await ws.close()
            self._on_close(generation)

    def _on_close(self, generation: int) -> None:
        if generation != self._generation:
            return

        logger.info("WebSocket disconnected")
        self._ws = None
        self.connection_state = ConnectionState.DISCONNECTED
        self._reconnect_handle = asyncio.get_running_loop().call_later(
            self.config.reconnect_delay, self._reconnect
        )

    def _reconnect(self) -> None:
        self._reconnect_handle = None
        if not self.web_socket_url or not self.access_key:
            return
        logger.info("Attempting to reconnect...")
        self._reconnect_task = asyncio.create_task(self._open())

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _close_transport(self) -> None:
        reader, self._reader = self._reader, None
        ws, self._ws = self._ws, None

        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        if ws is not None and not ws.closed:
            await ws.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    # ============================================================
    # INCOMING
    # ============================================================

    def _handle_message(self, raw: str) -> None:
        try:
            message = json.loads(raw)
        except ValueError:
            logger.error("Error parsing message: %r", raw)
            return
        if not isinstance(message, dict):
            logger.error("Ignoring non-object message: %r", raw)
            return

        message_type = message.get("type")
        if message_type == protocol.AUTHENTICATED:
            self.connection_state = ConnectionState.AUTHENTICATED
            self.participants = message.get("participants", 0)
            # our idle state is not news to the room
            if self.video is not None:
                self.last_reported = read_state(self.video)
            logger.info("Authentication successful. Participants: %s", self.participants)
        elif message_type == protocol.SYNC:
            if message.get("action") != protocol.STATE_UPDATE:
                return
            try:
                state = PlaybackState.from_dict(message.get("data"))
            except ProtocolError:
                logger.warning("Ignoring malformed state-update: %r", message.get("data"))
                return
            self.apply_video_state(state)
        elif message_type == protocol.PARTICIPANT_UPDATE:
            self.participants = message.get("participants", 0)
            logger.info("Participants updated: %s", self.participants)
        elif message_type == protocol.ERROR:
            self.error = message.get("message")
            logger.error("Server error: %s", self.error)
        elif message_type == protocol.WELCOME:
            logger.info("Server: %s", message.get("message"))

    def apply_video_state(self, state: PlaybackState) -> bool:
        """Apply a remote state to the local video without echoing it back

        Returns False when there is no video yet; the state is then kept
        and applied once one is found.
        """
        video = self.video
        if video is None:
            self._pending_state = state
            return False

        self.suppress_outgoing = True
        logger.info(
            "Applying received video state: currentTime=%.2f paused=%s",
            state.current_time, state.paused,
        )

        try:
            if video.paused != state.paused:
                if state.paused:
                    logger.debug("Pausing video")
                    video.pause()
                else:
                    logger.debug("Playing video")
                    try:
                        video.play()
                    except Exception as e:
                        logger.warning("Play failed: %s", e)

            if abs(video.current_time - state.current_time) > self.config.seek_tolerance:
                logger.debug(
                    "Seeking from %.2f to %.2f", video.current_time, state.current_time
                )
                video.current_time = state.current_time

            if video.playback_rate != state.playback_rate:
                video.playback_rate = state.playback_rate
        finally:
            self.last_reported = read_state(video)
            self._schedule_release()

        return True

    def _schedule_release(self) -> None:
        if self._release_handle is not None:
            self._release_handle.cancel()
        self._release_handle = asyncio.get_running_loop().call_later(
            self.config.suppress_window, self._release_suppression
        )

    def _release_suppression(self) -> None:
        self._release_handle = None
        self.suppress_outgoing = False

    # ============================================================
    # OUTGOING
    # ============================================================

    async def handle_video_event(self, video: VideoHandle, event: str) -> None:
        """Feed a media event fired by one of the page's videos"""
        if video is not self.video:
            if event == "play" and self.active:
                logger.info("Detected video play event, switching to playing video")
                await self.check_for_video()
            return

        if event in USER_EVENTS:
            if self.suppress_outgoing:
                logger.debug("Video event (controlled): %s - skipping sync", event)
                return
            await self.send_video_state()
        elif event == TIME_UPDATE:
            await self._report_drift()

    async def send_video_state(self) -> bool:
        """Send the local state if it changed since the last report"""
        ws = self._ws
        if self.video is None or ws is None or ws.closed or not self.authenticated:
            return False
        if self.suppress_outgoing:
            return False

        state = read_state(self.video)
        if state == self.last_reported:
            return False

        self.last_reported = state
        try:
            await ws.send_json(protocol.sync_event(protocol.STATE_UPDATE, state))
        except ConnectionResetError as e:
            logger.error("Failed to send video state: %s", e)
            return False

        logger.debug(
            "Sent video state: currentTime=%.2f paused=%s",
            state.current_time, state.paused,
        )
        return True

    async def _report_drift(self) -> None:
        if self.video is None or self.suppress_outgoing:
            return

        state = read_state(self.video)
        last = self.last_reported
        if (last is None
                or abs(state.current_time - last.current_time) > self.config.drift_threshold
                or state.paused != last.paused
                or state.playback_rate != last.playback_rate):
            await self.send_video_state()

    # ============================================================
    # VIDEO DETECTION
    # ============================================================

    async def check_for_video(self) -> None:
        """Re-run discovery and follow whichever video wins"""
        if not self.active:
            return

        found = find_video(self.discover())

        if found is not None and found is not self.video:
            if self.video is not None:
                logger.info("Switching from old video to new video")
            self.video = found
            logger.info(
                "Video element attached: src=%s paused=%s currentTime=%.2f",
                found.src, found.paused, found.current_time,
            )

            if self._pending_state is not None:
                state, self._pending_state = self._pending_state, None
                self.apply_video_state(state)
            else:
                await self.send_video_state()
        elif found is None and self.video is not None:
            logger.info("Video element lost")
            self.video = None
            self.last_reported = None

    async def notify_mutation(self) -> None:
        """DOM changed under us"""
        await self.check_for_video()

    def _start_detection(self) -> None:
        if self.active:
            return
        self.active = True
        logger.info("Starting video detection")
        self._detect_task = asyncio.create_task(self._detect_loop())
        self._poll_task = asyncio.create_task(self._poll_loop())

    async def _stop_detection(self) -> None:
        if not self.active:
            return
        self.active = False
        logger.info("Stopping video detection")

        tasks = [t for t in (self._detect_task, self._poll_task) if t is not None]
        self._detect_task = self._poll_task = None
        for task in tasks:
            if task is not asyncio.current_task():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        if self._release_handle is not None:
            self._release_handle.cancel()
            self._release_handle = None
        self.suppress_outgoing = False
        self.video = None
        self.last_reported = None
        self._pending_state = None

    async def _detect_loop(self) -> None:
        while True:
            try:
                await self.check_for_video()
            except Exception:
                logger.exception("Video detection failed")
            await asyncio.sleep(self.config.check_interval)

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.state_update_interval)
            try:
                await self._report_drift()
            except Exception:
                logger.exception("State poll failed")

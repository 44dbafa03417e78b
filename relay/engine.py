"""
Relay protocol engine

Authenticates connections against the shared access key, records the
room's playback state and fans sync events out to the other participants.
Handlers are synchronous: connections queue outbound frames, so one
message is fully handled before the next is looked at.
"""
import logging
from typing import Optional

from . import protocol
from .errors import (
    AuthError, AuthorizationError, DeliveryError, ProtocolError, RelayError
)
from .state import RoomState, SessionRegistry

logger = logging.getLogger("syncwatch")


class Relay:
    """Single-room relay: one registry, one room state"""

    def __init__(self, access_key: str,
                 registry: Optional[SessionRegistry] = None,
                 room: Optional[RoomState] = None):
        self.access_key = access_key
        self.registry = registry if registry is not None else SessionRegistry()
        self.room = room if room is not None else RoomState()

    # ============================================================
    # CONNECTION EVENTS
    # ============================================================

    def on_connect(self, connection) -> None:
        self.registry.add(connection)
        logger.info("🔌 New connection (open: %d)", len(self.registry))
        self._reply(connection, protocol.welcome_event())

    def on_message(self, connection, raw) -> None:
        """Handle one inbound frame; errors go back to the sender only"""
        try:
            event = protocol.parse_event(raw)
            if connection not in self.registry:
                return
            self._dispatch(connection, event)
        except RelayError as e:
            logger.warning("Rejected message: %s", e.message)
            self._reply(connection, protocol.error_event(e.message))

    def on_disconnect(self, connection) -> None:
        if connection not in self.registry:
            return
        was_authenticated = self.registry.remove(connection)
        logger.info("WebSocket connection closed (open: %d)", len(self.registry))

        if was_authenticated:
            participants = self.registry.count()
            self.broadcast(protocol.participant_update_event(participants))
            logger.info("👋 Participant left. Remaining participants: %d", participants)

    def on_transport_error(self, connection, exc) -> None:
        # cleanup happens when the transport reports the close
        logger.error("WebSocket error: %s", exc)

    # ============================================================
    # BROADCAST
    # ============================================================

    def broadcast(self, event: dict, excluding=None) -> int:
        """Send event to every authenticated connection but `excluding`"""
        sent = 0
        for connection in self.registry.authenticated(excluding=excluding):
            try:
                connection.send(event)
                sent += 1
            except DeliveryError as e:
                logger.debug("Failed to send to connection: %s", e)

        if sent:
            logger.debug("Broadcast %s sent to %d client(s)", event.get("type"), sent)
        return sent

    # ============================================================
    # MESSAGE HANDLERS
    # ============================================================

    def _dispatch(self, connection, event: dict) -> None:
        event_type = event.get("type")
        logger.debug("Received message: %s", event_type)

        if event_type == protocol.AUTH:
            self._handle_auth(connection, event)
        elif event_type == protocol.SYNC:
            if not self.registry.is_authenticated(connection):
                raise AuthorizationError(protocol.UNAUTHORIZED)
            self._handle_sync(connection, event)
        else:
            raise ProtocolError(protocol.UNKNOWN_TYPE)

    def _handle_auth(self, connection, event: dict) -> None:
        access_key = event.get("accessKey")
        # TODO: compare with hmac.compare_digest (plain == leaks timing)
        if not isinstance(access_key, str) or access_key != self.access_key:
            raise AuthError(protocol.INVALID_KEY)

        self.registry.mark_authenticated(connection)
        participants = self.registry.count()

        self._reply(connection, protocol.authenticated_event(participants))
        self.broadcast(
            protocol.participant_update_event(participants),
            excluding=connection,
        )

        if self.room.state is not None:
            self._reply(
                connection,
                protocol.sync_event(protocol.STATE_UPDATE, self.room.state),
            )

        logger.info("✅ Client authenticated. Total participants: %d", participants)

    def _handle_sync(self, connection, event: dict) -> None:
        action = event.get("action")
        if not isinstance(action, str):
            raise ProtocolError(protocol.INVALID_FORMAT)
        data = event.get("data")

        if action == protocol.STATE_UPDATE and data is not None:
            # validated, but stored and relayed exactly as received
            state = protocol.PlaybackState.from_dict(data)
            self.room.update(data)
            logger.info(
                "🎬 Sync %s: currentTime=%.2f paused=%s",
                action, state.current_time, state.paused,
            )
        else:
            logger.info("🎬 Sync %s", action)

        self.broadcast(protocol.sync_event(action, data), excluding=connection)

    def _reply(self, connection, event: dict) -> None:
        try:
            connection.send(event)
        except DeliveryError as e:
            logger.debug("Failed to reply to connection: %s", e)

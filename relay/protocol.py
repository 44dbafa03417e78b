"""
Wire protocol shared by the relay and the sync agent

Frames are JSON text objects tagged by "type".
"""
import json
from dataclasses import dataclass
from numbers import Real
from typing import Any, Dict, Optional, Union

from .errors import ProtocolError

# Event types
WELCOME = "welcome"
AUTH = "auth"
AUTHENTICATED = "authenticated"
PARTICIPANT_UPDATE = "participant-update"
SYNC = "sync"
ERROR = "error"

# Sync actions
STATE_UPDATE = "state-update"

# Error messages sent to clients
INVALID_FORMAT = "Invalid message format"
UNKNOWN_TYPE = "Unknown message type"
INVALID_KEY = "Invalid access key"
UNAUTHORIZED = "Unauthorized"

WELCOME_MESSAGE = "Connected to sync server. Please authenticate."


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


@dataclass(frozen=True)
class PlaybackState:
    """Snapshot of the shared video: position, paused flag and rate"""

    current_time: float
    paused: bool
    playback_rate: float

    @classmethod
    def from_dict(cls, data: Any) -> "PlaybackState":
        """Decode the wire form, raising ProtocolError on bad values"""
        if not isinstance(data, dict):
            raise ProtocolError(INVALID_FORMAT)

        current_time = data.get("currentTime")
        paused = data.get("paused")
        playback_rate = data.get("playbackRate")

        if not _is_number(current_time) or current_time < 0:
            raise ProtocolError(INVALID_FORMAT)
        if not isinstance(paused, bool):
            raise ProtocolError(INVALID_FORMAT)
        if not _is_number(playback_rate) or playback_rate <= 0:
            raise ProtocolError(INVALID_FORMAT)

        return cls(
            current_time=float(current_time),
            paused=paused,
            playback_rate=float(playback_rate),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currentTime": self.current_time,
            "paused": self.paused,
            "playbackRate": self.playback_rate,
        }


# ============================================================
# EVENT BUILDERS
# ============================================================

def welcome_event(message: str = WELCOME_MESSAGE) -> dict:
    return {"type": WELCOME, "message": message}


def auth_event(access_key: str) -> dict:
    return {"type": AUTH, "accessKey": access_key}


def authenticated_event(participants: int) -> dict:
    return {"type": AUTHENTICATED, "participants": participants}


def participant_update_event(participants: int) -> dict:
    return {"type": PARTICIPANT_UPDATE, "participants": participants}


def sync_event(action: str, data: Optional[Any] = None) -> dict:
    """Build a sync event; data is left out of the frame when absent"""
    event = {"type": SYNC, "action": action}
    if isinstance(data, PlaybackState):
        data = data.to_dict()
    if data is not None:
        event["data"] = data
    return event


def error_event(message: str) -> dict:
    return {"type": ERROR, "message": message}


# ============================================================
# FRAME PARSING
# ============================================================

def parse_event(raw: Union[str, bytes]) -> dict:
    """Decode one frame into an event dict

    Raises ProtocolError when the frame is not a JSON object. The "type"
    key is not checked here.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            raise ProtocolError(INVALID_FORMAT)

    try:
        event = json.loads(raw)
    except ValueError:
        raise ProtocolError(INVALID_FORMAT)

    if not isinstance(event, dict):
        raise ProtocolError(INVALID_FORMAT)
    return event


def encode_event(event: dict) -> str:
    return json.dumps(event)

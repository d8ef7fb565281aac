"""
Wire codec for the room relay.

One JSON object per frame with a mandatory ``type`` discriminator. The
relay stamps ``sender`` on every frame it fans out; clients never send it
except inside ``typing``. The very first frame on a connection is the bare
identity string and is not handled here.
"""
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union

from .errors import MalformedFrameError

logger = logging.getLogger(__name__)

PLAY = "play"
PAUSE = "pause"


def ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class ChatFrame:
    type: ClassVar[str] = "message"
    content: str
    timestamp: int
    sender: str = ""

    def to_wire(self) -> Dict[str, Any]:
        return {"type": self.type, "content": self.content, "timestamp": self.timestamp}


@dataclass(frozen=True)
class PresenceFrame:
    type: ClassVar[str] = "presence"
    users: Tuple[str, ...] = ()

    def to_wire(self) -> Dict[str, Any]:
        return {"type": self.type, "users": list(self.users)}


@dataclass(frozen=True)
class TypingFrame:
    type: ClassVar[str] = "typing"
    sender: str

    def to_wire(self) -> Dict[str, Any]:
        return {"type": self.type, "sender": self.sender}


@dataclass(frozen=True)
class VideoFrame:
    type: ClassVar[str] = "video"
    video_url: str
    playback_state: str
    current_time: float
    queue: Tuple[str, ...]
    index: int
    timestamp: int = 0
    sender: str = ""

    def to_wire(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "videoUrl": self.video_url,
            "playbackState": self.playback_state,
            "currentTime": self.current_time,
            "queue": list(self.queue),
            "index": self.index,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class SyncRequest:
    type: ClassVar[str] = "sync"
    timestamp: int

    def to_wire(self) -> Dict[str, Any]:
        return {"type": self.type, "timestamp": self.timestamp}


@dataclass(frozen=True)
class SyncResponse:
    """Relay's answer to a `SyncRequest`; `video_url` is empty when the room has nothing playing."""

    type: ClassVar[str] = "sync"
    video_url: str = ""
    playback_state: str = PAUSE
    current_time: float = 0.0
    queue: Tuple[str, ...] = field(default_factory=tuple)
    index: int = 0
    sender: str = ""

    @property
    def has_video(self) -> bool:
        return bool(self.video_url)

    def to_wire(self) -> Dict[str, Any]:
        wire: Dict[str, Any] = {
            "type": self.type,
            "playbackState": self.playback_state,
            "currentTime": self.current_time,
            "queue": list(self.queue),
            "index": self.index,
        }
        if self.video_url:
            wire["videoUrl"] = self.video_url
        return wire


@dataclass(frozen=True)
class WatchHoursFrame:
    type: ClassVar[str] = "watchHours"
    watch_hours: Optional[float]
    sender: str = ""

    def to_wire(self) -> Dict[str, Any]:
        return {"type": self.type, "watchHours": self.watch_hours}


Frame = Union[
    ChatFrame,
    PresenceFrame,
    TypingFrame,
    VideoFrame,
    SyncRequest,
    SyncResponse,
    WatchHoursFrame,
]


def encode(frame: Frame) -> str:
    return json.dumps(frame.to_wire())


# ----------------------------
# Field helpers
# ----------------------------


def _str(obj: Dict[str, Any], key: str, default: str = "") -> str:
    value = obj.get(key)
    if value is None:
        return default
    if not isinstance(value, str):
        raise MalformedFrameError(f"{key!r} must be a string", obj)
    return value


def _number(obj: Dict[str, Any], key: str, default: float = 0.0) -> float:
    value = obj.get(key)
    if value is None:
        return default
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedFrameError(f"{key!r} must be a number", obj)
    return float(value)


def _int(obj: Dict[str, Any], key: str, default: int = 0) -> int:
    value = _number(obj, key, default)
    if value != int(value):
        raise MalformedFrameError(f"{key!r} must be an integer", obj)
    return int(value)


def _str_list(obj: Dict[str, Any], key: str) -> Tuple[str, ...]:
    value = obj.get(key)
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise MalformedFrameError(f"{key!r} must be a list of strings", obj)
    return tuple(value)


def _playback_state(obj: Dict[str, Any]) -> str:
    state = _str(obj, "playbackState", PAUSE) or PAUSE
    # the relay treats "stop" as a paused player
    if state == "stop":
        return PAUSE
    if state not in (PLAY, PAUSE):
        raise MalformedFrameError(f"unknown playbackState {state!r}", obj)
    return state


# ----------------------------
# Decoders
# ----------------------------


def _decode_message(obj):
    return ChatFrame(
        content=_str(obj, "content"),
        timestamp=_int(obj, "timestamp", 0),
        sender=_str(obj, "sender"),
    )


def _decode_presence(obj):
    return PresenceFrame(users=_str_list(obj, "users"))


def _decode_typing(obj):
    return TypingFrame(sender=_str(obj, "sender"))


def _decode_video(obj):
    return VideoFrame(
        video_url=_str(obj, "videoUrl"),
        playback_state=_playback_state(obj),
        current_time=_number(obj, "currentTime"),
        queue=_str_list(obj, "queue"),
        index=_int(obj, "index", 0),
        timestamp=_int(obj, "timestamp", 0),
        sender=_str(obj, "sender"),
    )


def _decode_sync(obj):
    # clients only ever receive the response half of the handshake
    return SyncResponse(
        video_url=_str(obj, "videoUrl"),
        playback_state=_playback_state(obj),
        current_time=_number(obj, "currentTime"),
        queue=_str_list(obj, "queue"),
        index=_int(obj, "index", 0),
        sender=_str(obj, "sender"),
    )


def _decode_watch_hours(obj):
    # the relay omits a zero value, so absence means "not reported"
    hours = None if obj.get("watchHours") is None else _number(obj, "watchHours")
    return WatchHoursFrame(watch_hours=hours, sender=_str(obj, "sender"))


_DECODERS = {
    ChatFrame.type: _decode_message,
    PresenceFrame.type: _decode_presence,
    TypingFrame.type: _decode_typing,
    VideoFrame.type: _decode_video,
    SyncResponse.type: _decode_sync,
    WatchHoursFrame.type: _decode_watch_hours,
}

KNOWN_TYPES: List[str] = sorted(_DECODERS)


def decode(raw: Union[str, bytes]) -> Optional[Frame]:
    """
    Parse one inbound frame.

    Raises MalformedFrameError for undecodable payloads or a missing `type`.
    Returns None for well-formed frames of a type this client does not use.
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedFrameError(f"invalid utf-8: {e}", raw) from e
    try:
        obj = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedFrameError(f"invalid json: {e}", raw) from e

    if not isinstance(obj, dict):
        raise MalformedFrameError("frame is not an object", raw)
    mtype = obj.get("type")
    if not isinstance(mtype, str) or not mtype:
        raise MalformedFrameError("missing type", raw)

    decoder = _DECODERS.get(mtype)
    if decoder is None:
        logger.debug("Ignoring frame of unknown type %r", mtype)
        return None
    return decoder(obj)

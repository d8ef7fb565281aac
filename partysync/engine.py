"""
Room engine: one relay connection feeding presence, chat, playback and
watch-time state.

Inbound frames flow transport -> codec -> component. Outbound changes go
through `_send`, which refuses (and logs) while no session is open.

Every transport callback is bound to the generation of the session that
produced it; callbacks from a superseded session are ignored.
"""
import logging
from functools import partial
from typing import Callable, List, Optional

from .chat import ChatLog, ChatMessage
from .config import Settings
from .errors import MalformedFrameError
from .playback import PlaybackState, PlaybackSynchronizer, SyncStatus
from .presence import Participant, PresenceTracker
from .protocol import (
    ChatFrame,
    PresenceFrame,
    SyncResponse,
    TypingFrame,
    VideoFrame,
    WatchHoursFrame,
    decode,
    encode,
)
from .reconnect import ReconnectionController
from .scheduler import LoopScheduler
from .storage import MemoryStore
from .transport import ConnectionState, TransportSession
from .watchtime import WatchTimeAccumulator

logger = logging.getLogger(__name__)


class RoomEngine:
    def __init__(
        self,
        identity: str,
        settings: Optional[Settings] = None,
        store=None,
        scheduler=None,
        session_cls=TransportSession,
        on_video_state_change: Optional[Callable[[PlaybackState], None]] = None,
        on_status_change: Optional[Callable[["RoomEngine"], None]] = None,
        on_chat_message: Optional[Callable[[ChatMessage], None]] = None,
        on_presence_change: Optional[Callable[[List[Participant]], None]] = None,
        on_typing_change: Optional[Callable[[List[str]], None]] = None,
    ):
        if not identity:
            raise ValueError("identity is required")
        self.identity = identity
        self.settings = settings or Settings()
        self.store = store if store is not None else MemoryStore()
        self.scheduler = scheduler or LoopScheduler()
        self._session_cls = session_cls
        self._on_status_change = on_status_change
        self._on_presence_change = on_presence_change

        self.connected = False
        self.last_error: Optional[Exception] = None

        self.controller = ReconnectionController(
            self.scheduler,
            self._make_session,
            identity,
            self.settings,
            on_exhausted=self._status_changed,
        )
        self.watch_time = WatchTimeAccumulator(
            identity,
            self.store,
            self.scheduler,
            self._send,
            self._is_ready,
            self.settings,
            on_change=self._local_watch_hours_changed,
        )
        self.presence = PresenceTracker(identity, self.watch_time.hours)
        self.chat = ChatLog(
            identity,
            self.scheduler,
            self._send,
            self.settings,
            on_message=on_chat_message,
            on_typing_change=on_typing_change,
        )
        self.playback = PlaybackSynchronizer(
            identity,
            self.scheduler,
            self._send,
            self._is_ready,
            self.settings,
            on_state_change=on_video_state_change,
            on_status_change=lambda status: self._status_changed(),
            on_playing_change=self.watch_time.set_active,
        )

    # ---------- status ----------

    @property
    def connection_state(self) -> ConnectionState:
        return self.controller.state

    @property
    def exhausted(self) -> bool:
        return self.controller.exhausted

    @property
    def sync_status(self) -> SyncStatus:
        return self.playback.status

    def _status_changed(self):
        if self._on_status_change:
            self._on_status_change(self)

    def _presence_changed(self):
        if self._on_presence_change:
            self._on_presence_change(self.presence.participants)

    def _local_watch_hours_changed(self, hours: float):
        self.presence.note_local_watch_hours(hours)
        self._presence_changed()

    # ---------- lifecycle ----------

    def start(self):
        if self.connected:
            # the controller retires the open session without a close event
            self.connected = False
            self.playback.on_disconnected()
        self.controller.start()
        self.watch_time.set_active(self.playback.state.is_playing)
        self._status_changed()

    def stop(self):
        """Tear everything down; nothing mutates engine state afterwards."""
        self.controller.shutdown()
        self.playback.stop()
        self.chat.stop()
        self.watch_time.stop()
        if self.connected:
            self.connected = False
            self._status_changed()

    # ---------- transport plumbing ----------

    def _make_session(self, generation: int):
        return self._session_cls(
            self.settings.ws_url,
            generation,
            on_open=partial(self._handle_open, generation),
            on_message=partial(self._handle_message, generation),
            on_close=partial(self._handle_close, generation),
            on_error=partial(self._handle_error, generation),
        )

    def _is_current(self, generation: int) -> bool:
        if self.controller.is_current(generation):
            return True
        logger.debug("Ignoring event from stale session generation %d", generation)
        return False

    def _is_ready(self) -> bool:
        session = self.controller.session
        return self.connected and session is not None and session.is_open

    def _send(self, frame) -> bool:
        session = self.controller.session
        if not self.connected or session is None:
            logger.warning("Not connected, cannot send %s frame", frame.type)
            return False
        return session.send(encode(frame))

    def _handle_open(self, generation: int):
        if not self._is_current(generation):
            return
        logger.info("Connected to %s as %s", self.settings.ws_url, self.identity)
        self.controller.handle_open()
        self.connected = True
        self.last_error = None
        self._status_changed()
        self.playback.on_connected()
        self.watch_time.on_connected()

    def _handle_close(self, generation: int, code: int, reason: str = ""):
        if not self._is_current(generation):
            return
        logger.warning("Disconnected (code %s) %s", code, reason)
        self.connected = False
        self.playback.on_disconnected()
        self.controller.handle_close(code)
        self._status_changed()

    def _handle_error(self, generation: int, error: Exception):
        if not self._is_current(generation):
            return
        logger.error("Connection error: %s", error)
        self.last_error = error
        self.connected = False
        self.playback.on_disconnected()
        self._status_changed()

    def _handle_message(self, generation: int, raw):
        if not self._is_current(generation):
            return
        try:
            frame = decode(raw)
        except MalformedFrameError as e:
            logger.warning("Dropping malformed frame (%s): %.200r", e.reason, raw)
            return
        if frame is not None:
            self.dispatch(frame)

    def dispatch(self, frame):
        if isinstance(frame, ChatFrame):
            self.chat.ingest(frame)
        elif isinstance(frame, PresenceFrame):
            self.presence.apply_snapshot(frame.users)
            self._presence_changed()
        elif isinstance(frame, TypingFrame):
            self.chat.note_typing(frame.sender)
        elif isinstance(frame, VideoFrame):
            self.playback.apply_remote(frame)
        elif isinstance(frame, SyncResponse):
            self.playback.apply_sync_response(frame)
        elif isinstance(frame, WatchHoursFrame):
            if frame.sender == self.identity or frame.watch_hours is None:
                return
            if self.presence.apply_watch_hours(frame.sender, frame.watch_hours):
                self._presence_changed()
        else:
            logger.debug("No handler for frame %r", frame)

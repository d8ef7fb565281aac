"""
Shared playback timeline and its reconciliation with peers.

Every broadcast carries the full snapshot (queue, index, play flag,
position), so any single frame is enough to bring a peer up to date.
Two snapshots are "the same" when they differ only by position drift
under the tolerance.
"""
import enum
import logging
import re
from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Sequence, Tuple, Union

from .config import Settings
from .protocol import PAUSE, PLAY, SyncRequest, SyncResponse, VideoFrame, ms

logger = logging.getLogger(__name__)

VIDEO_ID_RE = re.compile(r"(?:v=|/)([0-9A-Za-z_-]{11}).*")


def extract_video_id(url: str) -> Optional[str]:
    match = VIDEO_ID_RE.search(url or "")
    return match.group(1) if match else None


@dataclass(frozen=True)
class PlaybackState:
    queue: Tuple[str, ...] = ()
    index: int = -1
    is_playing: bool = False
    position: float = 0.0

    @classmethod
    def of(
        cls,
        queue: Sequence[str] = (),
        index: int = -1,
        is_playing: bool = False,
        position: float = 0.0,
        video_url: str = "",
    ) -> "PlaybackState":
        """Build a state whose index and play flag agree with the queue."""
        queue = tuple(queue)
        if not 0 <= index < len(queue):
            if video_url and video_url in queue:
                index = queue.index(video_url)
            elif video_url:
                queue = queue + (video_url,)
                index = len(queue) - 1
            else:
                index = -1
        if index == -1:
            is_playing = False
        return cls(queue, index, bool(is_playing), max(0.0, float(position)))

    @property
    def video_url(self) -> str:
        return self.queue[self.index] if self.index >= 0 else ""

    @property
    def has_video(self) -> bool:
        return self.index >= 0

    @property
    def playback_state(self) -> str:
        return PLAY if self.is_playing else PAUSE


def states_equal(
    a: Optional[PlaybackState],
    b: Optional[PlaybackState],
    tolerance: float = 2.0,
) -> bool:
    if a is None and b is None:
        return True
    if a is None or b is None:
        return False
    return (
        a.video_url == b.video_url
        and a.is_playing == b.is_playing
        and abs(a.position - b.position) < tolerance
        and a.queue == b.queue
        and a.index == b.index
    )


def state_from_frame(frame: Union[VideoFrame, SyncResponse]) -> PlaybackState:
    return PlaybackState.of(
        queue=frame.queue,
        index=frame.index,
        is_playing=frame.playback_state == PLAY,
        position=frame.current_time,
        video_url=frame.video_url,
    )


def frame_from_state(state: PlaybackState) -> VideoFrame:
    return VideoFrame(
        video_url=state.video_url,
        playback_state=state.playback_state,
        current_time=state.position,
        queue=state.queue,
        index=state.index,
        timestamp=ms(),
    )


# ----------------------------
# Queue operations
# ----------------------------


def add_to_queue(state: PlaybackState, url: str) -> PlaybackState:
    queue = state.queue + (url,)
    if state.index == -1:
        # first item of an idle room starts playing
        return PlaybackState.of(queue, 0, True, 0.0)
    return replace(state, queue=queue)


def play_index(state: PlaybackState, index: int) -> PlaybackState:
    if not 0 <= index < len(state.queue):
        return state
    return PlaybackState.of(state.queue, index, True, 0.0)


def next_video(state: PlaybackState) -> PlaybackState:
    if state.index + 1 < len(state.queue):
        return play_index(state, state.index + 1)
    return state


def previous_video(state: PlaybackState) -> PlaybackState:
    if state.index > 0:
        return play_index(state, state.index - 1)
    return state


def video_ended(state: PlaybackState) -> PlaybackState:
    if state.index + 1 < len(state.queue):
        return play_index(state, state.index + 1)
    return replace(state, is_playing=False)


def remove_from_queue(state: PlaybackState, index: int) -> PlaybackState:
    # the current item cannot be removed
    if not 0 <= index < len(state.queue) or index == state.index:
        return state
    queue = state.queue[:index] + state.queue[index + 1:]
    current = state.index - 1 if state.index > index else state.index
    return PlaybackState.of(queue, current, state.is_playing, state.position)


def reorder_queue(state: PlaybackState, old_index: int, new_index: int) -> PlaybackState:
    size = len(state.queue)
    if not (0 <= old_index < size and 0 <= new_index < size) or old_index == new_index:
        return state
    queue = list(state.queue)
    item = queue.pop(old_index)
    queue.insert(new_index, item)

    current = state.index
    if current == old_index:
        current = new_index
    elif old_index < current <= new_index:
        current -= 1
    elif new_index <= current < old_index:
        current += 1
    return PlaybackState.of(queue, current, state.is_playing, state.position)


# ----------------------------
# Synchronizer
# ----------------------------


class SyncStatus(str, enum.Enum):
    WAITING = "waiting"
    SYNCING = "syncing"
    SYNCED = "synced"


class PlaybackSynchronizer:
    def __init__(
        self,
        identity: str,
        scheduler,
        send: Callable[[object], bool],
        is_ready: Callable[[], bool],
        settings: Optional[Settings] = None,
        on_state_change: Optional[Callable[[PlaybackState], None]] = None,
        on_status_change: Optional[Callable[["SyncStatus"], None]] = None,
        on_playing_change: Optional[Callable[[bool], None]] = None,
    ):
        settings = settings or Settings()
        self.identity = identity
        self.scheduler = scheduler
        self.sync_timeout = settings.sync_timeout
        self.tolerance = settings.position_tolerance

        self._send = send
        self._is_ready = is_ready
        self._on_state_change = on_state_change
        self._on_status_change = on_status_change
        self._on_playing_change = on_playing_change
        self._sync_timer = None

        self.state = PlaybackState()
        self.last_sent: Optional[PlaybackState] = None
        self.pending: Optional[PlaybackState] = None
        self.status = SyncStatus.WAITING
        self.history: List[str] = []

    @property
    def sync_pending(self) -> bool:
        return self._sync_timer is not None

    def _set_state(self, state: PlaybackState):
        was_playing = self.state.is_playing
        self.state = state
        if state.video_url and state.video_url not in self.history:
            self.history.append(state.video_url)
        if state.is_playing != was_playing and self._on_playing_change:
            self._on_playing_change(state.is_playing)

    def _set_status(self, status: SyncStatus):
        if status is self.status:
            return
        self.status = status
        if self._on_status_change:
            self._on_status_change(status)

    def _cancel_sync_timer(self):
        if self._sync_timer is not None:
            self._sync_timer.cancel()
            self._sync_timer = None

    # ---------- outgoing ----------

    def _broadcast(self, state: PlaybackState, force: bool = False) -> bool:
        if not force and states_equal(state, self.last_sent, self.tolerance):
            return False
        if not self._send(frame_from_state(state)):
            self.pending = state
            return False
        self.last_sent = state
        logger.debug("Video state sent: %s", state)
        return True

    def propose(self, state: PlaybackState, force: bool = False) -> bool:
        """A local change; returns True when it went out on the wire."""
        self._set_state(state)
        if not self._is_ready():
            self.pending = state
            logger.info("Not connected, holding playback change until reconnect")
            return False
        sent = self._broadcast(state, force)
        if sent and self.status is SyncStatus.SYNCING:
            # local truth wins over an unanswered sync request
            self._cancel_sync_timer()
            self._set_status(SyncStatus.SYNCED)
        return sent

    def report_position(self, seconds: float):
        """Local playback advanced; recorded but never broadcast."""
        self.state = replace(self.state, position=max(0.0, float(seconds)))

    # ---------- connection hooks ----------

    def on_connected(self):
        self._set_status(SyncStatus.WAITING)
        flushed = False
        if self.pending is not None:
            pending, self.pending = self.pending, None
            flushed = self._broadcast(pending, force=True)

        if self.state.has_video:
            if not flushed:
                self._broadcast(self.state, force=True)
            self._set_status(SyncStatus.SYNCED)
        else:
            self.request_sync()

    def on_disconnected(self):
        self._cancel_sync_timer()
        self._set_status(SyncStatus.WAITING)

    def request_sync(self) -> bool:
        self._cancel_sync_timer()
        if not self._send(SyncRequest(timestamp=ms())):
            self._set_status(SyncStatus.WAITING)
            return False
        logger.info("Sent video state sync request")
        self._set_status(SyncStatus.SYNCING)
        self._sync_timer = self.scheduler.call_later(self.sync_timeout, self._sync_timed_out)
        return True

    def _sync_timed_out(self):
        self._sync_timer = None
        if self.status is SyncStatus.SYNCING:
            logger.warning("Sync request timed out")
            self._set_status(SyncStatus.WAITING)

    # ---------- incoming ----------

    def _apply(self, incoming: PlaybackState, source: str) -> bool:
        if states_equal(self.state, incoming, self.tolerance):
            return False
        self._set_state(incoming)
        # our host will echo this value back through propose(); don't resend it
        self.last_sent = incoming
        self._cancel_sync_timer()
        self._set_status(SyncStatus.SYNCED)
        logger.info("Video state updated from %s", source or "relay")
        if self._on_state_change:
            self._on_state_change(incoming)
        return True

    def apply_remote(self, frame: VideoFrame) -> bool:
        if frame.sender == self.identity:
            return False
        return self._apply(state_from_frame(frame), frame.sender)

    def apply_sync_response(self, frame: SyncResponse) -> bool:
        self._cancel_sync_timer()
        applied = False
        if frame.has_video:
            applied = self._apply(state_from_frame(frame), frame.sender)
        else:
            logger.info("Relay has no video state to sync")
        self._set_status(SyncStatus.SYNCED)
        return applied

    # ---------- local controls ----------

    def add_to_queue(self, url: str) -> Optional[PlaybackState]:
        if not extract_video_id(url):
            logger.warning("Rejected video reference %r", url)
            return None
        return self._change(add_to_queue(self.state, url.strip()))

    def play(self) -> PlaybackState:
        if not self.state.has_video:
            return self.state
        return self._change(replace(self.state, is_playing=True))

    def pause(self) -> PlaybackState:
        return self._change(replace(self.state, is_playing=False))

    def stop_video(self) -> PlaybackState:
        return self._change(replace(self.state, is_playing=False, position=0.0))

    def seek(self, seconds: float) -> PlaybackState:
        return self._change(replace(self.state, position=max(0.0, float(seconds))))

    def next_video(self) -> PlaybackState:
        return self._change(next_video(self.state))

    def previous_video(self) -> PlaybackState:
        return self._change(previous_video(self.state))

    def play_index(self, index: int) -> PlaybackState:
        return self._change(play_index(self.state, index))

    def remove_from_queue(self, index: int) -> PlaybackState:
        return self._change(remove_from_queue(self.state, index))

    def reorder_queue(self, old_index: int, new_index: int) -> PlaybackState:
        return self._change(reorder_queue(self.state, old_index, new_index))

    def playback_ended(self) -> PlaybackState:
        return self._change(video_ended(self.state))

    def play_from_history(self, url: str) -> PlaybackState:
        if url in self.state.queue:
            return self.play_index(self.state.queue.index(url))
        queue = self.state.queue + (url,)
        return self._change(PlaybackState.of(queue, len(queue) - 1, True, 0.0))

    def _change(self, state: PlaybackState) -> PlaybackState:
        if state is not self.state:
            self.propose(state)
        return state

    def stop(self):
        self._cancel_sync_timer()
        self._set_status(SyncStatus.WAITING)

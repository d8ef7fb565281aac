import logging
from typing import Callable, Optional

from .config import Settings
from .protocol import WatchHoursFrame

logger = logging.getLogger(__name__)

WATCH_HOURS_KEY = "watchHours"


def watch_hours_key(identity: str) -> str:
    return f"{WATCH_HOURS_KEY}:{identity}"


class WatchTimeAccumulator:
    """
    Counts hours of active playback for the local user.

    Ticks once per `watch_tick` seconds while playing and persists every
    tick. Broadcasts are throttled: the first goes out immediately, later
    ones at most once per `watch_broadcast_interval`, with a trailing send
    so the last value is never lost.
    """

    def __init__(
        self,
        identity: str,
        store,
        scheduler,
        send: Callable[[object], bool],
        is_ready: Callable[[], bool],
        settings: Optional[Settings] = None,
        on_change: Optional[Callable[[float], None]] = None,
    ):
        settings = settings or Settings()
        self.identity = identity
        self.store = store
        self.scheduler = scheduler
        self.tick_seconds = settings.watch_tick
        self.interval = settings.watch_broadcast_interval

        self._send = send
        self._is_ready = is_ready
        self._on_change = on_change
        self._tick_timer = None
        self._trailing_timer = None
        self._last_broadcast: Optional[float] = None
        self._broadcast_value: Optional[float] = None

        self.hours = self._load()

    def _load(self) -> float:
        raw = self.store.get(watch_hours_key(self.identity))
        if raw is None:
            return 0.0
        try:
            return max(0.0, float(raw))
        except ValueError:
            logger.warning("Stored watch hours %r is not a number, starting from 0", raw)
            return 0.0

    @property
    def active(self) -> bool:
        return self._tick_timer is not None

    def set_active(self, playing: bool):
        if playing and self._tick_timer is None:
            self._tick_timer = self.scheduler.call_later(self.tick_seconds, self._tick)
        elif not playing and self._tick_timer is not None:
            self._tick_timer.cancel()
            self._tick_timer = None

    def _tick(self):
        self.hours += self.tick_seconds / 3600
        self.store.set(watch_hours_key(self.identity), str(self.hours))
        if self._on_change:
            self._on_change(self.hours)
        self._tick_timer = self.scheduler.call_later(self.tick_seconds, self._tick)
        self.maybe_broadcast()

    def maybe_broadcast(self) -> bool:
        if not self._is_ready() or self.hours == self._broadcast_value:
            return False
        now = self.scheduler.now()
        if self._last_broadcast is not None:
            remaining = self._last_broadcast + self.interval - now
            if remaining > 0:
                if self._trailing_timer is None:
                    self._trailing_timer = self.scheduler.call_later(remaining, self._flush)
                return False
        return self._broadcast(now)

    def _flush(self):
        self._trailing_timer = None
        self.maybe_broadcast()

    def _broadcast(self, now: float) -> bool:
        if not self._send(WatchHoursFrame(watch_hours=self.hours)):
            return False
        self._last_broadcast = now
        self._broadcast_value = self.hours
        return True

    def on_connected(self):
        # peers on a fresh connection have not heard our value yet
        self._broadcast_value = None
        self.maybe_broadcast()

    def stop(self):
        self.set_active(False)
        if self._trailing_timer is not None:
            self._trailing_timer.cancel()
            self._trailing_timer = None

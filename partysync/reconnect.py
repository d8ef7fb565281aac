"""
Supervises the transport: exponential backoff with a bounded retry budget.

This is the only place a `TransportSession` is created, and `session` is
the only live one. Every new session gets a fresh generation number; the
engine drops any callback whose generation is not the current one.
"""
import logging
from typing import Callable, Optional

from .config import NORMAL_CLOSURE, Settings
from .transport import ConnectionState

logger = logging.getLogger(__name__)


def backoff_delay(
    attempt: int,
    base_delay: float = 1.0,
    factor: float = 1.5,
    max_delay: float = 30.0,
) -> float:
    """Delay before reconnect attempt number `attempt` (1-based)."""
    if attempt < 1:
        raise ValueError("attempt is 1-based")
    return min(base_delay * factor ** (attempt - 1), max_delay)


class ReconnectionController:
    def __init__(
        self,
        scheduler,
        session_factory: Callable[[int], object],
        identity: str,
        settings: Optional[Settings] = None,
        on_exhausted: Optional[Callable[[], None]] = None,
    ):
        settings = settings or Settings()
        self.scheduler = scheduler
        self.identity = identity
        self.base_delay = settings.reconnect_base_delay
        self.backoff_factor = settings.reconnect_backoff_factor
        self.max_delay = settings.reconnect_max_delay
        self.max_attempts = settings.max_reconnect_attempts

        self._factory = session_factory
        self._on_exhausted = on_exhausted
        self._timer = None
        self._shutting_down = False

        self.session = None
        self.generation = 0
        self.attempts = 0
        self.state = ConnectionState.IDLE
        self.exhausted = False
        self.last_delay: Optional[float] = None

    @property
    def reconnect_pending(self) -> bool:
        return self._timer is not None

    def is_current(self, generation: int) -> bool:
        return not self._shutting_down and generation == self.generation

    def start(self):
        """Begin a fresh connection lifecycle, resetting the retry budget."""
        self._shutting_down = False
        self.exhausted = False
        self.attempts = 0
        self.connect()

    def connect(self):
        self._cancel_timer()
        if self._shutting_down:
            return
        self._retire()

        self.generation += 1
        session = self._factory(self.generation)
        self.session = session
        self.state = ConnectionState.CONNECTING
        logger.info(
            "Connecting as %s (attempt %d, generation %d)",
            self.identity,
            self.attempts + 1,
            self.generation,
        )
        self.scheduler.spawn(session.open(self.identity))

    def handle_open(self):
        self.attempts = 0
        self.state = ConnectionState.OPEN

    def handle_close(self, code: int):
        self._cancel_timer()
        if self._shutting_down or code == NORMAL_CLOSURE:
            logger.info("Connection closed normally, not reconnecting")
            self.state = ConnectionState.CLOSED
            return

        self.attempts += 1
        if self.attempts >= self.max_attempts:
            logger.warning("Giving up after %d failed connection attempts", self.attempts)
            self.state = ConnectionState.CLOSED
            self.exhausted = True
            if self._on_exhausted:
                self._on_exhausted()
            return

        delay = backoff_delay(
            self.attempts, self.base_delay, self.backoff_factor, self.max_delay
        )
        self.last_delay = delay
        self.state = ConnectionState.IDLE
        logger.info("Reconnecting in %.2fs (attempt %d)", delay, self.attempts + 1)
        self._timer = self.scheduler.call_later(delay, self._on_timer)

    def shutdown(self):
        """Intentional teardown; idempotent."""
        if self._shutting_down and self.session is None and self._timer is None:
            return
        self._shutting_down = True
        self._cancel_timer()
        if self.session is not None:
            self.state = ConnectionState.CLOSING
        self._retire("Client shutting down")
        # invalidates anything still in flight from the old session
        self.generation += 1
        self.state = ConnectionState.CLOSED

    def _on_timer(self):
        self._timer = None
        self.connect()

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _retire(self, reason: str = "Superseded"):
        session, self.session = self.session, None
        if session is not None:
            session.close(NORMAL_CLOSURE, reason)

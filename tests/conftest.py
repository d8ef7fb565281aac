"""
Shared fixtures: a virtual clock and a scripted transport.
"""
import itertools
import json
import os
import sys

import pytest

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from partysync import MemoryStore, RoomEngine, Settings
from partysync.errors import TransportError
from partysync.transport import ConnectionState

YT = "https://youtu.be/"
URL_A = YT + "A" * 11
URL_B = YT + "B" * 11
URL_C = YT + "C" * 11


class FakeTimer:
    def __init__(self, when, seq, callback, args):
        self.when = when
        self.seq = seq
        self.callback = callback
        self.args = args
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Virtual time: timers only fire inside `advance()`."""

    def __init__(self):
        self.time = 0.0
        self._timers = []
        self._seq = itertools.count()

    def now(self):
        return self.time

    def call_later(self, delay, callback, *args):
        timer = FakeTimer(self.time + max(0.0, delay), next(self._seq), callback, args)
        self._timers.append(timer)
        return timer

    def spawn(self, coro):
        # fake sessions never suspend, so one step runs them to completion
        try:
            coro.send(None)
        except StopIteration:
            return
        coro.close()
        raise RuntimeError("spawned coroutine suspended")

    @property
    def pending(self):
        return [t for t in self._timers if not t.cancelled and not t.fired]

    def advance(self, seconds):
        target = self.time + seconds
        while True:
            due = [t for t in self.pending if t.when <= target + 1e-9]
            if not due:
                break
            timer = min(due, key=lambda t: (t.when, t.seq))
            self.time = max(self.time, timer.when)
            timer.fired = True
            timer.callback(*timer.args)
        self.time = target


class FakeSession:
    """Stands in for TransportSession; tests drive its events by hand."""

    def __init__(self, url, generation, *, on_open, on_message, on_close, on_error):
        self.url = url
        self.generation = generation
        self.callbacks = {
            "on_open": on_open,
            "on_message": on_message,
            "on_close": on_close,
            "on_error": on_error,
        }
        self.state = ConnectionState.IDLE
        self.identity = None
        self.sent = []
        self.close_calls = []
        self.neutralized = False

    @property
    def is_open(self):
        return self.state is ConnectionState.OPEN

    async def open(self, identity):
        self.identity = identity
        self.state = ConnectionState.CONNECTING

    def send(self, text):
        if not self.is_open:
            return False
        self.sent.append(text)
        return True

    def close(self, code=1000, reason=""):
        self.neutralized = True
        if self.state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
            return None
        self.close_calls.append(code)
        self.state = ConnectionState.CLOSED
        return None

    # ---------- drivers ----------

    def _fire(self, name, *args):
        if not self.neutralized:
            self.callbacks[name](*args)

    def accept(self):
        self.state = ConnectionState.OPEN
        self.sent.append(self.identity)
        self._fire("on_open")

    def deliver(self, payload):
        raw = payload if isinstance(payload, (str, bytes)) else json.dumps(payload)
        self._fire("on_message", raw)

    def drop(self, code=1006, reason="going away"):
        self.state = ConnectionState.CLOSED
        self._fire("on_close", code, reason)

    def fail(self, error=None):
        self._fire("on_error", error or TransportError("connection refused"))
        self.drop()

    def frames(self):
        """Enveloped frames sent after the identity announcement."""
        return [json.loads(text) for text in self.sent[1:]]

    def frame_types(self):
        return [f["type"] for f in self.frames()]


class SessionFactory:
    def __init__(self):
        self.sessions = []

    def __call__(self, url, generation, **callbacks):
        session = FakeSession(url, generation, **callbacks)
        self.sessions.append(session)
        return session

    @property
    def latest(self):
        return self.sessions[-1]


class Recorder:
    def __init__(self):
        self.video = []
        self.status = []
        self.chat = []
        self.presence = []
        self.typing = []

    def on_status(self, engine):
        self.status.append((engine.connected, engine.exhausted, engine.sync_status))


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def sessions():
    return SessionFactory()


@pytest.fixture
def events():
    return Recorder()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def engine(scheduler, sessions, events, store):
    eng = RoomEngine(
        "alice",
        Settings(ws_url="ws://relay.test/ws"),
        store,
        scheduler=scheduler,
        session_cls=sessions,
        on_video_state_change=events.video.append,
        on_status_change=events.on_status,
        on_chat_message=events.chat.append,
        on_presence_change=events.presence.append,
        on_typing_change=events.typing.append,
    )
    yield eng
    eng.stop()


@pytest.fixture
def connected(engine, sessions):
    """Engine with an accepted first session."""
    engine.start()
    sessions.latest.accept()
    return sessions.latest

"""
One physical websocket connection to the relay.

A session is single-use: `open()` once, then it ends in `close()` or a
remote close. After `close()` none of its callbacks fire again.
"""
import asyncio
import enum
import logging
from typing import Callable, Optional

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from .config import ABNORMAL_CLOSURE, NORMAL_CLOSURE
from .errors import TransportError

logger = logging.getLogger(__name__)


class ConnectionState(str, enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class TransportSession:
    def __init__(
        self,
        url: str,
        generation: int,
        *,
        on_open: Callable[[], None],
        on_message: Callable[[str], None],
        on_close: Callable[[int, str], None],
        on_error: Callable[[Exception], None],
        connect=None,
        open_timeout: float = 10.0,
    ):
        self.url = url
        self.generation = generation
        self.state = ConnectionState.IDLE
        self.close_code: Optional[int] = None

        self._on_open = on_open
        self._on_message = on_message
        self._on_close = on_close
        self._on_error = on_error
        self._connect = connect or websockets.connect
        self._open_timeout = open_timeout

        self._ws = None
        self._outbox: "asyncio.Queue[str]" = asyncio.Queue()
        self._reader: Optional[asyncio.Task] = None
        self._writer: Optional[asyncio.Task] = None
        self._neutralized = False

    def __repr__(self):
        return f"<TransportSession gen={self.generation} state={self.state.value}>"

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    # ---------- callbacks ----------

    def _neutralize(self):
        noop = lambda *args: None  # noqa: E731
        self._on_open = self._on_message = self._on_close = self._on_error = noop
        self._neutralized = True

    def _fire_close(self, code: int, reason: str):
        if self.state is ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED
        self.close_code = code
        self._on_close(code, reason)

    # ---------- lifecycle ----------

    async def open(self, identity: str):
        """Connect and announce `identity` as the first frame."""
        if self.state is not ConnectionState.IDLE:
            raise RuntimeError(f"session already used: {self!r}")
        self.state = ConnectionState.CONNECTING
        try:
            ws = await asyncio.wait_for(
                self._connect(self.url, ping_interval=None), self._open_timeout
            )
        except (OSError, asyncio.TimeoutError, InvalidURI, InvalidHandshake) as e:
            logger.warning("Connect to %s failed: %s", self.url, e)
            self._on_error(TransportError(str(e)))
            self._fire_close(ABNORMAL_CLOSURE, str(e))
            return

        if self._neutralized:
            # closed by the owner while the handshake was in flight
            await ws.close(NORMAL_CLOSURE)
            return

        self._ws = ws
        try:
            await ws.send(identity)
        except ConnectionClosed as e:
            logger.warning("Connection lost during join: %s", e)
            self._on_error(TransportError(str(e)))
            self._fire_close(self._ws.close_code or ABNORMAL_CLOSURE, str(e))
            return

        self.state = ConnectionState.OPEN
        loop = asyncio.get_running_loop()
        self._reader = loop.create_task(self._recv_loop())
        self._writer = loop.create_task(self._send_loop())
        self._on_open()

    def send(self, text: str) -> bool:
        if self.state is not ConnectionState.OPEN:
            logger.warning("Dropping frame, connection is %s", self.state.value)
            return False
        self._outbox.put_nowait(text)
        return True

    def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> Optional[asyncio.Task]:
        """
        Owner-initiated shutdown. Callbacks are neutralized first, so this
        never reports back to the owner. Safe to call repeatedly.
        """
        self._neutralize()
        if self.state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
            return None
        was_connected = self._ws is not None
        self.state = ConnectionState.CLOSING if was_connected else ConnectionState.CLOSED

        for task in (self._reader, self._writer):
            if task is not None:
                task.cancel()
        if not was_connected:
            return None
        return asyncio.get_running_loop().create_task(self._close_ws(code, reason))

    async def _close_ws(self, code: int, reason: str):
        try:
            await self._ws.close(code, reason)
        except (ConnectionClosed, OSError) as e:
            logger.debug("Close handshake failed: %s", e)
        finally:
            self.state = ConnectionState.CLOSED
            self.close_code = code

    # ---------- pumps ----------

    async def _recv_loop(self):
        reason = ""
        try:
            async for raw in self._ws:
                self._on_message(raw)
        except ConnectionClosed as e:
            reason = str(e)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # a failing handler must not leave the session half-alive
            logger.exception("Receive loop failed")
            self._on_error(TransportError(str(e)))
            reason = str(e)
        if self._writer is not None:
            self._writer.cancel()
        code = self._ws.close_code or ABNORMAL_CLOSURE
        logger.info("Connection closed (code %s) %s", code, reason)
        self._fire_close(code, reason)

    async def _send_loop(self):
        while True:
            text = await self._outbox.get()
            try:
                await self._ws.send(text)
            except ConnectionClosed as e:
                # the receive loop reports the close
                logger.warning("Send failed, connection closed: %s", e)
                return

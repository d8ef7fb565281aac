"""
Chat history and typing indicators.

The relay echoes our own messages back, so nothing is appended locally on
send. Redeliveries (same sender and content, close timestamps, among the
most recent entries) are dropped on ingest.
"""
import itertools
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .config import Settings
from .protocol import ChatFrame, TypingFrame, ms

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChatMessage:
    local_id: str
    sender: str
    content: str
    timestamp: int


class ChatLog:
    def __init__(
        self,
        identity: str,
        scheduler,
        send: Callable[[object], bool],
        settings: Optional[Settings] = None,
        on_message: Optional[Callable[[ChatMessage], None]] = None,
        on_typing_change: Optional[Callable[[List[str]], None]] = None,
    ):
        settings = settings or Settings()
        self.identity = identity
        self.scheduler = scheduler
        self.lookback = settings.duplicate_lookback
        self.window_ms = settings.duplicate_window_ms
        self.typing_ttl = settings.typing_ttl
        self.resend_guard = settings.resend_guard

        self._send = send
        self._on_message = on_message
        self._on_typing_change = on_typing_change
        self._ids = itertools.count()
        self._messages: List[ChatMessage] = []
        self._typing: Dict[str, object] = {}
        self._last_sent = ""
        self._last_sent_timer = None

    @property
    def messages(self) -> List[ChatMessage]:
        return list(self._messages)

    @property
    def typing(self) -> List[str]:
        return list(self._typing)

    # ---------- inbound ----------

    def _is_redelivery(self, sender: str, content: str, timestamp: int) -> bool:
        for prev in self._messages[-self.lookback:]:
            if (
                prev.sender == sender
                and prev.content == content
                and abs(prev.timestamp - timestamp) < self.window_ms
            ):
                return True
        return False

    def ingest(self, frame: ChatFrame) -> Optional[ChatMessage]:
        timestamp = frame.timestamp or ms()
        if self._is_redelivery(frame.sender, frame.content, timestamp):
            logger.debug("Skipping duplicate message from %s", frame.sender)
            return None

        message = ChatMessage(
            local_id=f"{frame.sender}-{timestamp}-{next(self._ids)}",
            sender=frame.sender,
            content=frame.content,
            timestamp=timestamp,
        )
        self._messages.append(message)
        if self._on_message:
            self._on_message(message)
        return message

    def note_typing(self, sender: str):
        if not sender or sender == self.identity:
            return
        timer = self._typing.get(sender)
        if timer is not None:
            timer.cancel()
        added = sender not in self._typing
        self._typing[sender] = self.scheduler.call_later(
            self.typing_ttl, self._expire_typing, sender
        )
        if added:
            self._typing_changed()

    def _expire_typing(self, sender: str):
        if self._typing.pop(sender, None) is not None:
            self._typing_changed()

    def _typing_changed(self):
        if self._on_typing_change:
            self._on_typing_change(self.typing)

    # ---------- outbound ----------

    def send_outgoing(self, content: str) -> bool:
        text = (content or "").strip()
        if not text:
            return False
        if text == self._last_sent:
            logger.info("Preventing duplicate message send: %s", text)
            return False
        if not self._send(ChatFrame(content=text, timestamp=ms())):
            return False

        self._last_sent = text
        if self._last_sent_timer is not None:
            self._last_sent_timer.cancel()
        self._last_sent_timer = self.scheduler.call_later(
            self.resend_guard, self._release_last_sent, text
        )
        return True

    def _release_last_sent(self, text: str):
        self._last_sent_timer = None
        if self._last_sent == text:
            self._last_sent = ""

    def send_typing(self) -> bool:
        return self._send(TypingFrame(sender=self.identity))

    def stop(self):
        for timer in self._typing.values():
            timer.cancel()
        self._typing.clear()
        if self._last_sent_timer is not None:
            self._last_sent_timer.cancel()
            self._last_sent_timer = None
        self._last_sent = ""

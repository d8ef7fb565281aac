"""
Client-side synchronization engine for a shared watch-party room.
"""
from partysync.chat import ChatLog, ChatMessage
from partysync.config import NORMAL_CLOSURE, Settings
from partysync.engine import RoomEngine
from partysync.errors import MalformedFrameError, PartySyncError, TransportError
from partysync.playback import PlaybackState, PlaybackSynchronizer, SyncStatus, states_equal
from partysync.presence import Participant, PresenceTracker
from partysync.reconnect import ReconnectionController, backoff_delay
from partysync.storage import JsonFileStore, MemoryStore, load_username
from partysync.transport import ConnectionState, TransportSession
from partysync.watchtime import WatchTimeAccumulator

__all__ = [
    "ChatLog",
    "ChatMessage",
    "ConnectionState",
    "JsonFileStore",
    "MalformedFrameError",
    "MemoryStore",
    "NORMAL_CLOSURE",
    "Participant",
    "PartySyncError",
    "PlaybackState",
    "PlaybackSynchronizer",
    "PresenceTracker",
    "ReconnectionController",
    "RoomEngine",
    "Settings",
    "SyncStatus",
    "TransportError",
    "TransportSession",
    "WatchTimeAccumulator",
    "backoff_delay",
    "load_username",
    "states_equal",
]

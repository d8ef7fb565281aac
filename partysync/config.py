"""
Tunable constants for the sync engine.

Values come from the environment (a `.env` file is loaded by the host with
python-dotenv before `Settings.from_env()` is called).
"""
import os
from dataclasses import dataclass

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006

DEFAULT_WS_URL = "ws://localhost:8080/ws"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass
class Settings:
    ws_url: str = DEFAULT_WS_URL

    # reconnection
    reconnect_base_delay: float = 1.0
    reconnect_backoff_factor: float = 1.5
    reconnect_max_delay: float = 30.0
    max_reconnect_attempts: int = 10

    # playback handshake
    sync_timeout: float = 5.0
    position_tolerance: float = 2.0

    # chat
    duplicate_window_ms: int = 3000
    duplicate_lookback: int = 10
    typing_ttl: float = 3.0
    resend_guard: float = 3.0

    # watch time
    watch_tick: float = 1.0
    watch_broadcast_interval: float = 8.0

    state_file: str = "watchparty-state.json"

    @classmethod
    def from_env(cls) -> "Settings":
        ws_url = os.getenv("WS_URL", "").strip() or DEFAULT_WS_URL
        return cls(
            ws_url=ws_url,
            reconnect_base_delay=_env_float("RECONNECT_BASE_DELAY", 1.0),
            reconnect_backoff_factor=_env_float("RECONNECT_BACKOFF_FACTOR", 1.5),
            reconnect_max_delay=_env_float("RECONNECT_MAX_DELAY", 30.0),
            max_reconnect_attempts=_env_int("MAX_RECONNECT_ATTEMPTS", 10),
            sync_timeout=_env_float("SYNC_TIMEOUT_SECONDS", 5.0),
            watch_broadcast_interval=_env_float("WATCH_HOURS_BROADCAST_SECONDS", 8.0),
            state_file=os.getenv("STATE_FILE", "watchparty-state.json"),
        )

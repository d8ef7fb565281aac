"""
mpv JSON IPC adapter: the video surface a host drives from playback state.
"""
import asyncio
import json
import logging
import platform
import random
import string
import subprocess
import time
from typing import Optional

from .playback import PlaybackState

logger = logging.getLogger(__name__)


def _rand_suffix(n=8) -> str:
    return "".join(random.choice(string.ascii_lowercase) for _ in range(n))


class MPVPlayer:
    def __init__(self, drift_tolerance: float = 2.0):
        self.proc = None
        self.ipc_path = self._make_ipc_path()
        self.drift_tolerance = drift_tolerance
        self.loaded_url = ""

    def _make_ipc_path(self) -> str:
        if platform.system().lower().startswith("win"):
            return rf"\\.\pipe\watchparty-mpv-{_rand_suffix()}"
        return f"/tmp/watchparty-mpv-{_rand_suffix()}.sock"

    def start(self):
        # --idle keeps mpv alive with nothing loaded, the room may be empty
        args = [
            "mpv",
            "--force-window=yes",
            f"--input-ipc-server={self.ipc_path}",
            "--idle=yes",
            "--keep-open=yes",
        ]
        self.proc = subprocess.Popen(
            args, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL
        )

    def terminate(self):
        if self.proc is not None and self.proc.poll() is None:
            self.proc.terminate()
        self.proc = None

    async def _connect_ipc(self, timeout_s=5.0):
        deadline = time.time() + timeout_s
        while time.time() < deadline:
            try:
                if platform.system().lower().startswith("win"):
                    return await asyncio.open_connection(self.ipc_path)
                return await asyncio.open_unix_connection(self.ipc_path)
            except OSError:
                await asyncio.sleep(0.1)
        raise RuntimeError("Could not connect to mpv IPC")

    async def command(self, cmd):
        reader, writer = await self._connect_ipc()
        payload = json.dumps({"command": cmd}).encode("utf-8") + b"\n"
        writer.write(payload)
        await writer.drain()
        # mpv replies with one JSON line per command
        line = await reader.readline()
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        if not line:
            return None
        try:
            return json.loads(line.decode("utf-8", errors="ignore"))
        except ValueError:
            logger.debug("Unparseable mpv reply: %r", line)
            return None

    async def get_property(self, prop: str):
        resp = await self.command(["get_property", prop])
        if resp and resp.get("error") == "success":
            return resp.get("data")
        return None

    async def set_property(self, prop: str, value):
        await self.command(["set_property", prop, value])

    async def load(self, url: str):
        await self.command(["loadfile", url, "replace"])
        self.loaded_url = url

    async def stop(self):
        await self.command(["stop"])
        self.loaded_url = ""

    async def seek_to(self, seconds: float):
        await self.set_property("time-pos", float(seconds))

    async def play(self):
        await self.set_property("pause", False)

    async def pause(self):
        await self.set_property("pause", True)

    async def set_volume(self, vol: int):
        await self.set_property("volume", float(max(0, min(100, vol))))

    async def time_pos(self) -> Optional[float]:
        pos = await self.get_property("time-pos")
        return float(pos) if pos is not None else None

    async def ended(self) -> bool:
        return bool(await self.get_property("eof-reached"))

    async def _wait_for_position(self, timeout_s=5.0, poll_s=0.1) -> Optional[float]:
        # time-pos is unavailable until a freshly loaded file is demuxed
        deadline = time.time() + timeout_s
        while True:
            cur = await self.time_pos()
            if cur is not None or time.time() >= deadline:
                return cur
            await asyncio.sleep(poll_s)

    async def apply(self, state: PlaybackState):
        """Bring mpv in line with a playback snapshot."""
        if not state.has_video:
            if self.loaded_url:
                await self.stop()
            return

        if state.video_url != self.loaded_url:
            await self.load(state.video_url)

        if state.is_playing:
            await self.play()
        else:
            await self.pause()

        cur = await self._wait_for_position()
        if cur is None:
            return
        drift = state.position - cur
        # small drift: ignore (avoid jitter)
        if abs(drift) >= self.drift_tolerance:
            await self.seek_to(state.position)

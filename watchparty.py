import argparse
import asyncio
import logging
import sys
from typing import Optional

from dotenv import load_dotenv

from partysync import (
    JsonFileStore,
    PlaybackState,
    RoomEngine,
    Settings,
    load_username,
)
from partysync.player import MPVPlayer

load_dotenv(override=False)

logger = logging.getLogger("watchparty")

# ----------------------------
# Rendering helpers
# ----------------------------


def fmt_time(seconds: Optional[float]) -> str:
    if seconds is None:
        return "--:--"
    seconds = int(max(0, seconds))
    h = seconds // 3600
    m = (seconds % 3600) // 60
    s = seconds % 60
    return f"{h:d}:{m:02d}:{s:02d}" if h > 0 else f"{m:02d}:{s:02d}"


def describe(state: PlaybackState) -> str:
    if not state.has_video:
        return "nothing playing"
    flag = "playing" if state.is_playing else "paused"
    return (
        f"{flag} [{state.index + 1}/{len(state.queue)}] "
        f"{state.video_url} @ {fmt_time(state.position)}"
    )


HELP = (
    "Commands: add <url> | play | pause | stop | next | prev | seek <s> | jump <n> | "
    "rm <n> | move <a> <b> | queue | who | chat <text> | status | reconnect | quit"
)


# ----------------------------
# Client logic
# ----------------------------


async def watchparty_client(settings: Settings, name: str, store, use_player: bool):
    player = MPVPlayer(settings.position_tolerance) if use_player else None

    def sync_player():
        if player is not None:
            engine.scheduler.spawn(player.apply(engine.playback.state))

    def on_video_state_change(state: PlaybackState):
        print(f"[VIDEO] {describe(state)}")
        sync_player()

    def on_status_change(eng: RoomEngine):
        if eng.exhausted:
            print("[STATUS] disconnected (gave up reconnecting, type 'reconnect')")
        else:
            link = "connected" if eng.connected else eng.connection_state.value
            print(f"[STATUS] {link}, sync {eng.sync_status.value}")

    def on_chat_message(msg):
        who = "You" if msg.sender == name else msg.sender
        print(f"[CHAT] {who}: {msg.content}")

    def on_presence_change(participants):
        labels = []
        for i, p in enumerate(participants):
            label = p.label()
            if i == 0:
                label += " *host*"
            labels.append(label)
        print(f"[PRESENCE] {len(participants)} online: {', '.join(labels)}")

    def on_typing_change(names):
        if names:
            print(f"[TYPING] {', '.join(names)} is typing...")

    engine = RoomEngine(
        name,
        settings,
        store,
        on_video_state_change=on_video_state_change,
        on_status_change=on_status_change,
        on_chat_message=on_chat_message,
        on_presence_change=on_presence_change,
        on_typing_change=on_typing_change,
    )

    async def position_loop():
        """Feed the player's clock back into the engine and advance the queue on end of file."""
        while True:
            await asyncio.sleep(1.0)
            if player is None or not engine.playback.state.has_video:
                continue
            try:
                pos = await player.time_pos()
                if pos is not None:
                    engine.playback.report_position(pos)
                if engine.playback.state.is_playing and await player.ended():
                    engine.playback.playback_ended()
                    sync_player()
            except RuntimeError as e:
                logger.warning("Player unavailable: %s", e)

    async def stdin_loop():
        pb = engine.playback
        while True:
            line = await asyncio.to_thread(sys.stdin.readline)
            if not line:
                await asyncio.sleep(0.1)
                continue
            line = line.strip()
            if not line:
                continue

            parts = line.split()
            cmd = parts[0].lower()

            try:
                if cmd in ("quit", "exit"):
                    print("Bye.")
                    return
                elif cmd == "help":
                    print(HELP)
                elif cmd == "add" and len(parts) >= 2:
                    if pb.add_to_queue(parts[1]) is None:
                        print("Please enter a valid YouTube URL.")
                elif cmd == "play":
                    pb.play()
                elif cmd == "pause":
                    pb.pause()
                elif cmd == "stop":
                    pb.stop_video()
                elif cmd == "next":
                    pb.next_video()
                elif cmd in ("prev", "previous"):
                    pb.previous_video()
                elif cmd == "seek" and len(parts) >= 2:
                    pb.seek(float(parts[1]))
                elif cmd == "jump" and len(parts) >= 2:
                    pb.play_index(int(parts[1]) - 1)
                elif cmd == "rm" and len(parts) >= 2:
                    pb.remove_from_queue(int(parts[1]) - 1)
                elif cmd == "move" and len(parts) >= 3:
                    pb.reorder_queue(int(parts[1]) - 1, int(parts[2]) - 1)
                elif cmd == "queue":
                    for i, url in enumerate(pb.state.queue, 1):
                        marker = ">" if i - 1 == pb.state.index else " "
                        print(f" {marker}{i}. {url}")
                    if pb.history:
                        print(f"history: {', '.join(pb.history)}")
                elif cmd == "who":
                    on_presence_change(engine.presence.participants)
                elif cmd == "chat":
                    msg = line[len("chat"):].strip()
                    engine.chat.send_typing()
                    if not engine.chat.send_outgoing(msg[:500]):
                        print("(not sent)")
                elif cmd == "status":
                    on_status_change(engine)
                    print(f"[VIDEO] {describe(pb.state)}")
                elif cmd == "reconnect":
                    engine.start()
                else:
                    print(HELP)
                    continue
            except ValueError:
                print(HELP)
                continue

            if cmd in ("play", "pause", "stop", "next", "prev", "previous",
                       "seek", "jump", "add", "rm", "move"):
                sync_player()

    if player is not None:
        player.start()
    print(f"Connecting: {settings.ws_url} as {name}")
    engine.start()

    pos_task = asyncio.create_task(position_loop())
    try:
        await stdin_loop()
    finally:
        pos_task.cancel()
        engine.stop()
        if player is not None:
            player.terminate()


def main():
    ap = argparse.ArgumentParser(description="Terminal client for a shared watch-party room")
    ap.add_argument("--ws-url", default=None, help="Relay URL (ws://.../ws), overrides WS_URL")
    ap.add_argument("--name", default=None, help="Display name (remembered in the state file)")
    ap.add_argument("--state-file", default=None, help="Where username and watch hours are kept")
    ap.add_argument("--player", dest="player", action="store_true", default=True,
                    help="Drive a local mpv window (default)")
    ap.add_argument("--no-player", dest="player", action="store_false",
                    help="Sync state only, no video window")
    ap.add_argument("--verbose", action="store_true", help="Debug logging")
    args = ap.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = Settings.from_env()
    except ValueError as e:
        print(f"Invalid configuration: {e}")
        sys.exit(1)
    if args.ws_url:
        settings.ws_url = args.ws_url

    store = JsonFileStore(args.state_file or settings.state_file)
    name = load_username(store, args.name)

    try:
        asyncio.run(watchparty_client(settings, name, store, args.player))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()

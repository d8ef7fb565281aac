import asyncio
from typing import Optional, Set


class LoopScheduler:
    """
    Timers and background tasks on an asyncio loop.

    Every timer the engine owns is created here, so swapping in a virtual
    clock is enough to test timing without sleeping.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._tasks: Set[asyncio.Task] = set()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def now(self) -> float:
        return self.loop.time()

    def call_later(self, delay: float, callback, *args) -> asyncio.TimerHandle:
        return self.loop.call_later(max(0.0, delay), callback, *args)

    def spawn(self, coro) -> asyncio.Task:
        task = self.loop.create_task(coro)
        # keep a strong reference until the task finishes
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

logger = logging.getLogger(__name__)

TickHandler = Callable[[], None]

class Scheduler(ABC):
    """Drives an engine's periodic tick. Handlers are synchronous and never overlap."""

    def __init__(self):
        self.handler: Optional[TickHandler] = None

    @property
    def running(self) -> bool:
        return self.handler is not None

    def start(self, handler: TickHandler):
        self.handler = handler

    def stop(self):
        self.handler = None

    @abstractmethod
    def tick(self):
        pass

class AsyncioScheduler(Scheduler):
    """Wall-clock ticks on the running asyncio loop, sleeping off whatever the tick did not use."""

    def __init__(self, interval: float):
        super().__init__()
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    def start(self, handler: TickHandler):
        super().start(handler)
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._loop())

    def stop(self):
        super().stop()
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def tick(self):
        if self.handler is not None:
            self.handler()

    async def _loop(self):
        while self.handler is not None:
            started = time.monotonic()
            self.tick()
            elapsed = time.monotonic() - started
            await asyncio.sleep(max(0.0, self.interval - elapsed))

class VirtualScheduler(Scheduler):
    """Ticks only when told to. Used for deterministic runs."""

    def __init__(self):
        super().__init__()
        self.ticks = 0

    def tick(self):
        if self.handler is not None:
            self.ticks += 1
            self.handler()

    def advance(self, count: int = 1):
        for _ in range(count):
            if self.handler is None:
                break
            self.tick()

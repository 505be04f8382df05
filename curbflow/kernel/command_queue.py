import logging
from collections import deque
from typing import Deque, Iterator
from curbflow.application.commands import Command

logger = logging.getLogger(__name__)

class CommandQueue:
    """Control commands waiting for the next tick, applied in submission order."""

    def __init__(self):
        self._pending: Deque[Command] = deque()

    def __len__(self) -> int:
        return len(self._pending)

    def add(self, command: Command):
        self._pending.append(command)
        logger.debug("Queued %s (%d pending)", type(command).__name__, len(self._pending))

    def drain(self) -> Iterator[Command]:
        """Yields the commands queued so far. Commands added while draining wait for the next tick."""
        batch, self._pending = self._pending, deque()
        while batch:
            yield batch.popleft()

    def clear(self):
        self._pending.clear()

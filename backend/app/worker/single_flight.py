"""
In-process overlap guard for timer-driven jobs
"""
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight:
    """
    Skip a run while the previous one is still in progress

    A tick that arrives during a run is dropped, not queued. The guard is
    per process; cross-process safety comes from the conditional writes.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def run(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T | None:
        if self._running:
            logger.warning("%s already running, skipping this run", self.name)
            return None
        self._running = True
        try:
            return await func(*args, **kwargs)
        finally:
            self._running = False

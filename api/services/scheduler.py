"""
Cancellable timers on the event loop (debounce and settle delays).
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional


class Scheduler(ABC):
    """Schedules callbacks after a delay; returned handles expose cancel()."""

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any):
        ...


class AsyncioScheduler(Scheduler):
    """Scheduler backed by the running asyncio loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any):
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, callback, *args)

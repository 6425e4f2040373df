"""Trailing-edge debounce for coroutine functions.

Each call re-arms a timer on the running event loop; when the timer
finally fires (no call for ``delay`` seconds) the coroutine runs once with
the arguments of the most recent call.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

log = logging.getLogger(__name__)


class Debouncer:
    """Coalesce bursts of calls into one trailing execution.

    Usage:
        push = Debouncer(scheduler.push_now, delay=0.5)
        push(); push(); push()      # one push_now() 0.5 s after the last call

    Args:
        func: Coroutine function to run.
        delay: Quiet period in seconds.
        name: Label for log messages.
    """

    def __init__(self, func: Callable[..., Awaitable[Any]], delay: float, name: str = "") -> None:
        self._func = func
        self._delay = delay
        self._name = name or getattr(func, "__name__", "debounced")
        self._handle: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None
        self._args: tuple = ()
        self._kwargs: dict[str, Any] = {}
        self.fire_count = 0

    @property
    def pending(self) -> bool:
        """True while a call is waiting for its quiet period."""
        return self._handle is not None

    def __call__(self, *args: Any, **kwargs: Any) -> None:
        self._args, self._kwargs = args, kwargs
        if self._handle is not None:
            self._handle.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self._delay, self._fire)

    def cancel(self) -> None:
        """Drop the waiting call, if any.  A running call is not affected."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    async def flush(self) -> Any:
        """Run the waiting call now, or wait for the one already running."""
        if self._handle is not None:
            self.cancel()
            return await self._invoke(self._args, self._kwargs)
        if self._task is not None and not self._task.done():
            return await self._task
        return None

    def _fire(self) -> None:
        self._handle = None
        self._task = asyncio.ensure_future(self._invoke(self._args, self._kwargs))

    async def _invoke(self, args: tuple, kwargs: dict[str, Any]) -> Any:
        self.fire_count += 1
        log.debug("debounce: running %s", self._name)
        try:
            return await self._func(*args, **kwargs)
        except Exception:
            log.exception("Debounced call %s failed", self._name)
            return None

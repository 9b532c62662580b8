"""Debounce helper for coalescing bursts of edits into one call.

Works like ``setTimeout``/``clearTimeout`` on the running asyncio loop: each
call re-arms the timer and only the last call's arguments survive. Once the
window elapses the wrapped function runs (as a task if it's a coroutine
function); re-arming never cancels an invocation that has already started.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class Debouncer:
    """Callable wrapper that delays *fn* until calls stop for *delay* seconds."""

    def __init__(self, fn: Callable[..., Any], delay: float):
        self.fn = fn
        self.delay = delay
        self._handle: Optional[asyncio.TimerHandle] = None
        self._args: tuple = ()
        self._kwargs: dict = {}
        self._running: set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        """Whether a call is scheduled but hasn't fired yet."""
        return self._handle is not None

    def __call__(self, *args: Any, **kwargs: Any) -> None:
        loop = asyncio.get_running_loop()
        if self._handle is not None:
            self._handle.cancel()
        self._args = args
        self._kwargs = kwargs
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel(self) -> bool:
        """Drop the pending call. Returns True if something was pending."""
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        self._args, self._kwargs = (), {}
        return True

    async def flush(self) -> Any:
        """Run the pending call right away and return its result.

        Returns None when nothing is pending.
        """
        if self._handle is None:
            return None
        self._handle.cancel()
        self._handle = None
        args, kwargs = self._args, self._kwargs
        self._args, self._kwargs = (), {}
        result = self.fn(*args, **kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def wait(self) -> None:
        """Wait for invocations that have already fired to finish."""
        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)

    def _fire(self) -> None:
        self._handle = None
        args, kwargs = self._args, self._kwargs
        self._args, self._kwargs = (), {}

        if inspect.iscoroutinefunction(self.fn):
            task = asyncio.get_running_loop().create_task(self.fn(*args, **kwargs))
            self._running.add(task)
            task.add_done_callback(self._task_done)
        else:
            self.fn(*args, **kwargs)

    def _task_done(self, task: asyncio.Task) -> None:
        self._running.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Debounced call failed: {task.exception()}")


def debounce(fn: Callable[..., Any], delay: float) -> Debouncer:
    """Wrap *fn* so bursts of calls collapse into one after *delay* seconds."""
    return Debouncer(fn, delay)

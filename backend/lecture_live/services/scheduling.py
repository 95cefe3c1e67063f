from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)

Callback = Callable[[], Union[None, Awaitable[Any]]]


class DebouncedTask:
    """
    Cancel-and-rearm timer bound to the running event loop.

    Only the last `schedule()` inside the quiet period fires. Async callbacks run as a
    task that `wait()` can join.
    """

    def __init__(self, delay_seconds: float, callback: Callback, *, name: str = "debounced") -> None:
        self.delay_seconds = max(0.0, float(delay_seconds))
        self._callback = callback
        self._name = name
        self._handle: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay_seconds, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    async def wait(self) -> None:
        """Wait for a callback that already fired and is still running."""
        task = self._task
        if task is not None and not task.done():
            await asyncio.shield(task)

    def _fire(self) -> None:
        self._handle = None
        try:
            result = self._callback()
        except Exception:
            logger.exception("debounced_callback_failed name=%s", self._name)
            return
        if inspect.isawaitable(result):
            self._task = asyncio.ensure_future(result)
            self._task.add_done_callback(self._log_task_failure)

    def _log_task_failure(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("debounced_task_failed name=%s err=%s", self._name, exc)

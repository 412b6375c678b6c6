"""Background task helpers for the transport.

Provides:
- ``PeriodicTask``    - runs a callback on a fixed interval (interface refresh,
  beacon re-broadcast)
- ``supervised_task`` - ``asyncio.create_task`` that logs instead of leaking
  unhandled exceptions
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from loguru import logger


class PeriodicTask:
    """Invoke *callback* every *interval* seconds until stopped.

    Parameters
    ----------
    name:
        Label used in log lines and as the task name.
    callback:
        Sync or async callable.  Exceptions are logged and the loop keeps
        running.
    interval:
        Seconds between ticks.  The first tick happens one interval after
        :meth:`start`.
    """

    def __init__(
        self,
        name: str,
        callback: Callable[[], Any],
        interval: float,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.name = name
        self.interval = interval
        self._callback = callback
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _loop(self) -> None:
        logger.debug("[Eureka/Scheduler] {} started (every {:.1f}s)", self.name, self.interval)
        while True:
            await asyncio.sleep(self.interval)
            try:
                result = self._callback()
                if asyncio.iscoroutine(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("[Eureka/Scheduler] {} tick failed: {}", self.name, exc)

    def start(self) -> None:
        if not self.running:
            self._task = supervised_task(self._loop(), name=self.name)

    def stop(self) -> None:
        if self.running:
            self._task.cancel()  # type: ignore[union-attr]
            logger.debug("[Eureka/Scheduler] {} stopped", self.name)
        self._task = None


def supervised_task(
    coro: Awaitable[Any],
    *,
    name: str = "",
) -> asyncio.Task:
    """Create a task whose failure (other than cancellation) is logged."""
    task = asyncio.ensure_future(coro)
    if name:
        task.set_name(name)

    def _on_done(t: asyncio.Task) -> None:
        if t.cancelled():
            return
        exc = t.exception()
        if exc is not None:
            logger.error("[Eureka/Scheduler] task {!r} crashed: {!r}", t.get_name(), exc)

    task.add_done_callback(_on_done)
    return task

"""
Cancellable periodic tasks.

Background work (cache sweeps, handle polling) runs as an asyncio task
owned by a ``Subscription``. The caller keeps the handle and cancels it
on disconnect; nothing is registered globally.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class Subscription:
    """Handle to a running background task."""

    def __init__(self, task: asyncio.Task[None], name: str) -> None:
        self._task = task
        self.name = name

    @property
    def active(self) -> bool:
        return not self._task.done()

    def cancel(self) -> None:
        if not self._task.done():
            self._task.cancel()

    async def wait_cancelled(self) -> None:
        """Cancel and wait until the task has unwound."""
        self.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass


def run_periodically(
    tick: Callable[[], Awaitable[None]],
    interval: float,
    *,
    name: str,
    run_immediately: bool = False,
) -> Subscription:
    """Run ``tick`` every ``interval`` seconds until cancelled.

    A failing tick is logged and the loop continues; cancellation is the
    only way out. Must be called from a running event loop.
    """
    if interval <= 0:
        raise ValueError("interval must be positive")

    async def _loop() -> None:
        if not run_immediately:
            await asyncio.sleep(interval)
        while True:
            try:
                await tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("periodic task %s failed", name)
            await asyncio.sleep(interval)

    task = asyncio.get_running_loop().create_task(_loop(), name=name)
    return Subscription(task, name)

"""
Bounded retry for transient failures.

Only ``TransientError`` is retried. A user rejection is final and is
never retried, even when it arrives wrapped in a transient-looking
message.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from confidential_bridge.errors import TransientError, is_user_rejection

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with a cap.

    Attributes:
        attempts: Total tries including the first.
        base_delay: Seconds before the second try.
        max_delay: Ceiling for any single delay.
    """

    attempts: int = 3
    base_delay: float = 0.8
    max_delay: float = 8.0

    def delay_for(self, attempt: int) -> float:
        """Delay after the ``attempt``-th failure (1-based)."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        label: str = "operation",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> T:
        """Await ``operation``, retrying on TransientError.

        The last TransientError propagates once attempts are exhausted.
        """
        attempt = 1
        while True:
            try:
                return await operation()
            except TransientError as exc:
                if is_user_rejection(exc) or attempt >= self.attempts:
                    raise
                delay = self.delay_for(attempt)
                logger.info(
                    "%s failed transiently (attempt %d/%d), retrying in %.1fs",
                    label,
                    attempt,
                    self.attempts,
                    delay,
                )
                await sleep(delay)
                attempt += 1


NO_RETRY = RetryPolicy(attempts=1)

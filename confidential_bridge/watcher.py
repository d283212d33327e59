"""
Handle polling.

Re-reads a tracker's encrypted balance handle on an interval through the
cached reader and feeds it to the tracker. Runs as a cancellable
Subscription; there is no push channel from the chain.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from confidential_bridge.balance import BalanceTracker, DecryptResult
from confidential_bridge.chain.reader import CachedReader
from confidential_bridge.credential.model import DecryptionCredential
from confidential_bridge.scheduling import Subscription, run_periodically

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 15.0


class HandleWatcher:
    """Keeps one tracker in step with the chain.

    Args:
        reader: Cached chain reader.
        tracker: Tracker to feed.
        credential_provider: Returns the credential to auto-reveal with,
            or None while locked.
        interval: Seconds between polls.
    """

    def __init__(
        self,
        reader: CachedReader,
        tracker: BalanceTracker,
        credential_provider: Callable[[], DecryptionCredential | None],
        interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self._reader = reader
        self._tracker = tracker
        self._credential_provider = credential_provider
        self._interval = interval

    async def poll_once(self, *, fresh: bool = False) -> DecryptResult | None:
        handle = await self._reader.encrypted_balance(
            self._tracker.token.address, self._tracker.owner, fresh=fresh
        )
        return await self._tracker.on_handle_observed(handle, self._credential_provider())

    async def _tick(self) -> None:
        await self.poll_once()

    def start(self) -> Subscription:
        return run_periodically(
            self._tick,
            self._interval,
            name=f"watch-{self._tracker.token.symbol}",
            run_immediately=True,
        )

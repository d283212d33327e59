"""
TTL cache for chain reads.

Read keys are derived deterministically from (contract, method, args,
caller) via canonical JSON, with addresses lower-cased so the same read
issued with different checksum casing hits the same entry.

Invariants:
    - An entry is never returned at or after its ``expires_at``.
    - ``sweep`` removes every expired entry regardless of access.
    - Eviction after a write is typed (by contract, caller and method),
      never a substring scan over keys.

The clock is injectable (monotonic seconds) so tests can step time.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Final

from confidential_bridge.integrity import content_digest
from confidential_bridge.scheduling import Subscription, run_periodically

logger = logging.getLogger(__name__)

# Preset TTLs in seconds, by kind of data.
TTL_BALANCE: Final = 30.0
TTL_ENCRYPTED_DATA: Final = 60.0
TTL_CONTRACT_STATE: Final = 45.0
TTL_USER_DATA: Final = 30.0

DEFAULT_TTLS: Final[dict[str, float]] = {
    "balance": TTL_BALANCE,
    "encrypted_data": TTL_ENCRYPTED_DATA,
    "contract_state": TTL_CONTRACT_STATE,
    "user_data": TTL_USER_DATA,
}

DEFAULT_SWEEP_INTERVAL: Final = 60.0


class _Miss:
    _instance: _Miss | None = None

    def __new__(cls) -> _Miss:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS: Final = _Miss()


def _norm(value: Any) -> Any:
    if isinstance(value, str) and value.startswith(("0x", "0X")):
        return value.lower()
    if isinstance(value, (list, tuple)):
        return [_norm(v) for v in value]
    return value


def cache_key(
    contract: str,
    method: str,
    args: Sequence[Any] = (),
    caller: str | None = None,
) -> str:
    """Deterministic key for a contract read."""
    return content_digest(
        {
            "contract": contract.lower(),
            "method": method,
            "args": _norm(list(args)),
            "caller": caller.lower() if caller else None,
        }
    )


@dataclass(frozen=True)
class CacheEntry:
    """A cached value with its absolute expiry (clock seconds)."""

    key: str
    value: Any
    expires_at: float
    contract: str | None = None
    method: str | None = None
    caller: str | None = None

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    swept: int = 0


class TTLCache:
    """In-memory keyed store with per-entry expiry.

    Args:
        default_ttl: TTL used when ``set`` is called without one.
        clock: Monotonic seconds source. Defaults to ``time.monotonic``.
    """

    def __init__(
        self,
        default_ttl: float = TTL_CONTRACT_STATE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        self._default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        # bumped on every eviction of a contract (and on clear); a read that
        # started under an older generation is not stored
        self._generations: dict[str, int] = {}
        self._epoch = 0
        self.stats = CacheStats()

    # -----------------------------------------------------------------
    # Keyed operations
    # -----------------------------------------------------------------

    def get(self, key: str) -> Any:
        """Return the cached value, or ``MISS`` when absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            self.stats.misses += 1
            return MISS
        if entry.is_expired(self._clock()):
            del self._entries[key]
            self.stats.misses += 1
            return MISS
        self.stats.hits += 1
        return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> CacheEntry:
        return self._store(key, value, ttl)

    def invalidate(self, key: str) -> bool:
        removed = self._entries.pop(key, None) is not None
        if removed:
            self.stats.evictions += 1
        return removed

    def clear(self) -> None:
        self._entries.clear()
        self._epoch += 1

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not MISS

    # -----------------------------------------------------------------
    # Contract reads
    # -----------------------------------------------------------------

    def get_read(
        self, contract: str, method: str, args: Sequence[Any], caller: str | None
    ) -> Any:
        return self.get(cache_key(contract, method, args, caller))

    def read_generation(self, contract: str) -> tuple[int, int]:
        """Token to pass back to ``set_read`` for a read started now."""
        return (self._epoch, self._generations.get(contract.lower(), 0))

    def set_read(
        self,
        contract: str,
        method: str,
        args: Sequence[Any],
        caller: str | None,
        value: Any,
        ttl: float | None = None,
        *,
        generation: tuple[int, int] | None = None,
    ) -> CacheEntry | None:
        """Store a read result.

        When ``generation`` is given and the contract's reads were evicted
        since it was taken, the value predates the eviction and is dropped;
        returns None in that case.
        """
        if generation is not None and generation != self.read_generation(contract):
            logger.debug("discarding %s read of %s started before eviction", method, contract)
            return None
        key = cache_key(contract, method, args, caller)
        return self._store(
            key,
            value,
            ttl,
            contract=contract.lower(),
            method=method,
            caller=caller.lower() if caller else None,
        )

    def invalidate_reads(
        self,
        contract: str,
        caller: str | None = None,
        methods: Iterable[str] | None = None,
    ) -> int:
        """Evict cached reads of ``contract``, narrowed by caller and methods.

        Returns the number of entries removed.
        """
        contract = contract.lower()
        self._generations[contract] = self._generations.get(contract, 0) + 1
        caller_norm = caller.lower() if caller else None
        wanted = set(methods) if methods is not None else None
        doomed = [
            key
            for key, entry in self._entries.items()
            if entry.contract == contract
            and (caller_norm is None or entry.caller == caller_norm)
            and (wanted is None or entry.method in wanted)
        ]
        for key in doomed:
            del self._entries[key]
        self.stats.evictions += len(doomed)
        if doomed:
            logger.debug("evicted %d cached reads of %s", len(doomed), contract)
        return len(doomed)

    # -----------------------------------------------------------------
    # Maintenance
    # -----------------------------------------------------------------

    def sweep(self, now: float | None = None) -> int:
        """Remove every expired entry. Returns the number removed."""
        now = self._clock() if now is None else now
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for key in expired:
            del self._entries[key]
        self.stats.swept += len(expired)
        return len(expired)

    def _store(
        self,
        key: str,
        value: Any,
        ttl: float | None,
        **meta: str | None,
    ) -> CacheEntry:
        ttl = self._default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        entry = CacheEntry(key=key, value=value, expires_at=self._clock() + ttl, **meta)
        self._entries[key] = entry
        return entry


class CacheSweeper:
    """Sweeps a TTLCache on a fixed interval until stopped."""

    def __init__(self, cache: TTLCache, interval: float = DEFAULT_SWEEP_INTERVAL) -> None:
        self._cache = cache
        self._interval = interval
        self._subscription: Subscription | None = None

    @property
    def running(self) -> bool:
        return self._subscription is not None and self._subscription.active

    def start(self) -> Subscription:
        if self._subscription is None or not self._subscription.active:
            self._subscription = run_periodically(
                self._tick, self._interval, name="cache-sweep"
            )
        return self._subscription

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

    async def _tick(self) -> None:
        removed = self._cache.sweep()
        if removed:
            logger.debug("swept %d expired cache entries", removed)

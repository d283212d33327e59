"""
Cached contract reads.

Every read goes through the TTL cache keyed by (contract, method, args,
caller). ``fresh=True`` bypasses the cached value and stores the new
one. Transient failures are retried with the configured RetryPolicy.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from confidential_bridge import cache as cache_mod
from confidential_bridge.cache import MISS, TTLCache
from confidential_bridge.chain import abi
from confidential_bridge.chain.client import ChainClient
from confidential_bridge.ciphertext import EncryptedHandle
from confidential_bridge.retry import RetryPolicy

logger = logging.getLogger(__name__)

_METHOD_TTL_KIND: dict[str, str] = {
    abi.GET_ENCRYPTED_BALANCE: "encrypted_data",
    abi.BALANCE_OF: "balance",
    abi.IS_OPERATOR: "contract_state",
}


class CachedReader:
    """Chain reads memoized in a TTLCache.

    Args:
        chain: The underlying ChainClient.
        cache: Cache shared by one session.
        retry: Policy for transient failures.
        ttls: TTL by data kind (see ``cache.DEFAULT_TTLS``).
    """

    def __init__(
        self,
        chain: ChainClient,
        cache: TTLCache,
        retry: RetryPolicy | None = None,
        ttls: Mapping[str, float] | None = None,
    ) -> None:
        self._chain = chain
        self._cache = cache
        self._retry = retry or RetryPolicy()
        self._ttls = dict(cache_mod.DEFAULT_TTLS)
        if ttls:
            self._ttls.update(ttls)

    @property
    def cache(self) -> TTLCache:
        return self._cache

    async def read(
        self,
        contract: str,
        method: str,
        args: Sequence[Any] = (),
        *,
        caller: str | None = None,
        ttl: float | None = None,
        fresh: bool = False,
    ) -> Any:
        if not fresh:
            cached = self._cache.get_read(contract, method, args, caller)
            if cached is not MISS:
                return cached

        generation = self._cache.read_generation(contract)
        value = await self._retry.run(
            lambda: self._chain.read(contract, method, args, caller=caller),
            label=f"read {method}",
        )
        self._cache.set_read(
            contract,
            method,
            args,
            caller,
            value,
            ttl or self._ttl_for(method),
            generation=generation,
        )
        return value

    def evict(
        self,
        contract: str,
        caller: str | None = None,
        methods: Iterable[str] | None = None,
    ) -> int:
        return self._cache.invalidate_reads(contract, caller, methods)

    # -----------------------------------------------------------------
    # Typed helpers
    # -----------------------------------------------------------------

    async def encrypted_balance(
        self, token: str, owner: str, *, fresh: bool = False
    ) -> EncryptedHandle:
        raw = await self.read(
            token, abi.GET_ENCRYPTED_BALANCE, [owner], caller=owner, fresh=fresh
        )
        return EncryptedHandle.coerce(raw)

    async def public_balance(self, token: str, owner: str, *, fresh: bool = False) -> int:
        return int(await self.read(token, abi.BALANCE_OF, [owner], caller=owner, fresh=fresh))

    async def is_operator(self, token: str, holder: str, operator: str) -> bool:
        """Operator state is always read fresh."""
        return bool(
            await self.read(
                token, abi.IS_OPERATOR, [holder, operator], caller=holder, fresh=True
            )
        )

    def _ttl_for(self, method: str) -> float:
        kind = _METHOD_TTL_KIND.get(method, "contract_state")
        return self._ttls[kind]

"""
Owner-scoped session.

Wires one owner's cache, cached reader, balance trackers and transfer
orchestrator to the shared credential manager, and owns every
background task it starts. Nothing here is process-global: two owners
get two sessions with separate caches and trackers.

Lifecycle:
    connect()     restore a persisted credential, start the cache sweep
                  and optional handle polling
    unlock()      obtain the credential for the session's contract set,
                  auto-reveal observed balances
    lock()        erase the credential, mask every balance
    disconnect()  cancel background tasks, reset trackers, erase the
                  credential
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from decimal import Decimal

from confidential_bridge.addresses import normalize_address, normalize_contract_set
from confidential_bridge.balance import BalanceTracker, DecryptResult
from confidential_bridge.cache import CacheSweeper, TTLCache
from confidential_bridge.chain.client import ChainClient
from confidential_bridge.chain.reader import CachedReader
from confidential_bridge.ciphertext import CiphertextService
from confidential_bridge.config import BridgeConfig
from confidential_bridge.credential.manager import CredentialManager
from confidential_bridge.credential.model import DecryptionCredential
from confidential_bridge.errors import NotAuthorized
from confidential_bridge.retry import RetryPolicy
from confidential_bridge.scheduling import Subscription
from confidential_bridge.signer import TypedDataSigner
from confidential_bridge.tokens import TokenRegistry, default_registry
from confidential_bridge.transfer.intent import (
    Direction,
    TransferContext,
    TransferIntent,
    TransferOutcome,
)
from confidential_bridge.transfer.orchestrator import TransferOrchestrator
from confidential_bridge.watcher import DEFAULT_POLL_INTERVAL, HandleWatcher

logger = logging.getLogger(__name__)


class ConfidentialSession:
    """All confidential-balance state for one connected owner.

    Args:
        owner: Connected wallet address.
        chain: Chain client.
        ciphertext: Ciphertext service.
        credentials: Credential manager shared across sessions.
        registry: Token metadata. Defaults to the bundled Sepolia set.
        config: Runtime settings.
        extra_contracts: Non-token contracts the credential must cover
            (pools, vaults) in addition to every confidential token.
        cache: Cache to use; a fresh one by default.
        clock: Unix-seconds source.
    """

    def __init__(
        self,
        owner: str,
        *,
        chain: ChainClient,
        ciphertext: CiphertextService,
        credentials: CredentialManager,
        registry: TokenRegistry | None = None,
        config: BridgeConfig | None = None,
        extra_contracts: Iterable[str] = (),
        cache: TTLCache | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.owner = normalize_address(owner)
        self._config = config or BridgeConfig()
        self._registry = registry or default_registry()
        self._credentials = credentials
        self._clock = clock

        self.cache = cache or TTLCache()
        retry = RetryPolicy(
            attempts=self._config.retry_attempts,
            base_delay=self._config.retry_base_delay,
            max_delay=self._config.retry_max_delay,
        )
        self.reader = CachedReader(chain, self.cache, retry, self._config.cache_ttls)
        self._trackers: dict[str, BalanceTracker] = {
            token.address: BalanceTracker(token, self.owner, ciphertext, credentials, clock)
            for token in self._registry.confidential()
        }
        self.orchestrator = TransferOrchestrator(
            chain,
            self.reader,
            ciphertext,
            self._registry,
            grant_seconds=self._config.operator_grant_seconds,
            clock=clock,
            on_write_confirmed=self._after_write,
        )
        self._required = normalize_contract_set([*self._trackers, *extra_contracts])
        self._sweeper = CacheSweeper(self.cache, self._config.cache_sweep_interval)
        self._watchers: list[Subscription] = []
        self._signer: TypedDataSigner | None = None
        self._credential: DecryptionCredential | None = None

    # -----------------------------------------------------------------
    # State
    # -----------------------------------------------------------------

    @property
    def required_contracts(self) -> tuple[str, ...]:
        return self._required

    @property
    def credential(self) -> DecryptionCredential | None:
        """The session's credential while it is valid and still persisted."""
        if self._credential is None:
            return None
        current = self._credentials.current(self.owner)
        if current is None or current.signature != self._credential.signature:
            self._credential = None
        return self._credential

    @property
    def is_unlocked(self) -> bool:
        return self.credential is not None

    def tracker(self, token: str) -> BalanceTracker:
        try:
            return self._trackers[normalize_address(token)]
        except KeyError:
            raise KeyError(f"not a confidential token in this session: {token}") from None

    def trackers(self) -> list[BalanceTracker]:
        return list(self._trackers.values())

    # -----------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------

    async def connect(
        self,
        signer: TypedDataSigner | None = None,
        *,
        watch: bool = False,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        """Start the session; restores a persisted credential when it fits."""
        self._signer = signer
        self._sweeper.start()
        restored = self._credentials.current(self.owner)
        if restored is not None and restored.authorized_contracts == self._required:
            self._credential = restored
            logger.info("restored decryption credential for %s", self.owner)
        if watch:
            for tracker in self._trackers.values():
                watcher = HandleWatcher(
                    self.reader, tracker, lambda: self.credential, poll_interval
                )
                self._watchers.append(watcher.start())

    async def disconnect(self) -> None:
        for subscription in self._watchers:
            await subscription.wait_cancelled()
        self._watchers.clear()
        self._sweeper.stop()
        for tracker in self._trackers.values():
            tracker.reset()
        self.cache.clear()
        self._credentials.invalidate(self.owner)
        self._credential = None
        self._signer = None
        logger.info("session for %s disconnected", self.owner)

    async def unlock(self, signer: TypedDataSigner | None = None) -> DecryptionCredential:
        """Obtain the credential (one signature at most) and auto-reveal."""
        credential = await self._credentials.get_or_create(
            self.owner, self._required, signer or self._signer
        )
        self._credential = credential
        for tracker in self._trackers.values():
            if self._credential is not credential:
                # locked or disconnected while revealing
                break
            try:
                await tracker.on_credential_available(credential)
            except NotAuthorized:
                self._credential = None
                raise
        return credential

    def lock(self) -> None:
        self._credentials.invalidate(self.owner)
        self._credential = None
        for tracker in self._trackers.values():
            tracker.mask()

    # -----------------------------------------------------------------
    # Balances
    # -----------------------------------------------------------------

    async def refresh(self, token: str, *, fresh: bool = False) -> DecryptResult | None:
        """Read the token's handle and hand it to its tracker."""
        tracker = self.tracker(token)
        handle = await self.reader.encrypted_balance(tracker.token.address, self.owner, fresh=fresh)
        try:
            return await tracker.on_handle_observed(handle, self.credential)
        except NotAuthorized:
            self._credential = None
            raise

    async def refresh_all(self, *, fresh: bool = False) -> None:
        for address in self._trackers:
            await self.refresh(address, fresh=fresh)

    async def decrypt(self, token: str) -> DecryptResult:
        """Manual reveal of one balance."""
        try:
            return await self.tracker(token).decrypt(self.credential)
        except NotAuthorized:
            self._credential = None
            raise

    # -----------------------------------------------------------------
    # Transfers
    # -----------------------------------------------------------------

    async def execute(
        self,
        intent: TransferIntent,
        *,
        public_balance: int | None = None,
    ) -> TransferOutcome:
        confidential_balance = None
        if intent.direction is Direction.PULL and intent.source_token in self._trackers:
            confidential_balance = self._trackers[intent.source_token].state.plaintext
        context = TransferContext(
            owner=self.owner,
            public_balance=public_balance,
            confidential_balance=confidential_balance,
        )
        return await self.orchestrator.execute(intent, context)

    def intent(
        self,
        direction: Direction,
        source_token: str,
        destination_token: str,
        amount: Decimal | str,
        *,
        operator: str | None = None,
    ) -> TransferIntent:
        """Build an intent with the source token's registered precision."""
        source = self._registry.get(source_token)
        return TransferIntent(
            direction=direction,
            source_token=source_token,
            destination_token=destination_token,
            amount=Decimal(amount),
            decimals=source.decimals if source is not None else 18,
            operator=operator,
        )

    async def _after_write(self, owner: str, contracts: tuple[str, ...]) -> None:
        for contract in contracts:
            tracker = self._trackers.get(contract)
            if tracker is None:
                continue
            tracker.notify_write_completed()
            await self.refresh(contract, fresh=True)

"""
Credential manager — one decryption credential per owner, signed once.

Flow for ``get_or_create(owner, contracts, signer)``:
    1. Wait out any in-flight signature for the owner (same set: share it).
    2. Load the persisted credential; reuse it if valid and its contract
       set equals ``contracts`` (order and case ignored).
    3. Otherwise erase it, generate an ephemeral keypair, ask the signer
       for the EIP-712 decryption request, persist, return.

Invariants:
    - At most one outstanding signature request per owner.
    - A rejected signature persists nothing.
    - A corrupt persisted record is discarded, never surfaced.
    - ``report_not_authorized`` erases a credential only when the
      refused contract is inside its set; a refusal for a contract the
      credential never covered says nothing about the credential.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from confidential_bridge.addresses import normalize_address, normalize_contract_set
from confidential_bridge.credential.eip712 import TypedDataRequest, build_decryption_request
from confidential_bridge.credential.keys import Keypair, generate_keypair
from confidential_bridge.credential.model import DecryptionCredential
from confidential_bridge.credential.store import CredentialStore
from confidential_bridge.errors import NoSigner, UserRejected, is_user_rejection
from confidential_bridge.retry import RetryPolicy
from confidential_bridge.signer import TypedDataSigner

logger = logging.getLogger(__name__)


@dataclass
class _Flight:
    contracts: tuple[str, ...]
    task: asyncio.Task[DecryptionCredential]


class CredentialManager:
    """Creates, persists, reuses and invalidates decryption credentials.

    Args:
        store: Persistence for one record per owner.
        chain_id: Chain id of the decryption EIP-712 domain.
        verifying_contract: Verifying contract of the decryption domain.
        duration_days: Validity of newly created credentials.
        retry: Policy for transient signer failures.
        clock: Unix-seconds source.
        keygen: Ephemeral keypair factory.
    """

    def __init__(
        self,
        store: CredentialStore,
        *,
        chain_id: int,
        verifying_contract: str,
        duration_days: int = 365,
        retry: RetryPolicy | None = None,
        clock: Callable[[], float] = time.time,
        keygen: Callable[[], Keypair] = generate_keypair,
    ) -> None:
        self._store = store
        self._chain_id = chain_id
        self._verifying_contract = verifying_contract
        self._duration_days = duration_days
        self._retry = retry or RetryPolicy()
        self._clock = clock
        self._keygen = keygen
        self._inflight: dict[str, _Flight] = {}

    # -----------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------

    async def get_or_create(
        self,
        owner: str,
        required_contracts: Iterable[str],
        signer: TypedDataSigner | None,
    ) -> DecryptionCredential:
        """Return a valid credential for exactly ``required_contracts``.

        Raises:
            InvalidAddress: ``owner`` or a contract is malformed, or the
                set is empty.
            NoSigner: A signature is needed and ``signer`` is None or
                bound to another address.
            UserRejected: The owner declined to sign.
        """
        owner = normalize_address(owner)
        required = normalize_contract_set(required_contracts)

        while (flight := self._inflight.get(owner)) is not None:
            if flight.contracts == required:
                return await asyncio.shield(flight.task)
            # Different set: let the other request settle, then re-evaluate.
            await asyncio.wait({flight.task})

        existing = self._load_usable(owner, required)
        if existing is not None:
            return existing

        task = asyncio.get_running_loop().create_task(
            self._create(owner, required, signer), name=f"credential-{owner}"
        )
        self._inflight[owner] = _Flight(required, task)
        task.add_done_callback(lambda _t: self._clear_flight(owner, task))
        return await asyncio.shield(task)

    def is_valid(self, credential: DecryptionCredential | None, now: float | None = None) -> bool:
        if credential is None:
            return False
        return credential.is_valid(self._clock() if now is None else now)

    def current(self, owner: str) -> DecryptionCredential | None:
        """The persisted credential for ``owner`` if still valid. Never signs."""
        owner = normalize_address(owner)
        credential = self._load(owner)
        if credential is None or not credential.is_valid(self._clock()):
            return None
        return credential

    def invalidate(self, owner: str) -> bool:
        """Erase the owner's credential (lock, disconnect)."""
        removed = self._store.delete(owner)
        if removed:
            logger.info("erased decryption credential for %s", normalize_address(owner))
        return removed

    def report_not_authorized(
        self,
        owner: str,
        contract: str,
        credential: DecryptionCredential | None = None,
    ) -> bool:
        """Handle a NotAuthorized refusal for ``contract``.

        Erases the stored credential when the contract is inside its set,
        meaning on-chain authorization has diverged from what was signed.
        When ``credential`` is given, only that exact credential is erased;
        a newer stored one is left alone.

        Returns True if a credential was erased.
        """
        owner = normalize_address(owner)
        stored = self._load(owner)
        if stored is None:
            return False
        if credential is not None and stored.signature != credential.signature:
            return False
        if not stored.authorizes(contract):
            logger.debug(
                "decrypt refused for %s outside the credential set; keeping credential",
                contract,
            )
            return False
        logger.warning(
            "decrypt refused for authorized contract %s; invalidating credential for %s",
            contract,
            owner,
        )
        self._store.delete(owner)
        return True

    # -----------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------

    def _clear_flight(self, owner: str, task: asyncio.Task[DecryptionCredential]) -> None:
        flight = self._inflight.get(owner)
        if flight is not None and flight.task is task:
            del self._inflight[owner]

    def _load(self, owner: str) -> DecryptionCredential | None:
        try:
            return self._store.load(owner)
        except ValueError as exc:
            logger.warning("discarding corrupt credential record for %s: %s", owner, exc)
            self._store.delete(owner)
            return None

    def _load_usable(
        self, owner: str, required: tuple[str, ...]
    ) -> DecryptionCredential | None:
        credential = self._load(owner)
        if credential is None:
            return None
        if not credential.is_valid(self._clock()):
            logger.info("stored credential for %s expired", owner)
            return None
        if credential.authorized_contracts != required:
            logger.info("stored credential for %s covers a different contract set", owner)
            return None
        return credential

    async def _create(
        self,
        owner: str,
        contracts: tuple[str, ...],
        signer: TypedDataSigner | None,
    ) -> DecryptionCredential:
        if signer is None:
            raise NoSigner("a wallet signature is required to unlock balances")
        if normalize_address(signer.address) != owner:
            raise NoSigner("signer is bound to a different address than the owner")

        self._store.delete(owner)

        keypair = self._keygen()
        issued_at = int(self._clock())
        request = build_decryption_request(
            keypair.public_key,
            contracts,
            issued_at,
            self._duration_days,
            chain_id=self._chain_id,
            verifying_contract=self._verifying_contract,
        )
        signature = await self._retry.run(
            lambda: _request_signature(signer, request),
            label="decryption signature",
        )

        credential = DecryptionCredential(
            owner=owner,
            authorized_contracts=contracts,
            public_key=keypair.public_key,
            private_key=keypair.private_key,
            signature=signature,
            issued_at=issued_at,
            duration_days=self._duration_days,
        )
        self._store.save(credential)
        logger.info(
            "created decryption credential for %s covering %d contracts",
            owner,
            len(contracts),
        )
        return credential


async def _request_signature(signer: TypedDataSigner, request: TypedDataRequest) -> str:
    try:
        return await signer.sign_typed_data(request.domain, request.types, request.message)
    except UserRejected:
        raise
    except Exception as exc:
        if is_user_rejection(exc):
            raise UserRejected("signature request was rejected") from exc
        raise

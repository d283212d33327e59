"""
Transfer orchestrator — push and pull movements between public and
confidential tokens.

PUSH (public -> confidential):
    validate amount against the public balance, submit one ``wrap`` on the
    source token, confirm, evict the affected cached reads.

PULL (confidential -> destination contract):
    CHECK_OPERATOR  fresh ``isOperator(owner, operator)`` on the source
    GRANT           if missing, submit ``setOperator(operator, now + horizon)``
                    and return AWAITING_APPROVAL (step 1 of 2)
    ENCRYPT         encrypted input bound to the operator contract
    SUBMIT/CONFIRM  ``swapConfidentialToERC20`` on the operator, evict reads

Idempotence:
    Grants are tracked per (owner, token, operator). While a grant is
    pending, or confirmed but not yet visible to reads and unexpired,
    repeated executions return AWAITING_APPROVAL without another grant.
    A grant that reverted, failed to confirm or expired is resubmitted.

Failures never leak raw provider text into the outcome message; a
reverted transaction evicts nothing because no state changed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from confidential_bridge.amounts import check_uint64, parse_units
from confidential_bridge.chain import abi
from confidential_bridge.chain.client import ChainClient, TxHandle, TxReceipt
from confidential_bridge.chain.reader import CachedReader
from confidential_bridge.ciphertext import CiphertextService, EncryptedInput
from confidential_bridge.errors import (
    BridgeError,
    EncryptionUnavailable,
    ErrorCategory,
    InvalidAmount,
    classify_exception,
    is_user_rejection,
    sanitize_detail,
    user_message,
)
from confidential_bridge.tokens import TokenRegistry
from confidential_bridge.transfer.intent import (
    Direction,
    FailureReason,
    TransferContext,
    TransferIntent,
    TransferOutcome,
    TransferStatus,
    TransferStep,
)

logger = logging.getLogger(__name__)

DEFAULT_GRANT_SECONDS = 3600

# (owner, affected contracts) after a confirmed write.
WriteConfirmedHook = Callable[[str, tuple[str, ...]], Awaitable[None]]

_GrantKey = tuple[str, str, str]


@dataclass
class _PendingGrant:
    tx: TxHandle
    valid_until: int
    confirmation: asyncio.Task[TxReceipt]

    def settled_ok(self) -> bool:
        task = self.confirmation
        if not task.done() or task.cancelled() or task.exception() is not None:
            return False
        return task.result().success


class TransferOrchestrator:
    """Executes TransferIntents against the chain.

    Args:
        chain: Chain client used for writes and confirmations.
        reader: Cached reader for balances and operator state.
        ciphertext: Service producing encrypted inputs.
        registry: Token precision by identity.
        grant_seconds: Operator grant horizon from submission.
        clock: Unix-seconds source.
        on_write_confirmed: Awaited after every confirmed value-moving write.
    """

    def __init__(
        self,
        chain: ChainClient,
        reader: CachedReader,
        ciphertext: CiphertextService,
        registry: TokenRegistry,
        *,
        grant_seconds: int = DEFAULT_GRANT_SECONDS,
        clock: Callable[[], float] = time.time,
        on_write_confirmed: WriteConfirmedHook | None = None,
    ) -> None:
        self._chain = chain
        self._reader = reader
        self._ciphertext = ciphertext
        self._registry = registry
        self._grant_seconds = grant_seconds
        self._clock = clock
        self._on_write_confirmed = on_write_confirmed
        self._pending_grants: dict[_GrantKey, _PendingGrant] = {}
        self._grant_locks: dict[_GrantKey, asyncio.Lock] = {}

    async def execute(self, intent: TransferIntent, context: TransferContext) -> TransferOutcome:
        logger.info(
            "executing %s transfer %s -> %s",
            intent.direction,
            intent.source_token,
            intent.destination_token,
        )
        if intent.direction is Direction.PUSH:
            return await self._push(intent, context)
        return await self._pull(intent, context)

    async def wait_for_grant(
        self, intent: TransferIntent, context: TransferContext
    ) -> TxReceipt | None:
        """Await the pending operator grant for this intent, if any."""
        pending = self._pending_grants.get(self._grant_key(intent, context))
        if pending is None:
            return None
        return await asyncio.shield(pending.confirmation)

    def pending_grant(self, intent: TransferIntent, context: TransferContext) -> TxHandle | None:
        pending = self._pending_grants.get(self._grant_key(intent, context))
        return None if pending is None else pending.tx

    # =================================================================
    # PUSH
    # =================================================================

    async def _push(self, intent: TransferIntent, context: TransferContext) -> TransferOutcome:
        owner = context.owner
        source = intent.source_token

        decimals = self._registry.decimals_for(source, intent.decimals)
        try:
            amount = _positive_units(intent, decimals)
        except InvalidAmount as exc:
            return _failed(
                Direction.PUSH, TransferStep.VALIDATE, FailureReason.INVALID_AMOUNT, str(exc)
            )

        available = context.public_balance
        if available is None:
            try:
                available = await self._reader.public_balance(source, owner)
            except BridgeError as exc:
                return _chain_failure(Direction.PUSH, TransferStep.VALIDATE, exc)
        if amount > available:
            return _failed(
                Direction.PUSH,
                TransferStep.VALIDATE,
                FailureReason.INSUFFICIENT_PUBLIC_BALANCE,
                "Amount exceeds your available balance.",
                category=ErrorCategory.INSUFFICIENT_FUNDS,
            )

        try:
            tx = await self._chain.write(source, abi.WRAP, [owner, amount], sender=owner)
        except BridgeError as exc:
            return _chain_failure(Direction.PUSH, TransferStep.SUBMIT, exc)

        return await self._confirm(
            Direction.PUSH,
            owner,
            tx,
            evictions=(
                (intent.destination_token, (abi.GET_ENCRYPTED_BALANCE,)),
                (source, (abi.BALANCE_OF,)),
            ),
            total_steps=1,
        )

    # =================================================================
    # PULL
    # =================================================================

    async def _pull(self, intent: TransferIntent, context: TransferContext) -> TransferOutcome:
        owner = context.owner
        token = intent.source_token
        operator = intent.pulling_contract

        decimals = self._registry.decimals_for(token, intent.decimals)
        try:
            amount = check_uint64(_positive_units(intent, decimals))
        except InvalidAmount as exc:
            return _failed(
                Direction.PULL, TransferStep.VALIDATE, FailureReason.INVALID_AMOUNT, str(exc)
            )
        if context.confidential_balance is not None and amount > context.confidential_balance:
            return _failed(
                Direction.PULL,
                TransferStep.VALIDATE,
                FailureReason.INSUFFICIENT_CONFIDENTIAL_BALANCE,
                "Amount exceeds your confidential balance.",
                category=ErrorCategory.INSUFFICIENT_FUNDS,
            )

        key = self._grant_key(intent, context)
        try:
            authorized = await self._reader.is_operator(token, owner, operator)
        except BridgeError as exc:
            return _chain_failure(Direction.PULL, TransferStep.CHECK_OPERATOR, exc, total_steps=2)

        if not authorized:
            return await self._ensure_grant(key)

        granted_here = self._pending_grants.pop(key, None) is not None
        total = 2 if granted_here else 1
        done = 1 if granted_here else 0

        try:
            encrypted = await self._ciphertext.encrypt(operator, owner, amount)
            _check_binding(encrypted, operator)
        except BridgeError as exc:
            logger.warning("encryption for %s failed: %s", operator, sanitize_detail(str(exc)))
            return _failed(
                Direction.PULL,
                TransferStep.ENCRYPT,
                FailureReason.ENCRYPTION_UNAVAILABLE,
                "Encryption service is unavailable. Please try again.",
                total_steps=total,
                completed_steps=done,
            )
        try:
            tx = await self._chain.write(
                operator,
                abi.SWAP_CONFIDENTIAL_TO_ERC20,
                [token, encrypted.handle, encrypted.proof],
                sender=owner,
            )
        except BridgeError as exc:
            return _chain_failure(
                Direction.PULL, TransferStep.SUBMIT, exc, total_steps=total, completed_steps=done
            )

        return await self._confirm(
            Direction.PULL,
            owner,
            tx,
            evictions=(
                (token, (abi.GET_ENCRYPTED_BALANCE,)),
                (intent.destination_token, (abi.BALANCE_OF,)),
            ),
            total_steps=total,
            completed_steps=done,
        )

    async def _ensure_grant(self, key: _GrantKey) -> TransferOutcome:
        owner, token, operator = key
        lock = self._grant_locks.setdefault(key, asyncio.Lock())
        async with lock:
            pending = self._pending_grants.get(key)
            now = self._clock()
            if pending is not None:
                if pending.valid_until <= now:
                    logger.info("operator grant %s expired; resubmitting", pending.tx.tx_hash)
                elif not pending.confirmation.done() or pending.settled_ok():
                    return _awaiting(pending.tx)
                else:
                    logger.info("operator grant %s did not confirm; resubmitting", pending.tx.tx_hash)
                del self._pending_grants[key]

            valid_until = int(now) + self._grant_seconds
            try:
                tx = await self._chain.write(
                    token, abi.SET_OPERATOR, [operator, valid_until], sender=owner
                )
            except BridgeError as exc:
                return _chain_failure(Direction.PULL, TransferStep.GRANT, exc, total_steps=2)

            confirmation = asyncio.get_running_loop().create_task(
                self._chain.wait_for_confirmation(tx), name=f"grant-{tx.tx_hash}"
            )
            confirmation.add_done_callback(_log_grant_settled)
            self._pending_grants[key] = _PendingGrant(tx, valid_until, confirmation)
            logger.info("operator grant submitted for %s on %s: %s", operator, token, tx.tx_hash)
            return _awaiting(tx)

    # =================================================================
    # Shared
    # =================================================================

    async def _confirm(
        self,
        direction: Direction,
        owner: str,
        tx: TxHandle,
        *,
        evictions: Sequence[tuple[str, tuple[str, ...]]],
        total_steps: int,
        completed_steps: int = 0,
    ) -> TransferOutcome:
        try:
            receipt = await self._chain.wait_for_confirmation(tx)
        except BridgeError as exc:
            return _chain_failure(
                direction,
                TransferStep.CONFIRM,
                exc,
                total_steps=total_steps,
                completed_steps=completed_steps,
                tx_hashes=(tx.tx_hash,),
            )

        if not receipt.success:
            return _failed(
                direction,
                TransferStep.CONFIRM,
                FailureReason.CHAIN_REJECTED,
                user_message(ErrorCategory.REVERTED),
                category=ErrorCategory.REVERTED,
                total_steps=total_steps,
                completed_steps=completed_steps,
                tx_hashes=(tx.tx_hash,),
            )

        for contract, methods in evictions:
            self._reader.evict(contract, owner, methods)
        affected = tuple(contract for contract, _ in evictions)
        if self._on_write_confirmed is not None:
            try:
                await self._on_write_confirmed(owner, affected)
            except Exception:
                logger.exception("write-confirmed hook failed for %s", tx.tx_hash)

        logger.info("%s transfer confirmed: %s", direction, tx.tx_hash)
        return TransferOutcome(
            status=TransferStatus.COMPLETED,
            direction=direction,
            step=TransferStep.DONE,
            total_steps=total_steps,
            completed_steps=total_steps,
            tx_hashes=(tx.tx_hash,),
        )

    @staticmethod
    def _grant_key(intent: TransferIntent, context: TransferContext) -> _GrantKey:
        return (context.owner, intent.source_token, intent.pulling_contract)


# =====================================================================
# Helpers (pure)
# =====================================================================


def _positive_units(intent: TransferIntent, decimals: int) -> int:
    amount = parse_units(intent.amount, decimals)
    if amount <= 0:
        raise InvalidAmount("amount must be greater than zero")
    return amount


def _check_binding(encrypted: EncryptedInput, operator: str) -> None:
    if encrypted.target_contract.lower() != operator:
        raise EncryptionUnavailable("encrypted input is bound to the wrong contract")


def _awaiting(tx: TxHandle) -> TransferOutcome:
    return TransferOutcome(
        status=TransferStatus.AWAITING_APPROVAL,
        direction=Direction.PULL,
        step=TransferStep.GRANT,
        total_steps=2,
        completed_steps=1,
        tx_hashes=(tx.tx_hash,),
        message="Approval submitted. Run the transfer again once it confirms.",
    )


def _failed(
    direction: Direction,
    step: TransferStep,
    reason: FailureReason,
    message: str,
    *,
    category: ErrorCategory | None = None,
    total_steps: int = 1,
    completed_steps: int = 0,
    tx_hashes: tuple[str, ...] = (),
) -> TransferOutcome:
    return TransferOutcome(
        status=TransferStatus.FAILED,
        direction=direction,
        step=step,
        total_steps=total_steps,
        completed_steps=completed_steps,
        tx_hashes=tx_hashes,
        reason=reason,
        category=category,
        message=message,
    )


def _chain_failure(
    direction: Direction,
    step: TransferStep,
    exc: BaseException,
    *,
    total_steps: int = 1,
    completed_steps: int = 0,
    tx_hashes: tuple[str, ...] = (),
) -> TransferOutcome:
    if is_user_rejection(exc):
        reason = FailureReason.USER_REJECTED
        category = ErrorCategory.CANCELLED
    else:
        reason = FailureReason.CHAIN_REJECTED
        category = classify_exception(exc)
    logger.warning(
        "%s transfer failed at %s (%s): %s",
        direction,
        step,
        category,
        sanitize_detail(str(exc)),
    )
    return _failed(
        direction,
        step,
        reason,
        user_message(category),
        category=category,
        total_steps=total_steps,
        completed_steps=completed_steps,
        tx_hashes=tx_hashes,
    )


def _log_grant_settled(task: asyncio.Task[TxReceipt]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("operator grant confirmation failed: %s", sanitize_detail(str(exc)))
    elif not task.result().success:
        logger.warning("operator grant %s reverted", task.result().tx_hash)

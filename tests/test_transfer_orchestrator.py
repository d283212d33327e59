"""
Tests for TransferOrchestrator push and pull flows.

All tests use FakeChain + FakeCiphertext — no network calls.

Test plan:
- PUSH: one write with the amount in the source token's precision;
  destination confidential reads evicted after confirmation; balance and
  amount validation before any write; rejection, revert and provider
  errors mapped to categories without raw text
- PULL: missing operator -> exactly one grant, AWAITING_APPROVAL (step 1
  of 2); repeats while pending submit nothing; concurrent repeats submit
  one grant; reverted or expired grants are resubmitted
- PULL with operator: encryption bound to the operator contract with the
  confidential token's internal precision; pull tx; source confidential
  and destination public reads evicted
- Failures: uint64 overflow, insufficient confidential balance, encryption
  unavailable, revert leaves the cache alone
"""

import asyncio
from decimal import Decimal

import pytest

from confidential_bridge.cache import MISS, TTLCache
from confidential_bridge.chain.reader import CachedReader
from confidential_bridge.errors import (
    ChainRejected,
    EncryptionUnavailable,
    ErrorCategory,
    TransientError,
    UserRejected,
    user_message,
)
from confidential_bridge.retry import RetryPolicy
from confidential_bridge.tokens import default_registry
from confidential_bridge.transfer.intent import (
    Direction,
    FailureReason,
    TransferContext,
    TransferIntent,
    TransferStatus,
    TransferStep,
)
from confidential_bridge.transfer.orchestrator import TransferOrchestrator
from tests.fakes import (
    CWETH,
    OTHER,
    OWNER,
    SWAPPER,
    WETH,
    FakeChain,
    FakeCiphertext,
    FixedClock,
)

NOW = 1_700_000_000


class Harness:
    def __init__(self) -> None:
        self.chain = FakeChain()
        self.service = FakeCiphertext()
        self.cache = TTLCache()
        self.clock = FixedClock(NOW)
        self.reader = CachedReader(self.chain, self.cache, RetryPolicy(base_delay=0.0))
        self.confirmed: list[tuple[str, tuple[str, ...]]] = []
        self.orchestrator = TransferOrchestrator(
            self.chain,
            self.reader,
            self.service,
            default_registry(),
            grant_seconds=3600,
            clock=self.clock,
            on_write_confirmed=self._record,
        )

    async def _record(self, owner: str, contracts: tuple[str, ...]) -> None:
        self.confirmed.append((owner, contracts))

    def operator(self, granted: bool) -> None:
        self.chain.set_read(CWETH, "isOperator", [OWNER, SWAPPER], granted)


def _push(amount: str = "1.0") -> TransferIntent:
    return TransferIntent(
        direction=Direction.PUSH,
        source_token=WETH,
        destination_token=CWETH,
        amount=Decimal(amount),
        decimals=18,
    )


def _pull(amount: str = "1.5") -> TransferIntent:
    return TransferIntent(
        direction=Direction.PULL,
        source_token=CWETH,
        destination_token=WETH,
        amount=Decimal(amount),
        decimals=6,
        operator=SWAPPER,
    )


CTX = TransferContext(owner=OWNER, public_balance=2 * 10**18)


# ---------------------------------------------------------------------------
# PUSH
# ---------------------------------------------------------------------------


class TestPush:
    @pytest.mark.asyncio
    async def test_single_write_in_source_precision(self) -> None:
        h = Harness()

        outcome = await h.orchestrator.execute(_push("1.0"), CTX)

        assert outcome.status is TransferStatus.COMPLETED
        assert h.chain.write_calls == [(WETH, "wrap", (OWNER, 10**18), OWNER)]
        assert outcome.tx_hashes == (f"0x{1:064x}",)

    @pytest.mark.asyncio
    async def test_destination_reads_evicted_after_confirmation(self) -> None:
        h = Harness()
        h.cache.set_read(CWETH, "getEncryptedBalance", [OWNER], OWNER, b"\x01" * 32)
        h.cache.set_read(CWETH, "getEncryptedBalance", [OTHER], OTHER, b"\x02" * 32)
        h.cache.set_read(WETH, "balanceOf", [OWNER], OWNER, 2 * 10**18)

        await h.orchestrator.execute(_push(), CTX)

        assert h.cache.get_read(CWETH, "getEncryptedBalance", [OWNER], OWNER) is MISS
        assert h.cache.get_read(WETH, "balanceOf", [OWNER], OWNER) is MISS
        assert h.cache.get_read(CWETH, "getEncryptedBalance", [OTHER], OTHER) == b"\x02" * 32
        assert h.confirmed == [(OWNER, (CWETH, WETH))]

    @pytest.mark.asyncio
    async def test_reads_public_balance_when_unknown(self) -> None:
        h = Harness()
        h.chain.set_read(WETH, "balanceOf", [OWNER], 5 * 10**18)

        outcome = await h.orchestrator.execute(_push("3"), TransferContext(owner=OWNER))

        assert outcome.ok
        assert h.chain.write_calls[0][2] == (OWNER, 3 * 10**18)

    @pytest.mark.asyncio
    async def test_amount_above_public_balance(self) -> None:
        h = Harness()

        outcome = await h.orchestrator.execute(_push("3"), CTX)

        assert outcome.status is TransferStatus.FAILED
        assert outcome.reason is FailureReason.INSUFFICIENT_PUBLIC_BALANCE
        assert outcome.step is TransferStep.VALIDATE
        assert h.chain.write_calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0", "-1", "0.0000000000000000001"])
    async def test_invalid_amounts_submit_nothing(self, amount: str) -> None:
        h = Harness()

        outcome = await h.orchestrator.execute(_push(amount), CTX)

        assert outcome.reason is FailureReason.INVALID_AMOUNT
        assert h.chain.write_calls == []

    @pytest.mark.asyncio
    async def test_user_rejection(self) -> None:
        h = Harness()
        h.cache.set_read(CWETH, "getEncryptedBalance", [OWNER], OWNER, b"\x01" * 32)
        h.chain.write_errors.append(UserRejected("User rejected the request."))

        outcome = await h.orchestrator.execute(_push(), CTX)

        assert outcome.reason is FailureReason.USER_REJECTED
        assert outcome.category is ErrorCategory.CANCELLED
        assert h.cache.get_read(CWETH, "getEncryptedBalance", [OWNER], OWNER) == b"\x01" * 32

    @pytest.mark.asyncio
    async def test_revert_does_not_evict(self) -> None:
        h = Harness()
        h.cache.set_read(CWETH, "getEncryptedBalance", [OWNER], OWNER, b"\x01" * 32)
        h.chain.reverted_methods.add("wrap")

        outcome = await h.orchestrator.execute(_push(), CTX)

        assert outcome.reason is FailureReason.CHAIN_REJECTED
        assert outcome.category is ErrorCategory.REVERTED
        assert outcome.step is TransferStep.CONFIRM
        assert h.cache.get_read(CWETH, "getEncryptedBalance", [OWNER], OWNER) == b"\x01" * 32
        assert h.confirmed == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("error", "category"),
        [
            (ChainRejected("insufficient funds for gas * price + value: address 0xabc"), ErrorCategory.INSUFFICIENT_FUNDS),
            (TransientError("429 Too Many Requests"), ErrorCategory.TEMPORARILY_UNAVAILABLE),
            (TransientError("network error: ConnectError"), ErrorCategory.NETWORK),
        ],
    )
    async def test_provider_errors_are_categorized(
        self, error: Exception, category: ErrorCategory
    ) -> None:
        h = Harness()
        h.chain.write_errors.append(error)

        outcome = await h.orchestrator.execute(_push(), CTX)

        assert outcome.reason is FailureReason.CHAIN_REJECTED
        assert outcome.category is category
        assert outcome.message == user_message(category)


# ---------------------------------------------------------------------------
# PULL: operator grant
# ---------------------------------------------------------------------------


class TestPullGrant:
    @pytest.mark.asyncio
    async def test_missing_grant_submits_one_grant(self) -> None:
        h = Harness()
        h.operator(False)

        outcome = await h.orchestrator.execute(_pull(), CTX)

        assert outcome.status is TransferStatus.AWAITING_APPROVAL
        assert outcome.progress == "step 1 of 2 complete"
        assert h.chain.write_calls == [(CWETH, "setOperator", (SWAPPER, NOW + 3600), OWNER)]
        assert h.service.encrypt_calls == []

    @pytest.mark.asyncio
    async def test_repeat_while_pending_submits_nothing(self) -> None:
        h = Harness()
        h.operator(False)
        h.chain.confirm_gate = asyncio.Event()

        first = await h.orchestrator.execute(_pull(), CTX)
        second = await h.orchestrator.execute(_pull(), CTX)

        assert first.status is second.status is TransferStatus.AWAITING_APPROVAL
        assert len(h.chain.writes_of("setOperator")) == 1
        assert second.tx_hashes == first.tx_hashes
        h.chain.confirm_gate.set()
        await h.orchestrator.wait_for_grant(_pull(), CTX)

    @pytest.mark.asyncio
    async def test_concurrent_repeats_submit_one_grant(self) -> None:
        h = Harness()
        h.operator(False)
        h.chain.confirm_gate = asyncio.Event()

        outcomes = await asyncio.gather(
            *(h.orchestrator.execute(_pull(), CTX) for _ in range(3))
        )

        assert all(o.status is TransferStatus.AWAITING_APPROVAL for o in outcomes)
        assert len(h.chain.writes_of("setOperator")) == 1
        h.chain.confirm_gate.set()
        await h.orchestrator.wait_for_grant(_pull(), CTX)

    @pytest.mark.asyncio
    async def test_confirmed_but_not_visible_waits(self) -> None:
        h = Harness()
        h.operator(False)
        await h.orchestrator.execute(_pull(), CTX)
        receipt = await h.orchestrator.wait_for_grant(_pull(), CTX)
        assert receipt is not None and receipt.success

        outcome = await h.orchestrator.execute(_pull(), CTX)

        assert outcome.status is TransferStatus.AWAITING_APPROVAL
        assert len(h.chain.writes_of("setOperator")) == 1

    @pytest.mark.asyncio
    async def test_reverted_grant_is_resubmitted(self) -> None:
        h = Harness()
        h.operator(False)
        h.chain.reverted_methods.add("setOperator")
        await h.orchestrator.execute(_pull(), CTX)
        receipt = await h.orchestrator.wait_for_grant(_pull(), CTX)
        assert receipt is not None and not receipt.success

        await h.orchestrator.execute(_pull(), CTX)

        assert len(h.chain.writes_of("setOperator")) == 2

    @pytest.mark.asyncio
    async def test_expired_grant_is_resubmitted(self) -> None:
        h = Harness()
        h.operator(False)
        await h.orchestrator.execute(_pull(), CTX)
        await h.orchestrator.wait_for_grant(_pull(), CTX)
        h.clock.advance(3600)

        await h.orchestrator.execute(_pull(), CTX)

        grants = h.chain.writes_of("setOperator")
        assert len(grants) == 2
        assert grants[1][2] == (SWAPPER, NOW + 7200)

    @pytest.mark.asyncio
    async def test_rejected_grant(self) -> None:
        h = Harness()
        h.operator(False)
        h.chain.write_errors.append(UserRejected("user denied transaction signature"))

        outcome = await h.orchestrator.execute(_pull(), CTX)

        assert outcome.reason is FailureReason.USER_REJECTED
        assert outcome.step is TransferStep.GRANT
        assert h.orchestrator.pending_grant(_pull(), CTX) is None


# ---------------------------------------------------------------------------
# PULL: value movement
# ---------------------------------------------------------------------------


class TestPullTransfer:
    @pytest.mark.asyncio
    async def test_two_step_flow_completes(self) -> None:
        h = Harness()
        h.operator(False)
        h.chain.confirm_gate = asyncio.Event()

        first = await h.orchestrator.execute(_pull("1.5"), CTX)
        assert first.status is TransferStatus.AWAITING_APPROVAL

        h.chain.confirm_gate.set()
        await h.orchestrator.wait_for_grant(_pull(), CTX)
        h.operator(True)
        done = await h.orchestrator.execute(_pull("1.5"), CTX)

        assert done.status is TransferStatus.COMPLETED
        assert done.total_steps == 2
        assert done.progress == "step 2 of 2 complete"
        assert h.service.encrypt_calls == [(SWAPPER, OWNER, 1_500_000)]
        swap = h.chain.writes_of("swapConfidentialToERC20")
        assert len(swap) == 1
        contract, _, args, sender = swap[0]
        assert contract == SWAPPER
        assert sender == OWNER
        assert args[0] == CWETH
        assert args[2] == b"proof:" + SWAPPER.encode()

    @pytest.mark.asyncio
    async def test_encryption_is_bound_to_operator_not_token(self) -> None:
        h = Harness()
        h.operator(True)

        await h.orchestrator.execute(_pull(), CTX)

        target, user, _ = h.service.encrypt_calls[0]
        assert target == SWAPPER
        assert target != CWETH
        assert user == OWNER

    @pytest.mark.asyncio
    async def test_operator_read_bypasses_cache(self) -> None:
        h = Harness()
        h.cache.set_read(CWETH, "isOperator", [OWNER, SWAPPER], OWNER, True)
        h.operator(False)

        outcome = await h.orchestrator.execute(_pull(), CTX)

        assert outcome.status is TransferStatus.AWAITING_APPROVAL

    @pytest.mark.asyncio
    async def test_reads_evicted_after_pull(self) -> None:
        h = Harness()
        h.operator(True)
        h.cache.set_read(CWETH, "getEncryptedBalance", [OWNER], OWNER, b"\x01" * 32)
        h.cache.set_read(WETH, "balanceOf", [OWNER], OWNER, 0)

        outcome = await h.orchestrator.execute(_pull(), CTX)

        assert outcome.ok
        assert outcome.total_steps == 1
        assert h.cache.get_read(CWETH, "getEncryptedBalance", [OWNER], OWNER) is MISS
        assert h.cache.get_read(WETH, "balanceOf", [OWNER], OWNER) is MISS

    @pytest.mark.asyncio
    async def test_amount_beyond_uint64(self) -> None:
        h = Harness()
        h.operator(True)

        outcome = await h.orchestrator.execute(_pull("18446744073709.551616"), CTX)

        assert outcome.reason is FailureReason.INVALID_AMOUNT
        assert h.service.encrypt_calls == []

    @pytest.mark.asyncio
    async def test_insufficient_confidential_balance(self) -> None:
        h = Harness()
        h.operator(True)
        ctx = TransferContext(owner=OWNER, confidential_balance=1_000_000)

        outcome = await h.orchestrator.execute(_pull("1.5"), ctx)

        assert outcome.reason is FailureReason.INSUFFICIENT_CONFIDENTIAL_BALANCE
        assert h.chain.write_calls == []

    @pytest.mark.asyncio
    async def test_encryption_unavailable(self) -> None:
        h = Harness()
        h.operator(True)
        h.service.encrypt_error = EncryptionUnavailable("relayer down")

        outcome = await h.orchestrator.execute(_pull(), CTX)

        assert outcome.reason is FailureReason.ENCRYPTION_UNAVAILABLE
        assert outcome.step is TransferStep.ENCRYPT
        assert h.chain.write_calls == []

    @pytest.mark.asyncio
    async def test_unregistered_token_uses_intent_precision(self) -> None:
        h = Harness()
        other_token = "0x9999999999999999999999999999999999999999"
        h.chain.set_read(other_token, "isOperator", [OWNER, SWAPPER], True)
        intent = TransferIntent(
            direction=Direction.PULL,
            source_token=other_token,
            destination_token=WETH,
            amount=Decimal("2"),
            decimals=4,
            operator=SWAPPER,
        )

        await h.orchestrator.execute(intent, CTX)

        assert h.service.encrypt_calls == [(SWAPPER, OWNER, 20_000)]

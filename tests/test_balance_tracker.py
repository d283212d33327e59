"""
Tests for BalanceTracker.

All tests use FakeCiphertext — no network calls.

Test plan:
- Empty handle: masked, not revealed, zero service calls
- Dedupe: observing the same handle twice triggers one decrypt at most
- Busy flag: a second decrypt while one is in flight is dropped, not queued
- Stale result: a handle change during decrypt discards the old value and
  follows up with the new handle
- Display: plaintext / 10^decimals with the symbol; exact up to 2^64-1
- Auto-reveal: once per handle when a credential appears; suppressed by
  mask(); re-enabled by a new handle or a completed write
- Locked: no or expired credential -> LOCKED, no service call
- NotAuthorized: masked, reported to the manager, re-raised; a token
  outside the credential never reaches the service
- Transient failure: masked, retryable FAILED result, busy cleared
"""

import asyncio

import pytest

from confidential_bridge.amounts import UINT64_MAX
from confidential_bridge.balance import MASKED, BalanceTracker, DecryptStatus
from confidential_bridge.ciphertext import EMPTY_HANDLE
from confidential_bridge.credential.manager import CredentialManager
from confidential_bridge.credential.model import DecryptionCredential
from confidential_bridge.credential.store import CredentialStore
from confidential_bridge.errors import NotAuthorized, TransientError
from confidential_bridge.tokens import TokenInfo, TokenKind
from tests.fakes import (
    CUSDC,
    CWETH,
    FAKE_SIGNATURE,
    OWNER,
    WETH,
    FakeCiphertext,
    FakeSigner,
    FixedClock,
)

CWETH_INFO = TokenInfo(
    address=CWETH, symbol="cWETH", decimals=6, kind=TokenKind.CONFIDENTIAL, underlying=WETH
)


def _credential(
    contracts: tuple[str, ...] = (CWETH, CUSDC), issued_at: int = 1_700_000_000
) -> DecryptionCredential:
    return DecryptionCredential(
        owner=OWNER,
        authorized_contracts=contracts,
        public_key="0x" + "01" * 32,
        private_key="0x" + "02" * 32,
        signature=FAKE_SIGNATURE,
        issued_at=issued_at,
        duration_days=30,
    )


def _tracker(
    service: FakeCiphertext,
    manager: CredentialManager | None = None,
    token: TokenInfo = CWETH_INFO,
) -> BalanceTracker:
    return BalanceTracker(token, OWNER, service, manager, clock=FixedClock())


# ---------------------------------------------------------------------------
# Handle observation
# ---------------------------------------------------------------------------


class TestObserve:
    @pytest.mark.asyncio
    async def test_empty_handle_is_masked_without_service_call(self) -> None:
        service = FakeCiphertext()
        tracker = _tracker(service)

        result = await tracker.on_handle_observed("0x" + "00" * 32, _credential())

        assert result is not None and result.status is DecryptStatus.EMPTY
        assert tracker.state.display == MASKED
        assert tracker.state.is_revealed is False
        assert tracker.state.has_balance is False
        assert service.decrypt_calls == []

    @pytest.mark.asyncio
    async def test_empty_call_result_is_empty_handle(self) -> None:
        service = FakeCiphertext()
        tracker = _tracker(service)
        await tracker.on_handle_observed("0x", _credential())
        assert tracker.handle == EMPTY_HANDLE
        assert service.decrypt_calls == []

    @pytest.mark.asyncio
    async def test_same_handle_twice_decrypts_once(self) -> None:
        service = FakeCiphertext()
        handle = service.put(1_500_000)
        tracker = _tracker(service)
        credential = _credential()

        await tracker.on_handle_observed(handle, credential)
        again = await tracker.on_handle_observed(handle.hex(), credential)

        assert again is None
        assert len(service.decrypt_calls) == 1
        assert tracker.state.is_revealed

    @pytest.mark.asyncio
    async def test_new_handle_masks_until_decrypted(self) -> None:
        service = FakeCiphertext()
        tracker = _tracker(service)
        await tracker.on_handle_observed(service.put(1), _credential())
        assert tracker.state.is_revealed

        await tracker.on_handle_observed(service.put(2))

        assert tracker.state.display == MASKED
        assert tracker.state.has_balance is True


# ---------------------------------------------------------------------------
# Decrypt
# ---------------------------------------------------------------------------


class TestDecrypt:
    @pytest.mark.asyncio
    async def test_display_uses_token_precision(self) -> None:
        service = FakeCiphertext()
        tracker = _tracker(service)
        await tracker.on_handle_observed(service.put(1_500_000))

        result = await tracker.decrypt(_credential())

        assert result.ok
        assert tracker.state.display == "1.50000000 cWETH"
        assert tracker.state.plaintext == 1_500_000

    @pytest.mark.asyncio
    async def test_decrypted_zero_is_revealed_not_masked(self) -> None:
        service = FakeCiphertext()
        tracker = _tracker(service)
        await tracker.on_handle_observed(service.put(0))

        await tracker.decrypt(_credential())

        assert tracker.state.is_revealed
        assert tracker.state.display == "0.00000000 cWETH"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [1, 10**6, 2**32 + 7, UINT64_MAX])
    async def test_plaintext_is_exact(self, value: int) -> None:
        service = FakeCiphertext()
        tracker = _tracker(service)
        await tracker.on_handle_observed(service.put(value))
        await tracker.decrypt(_credential())
        assert tracker.state.plaintext == value

    @pytest.mark.asyncio
    async def test_no_credential_is_locked(self) -> None:
        service = FakeCiphertext()
        tracker = _tracker(service)
        await tracker.on_handle_observed(service.put(5))

        result = await tracker.decrypt(None)

        assert result.status is DecryptStatus.LOCKED
        assert service.decrypt_calls == []

    @pytest.mark.asyncio
    async def test_expired_credential_is_locked(self) -> None:
        service = FakeCiphertext()
        tracker = _tracker(service)
        await tracker.on_handle_observed(service.put(5))

        result = await tracker.decrypt(_credential(issued_at=1_000))

        assert result.status is DecryptStatus.LOCKED
        assert service.decrypt_calls == []

    @pytest.mark.asyncio
    async def test_overlapping_decrypt_is_dropped(self) -> None:
        service = FakeCiphertext()
        service.gate = asyncio.Event()
        tracker = _tracker(service)
        await tracker.on_handle_observed(service.put(42))
        credential = _credential()

        first = asyncio.create_task(tracker.decrypt(credential))
        await service.started.wait()
        assert tracker.state.is_busy

        second = await tracker.decrypt(credential)
        assert second.status is DecryptStatus.DROPPED

        service.gate.set()
        assert (await first).ok
        assert len(service.decrypt_calls) == 1
        assert not tracker.state.is_busy

    @pytest.mark.asyncio
    @pytest.mark.parametrize("hide", ["mask", "reset"])
    async def test_hidden_mid_flight_stays_hidden(self, hide: str) -> None:
        service = FakeCiphertext()
        service.gate = asyncio.Event()
        tracker = _tracker(service)
        await tracker.on_handle_observed(service.put(5_000_000))
        credential = _credential()

        in_flight = asyncio.create_task(tracker.decrypt(credential))
        await service.started.wait()
        getattr(tracker, hide)()
        service.gate.set()
        result = await in_flight

        assert result.status is DecryptStatus.DROPPED
        assert tracker.state.display == MASKED
        assert tracker.state.is_revealed is False
        assert tracker.state.plaintext is None
        assert not tracker.state.is_busy

    @pytest.mark.asyncio
    async def test_result_hidden_mid_flight_is_not_remembered(self) -> None:
        service = FakeCiphertext()
        service.gate = asyncio.Event()
        tracker = _tracker(service)
        await tracker.on_handle_observed(service.put(5_000_000))
        credential = _credential()

        in_flight = asyncio.create_task(tracker.decrypt(credential))
        await service.started.wait()
        tracker.mask()
        service.gate.set()
        await in_flight

        assert (await tracker.decrypt(credential)).ok
        assert len(service.decrypt_calls) == 2

    @pytest.mark.asyncio
    async def test_handle_change_mid_flight_follows_up(self) -> None:
        service = FakeCiphertext()
        service.gate = asyncio.Event()
        tracker = _tracker(service)
        old = service.put(1)
        new = service.put(2)
        credential = _credential()
        await tracker.on_handle_observed(old)

        in_flight = asyncio.create_task(tracker.decrypt(credential))
        await service.started.wait()
        await tracker.on_handle_observed(new, credential)
        service.gate.set()
        await in_flight

        assert tracker.state.plaintext == 2
        assert [refs[0].handle for refs in service.decrypt_calls] == [old, new]

    @pytest.mark.asyncio
    async def test_remembered_result_skips_service(self) -> None:
        service = FakeCiphertext()
        tracker = _tracker(service)
        credential = _credential()
        await tracker.on_handle_observed(service.put(9), credential)
        tracker.mask()

        result = await tracker.decrypt(credential)

        assert result.ok
        assert len(service.decrypt_calls) == 1


# ---------------------------------------------------------------------------
# Auto-reveal
# ---------------------------------------------------------------------------


class TestAutoReveal:
    @pytest.mark.asyncio
    async def test_credential_arrival_reveals_once(self) -> None:
        service = FakeCiphertext()
        tracker = _tracker(service)
        await tracker.on_handle_observed(service.put(3))

        assert (await tracker.on_credential_available(_credential())) is not None
        assert tracker.state.is_revealed
        assert await tracker.on_credential_available(_credential()) is None
        assert len(service.decrypt_calls) == 1

    @pytest.mark.asyncio
    async def test_mask_suppresses_auto_reveal(self) -> None:
        service = FakeCiphertext()
        tracker = _tracker(service)
        await tracker.on_handle_observed(service.put(3))
        tracker.mask()

        assert await tracker.on_credential_available(_credential()) is None
        assert service.decrypt_calls == []

    @pytest.mark.asyncio
    async def test_completed_write_re_enables(self) -> None:
        service = FakeCiphertext()
        tracker = _tracker(service)
        await tracker.on_handle_observed(service.put(3))
        tracker.mask()

        tracker.notify_write_completed()

        assert await tracker.on_credential_available(_credential()) is not None
        assert tracker.state.is_revealed

    @pytest.mark.asyncio
    async def test_reset_clears_state(self) -> None:
        service = FakeCiphertext()
        tracker = _tracker(service)
        await tracker.on_handle_observed(service.put(3), _credential())

        tracker.reset()

        assert tracker.handle is None
        assert tracker.state.display == MASKED


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestFailures:
    @pytest.mark.asyncio
    async def test_not_authorized_invalidates_credential(self) -> None:
        store = CredentialStore(":memory:")
        manager = CredentialManager(
            store,
            chain_id=55815,
            verifying_contract="0xb6E160B1ff80D67Bfe90A85eE06Ce0A2613607D1",
            clock=FixedClock(),
        )
        credential = await manager.get_or_create(OWNER, [CWETH, CUSDC], FakeSigner())
        service = FakeCiphertext()
        service.denied.add(CWETH)
        tracker = _tracker(service, manager)
        await tracker.on_handle_observed(service.put(7))

        with pytest.raises(NotAuthorized):
            await tracker.decrypt(credential)

        assert tracker.state.display == MASKED
        assert not tracker.state.is_busy
        assert store.load_raw(OWNER) is None

    @pytest.mark.asyncio
    async def test_token_outside_credential_never_reaches_service(self) -> None:
        service = FakeCiphertext()
        tracker = _tracker(service)
        await tracker.on_handle_observed(service.put(7))

        with pytest.raises(NotAuthorized):
            await tracker.decrypt(_credential(contracts=(CUSDC,)))
        assert service.decrypt_calls == []

    @pytest.mark.asyncio
    async def test_transient_failure_is_retryable_and_masked(self) -> None:
        service = FakeCiphertext()
        service.decrypt_errors.append(TransientError("429 rate limited"))
        tracker = _tracker(service)
        await tracker.on_handle_observed(service.put(7))

        result = await tracker.decrypt(_credential())

        assert result.status is DecryptStatus.FAILED
        assert result.retryable is True
        assert tracker.state.display == MASKED
        assert not tracker.state.is_busy

        assert (await tracker.decrypt(_credential())).ok

    @pytest.mark.asyncio
    async def test_unexpected_failure_is_masked(self) -> None:
        service = FakeCiphertext()
        service.decrypt_errors.append(RuntimeError("boom"))
        tracker = _tracker(service)
        await tracker.on_handle_observed(service.put(7))

        result = await tracker.decrypt(_credential())

        assert result.status is DecryptStatus.FAILED
        assert result.retryable is False
        assert tracker.state.display == MASKED

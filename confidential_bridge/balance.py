"""
Balance tracker — lazy, race-safe reveal of one encrypted balance.

One tracker per (confidential token, owner). It watches the encrypted
balance handle and turns it into display state:

    empty handle          -> masked, no service call
    new handle            -> masked until decrypted
    decrypted             -> "<amount> <symbol>", revealed

Concurrency:
    - A busy flag admits one decrypt at a time. A second call while one
      is in flight is dropped (DROPPED), not queued.
    - If the handle changes while a decrypt is in flight, its result is
      discarded and one follow-up decrypt runs for the new handle.
    - The busy flag is cleared on every exit path.

Auto-reveal:
    Fires at most once per observed handle, the first time a valid
    credential is available. ``mask()`` disables it; a new handle value
    or a completed write re-enables it.

Plaintext is never logged.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from confidential_bridge.amounts import format_units
from confidential_bridge.ciphertext import (
    CiphertextService,
    EncryptedHandle,
    HandleRef,
    checked_user_decrypt,
)
from confidential_bridge.credential.model import DecryptionCredential
from confidential_bridge.errors import (
    ErrorCategory,
    NotAuthorized,
    TransientError,
    user_message,
)
from confidential_bridge.tokens import TokenInfo

if TYPE_CHECKING:
    from confidential_bridge.credential.manager import CredentialManager

logger = logging.getLogger(__name__)

MASKED = "••••••••"
DISPLAY_PLACES = 8


class DecryptStatus(StrEnum):
    REVEALED = "revealed"
    EMPTY = "empty"
    LOCKED = "locked"
    DROPPED = "dropped"
    FAILED = "failed"


@dataclass(frozen=True)
class DecryptResult:
    status: DecryptStatus
    retryable: bool = False
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is DecryptStatus.REVEALED


@dataclass(frozen=True)
class BalanceState:
    """Display snapshot of a tracker.

    Attributes:
        display: Masked placeholder or "<amount> <symbol>".
        is_revealed: True only while a decrypted value for the current
            handle is shown.
        is_busy: A decrypt is in flight.
        plaintext: Raw integer balance when revealed, else None.
        has_balance: A non-empty handle has been observed.
    """

    display: str
    is_revealed: bool
    is_busy: bool
    plaintext: int | None = None
    has_balance: bool = False


class BalanceTracker:
    """Per-(token, owner) encrypted balance state.

    Args:
        token: Confidential token metadata (address, symbol, decimals).
        owner: Balance owner.
        service: Ciphertext service used for user decryption.
        credentials: Manager notified of NotAuthorized refusals.
        clock: Unix-seconds source for credential validity.
    """

    def __init__(
        self,
        token: TokenInfo,
        owner: str,
        service: CiphertextService,
        credentials: CredentialManager | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.token = token
        self.owner = owner.lower()
        self._service = service
        self._credentials = credentials
        self._clock = clock

        self._handle: EncryptedHandle | None = None
        self._plaintext: int | None = None
        self._revealed = False
        self._busy = False
        self._auto_reveal = True
        # (handle, credential signature, plaintext) of the last successful decrypt
        self._resolved: tuple[EncryptedHandle, str, int] | None = None
        # bumped by mask() and reset(); an in-flight decrypt from an older
        # generation is discarded
        self._generation = 0

    # -----------------------------------------------------------------
    # State
    # -----------------------------------------------------------------

    @property
    def state(self) -> BalanceState:
        if self._revealed and self._plaintext is not None:
            amount = format_units(self._plaintext, self.token.decimals, places=DISPLAY_PLACES)
            display = f"{amount} {self.token.symbol}"
        else:
            display = MASKED
        return BalanceState(
            display=display,
            is_revealed=self._revealed,
            is_busy=self._busy,
            plaintext=self._plaintext if self._revealed else None,
            has_balance=self._handle is not None and not self._handle.is_empty,
        )

    @property
    def handle(self) -> EncryptedHandle | None:
        return self._handle

    @property
    def auto_reveal_pending(self) -> bool:
        return self._auto_reveal and self._handle is not None and not self._handle.is_empty

    # -----------------------------------------------------------------
    # Events
    # -----------------------------------------------------------------

    async def on_handle_observed(
        self,
        handle: EncryptedHandle | bytes | str,
        credential: DecryptionCredential | None = None,
    ) -> DecryptResult | None:
        """Record a freshly read handle.

        Returns None when nothing changed or nothing was attempted,
        otherwise the result of the auto-decrypt.
        """
        handle = EncryptedHandle.coerce(handle)
        if handle == self._handle:
            return None

        self._handle = handle
        self._revealed = False
        self._plaintext = None

        if handle.is_empty:
            return DecryptResult(DecryptStatus.EMPTY)

        self._auto_reveal = True
        if credential is not None:
            return await self._auto_decrypt(credential)
        return None

    async def on_credential_available(
        self, credential: DecryptionCredential
    ) -> DecryptResult | None:
        """Auto-reveal the current handle if it has not been tried yet."""
        if not self.auto_reveal_pending or self._revealed:
            return None
        return await self._auto_decrypt(credential)

    def notify_write_completed(self) -> None:
        """A write touching this balance confirmed; the next handle auto-reveals."""
        self._auto_reveal = True

    def mask(self) -> None:
        """Hide the value and suppress auto-reveal until the handle changes."""
        self._revealed = False
        self._auto_reveal = False
        self._generation += 1

    def reset(self) -> None:
        self._generation += 1
        self._handle = None
        self._plaintext = None
        self._revealed = False
        self._auto_reveal = True
        self._resolved = None

    # -----------------------------------------------------------------
    # Decrypt
    # -----------------------------------------------------------------

    async def decrypt(self, credential: DecryptionCredential | None) -> DecryptResult:
        """Reveal the current handle.

        Raises:
            NotAuthorized: The token is outside the credential's set, or
                the service refused. The state is masked first and a
                service refusal is reported to the credential manager.
        """
        if self._busy:
            logger.debug("decrypt of %s dropped: one already in flight", self.token.symbol)
            return DecryptResult(DecryptStatus.DROPPED)

        handle = self._handle
        if handle is None or handle.is_empty:
            return DecryptResult(DecryptStatus.EMPTY)

        if credential is None or not credential.is_valid(self._clock()):
            self._revealed = False
            return DecryptResult(DecryptStatus.LOCKED, message="Unlock to view balance.")

        if not credential.authorizes(self.token.address):
            self._revealed = False
            raise NotAuthorized(self.token.address)

        if self._resolved is not None:
            known_handle, signature, plaintext = self._resolved
            if known_handle == handle and signature == credential.signature:
                self._show(plaintext)
                return DecryptResult(DecryptStatus.REVEALED)

        generation = self._generation
        self._busy = True
        try:
            values = await checked_user_decrypt(
                self._service, [HandleRef(handle, self.token.address)], credential
            )
        except NotAuthorized as exc:
            self._revealed = False
            if self._credentials is not None:
                self._credentials.report_not_authorized(self.owner, exc.contract, credential)
            raise
        except TransientError as exc:
            self._revealed = False
            logger.warning("decrypt of %s failed transiently: %s", self.token.symbol, exc)
            return DecryptResult(
                DecryptStatus.FAILED,
                retryable=True,
                message=user_message(ErrorCategory.NETWORK),
            )
        except Exception:
            self._revealed = False
            logger.exception("decrypt of %s failed", self.token.symbol)
            return DecryptResult(DecryptStatus.FAILED, message="Could not decrypt balance.")
        finally:
            self._busy = False

        if self._generation != generation:
            logger.debug("decrypt of %s discarded: masked while in flight", self.token.symbol)
            return DecryptResult(DecryptStatus.DROPPED, message="Balance was hidden.")

        if self._handle != handle:
            logger.debug("handle of %s changed during decrypt; following up", self.token.symbol)
            return await self.decrypt(credential)

        plaintext = values[handle]
        self._resolved = (handle, credential.signature, plaintext)
        self._show(plaintext)
        return DecryptResult(DecryptStatus.REVEALED)

    async def _auto_decrypt(self, credential: DecryptionCredential) -> DecryptResult:
        self._auto_reveal = False
        return await self.decrypt(credential)

    def _show(self, plaintext: int) -> None:
        self._plaintext = plaintext
        self._revealed = True

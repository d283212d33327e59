"""
Error taxonomy — exceptions raised across the bridge and the mapping from
raw provider/wallet messages to coarse user-facing categories.

Keeps the mapping coarse and conservative: provider errors map to a small
set of categories. Unknown messages default to UNKNOWN rather than guessing.

Categories:
    - insufficient_funds: gas or token balance too low
    - temporarily_unavailable: rate limited (HTTP 429, "too many requests")
    - cancelled: the user rejected the wallet prompt
    - network: connection, timeout, fetch failures
    - reverted: the transaction executed and failed on-chain

Raw provider strings never reach user-facing messages. ``sanitize_detail``
produces a short diagnostic with addresses, hashes and URLs stripped.
"""

from __future__ import annotations

import re
from enum import StrEnum


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


class ErrorCategory(StrEnum):
    """Coarse classification of chain / wallet failures."""

    INSUFFICIENT_FUNDS = "insufficient_funds"
    TEMPORARILY_UNAVAILABLE = "temporarily_unavailable"
    CANCELLED = "cancelled"
    NETWORK = "network"
    REVERTED = "reverted"
    UNKNOWN = "unknown"


_USER_MESSAGES: dict[ErrorCategory, str] = {
    ErrorCategory.INSUFFICIENT_FUNDS: "Insufficient funds to complete this transaction.",
    ErrorCategory.TEMPORARILY_UNAVAILABLE: "Service is temporarily busy. Please try again shortly.",
    ErrorCategory.CANCELLED: "Transaction was cancelled.",
    ErrorCategory.NETWORK: "Network error. Please check your connection and try again.",
    ErrorCategory.REVERTED: "Transaction failed on-chain.",
    ErrorCategory.UNKNOWN: "Transaction failed. Please try again.",
}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class BridgeError(Exception):
    """Base class for all bridge errors."""


class UserRejected(BridgeError):
    """The user declined a wallet prompt (signature or transaction)."""


class NoSigner(BridgeError):
    """No signer is available for the owner, or it is bound to another address."""


class NotAuthorized(BridgeError):
    """The ciphertext service refused to decrypt for a contract."""

    def __init__(self, contract: str, message: str | None = None) -> None:
        self.contract = contract
        super().__init__(message or f"credential does not authorize {contract}")


class TransientError(BridgeError):
    """A retryable failure: rate limit, timeout, connection reset."""


class InvalidAmount(BridgeError):
    """An amount is non-positive, too precise, or out of range."""


class InvalidAddress(BridgeError):
    """A value is not a well-formed 20-byte address."""


class InvalidHandle(BridgeError):
    """A value is not a well-formed 32-byte ciphertext handle."""


class EncryptionUnavailable(BridgeError):
    """The ciphertext service could not produce an encrypted input."""


class ChainRejected(BridgeError):
    """The node refused a call or transaction before it was mined."""

    def __init__(self, message: str, *, code: int | None = None) -> None:
        self.code = code
        self.category = classify_error_message(message)
        super().__init__(message)


# ---------------------------------------------------------------------------
# Message classification
# ---------------------------------------------------------------------------

# Ordered: first match wins. Rejection must precede the generic patterns
# because wallets often wrap it as "request failed: user rejected".
_PATTERNS: tuple[tuple[ErrorCategory, tuple[str, ...]], ...] = (
    (ErrorCategory.TEMPORARILY_UNAVAILABLE, ("429", "rate limit", "too many requests")),
    (
        ErrorCategory.CANCELLED,
        ("user rejected", "user denied", "user cancelled", "user canceled",
         "request rejected", "action_rejected"),
    ),
    (ErrorCategory.INSUFFICIENT_FUNDS, ("insufficient funds", "insufficient balance")),
    (ErrorCategory.REVERTED, ("revert",)),
    (
        ErrorCategory.NETWORK,
        ("network", "timeout", "timed out", "failed to fetch", "connection",
         "econnrefused", "unreachable"),
    ),
)

_REJECTION_CODES = frozenset({4001, "4001", "ACTION_REJECTED", "USER_REJECTED"})


def classify_error_message(message: str | None) -> ErrorCategory:
    """Map a raw provider or wallet message to an ErrorCategory.

    Returns UNKNOWN for None, empty, or unrecognized messages.
    """
    if not message:
        return ErrorCategory.UNKNOWN
    lowered = message.lower()
    for category, needles in _PATTERNS:
        if any(needle in lowered for needle in needles):
            return category
    return ErrorCategory.UNKNOWN


def classify_exception(exc: BaseException) -> ErrorCategory:
    """Classify an exception raised while talking to the chain or wallet."""
    if is_user_rejection(exc):
        return ErrorCategory.CANCELLED
    category = getattr(exc, "category", None)
    if isinstance(category, ErrorCategory):
        return category
    category = classify_error_message(str(exc))
    if category is ErrorCategory.UNKNOWN and isinstance(exc, TransientError):
        return ErrorCategory.NETWORK
    return category


def is_user_rejection(exc: BaseException) -> bool:
    """True when an exception represents the user declining a prompt.

    Recognizes ``UserRejected``, EIP-1193 code 4001, ethers-style
    ``ACTION_REJECTED`` codes, and common wallet phrasing.
    """
    if isinstance(exc, UserRejected):
        return True
    code = getattr(exc, "code", None)
    if code in _REJECTION_CODES:
        return True
    return classify_error_message(str(exc)) is ErrorCategory.CANCELLED


def user_message(category: ErrorCategory) -> str:
    """Fixed, user-facing copy for a category."""
    return _USER_MESSAGES[category]


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------

_MAX_DETAIL = 150

_HASH_RE = re.compile(r"0x[a-fA-F0-9]{64}")
_ADDRESS_RE = re.compile(r"0x[a-fA-F0-9]{40}")
_URL_RE = re.compile(r"https?://\S+")


def sanitize_detail(message: str) -> str:
    """Strip addresses, hashes, URLs and request trailers; cap length."""
    text = message.split("Request Arguments:", 1)[0]
    text = _HASH_RE.sub("[hash]", text)
    text = _ADDRESS_RE.sub("[address]", text)
    text = _URL_RE.sub("[url]", text)
    text = " ".join(text.split())
    if len(text) > _MAX_DETAIL:
        text = text[: _MAX_DETAIL - 3] + "..."
    return text

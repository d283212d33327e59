"""
Transfer intent and outcome types.

A TransferIntent is what the user asked for; it is never persisted. A
TransferOutcome is what happened, in terms the UI can render without
interpreting raw provider errors.

Statuses:
    - COMPLETED: the value-moving transaction confirmed
    - AWAITING_APPROVAL: an operator grant was submitted (step 1 of 2);
      execute the same intent again once it confirms
    - FAILED: ``reason`` says why; nothing further was submitted
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import StrEnum
from typing import Any

from confidential_bridge.addresses import normalize_address
from confidential_bridge.errors import ErrorCategory


class Direction(StrEnum):
    PUSH = "push"   # public -> confidential, caller moves its own funds
    PULL = "pull"   # confidential -> destination contract, needs an operator grant


class TransferStatus(StrEnum):
    COMPLETED = "completed"
    AWAITING_APPROVAL = "awaiting_approval"
    FAILED = "failed"


class TransferStep(StrEnum):
    VALIDATE = "validate"
    CHECK_OPERATOR = "check_operator"
    GRANT = "grant"
    ENCRYPT = "encrypt"
    SUBMIT = "submit"
    CONFIRM = "confirm"
    DONE = "done"


class FailureReason(StrEnum):
    USER_REJECTED = "user_rejected"
    INVALID_AMOUNT = "invalid_amount"
    INSUFFICIENT_PUBLIC_BALANCE = "insufficient_public_balance"
    INSUFFICIENT_CONFIDENTIAL_BALANCE = "insufficient_confidential_balance"
    ENCRYPTION_UNAVAILABLE = "encryption_unavailable"
    CHAIN_REJECTED = "chain_rejected"


@dataclass(frozen=True)
class TransferIntent:
    """A requested movement of value.

    Attributes:
        direction: PUSH or PULL.
        source_token: Contract the value leaves.
        destination_token: Contract credited with the value.
        amount: User-denominated amount (e.g. Decimal("1.5")).
        decimals: Precision fallback for tokens missing from the registry.
        operator: PULL only. Contract that pulls the funds and consumes
            the encrypted input. Defaults to ``destination_token``.
    """

    direction: Direction
    source_token: str
    destination_token: str
    amount: Decimal
    decimals: int = 18
    operator: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "direction", Direction(self.direction))
        object.__setattr__(self, "source_token", normalize_address(self.source_token))
        object.__setattr__(
            self, "destination_token", normalize_address(self.destination_token)
        )
        if self.operator is not None:
            object.__setattr__(self, "operator", normalize_address(self.operator))

    @property
    def pulling_contract(self) -> str:
        return self.operator or self.destination_token


@dataclass(frozen=True)
class TransferContext:
    """Caller-side facts for one execution.

    Attributes:
        owner: Address moving the funds.
        public_balance: Known public balance of the source (integer units).
            When None the orchestrator reads it.
        confidential_balance: Decrypted source balance if revealed.
    """

    owner: str
    public_balance: int | None = None
    confidential_balance: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "owner", normalize_address(self.owner))


@dataclass(frozen=True)
class TransferOutcome:
    status: TransferStatus
    direction: Direction
    step: TransferStep
    total_steps: int = 1
    completed_steps: int = 0
    tx_hashes: tuple[str, ...] = field(default_factory=tuple)
    reason: FailureReason | None = None
    category: ErrorCategory | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is TransferStatus.COMPLETED

    @property
    def progress(self) -> str:
        return f"step {self.completed_steps} of {self.total_steps} complete"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "direction": self.direction.value,
            "step": self.step.value,
            "total_steps": self.total_steps,
            "completed_steps": self.completed_steps,
            "tx_hashes": list(self.tx_hashes),
            "reason": self.reason.value if self.reason else None,
            "category": self.category.value if self.category else None,
            "message": self.message,
        }

"""Push and pull transfers between public and confidential tokens."""

from confidential_bridge.transfer.intent import (
    Direction,
    FailureReason,
    TransferContext,
    TransferIntent,
    TransferOutcome,
    TransferStatus,
    TransferStep,
)
from confidential_bridge.transfer.orchestrator import TransferOrchestrator

__all__ = [
    "Direction",
    "FailureReason",
    "TransferContext",
    "TransferIntent",
    "TransferOrchestrator",
    "TransferOutcome",
    "TransferStatus",
    "TransferStep",
]

"""
Chain client protocol and result types.

Defines the minimal interface the bridge needs from an EVM node:
contract reads, contract writes through the user's wallet, and waiting
for a write to be mined. Real implementations (JSON-RPC) and test fakes
both implement ChainClient.

Design:
    - Protocol-based (structural typing), not ABC.
    - Reads return decoded Python values (int, bool, bytes, str).
    - Writes return a TxHandle once the node accepted the transaction.
    - wait_for_confirmation never raises on a revert; it reports
      ``success=False`` in the receipt. Callers decide what a revert means.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class TxHandle:
    """A submitted, not yet confirmed transaction.

    Attributes:
        tx_hash: 0x-prefixed transaction hash.
        contract: Target contract (lower case).
        method: Contract method name.
    """

    tx_hash: str
    contract: str
    method: str

    def to_dict(self) -> dict[str, str]:
        return {"tx_hash": self.tx_hash, "contract": self.contract, "method": self.method}


@dataclass(frozen=True)
class TxReceipt:
    """Outcome of a mined transaction.

    Attributes:
        tx_hash: Transaction hash.
        success: True when the transaction executed without reverting.
        block_number: Block it was included in, if known.
        gas_used: Gas consumed, if known.
    """

    tx_hash: str
    success: bool
    block_number: int | None = None
    gas_used: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tx_hash": self.tx_hash,
            "success": self.success,
            "block_number": self.block_number,
            "gas_used": self.gas_used,
        }


@runtime_checkable
class ChainClient(Protocol):
    """Async access to contract state and transactions."""

    async def read(
        self,
        contract: str,
        method: str,
        args: Sequence[Any] = (),
        *,
        caller: str | None = None,
    ) -> Any:
        """Call a view method and return its decoded result.

        Raises:
            TransientError: Rate limit, timeout, or unreachable node.
            ChainRejected: The node refused the call.
        """
        ...

    async def write(
        self,
        contract: str,
        method: str,
        args: Sequence[Any] = (),
        *,
        sender: str,
        value: int = 0,
    ) -> TxHandle:
        """Submit a state-changing call from ``sender``.

        Raises:
            UserRejected: The wallet declined to send.
            TransientError: Rate limit, timeout, or unreachable node.
            ChainRejected: The node refused the transaction.
        """
        ...

    async def wait_for_confirmation(self, tx: TxHandle) -> TxReceipt:
        """Wait until ``tx`` is mined and return its receipt.

        Raises:
            TransientError: Confirmation could not be observed in time.
        """
        ...

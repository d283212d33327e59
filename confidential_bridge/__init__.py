"""
confidential-bridge — move value between public and confidential EVM
tokens and reveal the owner's encrypted balances.

Public API:

    Session:
        - ``ConfidentialSession`` — owner-scoped wiring and lifecycle.

    Credentials:
        - ``CredentialManager`` — one signed decryption credential per owner.
        - ``CredentialStore`` — SQLite persistence.
        - ``DecryptionCredential`` — the credential record.

    Balances:
        - ``BalanceTracker`` — lazy, race-safe reveal of one balance.

    Transfers:
        - ``TransferOrchestrator`` — push and pull state machine.
        - ``TransferIntent``, ``TransferContext``, ``TransferOutcome``.

    Protocols (for dependency injection):
        - ``ChainClient`` — contract reads, writes, confirmations.
        - ``CiphertextService`` — encrypt and user_decrypt.
        - ``TypedDataSigner`` — EIP-712 signing.
"""

from confidential_bridge.balance import BalanceState, BalanceTracker, DecryptResult, DecryptStatus
from confidential_bridge.cache import CacheSweeper, TTLCache, cache_key
from confidential_bridge.chain.client import ChainClient, TxHandle, TxReceipt
from confidential_bridge.chain.jsonrpc_client import JsonRpcChainClient
from confidential_bridge.ciphertext import (
    EMPTY_HANDLE,
    CiphertextService,
    EncryptedHandle,
    EncryptedInput,
    HandleRef,
)
from confidential_bridge.config import BridgeConfig
from confidential_bridge.credential.manager import CredentialManager
from confidential_bridge.credential.model import DecryptionCredential
from confidential_bridge.credential.store import CredentialStore
from confidential_bridge.errors import (
    BridgeError,
    ChainRejected,
    EncryptionUnavailable,
    ErrorCategory,
    InvalidAmount,
    NoSigner,
    NotAuthorized,
    TransientError,
    UserRejected,
)
from confidential_bridge.session import ConfidentialSession
from confidential_bridge.signer import LocalAccountSigner, TypedDataSigner
from confidential_bridge.tokens import TokenInfo, TokenKind, TokenRegistry
from confidential_bridge.transfer.intent import (
    Direction,
    FailureReason,
    TransferContext,
    TransferIntent,
    TransferOutcome,
    TransferStatus,
)
from confidential_bridge.transfer.orchestrator import TransferOrchestrator

__version__ = "0.1.0"

__all__ = [
    "BalanceState",
    "BalanceTracker",
    "BridgeConfig",
    "BridgeError",
    "CacheSweeper",
    "ChainClient",
    "ChainRejected",
    "CiphertextService",
    "ConfidentialSession",
    "CredentialManager",
    "CredentialStore",
    "DecryptResult",
    "DecryptStatus",
    "DecryptionCredential",
    "Direction",
    "EMPTY_HANDLE",
    "EncryptedHandle",
    "EncryptedInput",
    "EncryptionUnavailable",
    "ErrorCategory",
    "FailureReason",
    "HandleRef",
    "InvalidAmount",
    "JsonRpcChainClient",
    "LocalAccountSigner",
    "NoSigner",
    "NotAuthorized",
    "TTLCache",
    "TokenInfo",
    "TokenKind",
    "TokenRegistry",
    "TransferContext",
    "TransferIntent",
    "TransferOrchestrator",
    "TransferOutcome",
    "TransferStatus",
    "TransientError",
    "TxHandle",
    "TxReceipt",
    "TypedDataSigner",
    "UserRejected",
    "cache_key",
]

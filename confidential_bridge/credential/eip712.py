"""
EIP-712 payload for a user decryption request.

The owner signs the ephemeral public key, the sorted contract list and
the validity window. The ciphertext service verifies this signature
against the decryption domain before re-encrypting any handle.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from confidential_bridge.addresses import checksum

DOMAIN_NAME = "Decryption"
DOMAIN_VERSION = "1"
PRIMARY_TYPE = "UserDecryptRequestVerification"

REQUEST_TYPES: dict[str, list[dict[str, str]]] = {
    PRIMARY_TYPE: [
        {"name": "publicKey", "type": "bytes"},
        {"name": "contractAddresses", "type": "address[]"},
        {"name": "startTimestamp", "type": "uint256"},
        {"name": "durationDays", "type": "uint256"},
        {"name": "extraData", "type": "bytes"},
    ],
}


@dataclass(frozen=True)
class TypedDataRequest:
    domain: dict[str, Any]
    types: dict[str, list[dict[str, str]]]
    message: dict[str, Any]


def build_decryption_request(
    public_key: str,
    contracts: Sequence[str],
    start_timestamp: int,
    duration_days: int,
    *,
    chain_id: int,
    verifying_contract: str,
) -> TypedDataRequest:
    """Assemble the typed data the owner signs.

    ``contracts`` is expected already normalized (sorted); addresses are
    checksummed for the signed message.
    """
    return TypedDataRequest(
        domain={
            "name": DOMAIN_NAME,
            "version": DOMAIN_VERSION,
            "chainId": chain_id,
            "verifyingContract": checksum(verifying_contract),
        },
        types={name: list(fields) for name, fields in REQUEST_TYPES.items()},
        message={
            "publicKey": bytes.fromhex(public_key.removeprefix("0x")),
            "contractAddresses": [checksum(c) for c in contracts],
            "startTimestamp": start_timestamp,
            "durationDays": duration_days,
            "extraData": b"",
        },
    )

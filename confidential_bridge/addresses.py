"""
Address normalization.

Contracts and owners are compared case-insensitively everywhere; the
lower-cased hex form is the canonical key for caches, persistence and
credential contract sets. Checksummed form is used only on the wire.
"""

from __future__ import annotations

from collections.abc import Iterable

from eth_utils import is_hex_address, to_checksum_address

from confidential_bridge.errors import InvalidAddress


def normalize_address(value: str) -> str:
    """Return the lower-cased ``0x`` form of a 20-byte address.

    Raises:
        InvalidAddress: If the value is not a 40-hex-digit address.
    """
    if not isinstance(value, str) or not is_hex_address(value):
        raise InvalidAddress(f"not an address: {value!r}")
    return value.lower()


def checksum(value: str) -> str:
    """EIP-55 checksummed form, for signing payloads and RPC params."""
    return to_checksum_address(normalize_address(value))


def same_address(a: str, b: str) -> bool:
    return normalize_address(a) == normalize_address(b)


def normalize_contract_set(contracts: Iterable[str]) -> tuple[str, ...]:
    """Sorted, de-duplicated, lower-cased contract tuple.

    Two sets that differ only in order or letter case normalize to the
    same tuple.

    Raises:
        InvalidAddress: If any entry is malformed or the set is empty.
    """
    normalized = sorted({normalize_address(c) for c in contracts})
    if not normalized:
        raise InvalidAddress("contract set must not be empty")
    return tuple(normalized)

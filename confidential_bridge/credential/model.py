"""
Decryption credential model.

A DecryptionCredential is the owner's one-time EIP-712 signature over an
ephemeral public key and an exact set of contracts, plus the matching
private key. It lets the ciphertext service re-encrypt balances of those
contracts to the owner for ``duration_days`` from ``issued_at``.

Invariants:
    - ``authorized_contracts`` is sorted, de-duplicated, lower-cased and
      non-empty; two credentials for the same set compare equal on it.
    - ``is_valid(now)`` is false at or after ``issued_at + duration_days``.
    - ``to_dict`` / ``from_dict`` round-trip the full record; a persisted
      record reconstructs a usable credential without re-signing.
"""

from __future__ import annotations

import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from confidential_bridge.addresses import normalize_address, normalize_contract_set
from confidential_bridge.errors import InvalidAddress

SECONDS_PER_DAY = 86_400

_RECORD_VERSION = 1


@dataclass(frozen=True)
class DecryptionCredential:
    """Owner-signed authorization to decrypt a fixed contract set.

    Attributes:
        owner: Address the signature recovers to (lower case).
        authorized_contracts: Normalized contract set.
        public_key: Ephemeral public key, 0x-hex.
        private_key: Ephemeral private key, 0x-hex. Never logged.
        signature: EIP-712 signature, 0x-hex.
        issued_at: Unix seconds the validity window starts at.
        duration_days: Validity window length in days.
    """

    owner: str
    authorized_contracts: tuple[str, ...]
    public_key: str
    private_key: str = field(repr=False)
    signature: str = field(repr=False)
    issued_at: int
    duration_days: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "owner", normalize_address(self.owner))
        object.__setattr__(
            self, "authorized_contracts", normalize_contract_set(self.authorized_contracts)
        )
        if self.duration_days <= 0:
            raise ValueError("duration_days must be positive")

    @property
    def expires_at(self) -> int:
        return self.issued_at + self.duration_days * SECONDS_PER_DAY

    def is_valid(self, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        return self.issued_at <= now < self.expires_at

    def authorizes(self, contract: str) -> bool:
        return contract.lower() in self.authorized_contracts

    def covers_exactly(self, contracts: Iterable[str]) -> bool:
        """True when ``contracts`` is the same set, ignoring order and case."""
        return normalize_contract_set(contracts) == self.authorized_contracts

    # -----------------------------------------------------------------
    # Serialization
    # -----------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": _RECORD_VERSION,
            "owner": self.owner,
            "authorized_contracts": list(self.authorized_contracts),
            "public_key": self.public_key,
            "private_key": self.private_key,
            "signature": self.signature,
            "issued_at": self.issued_at,
            "duration_days": self.duration_days,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DecryptionCredential:
        """Rebuild from ``to_dict`` output.

        Raises:
            ValueError: Missing fields, wrong types, or unknown version.
        """
        if not isinstance(data, dict):
            raise ValueError("credential record must be an object")
        version = data.get("version", _RECORD_VERSION)
        if version != _RECORD_VERSION:
            raise ValueError(f"unsupported credential record version: {version}")
        try:
            contracts = data["authorized_contracts"]
            if not isinstance(contracts, list):
                raise ValueError("authorized_contracts must be a list")
            for key in ("public_key", "private_key", "signature"):
                if not isinstance(data[key], str) or not data[key].startswith("0x"):
                    raise ValueError(f"{key} must be 0x-hex")
            issued_at = data["issued_at"]
            duration = data["duration_days"]
            if not isinstance(issued_at, int) or not isinstance(duration, int):
                raise ValueError("issued_at and duration_days must be integers")
            return cls(
                owner=data["owner"],
                authorized_contracts=tuple(contracts),
                public_key=data["public_key"],
                private_key=data["private_key"],
                signature=data["signature"],
                issued_at=issued_at,
                duration_days=duration,
            )
        except KeyError as exc:
            raise ValueError(f"credential record missing field: {exc.args[0]}") from exc
        except InvalidAddress as exc:
            raise ValueError(str(exc)) from exc

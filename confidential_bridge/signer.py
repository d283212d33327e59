"""
Typed-data signer abstraction.

The bridge needs exactly one wallet capability for decryption: an
EIP-712 ``sign_typed_data``. Wallet integrations implement the
TypedDataSigner protocol; LocalAccountSigner signs with an in-process
key via eth_account (scripts, tests, headless agents).

Design:
    - Protocol-based (structural typing), not ABC.
    - ``address`` is the owner the signature will recover to.
    - Rejection raises UserRejected; nothing else is inferred here.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from eth_account import Account
from eth_account.signers.local import LocalAccount

from confidential_bridge.addresses import normalize_address


@runtime_checkable
class TypedDataSigner(Protocol):
    """Wallet capable of EIP-712 signing for one address."""

    @property
    def address(self) -> str:
        """0x address that signatures recover to."""
        ...

    async def sign_typed_data(
        self,
        domain: dict[str, Any],
        types: dict[str, list[dict[str, str]]],
        value: dict[str, Any],
    ) -> str:
        """Sign typed data and return a 0x-hex 65-byte signature.

        Raises:
            UserRejected: The user declined the prompt.
        """
        ...


class LocalAccountSigner:
    """TypedDataSigner backed by a local private key.

    Args:
        account: An eth_account LocalAccount.

    Example:
        signer = LocalAccountSigner.from_key("0x...")
        signature = await signer.sign_typed_data(domain, types, value)
    """

    def __init__(self, account: LocalAccount) -> None:
        self._account = account

    @classmethod
    def from_key(cls, private_key: str | bytes) -> LocalAccountSigner:
        return cls(Account.from_key(private_key))

    @classmethod
    def generate(cls) -> LocalAccountSigner:
        return cls(Account.create())

    @property
    def address(self) -> str:
        return normalize_address(self._account.address)

    async def sign_typed_data(
        self,
        domain: dict[str, Any],
        types: dict[str, list[dict[str, str]]],
        value: dict[str, Any],
    ) -> str:
        signed = self._account.sign_typed_data(
            domain_data=domain, message_types=types, message_data=value
        )
        return "0x" + bytes(signed.signature).hex()

"""
Ciphertext handles and the ciphertext service boundary.

The homomorphic encryption itself lives behind CiphertextService: the
bridge only asks for an encrypted input bound to a target contract and
for the owner-authorized decryption of a batch of handles.

EncryptedHandle:
    An opaque 32-byte reference to a ciphertext held by a token contract
    for one owner. Handles compare by value. The all-zero handle is the
    "no balance yet" sentinel and must never be sent for decryption.

Authorization:
    ``user_decrypt`` succeeds for a handle only when its contract is in
    the credential's authorized set. ``checked_user_decrypt`` verifies
    that locally first so an out-of-set request never leaves the process.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from confidential_bridge.addresses import normalize_address
from confidential_bridge.errors import InvalidHandle, NotAuthorized

if TYPE_CHECKING:
    from confidential_bridge.credential.model import DecryptionCredential

HANDLE_SIZE = 32


@dataclass(frozen=True)
class EncryptedHandle:
    """A 32-byte ciphertext reference."""

    raw: bytes

    def __post_init__(self) -> None:
        if len(self.raw) != HANDLE_SIZE:
            raise InvalidHandle(f"handle must be {HANDLE_SIZE} bytes, got {len(self.raw)}")

    @classmethod
    def from_hex(cls, value: str) -> EncryptedHandle:
        """Parse ``0x``-hex. Empty call data (``0x``) is the empty handle."""
        body = value[2:] if value[:2].lower() == "0x" else value
        if body == "":
            return EMPTY_HANDLE
        try:
            raw = bytes.fromhex(body)
        except ValueError as exc:
            raise InvalidHandle(f"not hex: {value!r}") from exc
        return cls(raw)

    @classmethod
    def coerce(cls, value: EncryptedHandle | bytes | str) -> EncryptedHandle:
        if isinstance(value, EncryptedHandle):
            return value
        if isinstance(value, (bytes, bytearray)):
            return EMPTY_HANDLE if len(value) == 0 else cls(bytes(value))
        return cls.from_hex(value)

    @property
    def is_empty(self) -> bool:
        return not any(self.raw)

    def hex(self) -> str:
        return "0x" + self.raw.hex()

    def __repr__(self) -> str:
        return f"EncryptedHandle({self.hex()[:10]}...)"


EMPTY_HANDLE = EncryptedHandle(b"\x00" * HANDLE_SIZE)


@dataclass(frozen=True)
class HandleRef:
    """A handle together with the contract that holds it."""

    handle: EncryptedHandle
    contract: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "contract", normalize_address(self.contract))


@dataclass(frozen=True)
class EncryptedInput:
    """An encrypted amount plus the proof binding it to a contract and user."""

    handle: bytes
    proof: bytes
    target_contract: str
    user_address: str


@runtime_checkable
class CiphertextService(Protocol):
    """Encryption and user decryption, consumed by the bridge."""

    async def encrypt(
        self, target_contract: str, user_address: str, amount: int
    ) -> EncryptedInput:
        """Encrypt ``amount`` as an input consumable only by ``target_contract``.

        Raises:
            EncryptionUnavailable: The service could not produce the input.
        """
        ...

    async def user_decrypt(
        self,
        refs: Sequence[HandleRef],
        credential: DecryptionCredential,
    ) -> Mapping[EncryptedHandle, int]:
        """Decrypt handles the credential authorizes.

        Raises:
            NotAuthorized: A handle's contract is outside the credential's set.
            TransientError: The service is unreachable or rate limiting.
        """
        ...


async def checked_user_decrypt(
    service: CiphertextService,
    refs: Sequence[HandleRef],
    credential: DecryptionCredential,
) -> dict[EncryptedHandle, int]:
    """Decrypt after verifying authorization locally.

    Empty handles are answered with 0 without contacting the service.

    Raises:
        NotAuthorized: Before any service call, when a contract is not in
            the credential's authorized set.
    """
    for ref in refs:
        if not credential.authorizes(ref.contract):
            raise NotAuthorized(ref.contract)

    results: dict[EncryptedHandle, int] = {}
    pending = []
    for ref in refs:
        if ref.handle.is_empty:
            results[ref.handle] = 0
        else:
            pending.append(ref)

    if pending:
        decrypted = await service.user_decrypt(pending, credential)
        for ref in pending:
            if ref.handle not in decrypted:
                raise KeyError(f"service returned no value for {ref.handle!r}")
            results[ref.handle] = int(decrypted[ref.handle])
    return results

"""
Ephemeral key material for user decryption.

Each credential gets a fresh X25519 keypair. The public key is signed by
the owner and sent to the ciphertext service, which re-encrypts results
to it; the private key stays with the credential.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)


@dataclass(frozen=True)
class Keypair:
    public_key: str
    private_key: str = field(repr=False)


def generate_keypair() -> Keypair:
    """New X25519 keypair as 0x-hex raw bytes."""
    private = X25519PrivateKey.generate()
    private_raw = private.private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption())
    public_raw = private.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    return Keypair(public_key="0x" + public_raw.hex(), private_key="0x" + private_raw.hex())


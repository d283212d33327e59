"""Decryption credentials: model, EIP-712 payload, persistence, manager."""

from confidential_bridge.credential.manager import CredentialManager
from confidential_bridge.credential.model import DecryptionCredential
from confidential_bridge.credential.store import CredentialStore

__all__ = ["CredentialManager", "CredentialStore", "DecryptionCredential"]

"""
Integrity utilities for content hashing.
"""

import hashlib
from typing import Any

from confidential_bridge.canonical_json import canonical_json_bytes


def sha256_digest(data: bytes) -> str:
    """Compute SHA256 hex digest of bytes."""
    return hashlib.sha256(data).hexdigest()


def content_digest(obj: Any) -> str:
    """
    Compute SHA256 digest of an object's canonical JSON representation.

    This provides a deterministic fingerprint for any JSON-serializable object.
    """
    return "sha256:" + sha256_digest(canonical_json_bytes(obj))

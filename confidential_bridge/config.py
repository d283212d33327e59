"""
Runtime configuration.

Every knob has a default suitable for a public testnet; ``from_env`` reads
``BRIDGE_*`` environment variables so deployments can override without code.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from confidential_bridge import cache

DEFAULT_RPC_URLS = (
    "https://ethereum-sepolia-rpc.publicnode.com",
    "https://rpc.sepolia.org",
)

# Sepolia deployment of the decryption gateway verifier and its chain.
DEFAULT_DECRYPTION_CONTRACT = "0xb6E160B1ff80D67Bfe90A85eE06Ce0A2613607D1"
DEFAULT_DECRYPTION_CHAIN_ID = 55815


@dataclass(frozen=True)
class BridgeConfig:
    """Immutable settings shared by one process.

    Attributes:
        rpc_urls: JSON-RPC endpoints, tried in order on transient failure.
        chain_id: EVM chain id of the token contracts.
        credential_db: SQLite path for persisted credentials (":memory:" allowed).
        credential_duration_days: Validity window of a fresh credential.
        decryption_contract: Verifying contract of the EIP-712 decryption domain.
        decryption_chain_id: Chain id of the EIP-712 decryption domain.
        operator_grant_seconds: Horizon of an operator grant from submission.
        cache_sweep_interval: Seconds between cache sweeps.
        retry_attempts: Total tries for a transient failure (first try included).
        retry_base_delay: Delay before the second try, doubled per try.
        retry_max_delay: Ceiling for a single delay.
        confirmation_poll_interval: Seconds between receipt polls.
        confirmation_timeout: Seconds before a confirmation wait gives up.
        http_timeout: Per-request HTTP timeout.
    """

    rpc_urls: tuple[str, ...] = DEFAULT_RPC_URLS
    chain_id: int = 11155111
    credential_db: str = "credentials.db"
    credential_duration_days: int = 365
    decryption_contract: str = DEFAULT_DECRYPTION_CONTRACT
    decryption_chain_id: int = DEFAULT_DECRYPTION_CHAIN_ID
    operator_grant_seconds: int = 3600
    cache_sweep_interval: float = 60.0
    cache_ttls: Mapping[str, float] = field(
        default_factory=lambda: dict(cache.DEFAULT_TTLS)
    )
    retry_attempts: int = 3
    retry_base_delay: float = 0.8
    retry_max_delay: float = 8.0
    confirmation_poll_interval: float = 2.0
    confirmation_timeout: float = 180.0
    http_timeout: float = 30.0

    def __post_init__(self) -> None:
        if not self.rpc_urls:
            raise ValueError("at least one RPC URL is required")
        if self.credential_duration_days <= 0:
            raise ValueError("credential_duration_days must be positive")
        if self.operator_grant_seconds <= 0:
            raise ValueError("operator_grant_seconds must be positive")
        if self.retry_attempts < 1:
            raise ValueError("retry_attempts must be >= 1")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> BridgeConfig:
        """Build a config from ``BRIDGE_*`` variables, defaulting the rest."""
        env = os.environ if environ is None else environ
        kwargs: dict[str, object] = {}

        urls = env.get("BRIDGE_RPC_URLS")
        if urls:
            kwargs["rpc_urls"] = tuple(u.strip() for u in urls.split(",") if u.strip())

        for name, key, convert in _ENV_FIELDS:
            raw = env.get(key)
            if raw is not None and raw != "":
                try:
                    kwargs[name] = convert(raw)
                except ValueError as exc:
                    raise ValueError(f"{key}: {exc}") from exc

        return cls(**kwargs)  # type: ignore[arg-type]


_ENV_FIELDS: tuple[tuple[str, str, type], ...] = (
    ("chain_id", "BRIDGE_CHAIN_ID", int),
    ("credential_db", "BRIDGE_CREDENTIAL_DB", str),
    ("credential_duration_days", "BRIDGE_CREDENTIAL_DURATION_DAYS", int),
    ("decryption_contract", "BRIDGE_DECRYPTION_CONTRACT", str),
    ("decryption_chain_id", "BRIDGE_DECRYPTION_CHAIN_ID", int),
    ("operator_grant_seconds", "BRIDGE_OPERATOR_GRANT_SECONDS", int),
    ("cache_sweep_interval", "BRIDGE_CACHE_SWEEP_INTERVAL", float),
    ("retry_attempts", "BRIDGE_RETRY_ATTEMPTS", int),
    ("retry_base_delay", "BRIDGE_RETRY_BASE_DELAY", float),
    ("retry_max_delay", "BRIDGE_RETRY_MAX_DELAY", float),
    ("confirmation_poll_interval", "BRIDGE_CONFIRMATION_POLL_INTERVAL", float),
    ("confirmation_timeout", "BRIDGE_CONFIRMATION_TIMEOUT", float),
    ("http_timeout", "BRIDGE_HTTP_TIMEOUT", float),
)

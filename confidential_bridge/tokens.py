"""
Token metadata registry.

Each token carries its own integer precision. Confidential tokens use an
internal precision (6 for the bundled set) that differs from their public
counterpart (18 for WETH), so conversions always look up the token by
identity instead of assuming a global constant.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import StrEnum

from confidential_bridge.addresses import normalize_address


class TokenKind(StrEnum):
    PUBLIC = "public"
    CONFIDENTIAL = "confidential"


@dataclass(frozen=True)
class TokenInfo:
    """Static metadata for one token contract.

    Attributes:
        address: Contract address (normalized to lower case).
        symbol: Display symbol.
        decimals: Integer precision of on-chain amounts for this contract.
        kind: PUBLIC (plaintext balances) or CONFIDENTIAL (encrypted handles).
        name: Human name.
        underlying: For confidential tokens, the public token they wrap.
    """

    address: str
    symbol: str
    decimals: int
    kind: TokenKind = TokenKind.PUBLIC
    name: str = ""
    underlying: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "address", normalize_address(self.address))
        if self.underlying is not None:
            object.__setattr__(self, "underlying", normalize_address(self.underlying))
        if not 0 <= self.decimals <= 77:
            raise ValueError(f"decimals out of range: {self.decimals}")

    @property
    def is_confidential(self) -> bool:
        return self.kind is TokenKind.CONFIDENTIAL


class TokenRegistry:
    """Case-insensitive lookup of TokenInfo by address."""

    def __init__(self, tokens: Iterable[TokenInfo] = ()) -> None:
        self._tokens: dict[str, TokenInfo] = {}
        for token in tokens:
            self.register(token)

    def register(self, token: TokenInfo) -> None:
        self._tokens[token.address] = token

    def get(self, address: str) -> TokenInfo | None:
        return self._tokens.get(normalize_address(address))

    def require(self, address: str) -> TokenInfo:
        token = self.get(address)
        if token is None:
            raise KeyError(f"unknown token: {address}")
        return token

    def decimals_for(self, address: str, default: int | None = None) -> int:
        """Precision of a token, or ``default`` when it is not registered."""
        token = self.get(address)
        if token is not None:
            return token.decimals
        if default is None:
            raise KeyError(f"unknown token: {address}")
        return default

    def confidential(self) -> list[TokenInfo]:
        return [t for t in self._tokens.values() if t.is_confidential]

    def counterpart_of(self, address: str) -> TokenInfo | None:
        """Confidential token wrapping a public one, or the reverse."""
        token = self.get(address)
        if token is None:
            return None
        if token.is_confidential:
            return self.get(token.underlying) if token.underlying else None
        for candidate in self._tokens.values():
            if candidate.underlying == token.address:
                return candidate
        return None

    def __iter__(self) -> Iterator[TokenInfo]:
        return iter(self._tokens.values())

    def __len__(self) -> int:
        return len(self._tokens)

    def __contains__(self, address: object) -> bool:
        return isinstance(address, str) and address.lower() in self._tokens


# Sepolia deployments. Public DAI is deployment-specific, so cDAI carries
# no underlying until one is registered.
SEPOLIA_WETH = "0xfff9976782d46cc05630d1f6ebab18b2324d6b14"
SEPOLIA_USDC = "0x1c7d4b196cb0c7b01d743fbc6116a902379c7238"

SEPOLIA_TOKENS: tuple[TokenInfo, ...] = (
    TokenInfo(address=SEPOLIA_WETH, symbol="WETH", decimals=18, name="Wrapped Ether"),
    TokenInfo(address=SEPOLIA_USDC, symbol="USDC", decimals=6, name="USD Coin"),
    TokenInfo(
        address="0x4166b48d16e0dc31b10d7a1247acd09f01632cbc",
        symbol="cWETH",
        decimals=6,
        kind=TokenKind.CONFIDENTIAL,
        name="Confidential Wrapped Ether",
        underlying=SEPOLIA_WETH,
    ),
    TokenInfo(
        address="0xc323ccd9fcd6afc3a0d568e4a6e522c41aee04c4",
        symbol="cUSDC",
        decimals=6,
        kind=TokenKind.CONFIDENTIAL,
        name="Confidential USD Coin",
        underlying=SEPOLIA_USDC,
    ),
    TokenInfo(
        address="0xd57a787bfdb9c86c0b1e0b5b7a316f8513f2e0d1",
        symbol="cDAI",
        decimals=6,
        kind=TokenKind.CONFIDENTIAL,
        name="Confidential DAI",
    ),
)


def default_registry() -> TokenRegistry:
    return TokenRegistry(SEPOLIA_TOKENS)

"""Token registry: symbol -> contract identity and decimal precision."""

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Iterable, Iterator, Optional

from poolswap.errors import UnknownToken

# Placeholder address used for the network's native asset
NATIVE_TOKEN_ADDRESS = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"


@dataclass(frozen=True)
class TokenDescriptor:
    """Immutable description of a tradable asset."""

    symbol: str
    address: str
    decimals: int
    name: str = ""
    # Tokens (e.g. USDT) whose approve() rejects a nonzero -> nonzero change
    requires_allowance_reset: bool = False

    @property
    def is_native(self) -> bool:
        return self.address.lower() == NATIVE_TOKEN_ADDRESS.lower()

    def to_base_units(self, amount: Decimal) -> int:
        """Convert a human amount to integer base units, rounding down."""
        scaled = (amount * (Decimal(10) ** self.decimals)).quantize(
            Decimal("1"), rounding=ROUND_DOWN
        )
        return int(scaled)

    def from_base_units(self, value: int) -> Decimal:
        return Decimal(value) / (Decimal(10) ** self.decimals)

    def quantize(self, amount: Decimal) -> Decimal:
        """Round an amount down to the token's precision."""
        return amount.quantize(Decimal(1).scaleb(-self.decimals), rounding=ROUND_DOWN)


DEFAULT_TOKENS: tuple[TokenDescriptor, ...] = (
    TokenDescriptor("ETH", NATIVE_TOKEN_ADDRESS, 18, "Ethereum"),
    TokenDescriptor("WETH", "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2", 18, "Wrapped Ether"),
    TokenDescriptor("USDC", "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", 6, "USD Coin"),
    TokenDescriptor(
        "USDT",
        "0xdAC17F958D2ee523a2206206994597C13D831ec7",
        6,
        "Tether USD",
        requires_allowance_reset=True,
    ),
    TokenDescriptor("DAI", "0x6B175474E89094C44Da98b954EedeAC495271d0F", 18, "Dai Stablecoin"),
    TokenDescriptor(
        "rUSDY", "0xaf37c1167910ebc994e266949387d2c7c326b879", 18, "Rebasing Ondo USD Yield"
    ),
    TokenDescriptor("WBTC", "0x2260FAC5E5542a773Aa44fBCfeDf7C193bc2C599", 8, "Wrapped Bitcoin"),
)


class TokenRegistry:
    """Static lookup table of supported tokens.

    Lookups by symbol are case-insensitive; lookups by address ignore
    checksum casing.
    """

    def __init__(self, tokens: Iterable[TokenDescriptor] = DEFAULT_TOKENS):
        self._by_symbol: dict[str, TokenDescriptor] = {}
        self._by_address: dict[str, TokenDescriptor] = {}
        for token in tokens:
            self._by_symbol[token.symbol.upper()] = token
            self._by_address[token.address.lower()] = token

    def get(self, symbol: str) -> TokenDescriptor:
        try:
            return self._by_symbol[symbol.upper()]
        except KeyError:
            raise UnknownToken(symbol) from None

    def find(self, symbol: str) -> Optional[TokenDescriptor]:
        return self._by_symbol.get(symbol.upper())

    def by_address(self, address: str) -> TokenDescriptor:
        try:
            return self._by_address[address.lower()]
        except KeyError:
            raise UnknownToken(address) from None

    @property
    def native(self) -> TokenDescriptor:
        for token in self._by_symbol.values():
            if token.is_native:
                return token
        raise UnknownToken("native asset")

    @property
    def symbols(self) -> list[str]:
        return [token.symbol for token in self._by_symbol.values()]

    def __contains__(self, symbol: object) -> bool:
        return isinstance(symbol, str) and symbol.upper() in self._by_symbol

    def __iter__(self) -> Iterator[TokenDescriptor]:
        return iter(self._by_symbol.values())

    def __len__(self) -> int:
        return len(self._by_symbol)

"""Broker data models — typed representations of Polymarket Gamma/CLOB objects."""

from dataclasses import dataclass, field
from typing import Optional

from trendbot.strategy.models import PricePoint, Side

# Conditional-token balances are reported in units of 10^-6 tokens.
TOKEN_DECIMALS = 1_000_000


class GatewayError(Exception):
    """A market/exchange request failed after retries."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class MarketRef:
    """One 15-minute Up/Down market."""

    asset: str
    slug: str
    condition_id: str
    active: bool = True
    closed: bool = False
    question: str = ""

    @property
    def is_placeholder(self) -> bool:
        return not self.condition_id


@dataclass(frozen=True)
class TokenIds:
    """Outcome token identifiers of a market."""

    up: str
    down: str

    def for_side(self, side: Side) -> str:
        return self.up if side is Side.UP else self.down


@dataclass(frozen=True)
class TokenQuote:
    """Best bid/ask for one token (``None`` when unavailable)."""

    token_id: str
    bid: Optional[float] = None
    ask: Optional[float] = None


@dataclass(frozen=True)
class AssetQuote:
    """Both sides of one asset's market at one tick."""

    asset: str
    tokens: TokenIds
    up: TokenQuote
    down: TokenQuote


@dataclass(frozen=True)
class MarketSnapshot:
    """Everything the engine needs for one tick."""

    period_timestamp: int
    time_remaining_seconds: int
    quotes: dict[str, AssetQuote] = field(default_factory=dict)

    def price_point(self, asset: str) -> Optional[PricePoint]:
        """Return the asset's price point, or ``None`` if an ask is missing."""
        quote = self.quotes.get(asset)
        if quote is None or quote.up.ask is None or quote.down.ask is None:
            return None
        return PricePoint(
            period_timestamp=self.period_timestamp,
            up_ask=quote.up.ask,
            down_ask=quote.down.ask,
            asset=asset,
        )

    def tokens(self, asset: str) -> Optional[TokenIds]:
        quote = self.quotes.get(asset)
        return quote.tokens if quote else None


@dataclass(frozen=True)
class OrderResponse:
    """Result of placing an order."""

    order_id: Optional[str]
    success: bool
    status: str = ""
    error: Optional[str] = None

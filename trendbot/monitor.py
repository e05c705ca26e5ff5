"""Market monitor — discovers each period's markets and builds tick snapshots.

Market discovery runs once per period: the current period's slug is tried
first, then up to three earlier periods.  Assets without a market keep a
placeholder and contribute no prices.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from trendbot.broker.models import (
    AssetQuote,
    GatewayError,
    MarketRef,
    MarketSnapshot,
    TokenIds,
    TokenQuote,
)
from trendbot.strategy.entry_gates import PERIOD_SECONDS

logger = logging.getLogger("trendbot.monitor")

_DISCOVERY_LOOKBACK_PERIODS = 3


def period_start(now: float) -> int:
    """Start of the 15-minute period containing *now* (unix seconds)."""
    return int(now // PERIOD_SECONDS) * PERIOD_SECONDS


def time_remaining(now: float) -> int:
    return PERIOD_SECONDS - int(now) % PERIOD_SECONDS


class MarketMonitor:
    """Pulls per-asset Up/Down quotes from the gateway.

    Args:
        client: Gateway with ``resolve_market``, ``resolve_instrument_ids``,
            ``get_ask`` and ``get_bid``.
        assets: Asset symbols to monitor.
        clock: Wall-clock time source (unix seconds).
    """

    def __init__(
        self,
        client,
        assets: tuple[str, ...] | list[str],
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._assets = tuple(assets)
        self._clock = clock
        self._period: Optional[int] = None
        self._markets: dict[str, MarketRef] = {}
        self._tokens: dict[str, TokenIds] = {}

    @property
    def assets(self) -> tuple[str, ...]:
        return self._assets

    @property
    def markets(self) -> dict[str, MarketRef]:
        return dict(self._markets)

    # ── Discovery ────────────────────────────────────────────────────────

    async def _discover(self, asset: str, current_period: int) -> MarketRef:
        for back in range(_DISCOVERY_LOOKBACK_PERIODS + 1):
            start = current_period - back * PERIOD_SECONDS
            try:
                market = await self._client.resolve_market(asset, start)
            except GatewayError as exc:
                logger.debug("[%s] no market for period %d: %s", asset, start, exc)
                continue
            if market.closed:
                logger.debug("[%s] market %s already closed", asset, market.slug)
                continue
            logger.info("[%s] tracking market %s (%s)", asset, market.slug, market.condition_id)
            return market

        logger.warning("[%s] no open market found, using placeholder", asset)
        return MarketRef(asset=asset, slug="", condition_id="", active=False)

    async def refresh_markets(self, current_period: int) -> None:
        """Discover markets and token ids for *current_period*."""
        for asset in self._assets:
            market = await self._discover(asset, current_period)
            self._markets[asset] = market
            self._tokens.pop(asset, None)
            if market.is_placeholder:
                continue
            try:
                self._tokens[asset] = await self._client.resolve_instrument_ids(market)
            except GatewayError as exc:
                logger.error("[%s] token lookup failed: %s", asset, exc)
        self._period = current_period

    async def initialize(self) -> None:
        await self.refresh_markets(period_start(self._clock()))

    # ── Snapshots ────────────────────────────────────────────────────────

    async def _quote_token(self, asset: str, token_id: str) -> TokenQuote:
        ask, bid = await asyncio.gather(
            self._client.get_ask(token_id),
            self._client.get_bid(token_id),
            return_exceptions=True,
        )
        if isinstance(ask, BaseException):
            logger.warning("[%s] ask fetch failed for %s: %s", asset, token_id, ask)
            ask = None
        if isinstance(bid, BaseException):
            bid = None
        return TokenQuote(token_id=token_id, bid=bid, ask=ask)

    async def _quote_asset(self, asset: str) -> Optional[AssetQuote]:
        tokens = self._tokens.get(asset)
        if tokens is None:
            return None
        up, down = await asyncio.gather(
            self._quote_token(asset, tokens.up),
            self._quote_token(asset, tokens.down),
        )
        return AssetQuote(asset=asset, tokens=tokens, up=up, down=down)

    async def fetch_snapshot(self) -> MarketSnapshot:
        """Return quotes for every tracked asset at the current instant.

        Markets are rediscovered first when a new period has started.
        """
        now = self._clock()
        current = period_start(now)
        if current != self._period:
            await self.refresh_markets(current)

        quotes: dict[str, AssetQuote] = {}
        for asset in self._assets:
            quote = await self._quote_asset(asset)
            if quote is not None:
                quotes[asset] = quote

        return MarketSnapshot(
            period_timestamp=current,
            time_remaining_seconds=time_remaining(now),
            quotes=quotes,
        )

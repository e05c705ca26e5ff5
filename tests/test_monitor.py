"""Tests for trendbot.monitor — market discovery and tick snapshots."""

import pytest

from trendbot.broker.models import GatewayError, MarketRef, TokenIds
from trendbot.monitor import MarketMonitor, period_start, time_remaining

NOW = 1_700_000_400.0
PERIOD = 1_700_000_100  # NOW floored to 15 minutes


class MockClient:
    """Duck-typed PolymarketClient with per-period markets and fixed asks."""

    def __init__(self, open_periods=None, closed_periods=(), asks=None, failing=()):
        self.open_periods = set(open_periods or [PERIOD])
        self.closed_periods = set(closed_periods)
        self.asks = asks or {"up-BTC": 0.55, "down-BTC": 0.46}
        self.failing = set(failing)
        self.resolved: list[tuple[str, int]] = []

    async def resolve_market(self, asset, start):
        self.resolved.append((asset, start))
        if start in self.closed_periods:
            return MarketRef(asset, f"{asset}-{start}", f"cid-{start}", closed=True)
        if start not in self.open_periods:
            raise GatewayError("not found", status_code=404)
        return MarketRef(asset, f"{asset}-{start}", f"cid-{start}")

    async def resolve_instrument_ids(self, market):
        return TokenIds(up=f"up-{market.asset}", down=f"down-{market.asset}")

    async def get_ask(self, token_id):
        if token_id in self.failing:
            raise GatewayError("timeout")
        return self.asks[token_id]

    async def get_bid(self, token_id):
        return self.asks[token_id] - 0.01


class Clock:
    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_period_arithmetic():
    assert period_start(NOW) == PERIOD
    assert time_remaining(NOW) == 600
    assert time_remaining(PERIOD) == 900


class TestDiscovery:
    @pytest.mark.asyncio
    async def test_current_period_market(self):
        client = MockClient()
        monitor = MarketMonitor(client, ["BTC"], clock=Clock())
        await monitor.initialize()
        assert monitor.markets["BTC"].condition_id == f"cid-{PERIOD}"
        assert client.resolved == [("BTC", PERIOD)]

    @pytest.mark.asyncio
    async def test_falls_back_to_earlier_period(self):
        client = MockClient(open_periods=[PERIOD - 1800])
        monitor = MarketMonitor(client, ["BTC"], clock=Clock())
        await monitor.initialize()
        assert monitor.markets["BTC"].condition_id == f"cid-{PERIOD - 1800}"

    @pytest.mark.asyncio
    async def test_closed_market_skipped(self):
        client = MockClient(open_periods=[PERIOD - 900], closed_periods=[PERIOD])
        monitor = MarketMonitor(client, ["BTC"], clock=Clock())
        await monitor.initialize()
        assert monitor.markets["BTC"].condition_id == f"cid-{PERIOD - 900}"

    @pytest.mark.asyncio
    async def test_placeholder_when_nothing_found(self):
        client = MockClient(open_periods=[PERIOD - 900 * 4])
        monitor = MarketMonitor(client, ["BTC"], clock=Clock())
        await monitor.initialize()
        assert monitor.markets["BTC"].is_placeholder
        assert len(client.resolved) == 4

        snapshot = await monitor.fetch_snapshot()
        assert snapshot.quotes == {}
        assert snapshot.price_point("BTC") is None


class TestSnapshot:
    @pytest.mark.asyncio
    async def test_snapshot_carries_both_sides(self):
        monitor = MarketMonitor(MockClient(), ["BTC"], clock=Clock())
        await monitor.initialize()
        snapshot = await monitor.fetch_snapshot()

        assert snapshot.period_timestamp == PERIOD
        assert snapshot.time_remaining_seconds == time_remaining(NOW)
        point = snapshot.price_point("BTC")
        assert point.up_ask == 0.55
        assert point.down_ask == 0.46
        quote = snapshot.quotes["BTC"]
        assert quote.up.bid == pytest.approx(0.54)
        assert snapshot.tokens("BTC") == TokenIds("up-BTC", "down-BTC")

    @pytest.mark.asyncio
    async def test_failed_ask_gives_no_price_point(self):
        client = MockClient(failing={"down-BTC"})
        monitor = MarketMonitor(client, ["BTC"], clock=Clock())
        await monitor.initialize()
        snapshot = await monitor.fetch_snapshot()
        assert snapshot.quotes["BTC"].down.ask is None
        assert snapshot.price_point("BTC") is None

    @pytest.mark.asyncio
    async def test_new_period_triggers_rediscovery(self):
        clock = Clock()
        client = MockClient(open_periods=[PERIOD, PERIOD + 900])
        monitor = MarketMonitor(client, ["BTC"], clock=clock)
        await monitor.initialize()

        clock.now = PERIOD + 900 + 5
        snapshot = await monitor.fetch_snapshot()
        assert snapshot.period_timestamp == PERIOD + 900
        assert monitor.markets["BTC"].condition_id == f"cid-{PERIOD + 900}"
        assert client.resolved[-1] == ("BTC", PERIOD + 900)

"""Tests for trendbot.engine — tick pipeline, rollover and the run loop."""

import random
from dataclasses import replace

import pytest

from trendbot.broker.models import AssetQuote, MarketSnapshot, TokenIds, TokenQuote
from trendbot.config import Config, IndexType, StrategyConfig
from trendbot.engine import TradingEngine
from trendbot.events import RecordingSink
from trendbot.trading.cycle_manager import CycleState
from trendbot.trading.fills import (
    EntryResult,
    FillCheck,
    FillStatus,
    PendingEntry,
    SimulatedFill,
)

PERIOD = 1_700_000_100 // 900 * 900
TOKENS = TokenIds(up="tok-up", down="tok-down")


# ── Helpers ──────────────────────────────────────────────────────────────


def _snapshot(prices: dict, period: int = PERIOD, remaining: int = 600) -> MarketSnapshot:
    """Build a snapshot from ``{asset: (up_ask, down_ask)}``."""
    quotes = {
        asset: AssetQuote(
            asset=asset,
            tokens=TOKENS,
            up=TokenQuote("tok-up", ask=up),
            down=TokenQuote("tok-down", ask=down),
        )
        for asset, (up, down) in prices.items()
    }
    return MarketSnapshot(period_timestamp=period, time_remaining_seconds=remaining, quotes=quotes)


class ScriptedMonitor:
    """Duck-typed MarketMonitor replaying prepared snapshots."""

    def __init__(self, snapshots: list[MarketSnapshot]) -> None:
        self._snapshots = list(snapshots)
        self.initialized = False

    async def initialize(self) -> None:
        self.initialized = True

    async def fetch_snapshot(self) -> MarketSnapshot:
        return self._snapshots.pop(0)


def _engine(strategy=None, assets=("BTC",), snapshots=None):
    strategy = strategy or replace(
        StrategyConfig.defaults(IndexType.RSI),
        trend_threshold=90.0,
        lookback=3,
        profit_threshold=0.05,
        sl_threshold=0.05,
    )
    config = Config(mode="simulation", assets=assets, check_interval_ms=1)
    sink = RecordingSink()
    engine = TradingEngine(
        config, strategy, ScriptedMonitor(snapshots or []), SimulatedFill(confirm_delay=0), sink
    )
    return engine, sink


UP_RISING = [0.50, 0.55, 0.60, 0.70]
DOWN_FALLING = [0.50, 0.45, 0.40, 0.30]


async def _feed(engine, ups, downs, asset="BTC", **kwargs):
    results = []
    for up, down in zip(ups, downs):
        result = await engine.run_once(_snapshot({asset: (up, down)}, **kwargs))
        results.append(result["assets"][asset])
    return results


# ── Tick pipeline ────────────────────────────────────────────────────────


class TestTickPipeline:
    @pytest.mark.asyncio
    async def test_rsi_trend_opens_up_cycle_on_fourth_tick(self):
        engine, sink = _engine()
        results = await _feed(engine, UP_RISING, DOWN_FALLING)
        assert results == ["hold", "hold", "hold", "opened"]

        cycle = engine.contexts["BTC"].manager.cycle
        assert cycle.side.value == "up"
        assert cycle.entry_price == 0.70
        assert cycle.tp_price == 0.75
        assert cycle.sl_price == 0.65

        signal = sink.of_kind("signal")[0]
        assert signal.fields["side"] == "up"

    @pytest.mark.asyncio
    async def test_tick_events_emitted_every_tick(self):
        engine, sink = _engine()
        await _feed(engine, UP_RISING, DOWN_FALLING)
        ticks = sink.of_kind("tick")
        assert len(ticks) == 4
        assert ticks[-1].fields["up_index"] == 100.0
        assert ticks[-1].fields["down_index"] == 0.0

    @pytest.mark.asyncio
    async def test_take_profit_then_reentry(self):
        engine, sink = _engine()
        await _feed(engine, UP_RISING, DOWN_FALLING)
        results = await _feed(engine, [0.76], [0.24])
        # TP closes the cycle and the still-rising trend re-enters at 0.76.
        assert results == ["opened"]
        assert len(sink.of_kind("tp_hit")) == 1
        assert engine.contexts["BTC"].manager.cycle.entry_price == 0.76

    @pytest.mark.asyncio
    async def test_stop_loss_on_opposite_ask(self):
        engine, sink = _engine()
        await _feed(engine, UP_RISING, DOWN_FALLING)
        results = await _feed(engine, [0.62], [0.36])
        assert results[0] == "sl"
        event = sink.of_kind("sl_hit")[0]
        assert event.fields["pnl"] == pytest.approx(-0.5)

    @pytest.mark.asyncio
    async def test_missing_ask_is_no_data(self):
        engine, sink = _engine()
        result = await engine.run_once(_snapshot({"BTC": (None, 0.5)}))
        assert result["assets"]["BTC"] == "no_data"
        assert len(engine.contexts["BTC"].history) == 0
        assert sink.of_kind("tick") == []

    @pytest.mark.asyncio
    async def test_absent_asset_is_no_data(self):
        engine, _ = _engine(assets=("BTC", "ETH"))
        result = await engine.run_once(_snapshot({"BTC": (0.5, 0.5)}))
        assert result["assets"] == {"BTC": "hold", "ETH": "no_data"}

    @pytest.mark.asyncio
    async def test_assets_are_independent(self):
        engine, _ = _engine(assets=("BTC", "ETH"))
        for up, down in zip(UP_RISING, DOWN_FALLING):
            await engine.run_once(_snapshot({"BTC": (up, down), "ETH": (0.5, 0.5)}))
        assert engine.contexts["BTC"].manager.state is CycleState.OPEN
        assert engine.contexts["ETH"].manager.state is CycleState.FLAT

    @pytest.mark.asyncio
    async def test_trading_window_gate_skips_early_signal(self):
        strategy = replace(
            StrategyConfig.defaults(IndexType.RSI),
            lookback=3,
            trading_start_when_remaining_minutes=5,
        )
        engine, sink = _engine(strategy=strategy)
        results = await _feed(engine, UP_RISING, DOWN_FALLING, remaining=600)
        assert results[-1] == "skipped"
        assert sink.of_kind("entry_skipped")
        assert engine.contexts["BTC"].manager.state is CycleState.FLAT


# ── Rollover ─────────────────────────────────────────────────────────────


class TestRollover:
    @pytest.mark.asyncio
    async def test_new_period_settles_and_resets(self):
        engine, sink = _engine()
        await _feed(engine, UP_RISING, DOWN_FALLING)
        assert engine.contexts["BTC"].manager.state is CycleState.OPEN

        result = await engine.run_once(_snapshot({"BTC": (0.50, 0.50)}, period=PERIOD + 900))
        assert result["period"] == PERIOD + 900
        assert engine.period_timestamp == PERIOD + 900

        settled = sink.of_kind("settled")[0]
        # Last Up ask 0.70 is below the winning price: the held side lost.
        assert settled.fields["won"] is False
        assert settled.fields["pnl"] == pytest.approx(-7.0)

        summary = sink.of_kind("period_summary")[0]
        assert summary.fields["period"] == PERIOD
        assert summary.fields["losses"] == 1

        ctx = engine.contexts["BTC"]
        assert ctx.manager.state is CycleState.FLAT
        assert ctx.manager.stats.losses == 0
        assert len(ctx.history) == 1
        assert ctx.up_indicators.reading().rsi is None
        assert len(sink.of_kind("rollover")) == 1

    @pytest.mark.asyncio
    async def test_winning_settlement(self):
        engine, sink = _engine()
        await _feed(engine, UP_RISING, DOWN_FALLING)
        # A 0.99 tick would hit TP first, so set the final point directly.
        ctx = engine.contexts["BTC"]
        ctx.last_point = replace(ctx.last_point, up_ask=0.99)
        await engine.rollover(PERIOD + 900)
        settled = sink.of_kind("settled")[0]
        assert settled.fields["won"] is True
        assert settled.fields["pnl"] == pytest.approx((1.0 - 0.70) * 10)

    @pytest.mark.asyncio
    async def test_no_signal_right_after_rollover(self):
        engine, _ = _engine()
        await _feed(engine, UP_RISING[:3], DOWN_FALLING[:3])
        results = await _feed(engine, [0.80, 0.85], [0.2, 0.15], period=PERIOD + 900)
        assert results == ["hold", "hold"]


# ── Invariants ───────────────────────────────────────────────────────────


class TestInvariants:
    @pytest.mark.asyncio
    async def test_at_most_one_position_per_asset(self):
        rng = random.Random(42)
        strategy = replace(StrategyConfig.defaults(IndexType.RSI), lookback=3, trend_threshold=60.0)
        engine, sink = _engine(strategy=strategy, assets=("BTC", "ETH"))
        period = PERIOD
        for i in range(300):
            if i and i % 60 == 0:
                period += 900
            prices = {}
            for asset in ("BTC", "ETH"):
                up = round(rng.uniform(0.05, 0.95), 2)
                prices[asset] = (up, round(1 - up, 2))
            await engine.run_once(_snapshot(prices, period=period))
            for ctx in engine.contexts.values():
                manager = ctx.manager
                assert not (manager.pending is not None and manager.cycle is not None)
                assert len(ctx.history) <= 100
        assert sink.of_kind("cycle_open")

    @pytest.mark.asyncio
    async def test_pending_and_open_never_coexist_with_live_fills(self):
        rng = random.Random(7)
        strategy = replace(StrategyConfig.defaults(IndexType.RSI), lookback=3, trend_threshold=60.0)
        config = Config(mode="live", assets=("BTC", "ETH"), check_interval_ms=1)
        sink = RecordingSink()
        engine = TradingEngine(config, strategy, ScriptedMonitor([]), RandomLiveFill(rng), sink)
        period = PERIOD
        for i in range(400):
            if i and i % 50 == 0:
                period += 900
            prices = {}
            for asset in ("BTC", "ETH"):
                up = round(rng.uniform(0.05, 0.95), 2)
                prices[asset] = (up, round(1 - up, 2))
            await engine.run_once(_snapshot(prices, period=period))
            for ctx in engine.contexts.values():
                manager = ctx.manager
                assert not (manager.pending is not None and manager.cycle is not None)
        assert sink.of_kind("entry_pending")
        assert sink.of_kind("entry_timeout")
        assert sink.of_kind("cycle_open")


class RandomLiveFill:
    """Duck-typed live fill strategy with randomly resolving confirmations."""

    mode = "live"

    def __init__(self, rng: random.Random) -> None:
        self._rng = rng
        self._orders = 0

    async def submit_entry(self, asset, side, token_id, price, size):
        self._orders += 1
        return EntryResult(
            pending=PendingEntry(
                asset=asset, side=side, token_id=token_id, limit_price=price,
                size=size, pre_balance=0, placed_at=0.0, order_id=f"entry-{self._orders}",
            )
        )

    async def check_fill(self, pending):
        status = self._rng.choice(list(FillStatus))
        if status is FillStatus.FILLED:
            return FillCheck(status, filled_size=pending.size)
        return FillCheck(status)

    async def place_take_profit(self, token_id, price, size):
        return "tp"

    async def place_stop_loss(self, token_id, price, size):
        return "sl"

    async def cancel(self, order_id, label):
        return order_id is not None


# ── Run loop ─────────────────────────────────────────────────────────────


class TestRunLoop:
    @pytest.mark.asyncio
    async def test_run_stops_after_max_ticks(self):
        snapshots = [_snapshot({"BTC": (u, d)}) for u, d in zip(UP_RISING, DOWN_FALLING)]
        engine, _ = _engine(snapshots=snapshots)
        await engine.initialize()
        results = await engine.run(max_ticks=4)
        assert len(results) == 4
        assert results[-1]["assets"]["BTC"] == "opened"
        assert engine.tick_count == 4

    @pytest.mark.asyncio
    async def test_tick_failure_is_logged_and_loop_continues(self):
        snapshots = [_snapshot({"BTC": (0.5, 0.5)})]
        engine, _ = _engine(snapshots=snapshots)
        results = await engine.run(max_ticks=2)
        assert results[0]["assets"]["BTC"] == "hold"
        # Second fetch pops from an empty list.
        assert results[1]["action"] == "error"

    @pytest.mark.asyncio
    async def test_initialize_discovers_markets(self):
        monitor = ScriptedMonitor([])
        engine = TradingEngine(
            Config(mode="simulation", assets=("BTC",)),
            StrategyConfig.defaults(IndexType.RSI),
            monitor,
            SimulatedFill(confirm_delay=0),
            RecordingSink(),
        )
        await engine.initialize()
        assert monitor.initialized

"""TrendBot — Trading engine (tick loop).

Pulls a market snapshot each tick, feeds every asset's price point through
indicators → trend decision → cycle manager, and rolls all per-period
state over when a new 15-minute period starts.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Optional

from trendbot.broker.models import GatewayError, MarketSnapshot, TokenIds
from trendbot.config import Config, StrategyConfig
from trendbot.events import EventSink, TradeEvent
from trendbot.strategy.indicators import IndicatorSet
from trendbot.strategy.models import IndicatorReading, PricePoint, Side
from trendbot.strategy.trend import decide, index_value
from trendbot.trading.cycle_manager import CycleManager, CycleState
from trendbot.trading.fills import FillStrategy

logger = logging.getLogger("trendbot.engine")

PRICE_HISTORY_CAPACITY = 100


@dataclass
class AssetContext:
    """All mutable per-asset state; owned by the tick loop alone."""

    asset: str
    manager: CycleManager
    up_indicators: IndicatorSet
    history: deque = field(default_factory=lambda: deque(maxlen=PRICE_HISTORY_CAPACITY))
    previous_up: Optional[IndicatorReading] = None
    previous_down: Optional[IndicatorReading] = None
    last_point: Optional[PricePoint] = None


class TradingEngine:
    """Drives the per-asset trading pipeline once per tick.

    Args:
        config: Runtime configuration (tick interval, enabled assets).
        strategy: Strategy parameters shared by every asset.
        monitor: Source of ``MarketSnapshot`` objects (``fetch_snapshot``).
        fill: Execution capability (``SimulatedFill`` or ``BalanceFill``).
        sink: Receives every trade event.
    """

    def __init__(
        self,
        config: Config,
        strategy: StrategyConfig,
        monitor,
        fill: FillStrategy,
        sink: EventSink,
    ) -> None:
        self._config = config
        self._strategy = strategy
        self._monitor = monitor
        self._fill = fill
        self._sink = sink
        self._running: bool = False
        self._tick_count: int = 0
        self._period: Optional[int] = None
        self.contexts: dict[str, AssetContext] = {
            asset: AssetContext(
                asset=asset,
                manager=CycleManager(asset, strategy, fill, sink),
                up_indicators=self._new_indicators(),
            )
            for asset in config.assets
        }

    def _new_indicators(self, prices: Optional[list[float]] = None) -> IndicatorSet:
        s = self._strategy
        return IndicatorSet.from_prices(
            prices or [],
            lookback=s.lookback,
            macd_fast=s.macd_fast_period,
            macd_slow=s.macd_slow_period,
            macd_signal=s.macd_signal_period,
        )

    def _emit(self, kind: str, asset: Optional[str] = None, **fields) -> None:
        self._sink.emit(TradeEvent(kind=kind, asset=asset, fields=fields))

    @property
    def period_timestamp(self) -> Optional[int]:
        return self._period

    @property
    def tick_count(self) -> int:
        return self._tick_count

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Discover markets before the first tick."""
        await self._monitor.initialize()
        self._running = True
        logger.info(
            "Engine ready: mode=%s index=%s assets=%s",
            self._fill.mode, self._strategy.index_type.value, ",".join(self.contexts),
        )

    def stop(self) -> None:
        """Signal the engine to stop after the current tick."""
        self._running = False

    # ── Tick loop ────────────────────────────────────────────────────────

    async def run(self, max_ticks: int = 0) -> list[dict]:
        """Run the tick loop until stopped.

        Per-tick failures are logged and the loop continues with the next
        interval.

        Args:
            max_ticks: Stop after this many ticks (0 = unlimited).

        Returns:
            The most recent per-tick result dicts.
        """
        self._running = True
        interval = self._config.check_interval_ms / 1000.0
        results: deque[dict] = deque(maxlen=PRICE_HISTORY_CAPACITY)
        tick = 0

        while self._running:
            tick += 1
            try:
                result = await self.run_once()
                results.append(result)
                logger.debug("Tick %d: %s", tick, result.get("assets"))
            except Exception as exc:
                logger.error("Tick %d error: %s", tick, exc)
                results.append({"action": "error", "reason": str(exc)})

            if max_ticks > 0 and tick >= max_ticks:
                break

            # Interruptible sleep so stop() takes effect within a second.
            remaining = interval
            while remaining > 0 and self._running:
                step = min(1.0, remaining)
                await asyncio.sleep(step)
                remaining -= step

        return list(results)

    async def run_once(self, snapshot: Optional[MarketSnapshot] = None) -> dict:
        """Process one tick.

        Args:
            snapshot: Quotes for this tick; pulled from the monitor when omitted.

        Returns:
            ``{"period": ..., "time_remaining": ..., "assets": {asset: result}}``
        """
        if snapshot is None:
            snapshot = await self._monitor.fetch_snapshot()
        self._tick_count += 1

        if self._period is None:
            self._period = snapshot.period_timestamp
        elif snapshot.period_timestamp != self._period:
            await self.rollover(snapshot.period_timestamp)

        results: dict[str, str] = {}
        for asset, ctx in self.contexts.items():
            point = snapshot.price_point(asset)
            if point is None:
                results[asset] = "no_data"
                continue
            try:
                results[asset] = await self._process_asset(
                    ctx, point, snapshot.tokens(asset), snapshot.time_remaining_seconds
                )
            except GatewayError as exc:
                logger.error("[%s] gateway error: %s", asset, exc)
                results[asset] = "error"

        return {
            "period": snapshot.period_timestamp,
            "time_remaining": snapshot.time_remaining_seconds,
            "assets": results,
        }

    async def _process_asset(
        self,
        ctx: AssetContext,
        point: PricePoint,
        tokens: Optional[TokenIds],
        time_remaining_seconds: int,
    ) -> str:
        ctx.history.append(point)
        ctx.last_point = point
        ctx.up_indicators.add_price(point.up_ask)

        up = ctx.up_indicators.reading()
        down = self._new_indicators([p.down_ask for p in ctx.history]).reading()
        signal = decide(
            self._strategy,
            up,
            down,
            ctx.previous_up,
            ctx.previous_down,
            point.up_ask,
            point.down_ask,
            len(ctx.history),
        )
        ctx.previous_up, ctx.previous_down = up, down

        kind = self._strategy.index_type
        manager = ctx.manager
        self._emit(
            "tick",
            ctx.asset,
            up_ask=point.up_ask,
            down_ask=point.down_ask,
            up_index=index_value(kind, up),
            down_index=index_value(kind, down),
            state=manager.state.value,
            remaining=time_remaining_seconds,
        )

        readings = {Side.UP: up, Side.DOWN: down}
        if manager.state is CycleState.PENDING:
            return f"confirm:{await manager.confirm_pending(point, tokens, readings)}"

        result = "hold"
        if manager.state is CycleState.OPEN:
            exit_result = await manager.check_exits(point, readings)
            result = exit_result or "open"

        if manager.state is CycleState.FLAT and signal is not None:
            self._emit(
                "signal",
                ctx.asset,
                side=signal.side.value,
                price=signal.price,
                size=signal.size,
                reason=signal.reason,
            )
            result = await manager.try_open(signal, tokens, time_remaining_seconds)

        return result

    # ── Period rollover ──────────────────────────────────────────────────

    async def rollover(self, new_period: int) -> None:
        """Settle, summarise and reset every asset for *new_period*."""
        old_period = self._period
        for ctx in self.contexts.values():
            await ctx.manager.settle_period_end(ctx.last_point)
            self._emit(
                "period_summary",
                ctx.asset,
                period=old_period,
                **ctx.manager.stats.summary(),
            )
            ctx.manager.stats.reset()
            ctx.up_indicators = self._new_indicators()
            ctx.history.clear()
            ctx.previous_up = None
            ctx.previous_down = None
            ctx.last_point = None

        self._period = new_period
        self._emit("rollover", previous_period=old_period, period=new_period)

"""Cycle manager — the per-asset position state machine.

    Flat ──signal──▶ PendingEntry ──confirmed fill──▶ Open ──TP/SL/settle──▶ Flat
      └────────────── immediate fill (simulation) ──────▶ Open

At most one of {PendingEntry, ActiveCycle} exists at any time; every
transition checks the current state first.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional

from trendbot.broker.models import TokenIds
from trendbot.config import StrategyConfig
from trendbot.events import EventSink, TradeEvent
from trendbot.risk.period_stats import PeriodStats
from trendbot.risk.sl_tp import (
    CycleLevels,
    calculate_levels,
    exit_pnl,
    is_sl_hit,
    is_tp_hit,
    settlement_pnl,
)
from trendbot.strategy.entry_gates import (
    PERIOD_SECONDS,
    is_in_trading_window,
    is_late_entry_blocked,
    remaining_minutes,
)
from trendbot.strategy.models import EntrySignal, IndicatorReading, PricePoint, Side
from trendbot.trading.fills import FillStatus, FillStrategy, PendingEntry

logger = logging.getLogger("trendbot.cycle")


class CycleState(str, Enum):
    FLAT = "flat"
    PENDING = "pending"
    OPEN = "open"


@dataclass(frozen=True)
class ActiveCycle:
    """The open position of one asset."""

    side: Side
    entry_price: float
    size: float
    levels: CycleLevels
    held_token: str = ""
    opposite_token: str = ""

    @property
    def tp_price(self) -> float:
        return self.levels.tp

    @property
    def sl_price(self) -> float:
        return self.levels.sl


class CycleManager:
    """Owns the single pending entry / active cycle of one asset.

    Args:
        asset: Asset symbol, e.g. ``"BTC"``.
        config: Strategy parameters (thresholds, gates, SL filter).
        fill: Execution capability (simulated or balance-confirmed).
        sink: Receives trade events.
        stats: Period running totals; a fresh tracker when omitted.
    """

    def __init__(
        self,
        asset: str,
        config: StrategyConfig,
        fill: FillStrategy,
        sink: EventSink,
        stats: Optional[PeriodStats] = None,
    ) -> None:
        self.asset = asset
        self._config = config
        self._fill = fill
        self._sink = sink
        self.stats = stats or PeriodStats()
        self.cycle: Optional[ActiveCycle] = None
        self.pending: Optional[PendingEntry] = None
        self.tp_order_id: Optional[str] = None
        self.sl_order_id: Optional[str] = None

    @property
    def state(self) -> CycleState:
        if self.cycle is not None:
            return CycleState.OPEN
        if self.pending is not None:
            return CycleState.PENDING
        return CycleState.FLAT

    def _emit(self, kind: str, **fields) -> None:
        self._sink.emit(TradeEvent(kind=kind, asset=self.asset, fields=fields))

    # ── Entry ────────────────────────────────────────────────────────────

    async def try_open(
        self,
        signal: EntrySignal,
        tokens: Optional[TokenIds],
        time_remaining_seconds: int,
    ) -> str:
        """Open a cycle (or place a pending entry) for *signal* if all gates pass.

        Returns a short result string: ``"busy"``, ``"skipped"``,
        ``"failed"``, ``"pending"`` or ``"opened"``.
        """
        if self.state is not CycleState.FLAT:
            return "busy"

        required = self._config.trading_start_when_remaining_minutes
        if not is_in_trading_window(time_remaining_seconds, required):
            self._emit(
                "entry_skipped",
                side=signal.side.value,
                price=signal.price,
                reason=f"{remaining_minutes(time_remaining_seconds)}m remaining > {required}m",
            )
            return "skipped"

        elapsed = PERIOD_SECONDS - time_remaining_seconds
        if is_late_entry_blocked(
            signal.price,
            elapsed,
            self._config.late_entry_max_price,
            self._config.late_entry_window_minutes,
        ):
            self._emit(
                "entry_skipped",
                side=signal.side.value,
                price=signal.price,
                reason=(
                    f"price > {self._config.late_entry_max_price} with "
                    f"elapsed {elapsed}s < {self._config.late_entry_window_minutes}m"
                ),
            )
            return "skipped"

        held_token = tokens.for_side(signal.side) if tokens else ""
        opposite_token = tokens.for_side(signal.side.opposite) if tokens else ""
        result = await self._fill.submit_entry(
            self.asset, signal.side, held_token, signal.price, signal.size
        )

        if result.error is not None:
            self._emit("entry_failed", side=signal.side.value, price=signal.price, error=result.error)
            return "failed"

        if result.pending is not None:
            self.pending = result.pending
            self._emit(
                "entry_pending",
                side=signal.side.value,
                price=result.pending.limit_price,
                size=result.pending.size,
                order_id=result.pending.order_id,
                pre_balance=result.pending.pre_balance,
            )
            return "pending"

        levels = calculate_levels(
            signal.price, self._config.profit_threshold, self._config.sl_threshold
        )
        self._open(signal.side, signal.price, result.filled_size or signal.size,
                   levels, held_token, opposite_token)
        if levels.tp_reachable:
            self.tp_order_id = await self._fill.place_take_profit(
                held_token, levels.tp, self.cycle.size
            )
        return "opened"

    def _open(
        self,
        side: Side,
        entry_price: float,
        size: float,
        levels: CycleLevels,
        held_token: str,
        opposite_token: str,
    ) -> None:
        self.cycle = ActiveCycle(
            side=side,
            entry_price=entry_price,
            size=size,
            levels=levels,
            held_token=held_token,
            opposite_token=opposite_token,
        )
        self.stats.commit_fund(entry_price, size)
        self._emit(
            "cycle_open",
            side=side.value,
            entry=entry_price,
            size=size,
            tp=levels.tp,
            sl=levels.sl,
            **self.stats.summary(),
        )

    # ── Fill confirmation ────────────────────────────────────────────────

    async def confirm_pending(
        self,
        point: PricePoint,
        tokens: Optional[TokenIds],
        readings: Optional[Mapping[Side, IndicatorReading]] = None,
    ) -> str:
        """Advance the pending entry by one confirmation check.

        A stop already through at confirmation is subject to the same MACD
        filter as ``check_exits``; *readings* carries the current indicators.

        Returns ``"none"``, ``"waiting"``, ``"timeout"``, ``"stopped"``
        (filled but the stop was already through) or ``"opened"``.
        """
        pending = self.pending
        if pending is None or self.cycle is not None:
            return "none"

        check = await self._fill.check_fill(pending)
        if check.status is FillStatus.WAITING:
            return "waiting"
        if check.status is FillStatus.TIMED_OUT:
            self.pending = None
            self._emit("entry_timeout", side=pending.side.value, order_id=pending.order_id)
            return "timeout"

        self.pending = None
        side = pending.side
        levels = calculate_levels(
            pending.limit_price, self._config.profit_threshold, self._config.sl_threshold
        )
        opposite_token = tokens.for_side(side.opposite) if tokens else ""

        tp_order_id = None
        if levels.tp_reachable:
            tp_order_id = await self._fill.place_take_profit(
                pending.token_id, levels.tp, check.filled_size
            )

        opposite_ask = point.ask(side.opposite)
        held = (readings or {}).get(side)
        if is_sl_hit(levels, opposite_ask) and self._sl_suppressed(held):
            self._emit(
                "sl_suppressed",
                side=side.value,
                opposite_ask=opposite_ask,
                macd=held.macd,
                during_confirmation=True,
            )
        elif is_sl_hit(levels, opposite_ask):
            await self._fill.place_stop_loss(opposite_token, opposite_ask, check.filled_size)
            await self._fill.cancel(tp_order_id, "take-profit")
            pnl = exit_pnl(pending.limit_price, levels.sl, check.filled_size)
            self.stats.commit_fund(pending.limit_price, check.filled_size)
            self.stats.record(pnl, won=False)
            self._emit(
                "sl_hit",
                side=side.value,
                entry=pending.limit_price,
                exit=levels.sl,
                opposite_ask=opposite_ask,
                size=check.filled_size,
                pnl=round(pnl, 6),
                during_confirmation=True,
                **self.stats.summary(),
            )
            return "stopped"

        self._open(side, pending.limit_price, check.filled_size, levels,
                   pending.token_id, opposite_token)
        self.tp_order_id = tp_order_id
        return "opened"

    # ── Exits ────────────────────────────────────────────────────────────

    def _sl_suppressed(self, held: Optional[IndicatorReading]) -> bool:
        if not self._config.use_macd_sl_filter or held is None:
            return False
        return held.macd is not None and held.macd > 0

    async def check_exits(
        self,
        point: PricePoint,
        readings: Mapping[Side, IndicatorReading],
    ) -> Optional[str]:
        """Evaluate take-profit, then stop-loss, for the open cycle.

        Returns ``"tp"``, ``"sl"``, ``"sl_suppressed"`` or ``None``.
        """
        cycle = self.cycle
        if cycle is None:
            return None

        same_ask = point.ask(cycle.side)
        if is_tp_hit(cycle.levels, same_ask):
            pnl = exit_pnl(cycle.entry_price, cycle.tp_price, cycle.size)
            await self._fill.cancel(self.sl_order_id, "stop-loss")
            self._close(pnl, won=True)
            self._emit(
                "tp_hit",
                side=cycle.side.value,
                entry=cycle.entry_price,
                exit=cycle.tp_price,
                price=same_ask,
                size=cycle.size,
                pnl=round(pnl, 6),
                **self.stats.summary(),
            )
            return "tp"

        opposite_ask = point.ask(cycle.side.opposite)
        if not is_sl_hit(cycle.levels, opposite_ask):
            return None

        held = readings.get(cycle.side)
        if self._sl_suppressed(held):
            self._emit(
                "sl_suppressed",
                side=cycle.side.value,
                opposite_ask=opposite_ask,
                macd=held.macd,
            )
            return "sl_suppressed"

        self.sl_order_id = await self._fill.place_stop_loss(
            cycle.opposite_token, cycle.levels.opposite_sl_trigger, cycle.size
        )
        await self._fill.cancel(self.tp_order_id, "take-profit")
        pnl = exit_pnl(cycle.entry_price, cycle.sl_price, cycle.size)
        self._close(pnl, won=False)
        self._emit(
            "sl_hit",
            side=cycle.side.value,
            entry=cycle.entry_price,
            exit=cycle.sl_price,
            opposite_ask=opposite_ask,
            size=cycle.size,
            pnl=round(pnl, 6),
            **self.stats.summary(),
        )
        return "sl"

    def _close(self, pnl: float, won: bool) -> None:
        self.stats.record(pnl, won)
        self.cycle = None
        self.tp_order_id = None
        self.sl_order_id = None

    # ── Period end ───────────────────────────────────────────────────────

    async def settle_period_end(self, last_point: Optional[PricePoint]) -> Optional[float]:
        """Cancel any pending entry and settle any open cycle at 0/1 pricing.

        Returns the settlement P&L, or ``None`` when nothing was open.
        """
        if self.pending is not None:
            pending = self.pending
            self.pending = None
            await self._fill.cancel(pending.order_id, "entry")
            self._emit("entry_cancelled", side=pending.side.value, order_id=pending.order_id)

        pnl: Optional[float] = None
        cycle = self.cycle
        if cycle is not None:
            if last_point is None:
                logger.warning("[%s] settling without a price point, held side loses", self.asset)
            held_price = last_point.ask(cycle.side) if last_point else 0.0
            pnl, won = settlement_pnl(cycle.entry_price, held_price, cycle.size)
            self.stats.record(pnl, won)
            self.cycle = None
            self._emit(
                "settled",
                side=cycle.side.value,
                entry=cycle.entry_price,
                exit=1.0 if won else 0.0,
                price=held_price,
                size=cycle.size,
                pnl=round(pnl, 6),
                won=won,
                **self.stats.summary(),
            )

        await self._fill.cancel(self.tp_order_id, "take-profit")
        await self._fill.cancel(self.sl_order_id, "stop-loss")
        self.tp_order_id = None
        self.sl_order_id = None
        return pnl

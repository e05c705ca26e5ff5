"""Trend decision function — maps indicator readings to an entry signal.

Each index type has one side rule: ``rule(config, current, previous)``
answers whether that side is trending.  Up is always evaluated before Down.
"""

from typing import Callable, Optional

from trendbot.config import IndexType, StrategyConfig
from trendbot.strategy.models import EntrySignal, IndicatorReading, Side

SideRule = Callable[[StrategyConfig, IndicatorReading, Optional[IndicatorReading]], bool]


def _rsi_rule(
    config: StrategyConfig,
    current: IndicatorReading,
    previous: Optional[IndicatorReading],
) -> bool:
    return current.rsi is not None and current.rsi > config.trend_threshold


def _momentum_rule(
    config: StrategyConfig,
    current: IndicatorReading,
    previous: Optional[IndicatorReading],
) -> bool:
    return (
        current.momentum is not None
        and current.momentum > config.momentum_threshold_pct
    )


def _macd_rule(
    config: StrategyConfig,
    current: IndicatorReading,
    previous: Optional[IndicatorReading],
) -> bool:
    """MACD above threshold and accelerating versus the previous tick."""
    if current.macd is None or current.macd <= config.trend_threshold:
        return False
    if previous is None or previous.macd is None:
        return True
    return current.macd > previous.macd


def _macd_signal_rule(
    config: StrategyConfig,
    current: IndicatorReading,
    previous: Optional[IndicatorReading],
) -> bool:
    """MACD crossing above its signal line between two ticks."""
    if current.macd is None or current.signal is None:
        return False
    prev_macd = previous.macd if previous else None
    prev_signal = previous.signal if previous else None
    if prev_macd is None and prev_signal is None:
        return current.macd > current.signal
    if prev_macd is None or prev_signal is None:
        return False
    return prev_macd <= prev_signal and current.macd > current.signal


SIDE_RULES: dict[IndexType, SideRule] = {
    IndexType.RSI: _rsi_rule,
    IndexType.MOMENTUM: _momentum_rule,
    IndexType.MACD: _macd_rule,
    IndexType.MACD_SIGNAL: _macd_signal_rule,
}


def index_value(index_type: IndexType, reading: IndicatorReading) -> Optional[float]:
    """Return the headline index for *index_type* (used for logging/events)."""
    if index_type is IndexType.RSI:
        return reading.rsi
    if index_type is IndexType.MOMENTUM:
        return reading.momentum
    return reading.macd


def decide(
    config: StrategyConfig,
    up: IndicatorReading,
    down: IndicatorReading,
    previous_up: Optional[IndicatorReading],
    previous_down: Optional[IndicatorReading],
    up_ask: float,
    down_ask: float,
    history_len: int,
) -> Optional[EntrySignal]:
    """Decide whether to enter, and on which side.

    Returns ``None`` (no action) while the history is shorter than the
    lookback, or when neither side satisfies the rule for the configured
    index type.
    """
    if history_len < config.lookback:
        return None

    rule = SIDE_RULES[config.index_type]
    candidates = (
        (Side.UP, up, previous_up, up_ask),
        (Side.DOWN, down, previous_down, down_ask),
    )
    for side, current, previous, ask in candidates:
        if rule(config, current, previous):
            value = index_value(config.index_type, current)
            return EntrySignal(
                side=side,
                price=ask,
                size=config.position_size,
                reason=f"{config.index_type.value} {side.value} index={value}",
            )
    return None

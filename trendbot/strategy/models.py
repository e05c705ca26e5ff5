"""Strategy data models — typed representations for strategy inputs and outputs."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Side(str, Enum):
    """One of the two complementary outcome tokens of a market."""

    UP = "up"
    DOWN = "down"

    @property
    def opposite(self) -> "Side":
        return Side.DOWN if self is Side.UP else Side.UP


@dataclass(frozen=True)
class PricePoint:
    """One sampled tick for one asset.

    Both asks are implied probabilities in ``[0, 1]``.  A value of ``0.0``
    means the quote was unavailable.
    """

    period_timestamp: int
    up_ask: float
    down_ask: float
    asset: str

    def ask(self, side: Side) -> float:
        return self.up_ask if side is Side.UP else self.down_ask


@dataclass(frozen=True)
class IndicatorReading:
    """Indicator values for one side at one tick (``None`` while warming up)."""

    rsi: Optional[float] = None
    macd: Optional[float] = None
    signal: Optional[float] = None
    histogram: Optional[float] = None
    momentum: Optional[float] = None


@dataclass(frozen=True)
class EntrySignal:
    """A directional entry produced by the trend decision function."""

    side: Side
    price: float
    size: float
    reason: str

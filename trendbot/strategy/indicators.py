"""Technical indicators — rolling RSI, MACD and Momentum over a price stream.

Each calculator consumes one price per ``add_price`` call and can be rebuilt
from a full window with ``from_prices``; both paths produce identical values.
The batch helper ``calculate_rsi`` is a pure function.
"""

from collections import deque
from typing import Iterable, Optional

from trendbot.strategy.models import IndicatorReading


def _rsi_from_avgs(avg_gain: float, avg_loss: float) -> float:
    if avg_gain == 0 and avg_loss == 0:
        return 50.0
    if avg_loss == 0:
        return 100.0
    if avg_gain == 0:
        return 0.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def calculate_rsi(prices: list[float], period: int = 14) -> list[float]:
    """Calculate Wilder's Relative Strength Index over a price list.

    Algorithm (Wilder-smoothed):
        1. delta = price[i] - price[i-1]
        2. Separate gains (positive) and losses (|negative|).
        3. Seed average gain/loss = SMA of first *period* deltas.
        4. Subsequent: avg = (prev_avg × (period-1) + current) / period
        5. RSI = 100 - 100 / (1 + avg_gain / avg_loss)

    A flat window reports 50, a window without losses 100 and a window
    without gains 0.

    Returns a list the same length as *prices*; entries before the seed
    are ``float('nan')``.  Raises ``ValueError`` on fewer than
    ``period + 1`` prices.
    """
    if len(prices) < period + 1:
        raise ValueError(
            f"Need at least {period + 1} prices for RSI({period}), "
            f"got {len(prices)}"
        )

    deltas = [prices[i] - prices[i - 1] for i in range(1, len(prices))]
    gains = [max(d, 0.0) for d in deltas]
    losses = [abs(min(d, 0.0)) for d in deltas]

    rsi: list[float] = [float("nan")] * len(prices)
    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period
    rsi[period] = _rsi_from_avgs(avg_gain, avg_loss)

    for i in range(period, len(deltas)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        rsi[i + 1] = _rsi_from_avgs(avg_gain, avg_loss)

    return rsi


# ── Rolling calculators ──────────────────────────────────────────────────


class RollingRSI:
    """Wilder RSI updated one price at a time."""

    def __init__(self, period: int = 14) -> None:
        if period < 1:
            raise ValueError(f"RSI period must be >= 1, got {period}")
        self.period = period
        self._prev_price: Optional[float] = None
        self._seed_gains: list[float] = []
        self._seed_losses: list[float] = []
        self._avg_gain: Optional[float] = None
        self._avg_loss: Optional[float] = None

    @classmethod
    def from_prices(cls, prices: Iterable[float], period: int = 14) -> "RollingRSI":
        calc = cls(period)
        for price in prices:
            calc.add_price(price)
        return calc

    def add_price(self, price: float) -> None:
        if self._prev_price is not None:
            change = price - self._prev_price
            gain = max(change, 0.0)
            loss = abs(min(change, 0.0))
            if self._avg_gain is None:
                self._seed_gains.append(gain)
                self._seed_losses.append(loss)
                if len(self._seed_gains) == self.period:
                    self._avg_gain = sum(self._seed_gains) / self.period
                    self._avg_loss = sum(self._seed_losses) / self.period
            else:
                self._avg_gain = (self._avg_gain * (self.period - 1) + gain) / self.period
                self._avg_loss = (self._avg_loss * (self.period - 1) + loss) / self.period
        self._prev_price = price

    @property
    def ready(self) -> bool:
        return self._avg_gain is not None

    @property
    def value(self) -> Optional[float]:
        if self._avg_gain is None or self._avg_loss is None:
            return None
        return _rsi_from_avgs(self._avg_gain, self._avg_loss)


class RollingMACD:
    """MACD with an optional signal line, updated one price at a time.

    Both EMAs are seeded with the SMA of the first ``slow_period`` prices.
    The signal line, when ``signal_period`` is set, is seeded with the SMA
    of the first ``signal_period`` MACD values.
    """

    def __init__(
        self,
        fast_period: int = 12,
        slow_period: int = 26,
        signal_period: Optional[int] = 9,
    ) -> None:
        if fast_period < 1 or slow_period < 1:
            raise ValueError("MACD periods must be >= 1")
        self.fast_period = fast_period
        self.slow_period = slow_period
        self.signal_period = signal_period
        self._k_fast = 2.0 / (fast_period + 1)
        self._k_slow = 2.0 / (slow_period + 1)
        self._k_signal = 2.0 / (signal_period + 1) if signal_period else 0.0
        self._seed_prices: list[float] = []
        self._ema_fast: Optional[float] = None
        self._ema_slow: Optional[float] = None
        self._macd: Optional[float] = None
        self._seed_macd: list[float] = []
        self._signal: Optional[float] = None

    @classmethod
    def from_prices(
        cls,
        prices: Iterable[float],
        fast_period: int = 12,
        slow_period: int = 26,
        signal_period: Optional[int] = 9,
    ) -> "RollingMACD":
        calc = cls(fast_period, slow_period, signal_period)
        for price in prices:
            calc.add_price(price)
        return calc

    def add_price(self, price: float) -> None:
        if self._ema_fast is None or self._ema_slow is None:
            self._seed_prices.append(price)
            if len(self._seed_prices) < self.slow_period:
                return
            sma = sum(self._seed_prices) / self.slow_period
            self._ema_fast = sma
            self._ema_slow = sma
            self._seed_prices = []
        else:
            self._ema_fast = price * self._k_fast + self._ema_fast * (1 - self._k_fast)
            self._ema_slow = price * self._k_slow + self._ema_slow * (1 - self._k_slow)

        self._macd = self._ema_fast - self._ema_slow
        self._update_signal(self._macd)

    def _update_signal(self, macd: float) -> None:
        if not self.signal_period:
            return
        if self._signal is None:
            self._seed_macd.append(macd)
            if len(self._seed_macd) == self.signal_period:
                self._signal = sum(self._seed_macd) / self.signal_period
                self._seed_macd = []
        else:
            self._signal = macd * self._k_signal + self._signal * (1 - self._k_signal)

    @property
    def ready(self) -> bool:
        return self._macd is not None

    @property
    def value(self) -> Optional[float]:
        return self._macd

    @property
    def signal(self) -> Optional[float]:
        return self._signal

    @property
    def histogram(self) -> Optional[float]:
        if self._macd is None or self._signal is None:
            return None
        return self._macd - self._signal


class RollingMomentum:
    """Percentage change between the oldest and newest of ``period + 1`` prices."""

    def __init__(self, period: int = 10) -> None:
        if period < 1:
            raise ValueError(f"Momentum period must be >= 1, got {period}")
        self.period = period
        self._window: deque[float] = deque(maxlen=period + 1)

    @classmethod
    def from_prices(cls, prices: Iterable[float], period: int = 10) -> "RollingMomentum":
        calc = cls(period)
        for price in prices:
            calc.add_price(price)
        return calc

    def add_price(self, price: float) -> None:
        self._window.append(price)

    @property
    def ready(self) -> bool:
        return len(self._window) == self.period + 1

    @property
    def value(self) -> Optional[float]:
        if not self.ready:
            return None
        past = self._window[0]
        if past == 0:
            return None
        return (self._window[-1] - past) / past * 100.0


# ── Per-stream bundle ────────────────────────────────────────────────────


class IndicatorSet:
    """RSI, MACD and Momentum calculators sharing one price stream."""

    def __init__(
        self,
        lookback: int,
        macd_fast: int = 12,
        macd_slow: int = 26,
        macd_signal: Optional[int] = 9,
    ) -> None:
        self.rsi = RollingRSI(lookback)
        self.macd = RollingMACD(macd_fast, macd_slow, macd_signal)
        self.momentum = RollingMomentum(lookback)

    @classmethod
    def from_prices(
        cls,
        prices: Iterable[float],
        lookback: int,
        macd_fast: int = 12,
        macd_slow: int = 26,
        macd_signal: Optional[int] = 9,
    ) -> "IndicatorSet":
        bundle = cls(lookback, macd_fast, macd_slow, macd_signal)
        for price in prices:
            bundle.add_price(price)
        return bundle

    def add_price(self, price: float) -> None:
        self.rsi.add_price(price)
        self.macd.add_price(price)
        self.momentum.add_price(price)

    def reading(self) -> IndicatorReading:
        """Return current values; ``None`` for indicators still warming up."""
        return IndicatorReading(
            rsi=self.rsi.value,
            macd=self.macd.value,
            signal=self.macd.signal,
            histogram=self.macd.histogram,
            momentum=self.momentum.value,
        )

"""Take-profit and stop-loss for a binary Up/Down cycle — pure math, no I/O.

Prices are implied probabilities in ``[0, 1]``.  Holding one side at
``sl`` is equivalent to the opposite side trading at ``1 - sl``, so the stop
is watched on the opposite token's ask.
"""

from dataclasses import dataclass

# A side priced at or above this at expiry is taken as the winning outcome.
WINNING_PRICE = 0.99

_PRICE_DECIMALS = 6


@dataclass(frozen=True)
class CycleLevels:
    """Computed take-profit and stop-loss for an entry."""

    entry: float
    tp: float
    sl: float

    @property
    def opposite_sl_trigger(self) -> float:
        """Opposite-side ask at which the stop-loss fires."""
        return round(1.0 - self.sl, _PRICE_DECIMALS)

    @property
    def tp_reachable(self) -> bool:
        return self.tp <= 1.0


def calculate_levels(
    entry_price: float,
    profit_threshold: float,
    sl_threshold: float,
) -> CycleLevels:
    """``tp = entry + profit_threshold``, ``sl = entry - sl_threshold``."""
    return CycleLevels(
        entry=entry_price,
        tp=round(entry_price + profit_threshold, _PRICE_DECIMALS),
        sl=round(entry_price - sl_threshold, _PRICE_DECIMALS),
    )


def is_tp_hit(levels: CycleLevels, same_side_ask: float) -> bool:
    """Same-side ask reached a reachable take-profit.  A zero ask never hits."""
    return same_side_ask > 0 and levels.tp_reachable and same_side_ask >= levels.tp


def is_sl_hit(levels: CycleLevels, opposite_ask: float) -> bool:
    """Opposite-side ask reached ``1 - sl``.  A zero ask never hits."""
    return opposite_ask > 0 and opposite_ask >= levels.opposite_sl_trigger


def exit_pnl(entry_price: float, exit_price: float, size: float) -> float:
    return (exit_price - entry_price) * size


def settlement_pnl(entry_price: float, held_side_price: float, size: float) -> tuple[float, bool]:
    """P&L at market end using terminal 0/1 pricing.

    Returns ``(pnl, won)``: the held side settles at 1 when its last ask is
    ``>= WINNING_PRICE`` and at 0 otherwise.
    """
    won = held_side_price >= WINNING_PRICE
    terminal = 1.0 if won else 0.0
    return (terminal - entry_price) * size, won

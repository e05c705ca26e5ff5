"""Entry gates — pure functions deciding whether a signal may open a cycle."""

from typing import Optional

PERIOD_SECONDS = 900


def remaining_minutes(time_remaining_seconds: int) -> int:
    """Whole minutes left in the period."""
    return max(time_remaining_seconds, 0) // 60


def is_in_trading_window(
    time_remaining_seconds: int,
    start_when_remaining_minutes: Optional[int],
) -> bool:
    """Return True once no more than *start_when_remaining_minutes* remain.

    With no configured limit every moment of the period is tradable.

    Args:
        time_remaining_seconds: Seconds until the period closes.
        start_when_remaining_minutes: Trading opens when this many whole
            minutes (or fewer) remain.
    """
    if start_when_remaining_minutes is None:
        return True
    return remaining_minutes(time_remaining_seconds) <= start_when_remaining_minutes


def is_late_entry_blocked(
    entry_price: float,
    elapsed_seconds: int,
    max_price: Optional[float],
    window_minutes: int = 13,
) -> bool:
    """Return True when a near-certain price is offered too early in the period.

    An entry above *max_price* is blocked while fewer than *window_minutes*
    have elapsed since the period started.  ``max_price=None`` disables
    the gate.
    """
    if max_price is None:
        return False
    return entry_price > max_price and elapsed_seconds < window_minutes * 60

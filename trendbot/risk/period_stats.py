"""Per-period running statistics for one asset — pure bookkeeping, no I/O.

Accumulates realised P&L, win/loss counts and fund committed for the
current 15-minute period.  Reset at every period rollover.
"""


class PeriodStats:
    """Running totals for one asset within one period."""

    def __init__(self) -> None:
        self.reset()

    # ── Mutation ─────────────────────────────────────────────────────────

    def reset(self) -> None:
        self._total_pnl: float = 0.0
        self._wins: int = 0
        self._losses: int = 0
        self._fund_used: float = 0.0

    def commit_fund(self, entry_price: float, size: float) -> None:
        """Record capital committed when a cycle opens."""
        self._fund_used += entry_price * size

    def record(self, pnl: float, won: bool) -> None:
        """Record a closed cycle."""
        self._total_pnl += pnl
        if won:
            self._wins += 1
        else:
            self._losses += 1

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def total_pnl(self) -> float:
        return self._total_pnl

    @property
    def wins(self) -> int:
        return self._wins

    @property
    def losses(self) -> int:
        return self._losses

    @property
    def fund_used(self) -> float:
        return self._fund_used

    def summary(self) -> dict:
        """Return the totals as a dict suitable for an event payload."""
        return {
            "total_pnl": round(self._total_pnl, 6),
            "wins": self._wins,
            "losses": self._losses,
            "fund_used": round(self._fund_used, 6),
        }

"""Cycle statistics — pure functions over realised cycle P&L."""

from typing import Optional


def calculate_stats(cycles: list[dict]) -> dict:
    """Compute summary statistics from closed cycles.

    Each cycle dict must have a ``"pnl"`` key (float); a cycle with
    ``pnl > 0`` is a winner.

    Returns:
        Dict with ``total_cycles``, ``winning_cycles``, ``losing_cycles``,
        ``win_rate``, ``profit_factor``, ``max_drawdown``, ``net_pnl``.
    """
    if not cycles:
        return {
            "total_cycles": 0,
            "winning_cycles": 0,
            "losing_cycles": 0,
            "win_rate": 0.0,
            "profit_factor": None,
            "max_drawdown": 0.0,
            "net_pnl": 0.0,
        }

    pnls = [float(c["pnl"] or 0.0) for c in cycles]
    total = len(pnls)
    winners = [p for p in pnls if p > 0]
    losers = [p for p in pnls if p <= 0]

    gross_profit = sum(winners)
    gross_loss = abs(sum(losers))
    profit_factor: Optional[float] = (
        gross_profit / gross_loss if gross_loss > 0 else None
    )

    return {
        "total_cycles": total,
        "winning_cycles": len(winners),
        "losing_cycles": len(losers),
        "win_rate": round(len(winners) / total, 4),
        "profit_factor": round(profit_factor, 4) if profit_factor is not None else None,
        "max_drawdown": round(_max_drawdown(pnls), 4),
        "net_pnl": round(sum(pnls), 4),
    }


def _max_drawdown(pnls: list[float]) -> float:
    """Largest peak-to-trough decline of the cumulative P&L curve."""
    cumulative = 0.0
    peak = 0.0
    max_dd = 0.0
    for p in pnls:
        cumulative += p
        peak = max(peak, cumulative)
        max_dd = max(max_dd, peak - cumulative)
    return max_dd

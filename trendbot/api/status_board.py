"""Status board — an event sink that keeps the latest per-asset state for the API."""

from collections import deque
from typing import Optional

from trendbot.events import TradeEvent

_DEFAULT_ASSET_STATUS: dict = {
    "state": "flat",
    "up_ask": None,
    "down_ask": None,
    "up_index": None,
    "down_index": None,
    "time_remaining": None,
    "side": None,
    "entry": None,
    "tp": None,
    "sl": None,
    "total_pnl": 0.0,
    "wins": 0,
    "losses": 0,
    "fund_used": 0.0,
    "last_event": None,
    "updated_at": None,
}

_TOTALS = ("total_pnl", "wins", "losses", "fund_used")


class StatusBoard:
    """Folds trade events into a status dict per asset.

    Args:
        mode: ``"simulation"`` or ``"live"``, reported by ``/status``.
        history: Number of recent non-tick events retained.
    """

    def __init__(self, mode: str = "simulation", history: int = 50) -> None:
        self.mode = mode
        self.period: Optional[int] = None
        self._assets: dict[str, dict] = {}
        self._recent: deque[dict] = deque(maxlen=history)

    def _status(self, asset: str) -> dict:
        if asset not in self._assets:
            self._assets[asset] = dict(_DEFAULT_ASSET_STATUS)
        return self._assets[asset]

    def emit(self, event: TradeEvent) -> None:
        if event.kind == "rollover":
            self.period = event.fields.get("period")
        if event.kind != "tick":
            self._recent.appendleft(event.to_dict())
        if event.asset is None:
            return

        status = self._status(event.asset)
        status["updated_at"] = event.timestamp
        f = event.fields

        if event.kind == "tick":
            for key in ("up_ask", "down_ask", "up_index", "down_index", "state"):
                status[key] = f.get(key)
            status["time_remaining"] = f.get("remaining")
            return

        status["last_event"] = event.kind
        if event.kind == "entry_pending":
            status["state"] = "pending"
        elif event.kind == "cycle_open":
            status.update(state="open", side=f.get("side"), entry=f.get("entry"),
                          tp=f.get("tp"), sl=f.get("sl"))
        elif event.kind in ("tp_hit", "sl_hit", "settled", "entry_timeout", "entry_cancelled"):
            status.update(state="flat", side=None, entry=None, tp=None, sl=None)

        if event.kind == "period_summary":
            for key in _TOTALS:
                status[key] = 0 if key in ("wins", "losses") else 0.0
        else:
            for key in _TOTALS:
                if key in f:
                    status[key] = f[key]

    # ── Queries ──────────────────────────────────────────────────────────

    def snapshot(self) -> dict:
        return {
            "mode": self.mode,
            "period": self.period,
            "assets": {k: dict(v) for k, v in self._assets.items()},
        }

    def asset_status(self, asset: str) -> Optional[dict]:
        status = self._assets.get(asset)
        return dict(status) if status is not None else None

    def recent_events(self, limit: int = 50) -> list[dict]:
        return list(self._recent)[:limit]

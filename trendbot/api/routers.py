"""Internal API routers — /status, /events, /stats endpoints.

No business logic.  Reads the status board and the event repository
injected via ``configure_routers``.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query

from trendbot.api.status_board import StatusBoard
from trendbot.stats import calculate_stats

logger = logging.getLogger("trendbot.api")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_board: StatusBoard = StatusBoard()
_event_repo = None  # Set via configure_routers()


def configure_routers(
    board: Optional[StatusBoard] = None,
    event_repo=None,
) -> None:
    """Inject the status board and event repository."""
    global _board, _event_repo
    if board is not None:
        _board = board
    _event_repo = event_repo


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get("/status")
async def get_status():
    """Return mode, current period and the status of every asset."""
    return _board.snapshot()


@router.get("/status/{asset}")
async def get_asset_status(asset: str):
    """Return status for a single asset."""
    status = _board.asset_status(asset.upper())
    if status is None:
        return {"error": f"Unknown asset: {asset}"}
    return status


@router.get("/events")
async def get_events(
    limit: int = Query(default=50, ge=1, le=500),
    kind: Optional[str] = Query(default=None),
    asset: Optional[str] = Query(default=None),
):
    """Return recent events; persisted ones when a repository is configured."""
    asset = asset.upper() if asset else None
    if _event_repo is not None:
        return _event_repo.get_events(limit=limit, kind=kind, asset=asset)

    events = [
        e for e in _board.recent_events(limit=500)
        if (kind is None or e["kind"] == kind) and (asset is None or e["asset"] == asset)
    ]
    return {"events": events[:limit], "total": len(events)}


@router.get("/stats")
async def get_stats(asset: Optional[str] = Query(default=None)):
    """Return cycle statistics over every persisted closed cycle."""
    if _event_repo is None:
        return calculate_stats([])
    cycles = _event_repo.get_closed_cycles(asset=asset.upper() if asset else None)
    return calculate_stats(cycles)

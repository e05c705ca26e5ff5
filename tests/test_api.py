"""Tests for the internal status API — /health, /status, /events, /stats."""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from trendbot.api.routers import configure_routers
from trendbot.api.status_board import StatusBoard
from trendbot.events import TradeEvent
from trendbot.main import app, build_parser, warn_if_live
from trendbot.repos.db import init_db
from trendbot.repos.event_repo import EventRepo

client = TestClient(app)


# ── Helpers ──────────────────────────────────────────────────────────────


def _board_with_open_cycle() -> StatusBoard:
    board = StatusBoard(mode="live")
    board.emit(TradeEvent("tick", "BTC", {"up_ask": 0.6, "down_ask": 0.41, "state": "flat", "remaining": 420}))
    board.emit(TradeEvent("cycle_open", "BTC", {"side": "up", "entry": 0.6, "tp": 0.65, "sl": 0.55}))
    board.emit(TradeEvent("entry_skipped", "ETH", {"side": "down", "reason": "window"}))
    return board


@pytest.fixture(autouse=True)
def _reset_routers():
    configure_routers(board=StatusBoard(), event_repo=None)
    yield
    configure_routers(board=StatusBoard(), event_repo=None)


# ── Tests ────────────────────────────────────────────────────────────────


class TestHealth:
    def test_health(self):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


class TestStatusEndpoint:
    def test_status_lists_assets(self):
        configure_routers(board=_board_with_open_cycle())
        resp = client.get("/status")
        assert resp.status_code == 200
        data = resp.json()
        assert data["mode"] == "live"
        assert set(data["assets"]) == {"BTC", "ETH"}
        assert data["assets"]["BTC"]["state"] == "open"

    def test_single_asset_case_insensitive(self):
        configure_routers(board=_board_with_open_cycle())
        data = client.get("/status/btc").json()
        assert data["entry"] == 0.6
        assert data["time_remaining"] == 420

    def test_unknown_asset(self):
        data = client.get("/status/DOGE").json()
        assert "error" in data


class TestEventsEndpoint:
    def test_events_from_board_without_repo(self):
        configure_routers(board=_board_with_open_cycle())
        data = client.get("/events", params={"asset": "eth"}).json()
        assert data["total"] == 1
        assert data["events"][0]["kind"] == "entry_skipped"

    def test_events_from_repo(self):
        repo = MagicMock()
        repo.get_events.return_value = {"events": [], "total": 0}
        configure_routers(event_repo=repo)
        resp = client.get("/events", params={"limit": 5, "kind": "tp_hit", "asset": "btc"})
        assert resp.status_code == 200
        repo.get_events.assert_called_once_with(limit=5, kind="tp_hit", asset="BTC")

    def test_limit_validated(self):
        resp = client.get("/events", params={"limit": 0})
        assert resp.status_code == 422


class TestStatsEndpoint:
    def test_stats_without_repo(self):
        data = client.get("/stats").json()
        assert data["total_cycles"] == 0

    def test_stats_from_persisted_cycles(self, tmp_path):
        db_path = str(tmp_path / "events.db")
        init_db(db_path)
        repo = EventRepo(db_path)
        repo.emit(TradeEvent("tp_hit", "BTC", {"pnl": 0.5}))
        repo.emit(TradeEvent("settled", "BTC", {"pnl": -4.0}))
        repo.emit(TradeEvent("tp_hit", "ETH", {"pnl": 0.3}))
        configure_routers(event_repo=repo)

        data = client.get("/stats", params={"asset": "btc"}).json()
        assert data["total_cycles"] == 2
        assert data["winning_cycles"] == 1
        assert data["net_pnl"] == pytest.approx(-3.5)


class TestCli:
    def test_parser_flags(self):
        args = build_parser().parse_args([
            "--mode", "live", "--strategy", "macd", "--lookback", "30",
            "--trading-start-when-remaining-minutes", "5", "--engine-only",
        ])
        assert args.mode == "live"
        assert args.strategy == "macd"
        assert args.lookback == 30
        assert args.trading_start_when_remaining_minutes == 5
        assert args.engine_only

    def test_parser_defaults_are_none(self):
        args = build_parser().parse_args([])
        assert args.mode is None
        assert args.trend_threshold is None
        assert not args.engine_only

    def test_warn_if_live(self):
        assert warn_if_live("live") is True
        assert warn_if_live("simulation") is False

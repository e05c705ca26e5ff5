"""TrendBot — application entry point.

Boots the FastAPI internal status server and provides the CLI entry point
for simulation and live modes.
"""

import logging

from fastapi import FastAPI

from trendbot.api.routers import router

app = FastAPI(title="TrendBot Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("trendbot")


@app.get("/health")
async def health():
    """Liveness probe."""
    return {"status": "ok"}


def warn_if_live(mode: str) -> bool:
    """Log a prominent warning when running in live mode.

    Returns ``True`` if *mode* is ``"live"``.
    """
    if mode == "live":
        logger.warning(
            "LIVE TRADING MODE — Real money at risk! Starting in 5 seconds..."
        )
        return True
    return False


def build_parser():
    import argparse

    parser = argparse.ArgumentParser(description="TrendBot 15-minute Up/Down trader")
    parser.add_argument(
        "--mode",
        choices=["simulation", "live"],
        default=None,
        help="Trading mode (default: TRADING_MODE or simulation)",
    )
    parser.add_argument(
        "--strategy",
        choices=["rsi", "macd", "macd_signal", "momentum"],
        default=None,
        help="Trend index (default: strategy.index_type in config, else rsi)",
    )
    parser.add_argument("--trend-threshold", type=float, default=None)
    parser.add_argument("--profit-threshold", type=float, default=None)
    parser.add_argument("--sl-threshold", type=float, default=None)
    parser.add_argument("--lookback", type=int, default=None)
    parser.add_argument("--position-size", type=float, default=None)
    parser.add_argument(
        "--trading-start-when-remaining-minutes", type=int, default=None,
        help="Only enter once this many minutes (or fewer) remain",
    )
    parser.add_argument("--check-interval-ms", type=int, default=None)
    parser.add_argument("--config", default=None, help="Path to a JSON config file")
    parser.add_argument(
        "--engine-only",
        action="store_true",
        help="Run the trading engine without the API server",
    )
    return parser


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli(argv: list[str] | None = None) -> None:
    """Parse CLI arguments, wire components and run until interrupted."""
    import asyncio
    import signal
    import sys
    import time

    from trendbot.api.routers import configure_routers
    from trendbot.api.status_board import StatusBoard
    from trendbot.broker.polymarket_client import PolymarketClient
    from trendbot.config import load_config, load_strategy_config, validate_config
    from trendbot.engine import TradingEngine
    from trendbot.events import LoggingEventSink, MultiSink
    from trendbot.monitor import MarketMonitor
    from trendbot.repos.db import init_db
    from trendbot.repos.event_repo import EventRepo
    from trendbot.trading.fills import BalanceFill, SimulatedFill

    args = build_parser().parse_args(argv)

    try:
        config = load_config(
            config_path=args.config,
            overrides={"mode": args.mode, "check_interval_ms": args.check_interval_ms},
        )
        validate_config(config)
        index_type = args.strategy or config.strategy_section.get("index_type", "rsi")
        strategy = load_strategy_config(
            index_type,
            mode=config.mode,
            section=config.strategy_section,
            overrides={
                "trend_threshold": args.trend_threshold,
                "profit_threshold": args.profit_threshold,
                "sl_threshold": args.sl_threshold,
                "lookback": args.lookback,
                "position_size": args.position_size,
                "trading_start_when_remaining_minutes": args.trading_start_when_remaining_minutes,
            },
        )
    except ValueError as exc:
        logging.basicConfig(level=logging.ERROR)
        logger.error("Invalid configuration: %s", exc)
        sys.exit(2)

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    init_db(config.db_path)

    if warn_if_live(config.mode):
        time.sleep(5)

    client = PolymarketClient(config)
    monitor = MarketMonitor(client, config.assets)
    fill = BalanceFill(client) if config.is_live else SimulatedFill()

    board = StatusBoard(mode=config.mode)
    event_repo = EventRepo(config.db_path)
    sink = MultiSink(LoggingEventSink(), event_repo, board)
    configure_routers(board=board, event_repo=event_repo)

    engine = TradingEngine(config, strategy, monitor, fill, sink)

    def handle_shutdown(signum, frame):
        logger.info("Shutdown signal received — stopping gracefully.")
        engine.stop()

    signal.signal(signal.SIGINT, handle_shutdown)

    logger.info(
        "Starting TrendBot: mode=%s index=%s assets=%s interval=%dms",
        config.mode, strategy.index_type.value, ",".join(config.assets),
        config.check_interval_ms,
    )
    if args.engine_only:
        asyncio.run(_run_engine_only(engine))
    else:
        asyncio.run(_run_with_server(engine, config.health_port))


async def _run_engine_only(engine) -> None:
    await engine.initialize()
    await engine.run()
    logger.info("TrendBot engine stopped.")


async def _run_with_server(engine, port: int = 8080) -> None:
    """Start the API server and the trading engine concurrently."""
    import asyncio

    import uvicorn

    uvi_config = uvicorn.Config(app, host="0.0.0.0", port=port, log_level="info")
    server = uvicorn.Server(uvi_config)

    async def _run_server():
        try:
            await server.serve()
        finally:
            engine.stop()

    async def _run_engine():
        try:
            await _run_engine_only(engine)
        finally:
            server.should_exit = True

    logger.info("Status API available at http://localhost:%d/status", port)
    results = await asyncio.gather(_run_server(), _run_engine(), return_exceptions=True)
    logger.info("TrendBot stopped. Results: %s", results)


if __name__ == "__main__":
    _run_cli()

"""TrendBot — application configuration.

Loads .env variables, an optional JSON config file and CLI overrides into
typed config objects.  Precedence: CLI > JSON file > environment > defaults.
Validates live-mode credentials on startup.
"""

import json
import os
import pathlib
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Optional

from dotenv import load_dotenv


SUPPORTED_ASSETS = ("BTC", "ETH", "SOL", "XRP")
TRADING_MODES = ("simulation", "live")

_DEFAULT_CONFIG_FILE = "config.json"

# JSON ``trading`` section flags mapped to asset symbols.
_ASSET_FLAGS = {
    "enable_btc": "BTC",
    "enable_eth": "ETH",
    "enable_solana": "SOL",
    "enable_xrp": "XRP",
}


class IndexType(str, Enum):
    """Trend index driving entry decisions."""

    RSI = "rsi"
    MACD = "macd"
    MACD_SIGNAL = "macd_signal"
    MOMENTUM = "momentum"


@dataclass(frozen=True)
class StrategyConfig:
    """Immutable per-run strategy parameters."""

    index_type: IndexType
    trend_threshold: float
    profit_threshold: float
    sl_threshold: float
    lookback: int
    position_size: float = 10.0
    macd_fast_period: int = 12
    macd_slow_period: int = 26
    macd_signal_period: Optional[int] = 9
    momentum_threshold_pct: float = 2.0
    use_macd_sl_filter: bool = False
    trading_start_when_remaining_minutes: Optional[int] = None
    late_entry_max_price: Optional[float] = None
    late_entry_window_minutes: int = 13

    @classmethod
    def defaults(cls, index_type: IndexType) -> "StrategyConfig":
        """Return the preset for *index_type*."""
        if index_type is IndexType.RSI:
            return cls(
                index_type=index_type,
                trend_threshold=90.0,
                profit_threshold=0.02,
                sl_threshold=0.02,
                lookback=10,
            )
        if index_type is IndexType.MOMENTUM:
            return cls(
                index_type=index_type,
                trend_threshold=0.0,
                profit_threshold=0.05,
                sl_threshold=0.05,
                lookback=10,
                momentum_threshold_pct=2.0,
            )
        return cls(
            index_type=index_type,
            trend_threshold=0.0,
            profit_threshold=0.05,
            sl_threshold=0.05,
            lookback=26,
            use_macd_sl_filter=index_type is IndexType.MACD,
        )


@dataclass(frozen=True)
class Config:
    """Typed runtime configuration."""

    mode: str  # "simulation" or "live"
    gamma_url: str = "https://gamma-api.polymarket.com"
    clob_url: str = "https://clob.polymarket.com"
    private_key: Optional[str] = None
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    api_passphrase: Optional[str] = None
    proxy_wallet_address: Optional[str] = None
    signature_type: int = 0
    chain_id: int = 137
    check_interval_ms: int = 5000
    assets: tuple[str, ...] = ("BTC", "ETH")
    db_path: str = "data/trendbot.db"
    log_level: str = "INFO"
    health_port: int = 8080
    strategy_section: dict = field(default_factory=dict, compare=False)

    @property
    def is_live(self) -> bool:
        return self.mode == "live"


# ── Loading ──────────────────────────────────────────────────────────────


def _optional(value: Optional[str]) -> Optional[str]:
    return value if value else None


def _parse_assets(raw: str) -> tuple[str, ...]:
    assets = tuple(a.strip().upper() for a in raw.split(",") if a.strip())
    unknown = [a for a in assets if a not in SUPPORTED_ASSETS]
    if unknown:
        raise ValueError(f"Unsupported asset(s): {', '.join(unknown)}")
    return assets


def _read_config_file(config_path: Optional[str]) -> dict:
    """Return the parsed JSON file, or ``{}`` when the default file is absent."""
    if config_path is None:
        default = pathlib.Path(_DEFAULT_CONFIG_FILE)
        if not default.is_file():
            return {}
        config_path = str(default)
    with open(config_path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Config file {config_path} must contain a JSON object")
    return data


def _from_environment() -> dict[str, Any]:
    return {
        "mode": os.environ.get("TRADING_MODE", "simulation"),
        "gamma_url": os.environ.get(
            "POLYMARKET_GAMMA_URL", "https://gamma-api.polymarket.com"
        ),
        "clob_url": os.environ.get("POLYMARKET_CLOB_URL", "https://clob.polymarket.com"),
        "private_key": _optional(os.environ.get("POLYMARKET_PRIVATE_KEY")),
        "api_key": _optional(os.environ.get("POLYMARKET_API_KEY")),
        "api_secret": _optional(os.environ.get("POLYMARKET_API_SECRET")),
        "api_passphrase": _optional(os.environ.get("POLYMARKET_API_PASSPHRASE")),
        "proxy_wallet_address": _optional(
            os.environ.get("POLYMARKET_PROXY_WALLET_ADDRESS")
        ),
        "signature_type": int(os.environ.get("POLYMARKET_SIGNATURE_TYPE", "0")),
        "chain_id": int(os.environ.get("POLYMARKET_CHAIN_ID", "137")),
        "check_interval_ms": int(os.environ.get("CHECK_INTERVAL_MS", "5000")),
        "assets": _parse_assets(os.environ.get("ENABLED_ASSETS", "BTC,ETH")),
        "db_path": os.environ.get("DB_PATH", "data/trendbot.db"),
        "log_level": os.environ.get("LOG_LEVEL", "INFO"),
        "health_port": int(os.environ.get("HEALTH_PORT", "8080")),
    }


def _from_file(data: dict, current_assets: tuple[str, ...]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    polymarket = data.get("polymarket", {})
    for key in (
        "gamma_url", "clob_url", "private_key", "api_key", "api_secret",
        "api_passphrase", "proxy_wallet_address", "signature_type", "chain_id",
    ):
        if polymarket.get(key) is not None:
            values[key] = polymarket[key]

    trading = data.get("trading", {})
    if "check_interval_ms" in trading:
        values["check_interval_ms"] = int(trading["check_interval_ms"])
    if "mode" in trading:
        values["mode"] = trading["mode"]
    if any(flag in trading for flag in _ASSET_FLAGS):
        enabled = [
            asset for flag, asset in _ASSET_FLAGS.items()
            if trading.get(flag, asset in current_assets)
        ]
        values["assets"] = tuple(a for a in SUPPORTED_ASSETS if a in enabled)
    return values


def load_config(
    env_path: str | None = None,
    config_path: str | None = None,
    overrides: dict | None = None,
) -> Config:
    """Load configuration from the environment, a JSON file and CLI overrides.

    *overrides* entries whose value is ``None`` are ignored so argparse
    namespaces can be passed through unchanged.

    Raises ``ValueError`` on an unknown mode or asset.
    """
    load_dotenv(dotenv_path=env_path)

    values = _from_environment()
    data = _read_config_file(config_path)
    values.update(_from_file(data, values["assets"]))
    if overrides:
        values.update({k: v for k, v in overrides.items() if v is not None})

    if values["mode"] not in TRADING_MODES:
        raise ValueError(
            f"Unknown trading mode '{values['mode']}', expected one of {TRADING_MODES}"
        )
    if isinstance(values["assets"], str):
        values["assets"] = _parse_assets(values["assets"])

    return Config(strategy_section=data.get("strategy", {}), **values)


def load_strategy_config(
    index_type: str | IndexType,
    mode: str = "simulation",
    section: dict | None = None,
    overrides: dict | None = None,
) -> StrategyConfig:
    """Build a StrategyConfig: preset → JSON ``strategy`` section → overrides.

    The late-entry gate (0.93 price within the first 13 minutes) is on by
    default in live mode only.
    """
    try:
        kind = IndexType(index_type)
    except ValueError:
        valid = ", ".join(t.value for t in IndexType)
        raise ValueError(f"Unknown index type '{index_type}'. Valid: {valid}") from None

    cfg = StrategyConfig.defaults(kind)
    if mode == "live":
        cfg = replace(cfg, late_entry_max_price=0.93)

    allowed = {f.name for f in fields(StrategyConfig)} - {"index_type"}
    updates: dict[str, Any] = {}
    for source in (section or {}, overrides or {}):
        updates.update({k: v for k, v in source.items() if k in allowed and v is not None})
    return replace(cfg, **updates)


def validate_config(config: Config) -> None:
    """Reject configurations that cannot trade.

    Raises ``ValueError`` naming the missing setting.
    """
    if config.is_live and not config.private_key:
        raise ValueError(
            "Missing required environment variable(s): POLYMARKET_PRIVATE_KEY "
            "(required for live trading)"
        )
    if not config.assets:
        raise ValueError("No assets enabled; set ENABLED_ASSETS or enable_* flags")
    if config.check_interval_ms <= 0:
        raise ValueError("check_interval_ms must be positive")

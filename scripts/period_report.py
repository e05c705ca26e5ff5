"""Period report: summarise persisted cycle results.

Reads closed cycles (TP, SL and settlement events) from the event database
and prints per-asset and overall statistics.

Usage:
  python -m scripts.period_report
  python -m scripts.period_report --db data/trendbot.db --asset BTC
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path

from trendbot.repos.event_repo import EventRepo
from trendbot.stats import calculate_stats


def build_report(repo: EventRepo, asset: str | None = None) -> dict:
    """Return ``{"overall": stats, "by_asset": {asset: stats}}``."""
    cycles = repo.get_closed_cycles(asset=asset)
    by_asset: dict[str, list[dict]] = {}
    for cycle in cycles:
        by_asset.setdefault(cycle["asset"] or "-", []).append(cycle)
    return {
        "overall": calculate_stats(cycles),
        "by_asset": {name: calculate_stats(rows) for name, rows in sorted(by_asset.items())},
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Summarise TrendBot cycle results")
    parser.add_argument("--db", default="data/trendbot.db", help="SQLite event database")
    parser.add_argument("--asset", default=None, help="Only this asset (e.g. BTC)")
    args = parser.parse_args()

    if not Path(args.db).is_file():
        raise SystemExit(f"No database at {args.db}")

    report = build_report(EventRepo(args.db), args.asset.upper() if args.asset else None)
    print(json.dumps(report, indent=2))


if __name__ == "__main__":
    main()

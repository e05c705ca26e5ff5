"""Event repository — SQLite persistence for trade events.

Doubles as an ``EventSink``: wire it into the engine's sink fan-out and
every event becomes a row.
"""

import json
from typing import Optional

from trendbot.events import TradeEvent
from trendbot.repos.db import get_connection

# Events that close a cycle and carry a realised ``pnl``.
CLOSING_KINDS = ("tp_hit", "sl_hit", "settled")


class EventRepo:
    """Data access layer for event records.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Write ────────────────────────────────────────────────────────────

    def insert_event(self, event: TradeEvent) -> int:
        """Insert *event* and return its ``id``."""
        f = event.fields
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                INSERT INTO events
                    (kind, asset, side, entry_price, exit_price, size, pnl,
                     payload, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.kind, event.asset, f.get("side"), f.get("entry"),
                    f.get("exit"), f.get("size"), f.get("pnl"),
                    json.dumps(f, default=str), event.timestamp,
                ),
            )
            conn.commit()
            return cur.lastrowid
        finally:
            conn.close()

    def emit(self, event: TradeEvent) -> None:
        if event.kind == "tick":
            return
        self.insert_event(event)

    # ── Read ─────────────────────────────────────────────────────────────

    def get_events(
        self,
        limit: int = 50,
        kind: Optional[str] = None,
        asset: Optional[str] = None,
    ) -> dict:
        """Return recent events, newest first.

        Returns:
            ``{"events": [...], "total": int}``
        """
        conn = get_connection(self._db_path)
        try:
            conditions: list[str] = []
            params: list = []

            if kind:
                conditions.append("kind = ?")
                params.append(kind)
            if asset:
                conditions.append("asset = ?")
                params.append(asset)

            where_clause = ""
            if conditions:
                where_clause = "WHERE " + " AND ".join(conditions)

            rows = conn.execute(
                f"SELECT * FROM events {where_clause} ORDER BY id DESC LIMIT ?",
                (*params, limit),
            ).fetchall()
            total = conn.execute(
                f"SELECT COUNT(*) FROM events {where_clause}",
                params,
            ).fetchone()[0]

            events = []
            for row in rows:
                record = dict(row)
                record["payload"] = json.loads(record["payload"])
                events.append(record)
            return {"events": events, "total": total}
        finally:
            conn.close()

    def get_closed_cycles(self, asset: Optional[str] = None) -> list[dict]:
        """Return every cycle-closing event in chronological order."""
        conn = get_connection(self._db_path)
        try:
            placeholders = ", ".join("?" for _ in CLOSING_KINDS)
            sql = f"SELECT * FROM events WHERE kind IN ({placeholders})"
            params: list = list(CLOSING_KINDS)
            if asset:
                sql += " AND asset = ?"
                params.append(asset)
            rows = conn.execute(sql + " ORDER BY id ASC", params).fetchall()
            return [dict(row) for row in rows]
        finally:
            conn.close()

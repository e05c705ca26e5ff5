"""Trade events — discrete, timestamped records emitted by the engine.

Components receive an ``EventSink`` at construction and call
``emit(event)``; where the event ends up (log, SQLite, status API) is
decided by whoever wires the sinks together.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Protocol, runtime_checkable

logger = logging.getLogger("trendbot.events")


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class TradeEvent:
    """One observable engine event.

    ``kind`` is one of: ``signal``, ``entry_skipped``, ``entry_pending``,
    ``entry_failed``, ``entry_timeout``, ``entry_cancelled``, ``cycle_open``, ``tp_hit``,
    ``sl_hit``, ``sl_suppressed``, ``settled``, ``period_summary``,
    ``rollover``, ``tick``.
    """

    kind: str
    asset: Optional[str]
    fields: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=_utc_now)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "asset": self.asset,
            "timestamp": self.timestamp,
            **self.fields,
        }


@runtime_checkable
class EventSink(Protocol):
    """Anything that accepts trade events."""

    def emit(self, event: TradeEvent) -> None: ...


# ── Sinks ────────────────────────────────────────────────────────────────


class LoggingEventSink:
    """Renders each event as a single log line."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def emit(self, event: TradeEvent) -> None:
        details = " | ".join(f"{k}={v}" for k, v in event.fields.items())
        level = logging.DEBUG if event.kind == "tick" else logging.INFO
        self._log.log(
            level, "%s | %s | %s", event.kind.upper(), event.asset or "-", details
        )


class MultiSink:
    """Fans events out to several sinks.

    A sink that raises is logged and skipped; the remaining sinks still
    receive the event.
    """

    def __init__(self, *sinks: EventSink) -> None:
        self._sinks = list(sinks)

    def add(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    def emit(self, event: TradeEvent) -> None:
        for sink in self._sinks:
            try:
                sink.emit(event)
            except Exception:
                logger.exception(
                    "Event sink %s failed on %s event", type(sink).__name__, event.kind
                )


class RecordingSink:
    """Keeps every event in memory (dry runs and tests)."""

    def __init__(self) -> None:
        self.events: list[TradeEvent] = []

    def emit(self, event: TradeEvent) -> None:
        self.events.append(event)

    def of_kind(self, kind: str) -> list[TradeEvent]:
        return [e for e in self.events if e.kind == kind]

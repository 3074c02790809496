"""Pipeline — JSONL in and out, and event-time replay.

Replay drives the evaluation path deterministically: after each ingested
event, every cadence boundary the event-time high-water-mark has passed
is evaluated in order.  The same input therefore always yields the same
ticks, alerts and graph, however fast it is replayed.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from coordwatch.analyzer.engine import CoordinationEngine, IngestResult, TickResult
from coordwatch.contracts.alert import AlertTransition
from coordwatch.contracts.errors import MalformedEvent, OutOfOrderEvent
from coordwatch.contracts.event import CanonicalEvent
from coordwatch.normalizer.parser import normalize_event

log = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Loaders
# ═══════════════════════════════════════════════════════════════════════════

def iter_events_jsonl(path: str | Path) -> Iterator[dict[str, Any]]:
    """Yield one record per JSONL line; unreadable lines are skipped."""
    with open(path, encoding="utf-8") as fh:
        for line_no, line in enumerate(fh, 1):
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError as exc:
                log.warning("Skipping JSONL line %d: %s", line_no, exc)
                continue
            if not isinstance(obj, dict):
                log.warning("Skipping JSONL line %d: not an object", line_no)
                continue
            yield obj


def load_events_jsonl(path: str | Path) -> list[dict[str, Any]]:
    events = list(iter_events_jsonl(path))
    log.info("Loaded %d records from JSONL: %s", len(events), path)
    return events


# ═══════════════════════════════════════════════════════════════════════════
#  Replay
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class ReplayReport:
    results: list[IngestResult] = field(default_factory=list)
    ticks: list[TickResult] = field(default_factory=list)

    @property
    def accepted(self) -> int:
        return sum(1 for r in self.results if r.accepted)

    @property
    def rejected(self) -> int:
        return sum(1 for r in self.results if not r.accepted)


def replay(
    records: Iterable[Any],
    engine: CoordinationEngine,
    flush: bool = True,
) -> ReplayReport:
    """Ingest *records* in order and run ticks at every cadence boundary.

    With *flush* a final tick runs at the next boundary after the last
    event so trailing activity is evaluated too.
    """
    cadence = engine.config.evaluation.cadence_sec
    report = ReplayReport()
    next_tick: float | None = None

    for raw in records:
        # boundaries strictly before this event are evaluated before it moves
        # the window forward, so they see the window as of their own time
        ts = _event_time(raw, engine)
        while next_tick is not None and ts is not None and next_tick < ts:
            report.ticks.append(engine.evaluate(next_tick))
            next_tick += cadence

        res = engine.ingest(raw)
        report.results.append(res)
        hwm = engine.store.window.high_water_mark
        if hwm is None:
            continue
        if next_tick is None:
            next_tick = (math.floor(hwm / cadence) + 1) * cadence
            continue
        while hwm >= next_tick:
            report.ticks.append(engine.evaluate(next_tick))
            next_tick += cadence

    if flush and next_tick is not None:
        report.ticks.append(engine.evaluate(next_tick))

    log.info(
        "Replay done: %d accepted, %d rejected, %d ticks",
        report.accepted, report.rejected, len(report.ticks),
    )
    return report


def _event_time(raw: Any, engine: CoordinationEngine) -> float | None:
    """Event time of *raw* if the engine would accept it, else None."""
    try:
        event = normalize_event(
            raw,
            low_water_mark=engine.store.window.low_water_mark,
            clock_skew_sec=engine.config.normalizer.clock_skew_sec,
        )
    except (MalformedEvent, OutOfOrderEvent):
        return None
    return event.timestamp


def replay_file(path: str | Path, engine: CoordinationEngine) -> ReplayReport:
    return replay(iter_events_jsonl(path), engine)


# ═══════════════════════════════════════════════════════════════════════════
#  Output writers
# ═══════════════════════════════════════════════════════════════════════════

def write_events_jsonl(events: Iterable[CanonicalEvent], path: str | Path) -> int:
    """Write canonical events, one compact JSON object per line."""
    n = 0
    with open(path, "w", encoding="utf-8", newline="") as fh:
        for ev in events:
            fh.write(ev.to_json() + "\n")
            n += 1
    log.info("Wrote %d events → %s", n, path)
    return n


class JsonlAlertSink:
    """Alert sink appending every transition to a JSONL file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.written = 0

    def __call__(self, transition: AlertTransition) -> None:
        with open(self.path, "a", encoding="utf-8", newline="") as fh:
            fh.write(json.dumps(transition.to_dict(), ensure_ascii=False) + "\n")
        self.written += 1

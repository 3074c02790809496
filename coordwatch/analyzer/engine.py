"""CoordinationEngine — ingestion path, evaluation path and read-only queries.

Ingestion (``ingest``) is sequential: normalize, then apply to the graph
store.  Per-event failures never raise; they come back as an
``IngestResult`` and are counted.

Evaluation (``evaluate``) takes a snapshot, runs the scorer on it, prepares
the next alert set and commits everything in one step at the end.  A tick
cancelled before commit leaves no trace.  Only one tick runs at a time.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from coordwatch.analyzer.alert_machine import AlertStateMachine
from coordwatch.analyzer.metrics import EngineCounters
from coordwatch.analyzer.scorer import Scorer
from coordwatch.contracts.alert import Alert, AlertTransition, Candidate
from coordwatch.contracts.enums import AlertState
from coordwatch.contracts.errors import (
    ConflictingContent,
    DanglingReference,
    DuplicateContent,
    EvaluationCancelled,
    MalformedEvent,
    OutOfOrderEvent,
    SnapshotUnavailable,
)
from coordwatch.contracts.mutations import Mutation
from coordwatch.graph.snapshot import GraphSnapshot
from coordwatch.graph.store import EvictionNotice, GraphStore
from coordwatch.normalizer.parser import normalize_event
from coordwatch.shared.settings import EngineConfig
from coordwatch.shared.timeutil import to_iso

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class IngestResult:
    """Per-event side-channel result of ``ingest``."""

    event_id: str | None
    accepted: bool
    timestamp: float | None = None
    duplicate: bool = False
    parked: bool = False
    reason: str | None = None   # exception class name when rejected
    detail: str = ""


@dataclass
class TickResult:
    as_of: float
    candidates: list[Candidate] = field(default_factory=list)
    transitions: list[AlertTransition] = field(default_factory=list)
    timed_out: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: bool = False
    cancelled: bool = False


class CoordinationEngine:
    """Facade tying normalizer, graph store, scorer and alert machine together."""

    def __init__(
        self,
        config: EngineConfig | None = None,
        mutation_sink: Callable[[Mutation], None] | None = None,
        alert_sink: Callable[[AlertTransition], None] | None = None,
        scorer: Scorer | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.config.validate()
        self.store = GraphStore(self.config, mutation_sink=mutation_sink)
        self.scorer = scorer or Scorer(self.config)
        self.alert_machine = AlertStateMachine(self.config.alerts)
        self.alert_sink = alert_sink
        self._counters = EngineCounters()
        self._eval_lock = threading.Lock()

    # ═══════════════════════════════════════════════════════════════════
    #  Ingestion path
    # ═══════════════════════════════════════════════════════════════════

    def ingest(self, raw: Any) -> IngestResult:
        """Normalize and apply one raw record. Never raises per-event errors."""
        raw_id = raw.get("id") if isinstance(raw, dict) else None
        event_id = str(raw_id) if raw_id is not None else None
        try:
            event = normalize_event(
                raw,
                low_water_mark=self.store.window.low_water_mark,
                clock_skew_sec=self.config.normalizer.clock_skew_sec,
            )
        except (MalformedEvent, OutOfOrderEvent) as exc:
            return self._rejected(event_id, exc)

        try:
            applied = self.store.apply_event(event)
        except DuplicateContent:
            self._counters.bump("duplicates")
            log.debug("Duplicate event %s ignored", event.id)
            return IngestResult(event.id, True, event.timestamp, duplicate=True)
        except (ConflictingContent, DanglingReference) as exc:
            return self._rejected(event.id, exc)

        self._counters.bump("events_accepted")
        return IngestResult(event.id, True, event.timestamp, parked=not applied)

    def ingest_many(self, records: Iterable[Any]) -> list[IngestResult]:
        return [self.ingest(r) for r in records]

    def _rejected(self, event_id: str | None, exc: Exception) -> IngestResult:
        reason = type(exc).__name__
        self._counters.reject(reason)
        log.debug("Rejected event %s: %s (%s)", event_id, reason, exc)
        return IngestResult(event_id, False, reason=reason, detail=str(exc))

    # ═══════════════════════════════════════════════════════════════════
    #  Evaluation path
    # ═══════════════════════════════════════════════════════════════════

    def evaluate(
        self,
        as_of: float | None = None,
        cancel: threading.Event | None = None,
    ) -> TickResult:
        """Run one evaluation tick at event time *as_of*.

        Defaults to the newest event time seen. Returns a skipped result
        when there is nothing to evaluate or no snapshot is available.
        """
        with self._eval_lock:
            if as_of is None:
                as_of = self.store.window.high_water_mark
                if as_of is None:
                    return TickResult(as_of=0.0, skipped=True)
            tick = TickResult(as_of=as_of)

            try:
                snapshot = self.store.snapshot(as_of, timeout=self.config.evaluation.snapshot_timeout_sec)
            except SnapshotUnavailable as exc:
                self._counters.bump("snapshot_unavailable")
                log.warning("Tick at %s skipped: %s", to_iso(as_of), exc)
                tick.skipped = True
                return tick

            try:
                scored = self.scorer.score(snapshot, cancel)
                batch = self.alert_machine.prepare(scored.candidates, as_of)
                if cancel is not None and cancel.is_set():
                    raise EvaluationCancelled(f"tick at {as_of:.0f} cancelled before commit")
            except EvaluationCancelled as exc:
                self._counters.bump("ticks_cancelled")
                log.info("%s — discarded", exc)
                tick.cancelled = True
                return tick

            for kind in scored.timed_out:
                self._counters.bump_detector("detector_timeouts", kind.value)
            for kind in scored.failed:
                self._counters.bump_detector("detector_failures", kind.value)

            # ── commit ──
            self.alert_machine.commit(batch)
            self.store.reinforce(scored.candidates, as_of)
            self.store.mark_suspected(acc for a in batch.promoted for acc in a.subject)
            self.store.expire_parked()
            self._counters.bump("ticks")

            tick.candidates = scored.candidates
            tick.transitions = list(batch.transitions)
            tick.timed_out = [k.value for k in scored.timed_out]
            tick.failed = [k.value for k in scored.failed]

        self._publish(tick.transitions)
        log.info(
            "Tick at %s: %d candidates, %d transitions",
            to_iso(as_of), len(tick.candidates), len(tick.transitions),
        )
        return tick

    def _publish(self, transitions: list[AlertTransition]) -> None:
        if self.alert_sink is None:
            return
        for t in transitions:
            self.alert_sink(t)

    # ═══════════════════════════════════════════════════════════════════
    #  Read-only queries
    # ═══════════════════════════════════════════════════════════════════

    def snapshot(self, as_of: float | None = None) -> GraphSnapshot:
        """Current graph snapshot (defaults to the newest event time)."""
        if as_of is None:
            as_of = self.store.window.high_water_mark or 0.0
        return self.store.snapshot(as_of, timeout=self.config.evaluation.snapshot_timeout_sec)

    def alerts(self, state: AlertState | None = None) -> list[Alert]:
        """Last committed alert set."""
        return self.alert_machine.alerts(state)

    def counters(self) -> dict[str, Any]:
        window = self.store.window
        self._counters.sync_store(window.dropped, window.expired, self.store.orphans_expired)
        return self._counters.to_dict()

    def evictable(self, as_of: float | None = None) -> EvictionNotice:
        if as_of is None:
            as_of = self.store.window.high_water_mark or 0.0
        return self.store.evictable(as_of)

    def close(self) -> None:
        self.scorer.close()

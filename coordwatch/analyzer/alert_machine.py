"""Alert State Machine — promotes detector scores to alerts.

States and transitions (per subject + kind, at most one live alert)
───────────────────────────────────────────────────────────────────
  None     → Pending   score >= threshold
  Pending  → Active    score stayed >= threshold for ``confirm_ticks`` ticks
  Pending  → None      score dropped before confirmation
  Active   → Resolved  score < threshold × hysteresis for ``cooldown_ticks`` ticks
  Resolved → None      ``cooldown_ticks`` more ticks without re-crossing
  Resolved → Pending   re-crossing opens a *new* alert (new id), never Active

A tick is computed on copies (``prepare``) and becomes visible in one
step (``commit``); readers always see the last committed alert set.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass, replace

from coordwatch.contracts.alert import Alert, AlertTransition, Candidate, subject_key
from coordwatch.contracts.enums import AlertState, DetectorKind
from coordwatch.shared.settings import AlertSettings

log = logging.getLogger(__name__)

AlertKey = tuple[str, str]  # (subject id, detector kind value)


@dataclass(frozen=True, slots=True)
class AlertBatch:
    """Result of one prepared tick, not yet visible to readers."""

    at: float
    alerts: dict[AlertKey, Alert]
    transitions: tuple[AlertTransition, ...]
    next_id: int

    @property
    def promoted(self) -> list[Alert]:
        """Alerts that became Active in this batch."""
        ids = {t.alert_id for t in self.transitions if t.new_state is AlertState.ACTIVE}
        return [a for a in self.alerts.values() if a.alert_id in ids]


class AlertStateMachine:
    """Single-writer alert store with hysteresis and deduplication."""

    def __init__(self, settings: AlertSettings) -> None:
        self.settings = settings
        self._alerts: dict[AlertKey, Alert] = {}
        self._next_id = 1
        self._commit_lock = threading.Lock()

    # ── read side ────────────────────────────────────────────────────────

    def alerts(self, state: AlertState | None = None) -> list[Alert]:
        """Copies of the committed alerts, ordered by subject id then kind."""
        current = self._alerts
        out = [replace(a) for _, a in sorted(current.items())]
        if state is not None:
            out = [a for a in out if a.state is state]
        return out

    def get(self, subject: tuple[str, ...], kind: DetectorKind) -> Alert | None:
        alert = self._alerts.get((subject_key(subject), kind.value))
        return replace(alert) if alert is not None else None

    # ── write side ───────────────────────────────────────────────────────

    def prepare(self, candidates: Iterable[Candidate], at: float) -> AlertBatch:
        """Compute the next alert set from this tick's candidates.

        Subjects without a candidate this tick score 0.0.
        """
        scores: dict[AlertKey, tuple[tuple[str, ...], DetectorKind, float]] = {}
        for c in candidates:
            key = (c.subject_id, c.kind.value)
            prev = scores.get(key)
            if prev is None or c.score > prev[2]:
                scores[key] = (c.subject, c.kind, c.score)

        current = {k: replace(a) for k, a in self._alerts.items()}
        next_id = self._next_id
        transitions: list[AlertTransition] = []

        for key in sorted(set(current) | set(scores)):
            alert = current.get(key)
            if alert is not None:
                subject, kind = alert.subject, alert.kind
            else:
                subject, kind, _ = scores[key]
            score = scores[key][2] if key in scores else 0.0
            threshold = self.settings.threshold(kind)

            if alert is None:
                if score >= threshold:
                    alert, next_id = self._open(subject, kind, score, at, next_id, None, transitions)
                    current[key] = alert
                continue

            if alert.state is AlertState.PENDING:
                if score >= threshold:
                    alert.above_ticks += 1
                    self._touch(alert, score, at)
                    self._maybe_confirm(alert, at, transitions)
                else:
                    self._close(alert, score, at, transitions)
                    del current[key]

            elif alert.state is AlertState.ACTIVE:
                self._touch(alert, score, at)
                if score < threshold * self.settings.hysteresis:
                    alert.below_ticks += 1
                    if alert.below_ticks >= self.settings.cooldown_ticks:
                        alert.below_ticks = 0
                        alert.above_ticks = 0
                        self._move(alert, AlertState.RESOLVED, at, transitions)
                else:
                    alert.below_ticks = 0

            else:  # RESOLVED
                if score >= threshold:
                    new, next_id = self._open(
                        subject, kind, score, at, next_id, AlertState.RESOLVED, transitions
                    )
                    current[key] = new
                else:
                    self._touch(alert, score, at)
                    alert.below_ticks += 1
                    if alert.below_ticks >= self.settings.cooldown_ticks:
                        self._close(alert, score, at, transitions)
                        del current[key]

        return AlertBatch(at=at, alerts=current, transitions=tuple(transitions), next_id=next_id)

    def commit(self, batch: AlertBatch) -> None:
        """Publish a prepared batch atomically."""
        with self._commit_lock:
            self._alerts = batch.alerts
            self._next_id = batch.next_id
        if batch.transitions:
            log.info(
                "Alerts committed at %.0f: %d transitions, %d live",
                batch.at, len(batch.transitions), len(batch.alerts),
            )

    def observe(self, candidates: Iterable[Candidate], at: float) -> list[AlertTransition]:
        """``prepare`` + ``commit`` in one call."""
        batch = self.prepare(candidates, at)
        self.commit(batch)
        return list(batch.transitions)

    # ── helpers ──────────────────────────────────────────────────────────

    def _open(
        self,
        subject: tuple[str, ...],
        kind: DetectorKind,
        score: float,
        at: float,
        next_id: int,
        old_state: AlertState | None,
        transitions: list[AlertTransition],
    ) -> tuple[Alert, int]:
        alert = Alert(
            alert_id=f"ALR-{next_id:04d}",
            subject=subject,
            kind=kind,
            score=score,
            first_triggered=at,
            last_updated=at,
            state=AlertState.PENDING,
            above_ticks=1,
        )
        transitions.append(self._transition(alert, old_state, AlertState.PENDING, at))
        self._maybe_confirm(alert, at, transitions)
        return alert, next_id + 1

    def _maybe_confirm(self, alert: Alert, at: float, transitions: list[AlertTransition]) -> None:
        if alert.above_ticks >= self.settings.confirm_ticks:
            self._move(alert, AlertState.ACTIVE, at, transitions)

    def _move(
        self,
        alert: Alert,
        state: AlertState,
        at: float,
        transitions: list[AlertTransition],
    ) -> None:
        transitions.append(self._transition(alert, alert.state, state, at))
        alert.state = state

    def _close(self, alert: Alert, score: float, at: float, transitions: list[AlertTransition]) -> None:
        self._touch(alert, score, at)
        transitions.append(self._transition(alert, alert.state, None, at))

    @staticmethod
    def _touch(alert: Alert, score: float, at: float) -> None:
        alert.score = score
        alert.last_updated = at

    @staticmethod
    def _transition(
        alert: Alert,
        old: AlertState | None,
        new: AlertState | None,
        at: float,
    ) -> AlertTransition:
        return AlertTransition(
            alert_id=alert.alert_id,
            subject=alert.subject,
            kind=alert.kind,
            old_state=old,
            new_state=new,
            score=alert.score,
            timestamp=at,
        )

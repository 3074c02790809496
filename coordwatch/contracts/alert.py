"""Detector candidates, alerts and alert transitions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from coordwatch.contracts.enums import AlertState, DetectorKind


def subject_key(subject: tuple[str, ...]) -> str:
    """Stable string id of a subject (single account or account pair)."""
    return "|".join(subject)


@dataclass(frozen=True, slots=True)
class Candidate:
    """One (subject, score, kind) output of a detector."""

    subject: tuple[str, ...]  # one account, or a sorted pair
    score: float              # 0.0 — 1.0
    kind: DetectorKind
    evidence: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def subject_id(self) -> str:
        return subject_key(self.subject)


@dataclass(slots=True)
class Alert:
    """Alert tracked by the state machine; deduplicated by subject + kind."""

    alert_id: str  # e.g. "ALR-0001"
    subject: tuple[str, ...]
    kind: DetectorKind
    score: float
    first_triggered: float
    last_updated: float
    state: AlertState
    above_ticks: int = 0  # consecutive ticks at or above threshold
    below_ticks: int = 0  # consecutive ticks under the hysteresis level

    @property
    def key(self) -> tuple[str, str]:
        return (subject_key(self.subject), self.kind.value)


@dataclass(frozen=True, slots=True)
class AlertTransition:
    """State change emitted to the alert sink. ``None`` means no alert."""

    alert_id: str
    subject: tuple[str, ...]
    kind: DetectorKind
    old_state: AlertState | None
    new_state: AlertState | None
    score: float
    timestamp: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "subject": list(self.subject),
            "kind": self.kind.value,
            "old_state": self.old_state.value if self.old_state else None,
            "new_state": self.new_state.value if self.new_state else None,
            "score": self.score,
            "timestamp": self.timestamp,
        }

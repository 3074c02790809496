"""Engine counters — rejection and health figures for observability.

Counters
────────
  events_accepted        events applied (or parked) by the store
  duplicates             byte-identical re-deliveries (idempotent no-ops)
  rejected               per reason: MalformedEvent, OutOfOrderEvent,
                         ConflictingContent, DanglingReference
  window_dropped         window entries dropped for capacity
  window_expired         window entries purged by event-time expiry
  orphans_expired        parked reposts whose original never arrived
  ticks                  evaluation ticks committed
  ticks_cancelled        ticks discarded before commit
  snapshot_unavailable   ticks skipped because no snapshot could be taken
  detector_timeouts      per detector kind
  detector_failures      per detector kind
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any


@dataclass
class EngineCounters:
    events_accepted: int = 0
    duplicates: int = 0
    rejected: dict[str, int] = field(default_factory=dict)
    window_dropped: int = 0
    window_expired: int = 0
    orphans_expired: int = 0
    ticks: int = 0
    ticks_cancelled: int = 0
    snapshot_unavailable: int = 0
    detector_timeouts: dict[str, int] = field(default_factory=dict)
    detector_failures: dict[str, int] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def rejected_total(self) -> int:
        return sum(self.rejected.values())

    def reject(self, reason: str) -> None:
        with self._lock:
            self.rejected[reason] = self.rejected.get(reason, 0) + 1

    def bump(self, name: str, by: int = 1) -> None:
        with self._lock:
            setattr(self, name, getattr(self, name) + by)

    def bump_detector(self, table: str, kind: str) -> None:
        with self._lock:
            counts: dict[str, int] = getattr(self, table)
            counts[kind] = counts.get(kind, 0) + 1

    def sync_store(self, window_dropped: int, window_expired: int, orphans_expired: int) -> None:
        """Copy figures owned by the graph store."""
        with self._lock:
            self.window_dropped = window_dropped
            self.window_expired = window_expired
            self.orphans_expired = orphans_expired

    def to_dict(self) -> dict[str, Any]:
        """Plain copy, safe to hand to external readers."""
        with self._lock:
            return {
                "events_accepted": self.events_accepted,
                "duplicates": self.duplicates,
                "rejected": dict(sorted(self.rejected.items())),
                "rejected_total": self.rejected_total,
                "window_dropped": self.window_dropped,
                "window_expired": self.window_expired,
                "orphans_expired": self.orphans_expired,
                "ticks": self.ticks,
                "ticks_cancelled": self.ticks_cancelled,
                "snapshot_unavailable": self.snapshot_unavailable,
                "detector_timeouts": dict(sorted(self.detector_timeouts.items())),
                "detector_failures": dict(sorted(self.detector_failures.items())),
            }

"""Repost Window — bounded, time-ordered buffer of recent reposts.

Entries expire by *event time*: an entry is expired once it is older than
``expiry_sec`` relative to the newest timestamp seen (the high-water-mark),
so replaying a stream yields the same window no matter how long the
replay takes.  When more than ``max_entries`` are retained the oldest are
dropped first and counted in ``dropped``.
"""

from __future__ import annotations

import bisect
import logging
from collections.abc import Iterator

from coordwatch.contracts.graph import WindowEntry

log = logging.getLogger(__name__)


def _entry_ts(entry: WindowEntry) -> float:
    return entry.timestamp


class RepostWindow:
    """Sliding event-time window keyed by original content id."""

    def __init__(self, expiry_sec: float, max_entries: int) -> None:
        self.expiry_sec = expiry_sec
        self.max_entries = max_entries
        self.high_water_mark: float | None = None
        self.dropped = 0
        self.expired = 0
        self._entries: list[WindowEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[WindowEntry]:
        return iter(self._entries)

    @property
    def low_water_mark(self) -> float | None:
        """Oldest timestamp still retained by the expiry policy."""
        if self.high_water_mark is None:
            return None
        return self.high_water_mark - self.expiry_sec

    def advance(self, ts: float) -> None:
        """Move the high-water-mark forward and purge expired entries."""
        if self.high_water_mark is None or ts > self.high_water_mark:
            self.high_water_mark = ts
            self._purge()

    def add(self, entry: WindowEntry) -> bool:
        """Insert *entry* in time order. Returns False if already expired."""
        self.advance(entry.timestamp)
        lwm = self.low_water_mark
        if lwm is not None and entry.timestamp < lwm:
            self.expired += 1
            return False

        # insort_right keeps arrival order among equal timestamps
        bisect.insort_right(self._entries, entry, key=_entry_ts)

        excess = len(self._entries) - self.max_entries
        if excess > 0:
            del self._entries[:excess]
            self.dropped += excess
            log.warning(
                "Window over capacity (%d): dropped %d oldest entries (total dropped=%d)",
                self.max_entries, excess, self.dropped,
            )
        return True

    def entries(self, since: float, until: float) -> tuple[WindowEntry, ...]:
        """Entries with ``since <= timestamp <= until``, oldest first."""
        lo = bisect.bisect_left(self._entries, since, key=_entry_ts)
        hi = bisect.bisect_right(self._entries, until, key=_entry_ts)
        return tuple(self._entries[lo:hi])

    def discard_content(self, content_ids: set[str]) -> int:
        """Remove entries that reference archived content."""
        before = len(self._entries)
        self._entries = [
            e for e in self._entries
            if e.content_id not in content_ids and e.original_id not in content_ids
        ]
        return before - len(self._entries)

    def _purge(self) -> None:
        lwm = self.low_water_mark
        if lwm is None or not self._entries:
            return
        cut = bisect.bisect_left(self._entries, lwm, key=_entry_ts)
        if cut:
            del self._entries[:cut]
            self.expired += cut

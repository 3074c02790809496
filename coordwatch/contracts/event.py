"""Canonical event — the normalizer's output and the store's only input."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass

from coordwatch.contracts.enums import EventKind


@dataclass(frozen=True, slots=True)
class CanonicalEvent:
    """One validated event record."""

    kind: EventKind
    id: str                        # content id carried by the event
    author_id: str
    timestamp: float               # epoch seconds, event time
    target_id: str | None = None   # original content (reposts only)
    mentions: tuple[str, ...] = ()
    topics: tuple[str, ...] = ()

    def to_json(self) -> str:
        """Return compact JSON string."""
        data = asdict(self)
        data["kind"] = self.kind.value
        return json.dumps(data, ensure_ascii=False, separators=(",", ":"))

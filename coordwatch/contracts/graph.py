"""Graph entities: Account, Content, Edge and Window entries.

All entities are frozen; the store replaces them on mutation so that a
snapshot can share references with the live store without copying.
Relationships are plain id references into the store's arenas.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from coordwatch.contracts.enums import EdgeKind


@dataclass(frozen=True, slots=True)
class Account:
    """An account handle and its running statistics."""

    id: str
    created_at: float
    last_active: float
    post_count: int = 0
    activity_rate: float = 0.0        # decayed event count, see store
    activity_updated_at: float = 0.0
    # (detector kind value, score, reinforced_at), sorted by kind
    detector_scores: tuple[tuple[str, float, float], ...] = ()
    suspected_troll: bool = False


@dataclass(frozen=True, slots=True)
class Content:
    """A post or repost. Immutable apart from ``repost_count``."""

    id: str
    author_id: str
    timestamp: float
    kind: str
    original_id: str | None = None
    mentions: tuple[str, ...] = ()
    topics: tuple[str, ...] = ()
    repost_count: int = 0

    def identity(self) -> tuple:
        """Fields that define the content; ``repost_count`` excluded."""
        return (
            self.id,
            self.author_id,
            self.timestamp,
            self.kind,
            self.original_id,
            self.mentions,
            self.topics,
        )


@dataclass(frozen=True, slots=True)
class Edge:
    """Directed relationship between two graph entities.

    For COORDINATES_WITH ``src``/``dst`` are the canonical (sorted) pair
    and ``score``/``updated_at`` carry the undecayed coordination score.
    """

    kind: EdgeKind
    src: str
    dst: str
    timestamp: float
    score: float = 0.0
    updated_at: float = 0.0
    attrs: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.kind.value, self.src, self.dst)


@dataclass(frozen=True, slots=True)
class WindowEntry:
    """One repost inside the repost Window."""

    timestamp: float
    original_id: str
    account_id: str
    content_id: str

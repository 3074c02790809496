"""GraphSnapshot — immutable point-in-time view handed to readers.

The snapshot shares the store's frozen entity objects (content whose
repost count moved past the cutoff is a copy) but owns its own read-only
containers, so readers never see later mutations.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import networkx as nx

from coordwatch.contracts.enums import EdgeKind
from coordwatch.contracts.graph import Account, Content, Edge, WindowEntry
from coordwatch.shared.timeutil import decay


@dataclass(frozen=True, slots=True)
class GraphSnapshot:
    """Read-only graph state with every entity timestamped ``<= cutoff``."""

    as_of: float
    cutoff: float                 # as_of minus the finalization delay
    accounts: Mapping[str, Account]
    contents: Mapping[str, Content]
    topics: frozenset[str]
    edges: tuple[Edge, ...]       # append-only edge kinds
    coordination: Mapping[tuple[str, str], Edge]
    window: tuple[WindowEntry, ...]
    coordination_half_life_sec: float
    activity_half_life_sec: float

    # ── queries ──────────────────────────────────────────────────────────

    def authored_since(self, since: float) -> dict[str, list[Content]]:
        """Content per author with ``since < timestamp <= cutoff``."""
        out: dict[str, list[Content]] = defaultdict(list)
        for c in self.contents.values():
            if c.timestamp > since:
                out[c.author_id].append(c)
        return dict(out)

    def edges_of(self, kind: EdgeKind) -> list[Edge]:
        if kind is EdgeKind.COORDINATES_WITH:
            return [self.coordination[k] for k in sorted(self.coordination)]
        return [e for e in self.edges if e.kind is kind]

    def account_score(self, account_id: str) -> float:
        """Aggregate coordination score, decayed to ``as_of``.

        Maximum over the account's per-detector scores, each decayed by
        the coordination half-life since its last reinforcement.
        """
        acc = self.accounts.get(account_id)
        if acc is None or not acc.detector_scores:
            return 0.0
        return max(
            decay(score, self.as_of - at, self.coordination_half_life_sec)
            for _, score, at in acc.detector_scores
        )

    def activity_rate(self, account_id: str) -> float:
        acc = self.accounts.get(account_id)
        if acc is None:
            return 0.0
        return decay(acc.activity_rate, self.as_of - acc.activity_updated_at,
                     self.activity_half_life_sec)

    def coordination_score(self, a: str, b: str) -> float:
        edge = self.coordination.get((a, b) if a <= b else (b, a))
        if edge is None:
            return 0.0
        return decay(edge.score, self.as_of - edge.updated_at, self.coordination_half_life_sec)

    # ── export ───────────────────────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        """Plain, deterministic structure (sorted keys) for comparison and export."""
        return {
            "as_of": self.as_of,
            "cutoff": self.cutoff,
            "accounts": {
                k: {
                    "created_at": a.created_at,
                    "last_active": a.last_active,
                    "post_count": a.post_count,
                    "coordination_score": round(self.account_score(k), 9),
                    "suspected_troll": a.suspected_troll,
                }
                for k, a in sorted(self.accounts.items())
            },
            "contents": {
                k: {
                    "author_id": c.author_id,
                    "timestamp": c.timestamp,
                    "kind": c.kind,
                    "original_id": c.original_id,
                    "repost_count": c.repost_count,
                }
                for k, c in sorted(self.contents.items())
            },
            "edges": sorted(e.key for e in self.edges),
            "coordination": {
                f"{a}|{b}": round(self.coordination_score(a, b), 9)
                for a, b in sorted(self.coordination)
            },
            "window": [(w.timestamp, w.original_id, w.account_id) for w in self.window],
        }

    def to_networkx(self) -> nx.MultiDiGraph:
        """Export as a MultiDiGraph for external graph algorithms.

        Nodes are ``"account:<id>"``, ``"content:<id>"`` and
        ``"topic:<token>"`` with a ``type`` attribute; the edge key is the
        edge kind value.
        """
        g = nx.MultiDiGraph(as_of=self.as_of)
        for acc_id in sorted(self.accounts):
            g.add_node(f"account:{acc_id}", type="account",
                       coordination_score=self.account_score(acc_id))
        for cid in sorted(self.contents):
            c = self.contents[cid]
            g.add_node(f"content:{cid}", type="content", timestamp=c.timestamp, kind=c.kind)
        for topic in sorted(self.topics):
            g.add_node(f"topic:{topic}", type="topic")
        for e in self.edges:
            src_type, dst_type = _ENDPOINTS[e.kind]
            g.add_edge(f"{src_type}:{e.src}", f"{dst_type}:{e.dst}",
                       key=e.kind.value, timestamp=e.timestamp)
        for (a, b), e in sorted(self.coordination.items()):
            score = self.coordination_score(a, b)
            g.add_edge(f"account:{a}", f"account:{b}", key=e.kind.value, score=score)
            g.add_edge(f"account:{b}", f"account:{a}", key=e.kind.value, score=score)
        return g


# (source arena, destination arena) per edge kind
_ENDPOINTS: dict[EdgeKind, tuple[str, str]] = {
    EdgeKind.POSTED: ("account", "content"),
    EdgeKind.REPOSTS: ("content", "content"),
    EdgeKind.MENTIONS: ("content", "account"),
    EdgeKind.USES_TOPIC: ("content", "topic"),
    EdgeKind.COORDINATES_WITH: ("account", "account"),
}

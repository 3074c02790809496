"""Graph State Store — exclusive owner of Account, Content and Edge entities.

Entities live in arenas keyed by their string ids; edges reference ids,
never objects.  All mutation goes through one lock (the single ingestion
path plus the tick commit), readers get an immutable ``GraphSnapshot``.

Edge endpoints
──────────────
  POSTED            account → content
  REPOSTS           content (repost) → content (original)
  MENTIONS          content → account
  USES_TOPIC        content → topic token
  COORDINATES_WITH  account ↔ account, one edge per sorted pair, upserted

Every structural change is also emitted as an idempotent mutation command
to the optional ``mutation_sink``; ``apply()`` replays such commands and
applying one twice is a no-op.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter, defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Any

from coordwatch.contracts.alert import Candidate
from coordwatch.contracts.enums import DetectorKind, EdgeKind
from coordwatch.contracts.errors import (
    ConflictingContent,
    DanglingReference,
    DuplicateContent,
    SnapshotUnavailable,
)
from coordwatch.contracts.event import CanonicalEvent
from coordwatch.contracts.graph import Account, Content, Edge, WindowEntry
from coordwatch.contracts.mutations import Mutation, RecordContent, RecordEdge, UpsertAccount
from coordwatch.graph.snapshot import GraphSnapshot
from coordwatch.graph.window import RepostWindow
from coordwatch.shared.settings import EngineConfig
from coordwatch.shared.timeutil import decay

log = logging.getLogger(__name__)

_APPEND_ONLY = frozenset({EdgeKind.POSTED, EdgeKind.REPOSTS, EdgeKind.MENTIONS, EdgeKind.USES_TOPIC})


@dataclass(frozen=True, slots=True)
class EvictionNotice:
    """Ids inactive beyond the retention horizon, for an archiving collaborator."""

    as_of: float
    account_ids: tuple[str, ...]
    content_ids: tuple[str, ...]


class GraphStore:
    """In-memory relationship graph with bounded, event-time retention."""

    def __init__(
        self,
        config: EngineConfig,
        mutation_sink: Callable[[Mutation], None] | None = None,
    ) -> None:
        self.config = config
        self.mutation_sink = mutation_sink
        self.window = RepostWindow(config.window.expiry_sec, config.window.max_entries)
        self.orphans_expired = 0

        self._lock = threading.RLock()
        self._accounts: dict[str, Account] = {}
        self._contents: dict[str, Content] = {}
        self._topics: dict[str, float] = {}           # token -> first seen
        self._edges: list[Edge] = []
        self._edge_keys: set[tuple[str, str, str]] = set()
        self._coordination: dict[tuple[str, str], Edge] = {}
        self._parked: dict[str, list[CanonicalEvent]] = defaultdict(list)

    # ── sizes ────────────────────────────────────────────────────────────

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "accounts": len(self._accounts),
                "contents": len(self._contents),
                "edges": len(self._edges) + len(self._coordination),
                "window": len(self.window),
                "parked_reposts": sum(len(v) for v in self._parked.values()),
            }

    # ═══════════════════════════════════════════════════════════════════
    #  Primitive operations
    # ═══════════════════════════════════════════════════════════════════

    def upsert_account(self, account_id: str, timestamp: float) -> str:
        """Create the account on first reference; idempotent."""
        with self._lock:
            if account_id not in self._accounts:
                self._accounts[account_id] = Account(
                    id=account_id,
                    created_at=timestamp,
                    last_active=timestamp,
                    activity_updated_at=timestamp,
                )
                self._emit(UpsertAccount(account_id, timestamp))
            return account_id

    def record_content(self, content: Content) -> str:
        """Record new content and count it as activity of its author.

        Raises:
            DuplicateContent: id present with an identical payload.
            ConflictingContent: id present with a different payload.
            DanglingReference: author or original content is unknown.
        """
        with self._lock:
            existing = self._contents.get(content.id)
            if existing is not None:
                if existing.identity() == content.identity():
                    raise DuplicateContent(content.id)
                raise ConflictingContent(content.id)
            if content.author_id not in self._accounts:
                raise DanglingReference(f"content {content.id!r}: unknown author {content.author_id!r}")
            if content.original_id is not None and content.original_id not in self._contents:
                raise DanglingReference(
                    f"content {content.id!r}: unknown original {content.original_id!r}"
                )

            stored = replace(content, repost_count=0)
            self._contents[content.id] = stored
            for topic in content.topics:
                self._topics.setdefault(topic, content.timestamp)
            self._register_activity(content.author_id, content.timestamp)
            self._emit(RecordContent(stored))
            return content.id

    def record_edge(
        self,
        kind: EdgeKind,
        src: str,
        dst: str,
        timestamp: float,
        attrs: dict[str, Any] | None = None,
    ) -> bool:
        """Append (or, for COORDINATES_WITH, upsert) one edge.

        Returns False when an append-only edge already exists (no-op).
        """
        attrs = attrs or {}
        with self._lock:
            self._check_endpoints(kind, src, dst)

            if kind not in _APPEND_ONLY:
                self._upsert_coordination(src, dst, float(attrs.get("score", 0.0)), timestamp)
                self._emit(RecordEdge(kind, src, dst, timestamp, dict(attrs)))
                return True

            key = (kind.value, src, dst)
            if key in self._edge_keys:
                return False
            self._edge_keys.add(key)
            self._edges.append(Edge(kind=kind, src=src, dst=dst, timestamp=timestamp, attrs=dict(attrs)))

            if kind is EdgeKind.REPOSTS:
                original = self._contents[dst]
                self._contents[dst] = replace(original, repost_count=original.repost_count + 1)
                repost = self._contents[src]
                self.window.add(WindowEntry(timestamp, dst, repost.author_id, src))

            self._emit(RecordEdge(kind, src, dst, timestamp, dict(attrs)))
            return True

    def apply(self, mutation: Mutation) -> None:
        """Apply one mutation command; duplicate application is a no-op."""
        with self._lock:
            if isinstance(mutation, UpsertAccount):
                self.upsert_account(mutation.account_id, mutation.timestamp)
            elif isinstance(mutation, RecordContent):
                try:
                    self.record_content(mutation.content)
                except DuplicateContent:
                    log.debug("Replay: content %s already present", mutation.content.id)
            elif isinstance(mutation, RecordEdge):
                self.record_edge(mutation.kind, mutation.src, mutation.dst,
                                 mutation.timestamp, dict(mutation.attrs))
            else:
                raise TypeError(f"unknown mutation {type(mutation).__name__}")

    # ═══════════════════════════════════════════════════════════════════
    #  Ingestion
    # ═══════════════════════════════════════════════════════════════════

    def apply_event(self, event: CanonicalEvent) -> bool:
        """Apply one canonical event to the graph.

        Returns False when the event is a repost of content not seen yet;
        it is parked and applied once its original arrives.

        Raises:
            DuplicateContent / ConflictingContent: the content id is known.
        """
        with self._lock:
            content = _content_from(event)
            self._check_duplicate(content)
            self.window.advance(event.timestamp)

            if event.target_id is not None and event.target_id not in self._contents:
                self._parked[event.target_id].append(event)
                log.debug("Parked repost %s waiting for original %s", event.id, event.target_id)
                return False

            self._apply_content(event, content)
            self._release_parked(event.id)
            return True

    def expire_parked(self) -> int:
        """Drop parked reposts that fell out of the window; returns the count."""
        with self._lock:
            lwm = self.window.low_water_mark
            if lwm is None:
                return 0
            dropped = 0
            for target in list(self._parked):
                kept = [e for e in self._parked[target] if e.timestamp >= lwm]
                dropped += len(self._parked[target]) - len(kept)
                if kept:
                    self._parked[target] = kept
                else:
                    del self._parked[target]
            if dropped:
                self.orphans_expired += dropped
                log.info("Expired %d orphan reposts whose original never arrived", dropped)
            return dropped

    def _apply_content(self, event: CanonicalEvent, content: Content) -> None:
        ts = event.timestamp
        self.upsert_account(event.author_id, ts)
        for handle in event.mentions:
            self.upsert_account(handle, ts)
        self.record_content(content)
        self.record_edge(EdgeKind.POSTED, event.author_id, event.id, ts)
        if event.target_id is not None:
            self.record_edge(EdgeKind.REPOSTS, event.id, event.target_id, ts)
        for handle in event.mentions:
            self.record_edge(EdgeKind.MENTIONS, event.id, handle, ts)
        for topic in event.topics:
            self.record_edge(EdgeKind.USES_TOPIC, event.id, topic, ts)

    def _release_parked(self, content_id: str) -> None:
        pending = [content_id]
        while pending:
            waiting = self._parked.pop(pending.pop(), [])
            for ev in sorted(waiting, key=lambda e: (e.timestamp, e.id)):
                if ev.id in self._contents:
                    continue
                self._apply_content(ev, _content_from(ev))
                pending.append(ev.id)

    def _check_duplicate(self, content: Content) -> None:
        existing = self._contents.get(content.id)
        if existing is None:
            for waiting in self._parked.values():
                for ev in waiting:
                    if ev.id == content.id:
                        existing = _content_from(ev)
                        break
        if existing is None:
            return
        if existing.identity() == content.identity():
            raise DuplicateContent(content.id)
        raise ConflictingContent(content.id)

    # ═══════════════════════════════════════════════════════════════════
    #  Score commit (evaluation path)
    # ═══════════════════════════════════════════════════════════════════

    def reinforce(self, candidates: Iterable[Candidate], as_of: float) -> None:
        """Write one tick's candidates back into account and edge state."""
        half_life = self.config.graph.coordination_half_life_sec
        per_account: dict[tuple[str, str], float] = {}
        with self._lock:
            for cand in candidates:
                for acc_id in cand.subject:
                    k = (acc_id, cand.kind.value)
                    per_account[k] = max(per_account.get(k, 0.0), cand.score)
                if len(cand.subject) == 2 and cand.kind is not DetectorKind.BOT_RATE:
                    a, b = cand.subject
                    if a in self._accounts and b in self._accounts:
                        self.record_edge(
                            EdgeKind.COORDINATES_WITH, a, b, as_of,
                            {"score": cand.score, "kind": cand.kind.value},
                        )
                if cand.kind is DetectorKind.BOT_RATE:
                    acc = self._accounts.get(cand.subject[0])
                    if acc is not None:
                        self._accounts[acc.id] = replace(
                            acc,
                            activity_rate=float(cand.evidence.get("rate", acc.activity_rate)),
                            activity_updated_at=as_of,
                        )

            for (acc_id, kind), score in sorted(per_account.items()):
                acc = self._accounts.get(acc_id)
                if acc is None:
                    continue
                scores = {k: (s, t) for k, s, t in acc.detector_scores}
                scores[kind] = (score, as_of)
                self._accounts[acc_id] = replace(
                    acc,
                    detector_scores=tuple((k, s, t) for k, (s, t) in sorted(scores.items())),
                )
            log.debug("Reinforced %d account scores (half-life %.0fs)", len(per_account), half_life)

    def mark_suspected(self, account_ids: Iterable[str]) -> None:
        with self._lock:
            for acc_id in account_ids:
                acc = self._accounts.get(acc_id)
                if acc is not None and not acc.suspected_troll:
                    self._accounts[acc_id] = replace(acc, suspected_troll=True)
                    log.info("Account %s flagged as suspected troll", acc_id)

    # ═══════════════════════════════════════════════════════════════════
    #  Snapshot / eviction
    # ═══════════════════════════════════════════════════════════════════

    def snapshot(self, as_of: float, timeout: float | None = None) -> GraphSnapshot:
        """Point-in-time view of entities timestamped ``<= as_of - delay``.

        Raises:
            SnapshotUnavailable: the store lock was not obtained in *timeout*.
        """
        acquired = self._lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            raise SnapshotUnavailable(f"store busy for more than {timeout}s")
        try:
            cfg = self.config
            cutoff = as_of - cfg.graph.finalization_delay_sec
            accounts = {k: a for k, a in self._accounts.items() if a.created_at <= cutoff}
            contents = {k: c for k, c in self._contents.items() if c.timestamp <= cutoff}
            topics = frozenset(t for t, first in self._topics.items() if first <= cutoff)
            edges = tuple(
                e for e in self._edges
                if e.timestamp <= cutoff and self._edge_visible(e, accounts, contents, topics)
            )
            # repost counts as of the cutoff, not the live totals
            visible_reposts = Counter(e.dst for e in edges if e.kind is EdgeKind.REPOSTS)
            for k, c in contents.items():
                if c.repost_count != visible_reposts[k]:
                    contents[k] = replace(c, repost_count=visible_reposts[k])
            coordination = {
                k: e for k, e in self._coordination.items()
                if e.timestamp <= cutoff and k[0] in accounts and k[1] in accounts
            }
            window = tuple(
                w for w in self.window.entries(as_of - cfg.window.expiry_sec, cutoff)
                if w.original_id in contents and w.content_id in contents
            )
        finally:
            self._lock.release()

        return GraphSnapshot(
            as_of=as_of,
            cutoff=cutoff,
            accounts=MappingProxyType(accounts),
            contents=MappingProxyType(contents),
            topics=topics,
            edges=edges,
            coordination=MappingProxyType(coordination),
            window=window,
            coordination_half_life_sec=cfg.graph.coordination_half_life_sec,
            activity_half_life_sec=cfg.graph.activity_half_life_sec,
        )

    def evictable(self, as_of: float) -> EvictionNotice:
        """Ids with no activity for longer than the retention horizon.

        Advisory only: nothing is deleted here.  Content still referenced
        as the original of retained content is never listed.
        """
        horizon = as_of - self.config.graph.retention_sec
        with self._lock:
            accounts = sorted(k for k, a in self._accounts.items() if a.last_active < horizon)
            stale = {k for k, c in self._contents.items() if c.timestamp < horizon}
            referenced = {
                c.original_id for k, c in self._contents.items()
                if c.original_id is not None and k not in stale
            }
            contents = sorted(stale - referenced)
        return EvictionNotice(as_of, tuple(accounts), tuple(contents))

    def archive_content(self, content_ids: Iterable[str]) -> int:
        """Forget archived content together with every edge touching it."""
        with self._lock:
            ids = {c for c in content_ids if c in self._contents}
            blocked = {
                c.original_id for k, c in self._contents.items()
                if c.original_id in ids and k not in ids
            }
            if blocked:
                log.warning("Not archiving %d contents still referenced by reposts", len(blocked))
                ids -= blocked
            if not ids:
                return 0
            for cid in ids:
                del self._contents[cid]
            kept = [e for e in self._edges if e.src not in ids and e.dst not in ids]
            for e in self._edges:
                if e.src in ids or e.dst in ids:
                    self._edge_keys.discard(e.key)
            self._edges = kept
            self.window.discard_content(ids)
            log.info("Archived %d contents", len(ids))
            return len(ids)

    def check_integrity(self) -> list[str]:
        """Return every dangling reference (empty list = consistent)."""
        problems: list[str] = []
        with self._lock:
            for c in self._contents.values():
                if c.author_id not in self._accounts:
                    problems.append(f"content {c.id}: missing author {c.author_id}")
                if c.original_id is not None and c.original_id not in self._contents:
                    problems.append(f"content {c.id}: missing original {c.original_id}")
            for e in self._edges:
                try:
                    self._check_endpoints(e.kind, e.src, e.dst)
                except DanglingReference as exc:
                    problems.append(str(exc))
            for a, b in self._coordination:
                if a not in self._accounts or b not in self._accounts:
                    problems.append(f"COORDINATES_WITH {a}|{b}: missing account")
        return problems

    # ═══════════════════════════════════════════════════════════════════
    #  Internals
    # ═══════════════════════════════════════════════════════════════════

    def _register_activity(self, account_id: str, ts: float) -> None:
        acc = self._accounts[account_id]
        half_life = self.config.graph.activity_half_life_sec
        # only move the decay reference forward; late events add undecayed
        ref = max(acc.activity_updated_at, ts)
        rate = decay(acc.activity_rate, ref - acc.activity_updated_at, half_life) + 1.0
        self._accounts[account_id] = replace(
            acc,
            post_count=acc.post_count + 1,
            activity_rate=rate,
            activity_updated_at=ref,
            last_active=max(acc.last_active, ts),
        )

    def _upsert_coordination(self, a: str, b: str, score: float, ts: float) -> None:
        if a == b:
            raise DanglingReference(f"COORDINATES_WITH needs two accounts, got {a!r} twice")
        pair = (a, b) if a < b else (b, a)
        existing = self._coordination.get(pair)
        if existing is not None:
            current = decay(existing.score, ts - existing.updated_at,
                            self.config.graph.coordination_half_life_sec)
            score = max(current, score)
            first = existing.timestamp
        else:
            first = ts
        self._coordination[pair] = Edge(
            kind=EdgeKind.COORDINATES_WITH,
            src=pair[0],
            dst=pair[1],
            timestamp=first,
            score=min(1.0, max(0.0, score)),
            updated_at=ts,
        )

    def _check_endpoints(self, kind: EdgeKind, src: str, dst: str) -> None:
        accounts, contents = self._accounts, self._contents
        if kind is EdgeKind.POSTED:
            ok = src in accounts and dst in contents
        elif kind is EdgeKind.REPOSTS:
            ok = src in contents and dst in contents
        elif kind is EdgeKind.MENTIONS:
            ok = src in contents and dst in accounts
        elif kind is EdgeKind.USES_TOPIC:
            ok = src in contents and dst in self._topics
        else:
            ok = src in accounts and dst in accounts
        if not ok:
            raise DanglingReference(f"{kind.value} {src} -> {dst}: unknown endpoint")

    @staticmethod
    def _edge_visible(
        edge: Edge,
        accounts: dict[str, Account],
        contents: dict[str, Content],
        topics: frozenset[str],
    ) -> bool:
        if edge.kind is EdgeKind.POSTED:
            return edge.src in accounts and edge.dst in contents
        if edge.kind is EdgeKind.REPOSTS:
            return edge.src in contents and edge.dst in contents
        if edge.kind is EdgeKind.MENTIONS:
            return edge.src in contents and edge.dst in accounts
        return edge.src in contents and edge.dst in topics

    def _emit(self, mutation: Mutation) -> None:
        if self.mutation_sink is not None:
            self.mutation_sink(mutation)


def _content_from(event: CanonicalEvent) -> Content:
    return Content(
        id=event.id,
        author_id=event.author_id,
        timestamp=event.timestamp,
        kind=event.kind.value,
        original_id=event.target_id,
        mentions=event.mentions,
        topics=event.topics,
    )

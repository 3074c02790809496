"""Detectors — windowed coordination scoring: GraphSnapshot → Candidates.

Each detector is independent and read-only over the snapshot, so the
scorer may run them in parallel.  The set is fixed; ``build_detectors``
returns one of each, configured from ``EngineConfig.detectors``.

Detector kinds
──────────────
  coordinated_repost  account pairs reposting the same originals within
                      ``proximity_sec`` of each other, counted across all
                      originals in the horizon; score = count / expected
  bot_rate            accounts with >= ``rate_threshold`` items in the
                      trailing horizon; score = min(1, rate / threshold)
  sock_puppet         account pairs whose topic sets have Jaccard
                      similarity >= ``jaccard_threshold``; score = Jaccard

Candidates are ranked by score (descending), then subject id, so output
is reproducible for identical input.
"""

from __future__ import annotations

import abc
import logging
from collections import Counter, defaultdict
from collections.abc import Iterable, Sequence

from coordwatch.contracts.alert import Candidate
from coordwatch.contracts.enums import DetectorKind
from coordwatch.contracts.graph import WindowEntry
from coordwatch.graph.snapshot import GraphSnapshot
from coordwatch.shared.settings import (
    BotRateSettings,
    CoordinatedRepostSettings,
    EngineConfig,
    SockPuppetSettings,
)
from coordwatch.shared.timeutil import DAY_SEC

log = logging.getLogger(__name__)


def rank(candidates: Iterable[Candidate]) -> list[Candidate]:
    """Sort by score descending; ties broken by subject id, then kind."""
    return sorted(candidates, key=lambda c: (-c.score, c.subject_id, c.kind.value))


def _pair(a: str, b: str) -> tuple[str, str]:
    return (a, b) if a < b else (b, a)


class Detector(abc.ABC):
    """Common contract: ``evaluate(snapshot, window) -> candidates``."""

    kind: DetectorKind

    @abc.abstractmethod
    def evaluate(
        self,
        snapshot: GraphSnapshot,
        window: Sequence[WindowEntry],
    ) -> list[Candidate]:
        """Return ranked candidates for this tick."""


# ═══════════════════════════════════════════════════════════════════════════
#  Coordinated reposts
# ═══════════════════════════════════════════════════════════════════════════


class CoordinatedRepostDetector(Detector):
    kind = DetectorKind.COORDINATED_REPOST

    def __init__(self, settings: CoordinatedRepostSettings) -> None:
        self.settings = settings

    @property
    def expected(self) -> float:
        """Organic co-occurrence baseline scaled to the horizon."""
        s = self.settings
        return s.baseline_per_day * s.horizon_sec / DAY_SEC

    def co_occurrences(
        self,
        window: Sequence[WindowEntry],
        since: float,
    ) -> Counter[tuple[str, str]]:
        """Per-pair count of originals both accounts reposted close together.

        Each account's earliest repost of an original is used and every
        original adds at most one to a pair.
        """
        first_repost: dict[str, dict[str, float]] = defaultdict(dict)
        for entry in window:
            if entry.timestamp < since:
                continue
            seen = first_repost[entry.original_id]
            prev = seen.get(entry.account_id)
            if prev is None or entry.timestamp < prev:
                seen[entry.account_id] = entry.timestamp

        proximity = self.settings.proximity_sec
        counts: Counter[tuple[str, str]] = Counter()
        for original_id in sorted(first_repost):
            reposts = first_repost[original_id]
            if len(reposts) < 2:
                continue
            ordered = sorted(reposts.items(), key=lambda kv: (kv[1], kv[0]))
            for i, (acc_a, ts_a) in enumerate(ordered):
                for acc_b, ts_b in ordered[i + 1:]:
                    if ts_b - ts_a >= proximity:
                        break
                    counts[_pair(acc_a, acc_b)] += 1
        return counts

    def evaluate(self, snapshot: GraphSnapshot, window: Sequence[WindowEntry]) -> list[Candidate]:
        since = snapshot.as_of - self.settings.horizon_sec
        counts = self.co_occurrences(window, since)
        expected = self.expected
        out = [
            Candidate(
                subject=pair,
                score=min(1.0, count / expected),
                kind=self.kind,
                evidence={"count": count, "expected": expected},
            )
            for pair, count in counts.items()
            if count >= self.settings.min_co_occurrence
        ]
        log.debug("coordinated_repost: %d pairs counted, %d candidates", len(counts), len(out))
        return rank(out)


# ═══════════════════════════════════════════════════════════════════════════
#  Posting rate
# ═══════════════════════════════════════════════════════════════════════════


class BotRateDetector(Detector):
    kind = DetectorKind.BOT_RATE

    def __init__(self, settings: BotRateSettings) -> None:
        self.settings = settings

    def evaluate(self, snapshot: GraphSnapshot, window: Sequence[WindowEntry]) -> list[Candidate]:
        threshold = self.settings.rate_threshold
        authored = snapshot.authored_since(snapshot.as_of - self.settings.horizon_sec)
        out: list[Candidate] = []
        for account_id, items in authored.items():
            rate = len(items)
            if rate >= threshold:
                out.append(
                    Candidate(
                        subject=(account_id,),
                        score=min(1.0, rate / threshold),
                        kind=self.kind,
                        evidence={"rate": rate},
                    )
                )
        log.debug("bot_rate: %d active accounts, %d over %.0f", len(authored), len(out), threshold)
        return rank(out)


# ═══════════════════════════════════════════════════════════════════════════
#  Topic similarity
# ═══════════════════════════════════════════════════════════════════════════


def jaccard(a: set[str] | frozenset[str], b: set[str] | frozenset[str]) -> float:
    if not a and not b:
        return 0.0
    return len(a & b) / len(a | b)


class SockPuppetDetector(Detector):
    kind = DetectorKind.SOCK_PUPPET

    def __init__(self, settings: SockPuppetSettings) -> None:
        self.settings = settings

    def topic_sets(self, snapshot: GraphSnapshot) -> dict[str, frozenset[str]]:
        authored = snapshot.authored_since(snapshot.as_of - self.settings.horizon_sec)
        sets: dict[str, frozenset[str]] = {}
        for account_id, items in authored.items():
            topics = frozenset(t for c in items for t in c.topics)
            if len(topics) >= self.settings.min_topics:
                sets[account_id] = topics
        return sets

    def evaluate(self, snapshot: GraphSnapshot, window: Sequence[WindowEntry]) -> list[Candidate]:
        sets = self.topic_sets(snapshot)

        # inverted index: only pairs sharing at least one topic can qualify
        index: dict[str, list[str]] = defaultdict(list)
        for account_id in sorted(sets):
            for topic in sets[account_id]:
                index[topic].append(account_id)

        threshold = self.settings.jaccard_threshold
        out: list[Candidate] = []
        for a in sorted(sets):
            shared: Counter[str] = Counter()
            for topic in sets[a]:
                for b in index[topic]:
                    if b > a:
                        shared[b] += 1
            for b, inter in shared.items():
                score = jaccard(sets[a], sets[b])
                if score >= threshold:
                    out.append(
                        Candidate(
                            subject=(a, b),
                            score=score,
                            kind=self.kind,
                            evidence={"shared": inter},
                        )
                    )
        log.debug("sock_puppet: %d accounts compared, %d candidates", len(sets), len(out))
        return rank(out)


def build_detectors(config: EngineConfig) -> list[Detector]:
    """The fixed detector set, in evaluation order."""
    d = config.detectors
    return [
        CoordinatedRepostDetector(d.coordinated_repost),
        BotRateDetector(d.bot_rate),
        SockPuppetDetector(d.sock_puppet),
    ]

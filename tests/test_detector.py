"""Tests for coordwatch.analyzer.detector — the three coordination detectors."""

from __future__ import annotations

import pytest

from coordwatch.analyzer.detector import (
    BotRateDetector,
    CoordinatedRepostDetector,
    SockPuppetDetector,
    build_detectors,
    jaccard,
    rank,
)
from coordwatch.contracts.enums import DetectorKind
from coordwatch.contracts.graph import WindowEntry
from coordwatch.graph.store import GraphStore
from coordwatch.normalizer.parser import normalize_event
from tests.conftest import BASE, coordinated_reposts, make_candidate, make_record


def snapshot_of(config, records, as_of_offset):
    store = GraphStore(config)
    for rec in records:
        store.apply_event(normalize_event(rec))
    return store.snapshot(BASE + as_of_offset)


# ═══════════════════════════════════════════════════════════════════════════
#  Coordinated reposts
# ═══════════════════════════════════════════════════════════════════════════


class TestCoordinatedRepost:
    def _records(self, originals: int) -> list[dict]:
        records = coordinated_reposts(["acc-a", "acc-b"], originals, gap_sec=30)
        # a third account reposting every original well outside proximity
        for i in range(originals):
            records.append(make_record(kind="repost", id=f"o-{i}-late", author_id="acc-late",
                                       target_id=f"o-{i}", seconds=i * 600 + 500))
        return sorted(records, key=lambda r: r["timestamp"])

    def test_fifteen_close_reposts_flag_the_pair(self, config):
        snap = snapshot_of(config, self._records(15), 15 * 600)
        detector = CoordinatedRepostDetector(config.detectors.coordinated_repost)
        out = detector.evaluate(snap, snap.window)
        assert [c.subject for c in out] == [("acc-a", "acc-b")]
        assert out[0].evidence["count"] == 15
        assert out[0].score == pytest.approx(15 / detector.expected)
        assert out[0].kind is DetectorKind.COORDINATED_REPOST

    def test_other_pairs_not_counted(self, config):
        snap = snapshot_of(config, self._records(15), 15 * 600)
        detector = CoordinatedRepostDetector(config.detectors.coordinated_repost)
        counts = detector.co_occurrences(snap.window, snap.as_of - 86400)
        assert dict(counts) == {("acc-a", "acc-b"): 15}

    def test_below_minimum_co_occurrence(self, config):
        snap = snapshot_of(config, self._records(10), 10 * 600)
        detector = CoordinatedRepostDetector(config.detectors.coordinated_repost)
        assert detector.evaluate(snap, snap.window) == []

    def test_proximity_is_strict(self, config):
        detector = CoordinatedRepostDetector(config.detectors.coordinated_repost)
        proximity = config.detectors.coordinated_repost.proximity_sec
        window = [
            WindowEntry(BASE, "o-1", "a", "r-a"),
            WindowEntry(BASE + proximity, "o-1", "b", "r-b"),
        ]
        assert detector.co_occurrences(window, BASE) == {}

    def test_each_original_counts_once_per_pair(self, config):
        detector = CoordinatedRepostDetector(config.detectors.coordinated_repost)
        window = [
            WindowEntry(BASE, "o-1", "a", "r-a1"),
            WindowEntry(BASE + 5, "o-1", "b", "r-b"),
            WindowEntry(BASE + 10, "o-1", "a", "r-a2"),
        ]
        assert dict(detector.co_occurrences(window, BASE)) == {("a", "b"): 1}

    def test_entries_before_horizon_ignored(self, config):
        detector = CoordinatedRepostDetector(config.detectors.coordinated_repost)
        window = [
            WindowEntry(BASE, "o-1", "a", "r-a"),
            WindowEntry(BASE + 5, "o-1", "b", "r-b"),
        ]
        assert detector.co_occurrences(window, BASE + 1) == {}

    def test_score_capped(self, config):
        detector = CoordinatedRepostDetector(config.detectors.coordinated_repost)
        n = int(detector.expected) + 5
        window = []
        for i in range(n):
            window.append(WindowEntry(BASE + i * 400, f"o-{i}", "a", f"r-a-{i}"))
            window.append(WindowEntry(BASE + i * 400 + 1, f"o-{i}", "b", f"r-b-{i}"))
        snap = snapshot_of(config, [], n * 400)
        out = detector.evaluate(snap, window)
        assert out[0].score == 1.0


# ═══════════════════════════════════════════════════════════════════════════
#  Posting rate
# ═══════════════════════════════════════════════════════════════════════════


class TestBotRate:
    def _records(self) -> list[dict]:
        records = [make_record(id=f"bot-{i}", author_id="bot", seconds=i * 60) for i in range(150)]
        records += [make_record(id=f"hum-{i}", author_id="human", seconds=i * 60 + 1) for i in range(50)]
        return sorted(records, key=lambda r: r["timestamp"])

    def test_high_rate_flagged(self, config):
        snap = snapshot_of(config, self._records(), 150 * 60)
        out = BotRateDetector(config.detectors.bot_rate).evaluate(snap, snap.window)
        assert [c.subject for c in out] == [("bot",)]
        assert out[0].score == 1.0
        assert out[0].evidence["rate"] == 150

    def test_events_outside_horizon_not_counted(self, config):
        snap = snapshot_of(config, self._records(), 150 * 60 + 86400)
        assert BotRateDetector(config.detectors.bot_rate).evaluate(snap, snap.window) == []


# ═══════════════════════════════════════════════════════════════════════════
#  Topic similarity
# ═══════════════════════════════════════════════════════════════════════════


class TestSockPuppet:
    def _records(self) -> list[dict]:
        return [
            make_record(kind="hashtag", id="a-1", author_id="acc-a", topics=["x", "y", "z"]),
            make_record(kind="hashtag", id="b-1", author_id="acc-b", topics=["#X", "y"], seconds=1),
            make_record(kind="hashtag", id="b-2", author_id="acc-b", topics=["z"], seconds=2),
            make_record(kind="hashtag", id="c-1", author_id="acc-c", topics=["x", "q", "r", "s"], seconds=3),
            make_record(id="d-1", author_id="acc-d", seconds=4),
        ]

    def test_jaccard(self):
        assert jaccard({"a", "b"}, {"b", "c"}) == pytest.approx(1 / 3)
        assert jaccard(set(), set()) == 0.0
        assert jaccard({"a"}, {"a"}) == 1.0

    def test_identical_topic_sets_flagged(self, config):
        snap = snapshot_of(config, self._records(), 10)
        out = SockPuppetDetector(config.detectors.sock_puppet).evaluate(snap, snap.window)
        assert [(c.subject, c.score) for c in out] == [(("acc-a", "acc-b"), 1.0)]
        assert out[0].evidence["shared"] == 3

    def test_accounts_without_topics_skipped(self, config):
        snap = snapshot_of(config, self._records(), 10)
        sets = SockPuppetDetector(config.detectors.sock_puppet).topic_sets(snap)
        assert "acc-d" not in sets
        assert sets["acc-b"] == frozenset({"x", "y", "z"})


# ═══════════════════════════════════════════════════════════════════════════
#  Ranking and detector set
# ═══════════════════════════════════════════════════════════════════════════


class TestRanking:
    def test_score_then_subject(self):
        cands = [
            make_candidate(subject=("b",), score=0.5),
            make_candidate(subject=("a",), score=0.5),
            make_candidate(subject=("c",), score=0.9),
        ]
        assert [c.subject for c in rank(cands)] == [("c",), ("a",), ("b",)]

    def test_build_detectors(self, config):
        kinds = [d.kind for d in build_detectors(config)]
        assert kinds == [DetectorKind.COORDINATED_REPOST, DetectorKind.BOT_RATE, DetectorKind.SOCK_PUPPET]

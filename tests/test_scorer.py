"""Tests for coordwatch.analyzer.scorer — parallel detectors with soft timeouts."""

from __future__ import annotations

import threading

import pytest

from coordwatch.analyzer.detector import Detector
from coordwatch.analyzer.scorer import Scorer
from coordwatch.contracts.enums import DetectorKind
from coordwatch.contracts.errors import EvaluationCancelled
from coordwatch.graph.store import GraphStore
from coordwatch.shared.settings import EngineConfig
from tests.conftest import BASE, make_candidate


class StaticDetector(Detector):
    def __init__(self, kind, candidates):
        self.kind = kind
        self.candidates = candidates

    def evaluate(self, snapshot, window):
        return list(self.candidates)


class FailingDetector(Detector):
    kind = DetectorKind.BOT_RATE

    def evaluate(self, snapshot, window):
        raise RuntimeError("boom")


class BlockingDetector(Detector):
    kind = DetectorKind.SOCK_PUPPET

    def __init__(self):
        self.release = threading.Event()
        self.calls = 0

    def evaluate(self, snapshot, window):
        self.calls += 1
        self.release.wait(5)
        return [make_candidate(subject=("late",), kind=self.kind)]


@pytest.fixture
def fast_config() -> EngineConfig:
    return EngineConfig.from_dict({"evaluation": {"detector_timeout_sec": 0.2}})


@pytest.fixture
def snapshot(fast_config):
    return GraphStore(fast_config).snapshot(BASE)


def run(config, detectors, snapshot, cancel=None):
    scorer = Scorer(config, detectors)
    try:
        return scorer.score(snapshot, cancel)
    finally:
        scorer.close()


class TestScorer:
    def test_candidates_merged_and_ranked(self, fast_config, snapshot):
        detectors = [
            StaticDetector(DetectorKind.COORDINATED_REPOST, [make_candidate(subject=("a", "b"), score=0.6)]),
            StaticDetector(DetectorKind.SOCK_PUPPET, [
                make_candidate(subject=("c", "d"), score=0.9, kind=DetectorKind.SOCK_PUPPET),
            ]),
        ]
        result = run(fast_config, detectors, snapshot)
        assert [c.subject for c in result.candidates] == [("c", "d"), ("a", "b")]
        assert result.timed_out == []
        assert result.failed == []

    def test_failing_detector_isolated(self, fast_config, snapshot):
        ok = StaticDetector(DetectorKind.COORDINATED_REPOST, [make_candidate()])
        result = run(fast_config, [FailingDetector(), ok], snapshot)
        assert result.failed == [DetectorKind.BOT_RATE]
        assert len(result.candidates) == 1

    def test_slow_detector_skipped(self, fast_config, snapshot):
        slow = BlockingDetector()
        ok = StaticDetector(DetectorKind.COORDINATED_REPOST, [make_candidate()])
        try:
            result = run(fast_config, [slow, ok], snapshot)
        finally:
            slow.release.set()
        assert result.timed_out == [DetectorKind.SOCK_PUPPET]
        assert [c.subject for c in result.candidates] == [("acc-1",)]

    def test_hung_detector_not_resubmitted(self, fast_config, snapshot):
        slow = BlockingDetector()
        ok = StaticDetector(DetectorKind.COORDINATED_REPOST, [make_candidate()])
        scorer = Scorer(fast_config, [slow, ok])
        try:
            first = scorer.score(snapshot)
            second = scorer.score(snapshot)
        finally:
            slow.release.set()
            scorer.close()
        assert first.timed_out == [DetectorKind.SOCK_PUPPET]
        assert second.timed_out == [DetectorKind.SOCK_PUPPET]
        assert [c.subject for c in second.candidates] == [("acc-1",)]
        assert slow.calls == 1

    def test_pool_has_a_worker_per_detector(self, snapshot):
        config = EngineConfig.from_dict({"evaluation": {"max_workers": 1, "detector_timeout_sec": 0.2}})
        slow = BlockingDetector()
        ok = StaticDetector(DetectorKind.COORDINATED_REPOST, [make_candidate()])
        try:
            result = run(config, [slow, ok], snapshot)
        finally:
            slow.release.set()
        assert result.timed_out == [DetectorKind.SOCK_PUPPET]
        assert len(result.candidates) == 1

    def test_cancelled(self, fast_config, snapshot):
        cancel = threading.Event()
        cancel.set()
        ok = StaticDetector(DetectorKind.COORDINATED_REPOST, [make_candidate()])
        with pytest.raises(EvaluationCancelled):
            run(fast_config, [ok], snapshot, cancel)

    def test_default_detector_set(self, fast_config, snapshot):
        result = run(fast_config, None, snapshot)
        assert result.candidates == []

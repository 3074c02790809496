"""Tests for coordwatch.analyzer.pipeline — JSONL loading and event-time replay."""

from __future__ import annotations

import json
import logging

from coordwatch.analyzer.engine import CoordinationEngine
from coordwatch.analyzer.pipeline import (
    JsonlAlertSink,
    iter_events_jsonl,
    load_events_jsonl,
    replay,
    replay_file,
    write_events_jsonl,
)
from coordwatch.contracts.enums import AlertState
from coordwatch.normalizer.parser import normalize_event
from tests.conftest import BASE, coordinated_reposts, make_record


def write_jsonl(path, lines):
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


class TestLoaders:
    def test_skips_bad_lines(self, tmp_path, caplog):
        path = write_jsonl(tmp_path / "events.jsonl", [
            json.dumps(make_record(id="c-1")),
            "",
            "{not json",
            "[1, 2]",
            json.dumps(make_record(id="c-2", seconds=5)),
        ])
        with caplog.at_level(logging.WARNING):
            records = list(iter_events_jsonl(path))
        assert [r["id"] for r in records] == ["c-1", "c-2"]
        assert "line 3" in caplog.text
        assert "line 4" in caplog.text

    def test_load_list(self, tmp_path):
        path = write_jsonl(tmp_path / "events.jsonl", [json.dumps(make_record(id="c-1"))])
        assert load_events_jsonl(path)[0]["id"] == "c-1"


class TestReplay:
    def test_ticks_at_cadence_boundaries(self, engine):
        records = [
            make_record(id="c-1", seconds=0),
            make_record(id="c-2", seconds=30),
            make_record(id="c-3", seconds=130),
        ]
        report = replay(records, engine)
        assert [t.as_of - BASE for t in report.ticks] == [60, 120, 180]
        assert report.accepted == 3
        assert report.rejected == 0

    def test_no_flush(self, engine):
        records = [make_record(id="c-1", seconds=0), make_record(id="c-2", seconds=61)]
        report = replay(records, engine, flush=False)
        assert [t.as_of - BASE for t in report.ticks] == [60]

    def test_rejections_reported(self, engine):
        report = replay([make_record(id="c-1"), {"kind": "post"}], engine)
        assert report.accepted == 1
        assert report.rejected == 1
        assert report.results[1].reason == "MalformedEvent"

    def test_nothing_accepted_no_ticks(self, engine):
        report = replay([{"garbage": True}], engine)
        assert report.ticks == []

    def test_replay_file(self, tmp_path, engine):
        path = write_jsonl(tmp_path / "events.jsonl", [
            json.dumps(make_record(id=f"c-{i}", seconds=i * 10)) for i in range(10)
        ])
        report = replay_file(path, engine)
        assert report.accepted == 10
        assert engine.counters()["ticks"] == len(report.ticks)


class TestWriters:
    def test_canonical_events_reload(self, tmp_path):
        events = [
            normalize_event(make_record(id="c-1", topics=["#Vote"])),
            normalize_event(make_record(kind="repost", id="r-1", author_id="acc-2",
                                        target_id="c-1", seconds=5)),
        ]
        path = tmp_path / "canonical.jsonl"
        assert write_events_jsonl(events, path) == 2
        reloaded = [normalize_event(r) for r in load_events_jsonl(path)]
        assert reloaded == events

    def test_alert_sink(self, tmp_path, config):
        sink = JsonlAlertSink(tmp_path / "alerts.jsonl")
        engine = CoordinationEngine(config, alert_sink=sink)
        try:
            replay(coordinated_reposts(["a", "b"], originals=12), engine)
        finally:
            engine.close()
        lines = [json.loads(line) for line in (tmp_path / "alerts.jsonl").read_text().splitlines()]
        assert sink.written == len(lines) > 0
        assert lines[0]["new_state"] == "pending"
        assert lines[0]["subject"] == ["a", "b"]
        assert lines[0]["kind"] == "coordinated_repost"


class TestReplayAcrossGaps:
    def _burst(self, trailing_offset: float) -> list[dict]:
        # 15 originals reposted by both accounts within a minute
        records = coordinated_reposts(["acc-a", "acc-b"], originals=15, gap_sec=3, spacing_sec=2)
        records = sorted(records, key=lambda r: r["timestamp"])
        records.append(make_record(id="trailing", author_id="other", seconds=trailing_offset))
        return records

    def _run(self, config, records):
        engine = CoordinationEngine(config)
        try:
            return replay(records, engine)
        finally:
            engine.close()

    @staticmethod
    def _summary(ticks):
        return [
            (t.as_of, [c.subject for c in t.candidates],
             [(tr.old_state, tr.new_state) for tr in t.transitions])
            for t in ticks
        ]

    def test_later_gap_does_not_change_earlier_ticks(self, config):
        near = self._run(config, self._burst(200))
        far = self._run(config, self._burst(2 * 86400))
        assert self._summary(far.ticks[:3]) == self._summary(near.ticks[:3])

    def test_burst_before_gap_is_promoted(self, config):
        report = self._run(config, self._burst(2 * 86400))
        promoted = [
            tr for t in report.ticks for tr in t.transitions
            if tr.new_state is AlertState.ACTIVE
        ]
        assert [tr.subject for tr in promoted] == [("acc-a", "acc-b")]
        assert promoted[0].timestamp == BASE + 120

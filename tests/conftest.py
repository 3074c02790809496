"""Shared fixtures for coordwatch tests."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from coordwatch.analyzer.engine import CoordinationEngine
from coordwatch.contracts.alert import Candidate
from coordwatch.contracts.enums import DetectorKind
from coordwatch.shared.settings import EngineConfig
from coordwatch.shared.timeutil import parse_ts

BASE_TS = "2026-02-26T10:00:00Z"
BASE = parse_ts(BASE_TS)

# ── Helper: raw records with sensible defaults ──────────────────────────


def make_record(
    *,
    kind: str = "post",
    id: str = "c-1",
    author_id: str = "acc-1",
    timestamp: str | float | None = None,
    seconds: float = 0,
    target_id: str | None = None,
    mentions: list[str] | None = None,
    topics: list[str] | None = None,
) -> dict:
    """Raw enriched event record; *seconds* offsets from BASE when no timestamp."""
    rec: dict = {
        "kind": kind,
        "id": id,
        "author_id": author_id,
        "timestamp": timestamp if timestamp is not None else BASE + seconds,
    }
    if target_id is not None:
        rec["target_id"] = target_id
    if mentions is not None:
        rec["mentions"] = mentions
    if topics is not None:
        rec["topics"] = topics
    return rec


def make_candidate(
    *,
    subject: tuple[str, ...] = ("acc-1",),
    score: float = 0.9,
    kind: DetectorKind = DetectorKind.COORDINATED_REPOST,
) -> Candidate:
    return Candidate(subject=subject, score=score, kind=kind)


def coordinated_reposts(
    accounts: list[str],
    originals: int,
    gap_sec: float = 30,
    start: float = 0,
    spacing_sec: float = 600,
    author: str = "source",
    prefix: str = "o",
) -> list[dict]:
    """*originals* posts by *author*, each reposted by every account *gap_sec* apart."""
    records: list[dict] = []
    for i in range(originals):
        t = start + i * spacing_sec
        oid = f"{prefix}-{i}"
        records.append(make_record(id=oid, author_id=author, seconds=t))
        for j, acc in enumerate(accounts):
            records.append(
                make_record(
                    kind="repost",
                    id=f"{oid}-rp-{acc}",
                    author_id=acc,
                    target_id=oid,
                    seconds=t + 10 + j * gap_sec,
                )
            )
    return records


# ── Timestamp helpers ────────────────────────────────────────────────────


def ts_offset(base: str = BASE_TS, seconds: int = 0) -> str:
    """Return an ISO-8601 timestamp offset from *base* by *seconds*."""
    dt = datetime.fromisoformat(base.replace("Z", "+00:00"))
    dt += timedelta(seconds=seconds)
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


# ── Config / engine fixtures ─────────────────────────────────────────────


@pytest.fixture
def config() -> EngineConfig:
    """Defaults with no finalization delay so tests see events immediately."""
    return EngineConfig.from_dict({"graph": {"finalization_delay_sec": 0}})


@pytest.fixture
def engine(config):
    eng = CoordinationEngine(config)
    yield eng
    eng.close()

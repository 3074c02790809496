"""Scorer — runs the detector set against one snapshot.

Detectors run in parallel on a thread pool; each carries a soft timeout.
A detector that overruns or raises is skipped for this tick (logged, not
fatal).  A running detector cannot be interrupted, so one still busy from
an earlier tick is not submitted again until it finishes; it keeps one
pool worker and is reported as timed out meanwhile.  The pool has at least
one worker per detector.  The scorer never mutates anything: it only
returns candidates.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field

from coordwatch.analyzer.detector import Detector, build_detectors, rank
from coordwatch.contracts.alert import Candidate
from coordwatch.contracts.enums import DetectorKind
from coordwatch.contracts.errors import DetectorTimeout, EvaluationCancelled
from coordwatch.graph.snapshot import GraphSnapshot
from coordwatch.shared.settings import EngineConfig

log = logging.getLogger(__name__)


@dataclass
class ScoreResult:
    """Ranked candidates of one tick plus the detectors that were skipped."""

    candidates: list[Candidate] = field(default_factory=list)
    timed_out: list[DetectorKind] = field(default_factory=list)
    failed: list[DetectorKind] = field(default_factory=list)


class Scorer:
    def __init__(self, config: EngineConfig, detectors: list[Detector] | None = None) -> None:
        self.config = config
        self.detectors = detectors if detectors is not None else build_detectors(config)
        self._running: dict[Detector, Future[list[Candidate]]] = {}
        self._executor = ThreadPoolExecutor(
            max_workers=max(config.evaluation.max_workers, len(self.detectors)),
            thread_name_prefix="detector",
        )

    def score(
        self,
        snapshot: GraphSnapshot,
        cancel: threading.Event | None = None,
    ) -> ScoreResult:
        """Evaluate every detector on *snapshot*.

        Raises:
            EvaluationCancelled: *cancel* was set while detectors ran.
        """
        timeout = self.config.evaluation.detector_timeout_sec
        result = ScoreResult()
        futures: list[tuple[Detector, Future[list[Candidate]]]] = []
        for d in self.detectors:
            previous = self._running.get(d)
            if previous is not None and not previous.done():
                result.timed_out.append(d.kind)
                log.warning(
                    "Detector %s still running from an earlier tick — skipped", d.kind.value
                )
                continue
            future = self._executor.submit(d.evaluate, snapshot, snapshot.window)
            self._running[d] = future
            futures.append((d, future))
        deadline = time.monotonic() + timeout
        collected: list[Candidate] = []

        for detector, future in futures:
            if cancel is not None and cancel.is_set():
                self._cancel_all(futures)
                raise EvaluationCancelled(f"tick at {snapshot.as_of:.0f} cancelled")
            try:
                collected.extend(self._wait(detector, future, deadline))
            except DetectorTimeout as exc:
                future.cancel()
                result.timed_out.append(detector.kind)
                log.warning("%s — skipped for this tick", exc)
            except Exception:
                result.failed.append(detector.kind)
                log.exception("Detector %s failed — skipped for this tick", detector.kind.value)

        if cancel is not None and cancel.is_set():
            raise EvaluationCancelled(f"tick at {snapshot.as_of:.0f} cancelled")

        result.candidates = rank(collected)
        return result

    @staticmethod
    def _wait(detector: Detector, future: Future[list[Candidate]], deadline: float) -> list[Candidate]:
        remaining = max(0.0, deadline - time.monotonic())
        try:
            return future.result(timeout=remaining)
        except FutureTimeout as exc:
            raise DetectorTimeout(
                f"Detector {detector.kind.value} exceeded its soft timeout"
            ) from exc

    @staticmethod
    def _cancel_all(futures: list[tuple[Detector, Future[list[Candidate]]]]) -> None:
        for _, f in futures:
            f.cancel()

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

"""TickScheduler — live evaluation path on its own thread.

Calls ``engine.evaluate()`` every ``interval_sec`` wall-clock seconds
(event time of each tick = newest event seen).  ``stop()`` also cancels
an in-progress tick, which is then discarded by the engine.
"""

from __future__ import annotations

import logging
import threading

from coordwatch.analyzer.engine import CoordinationEngine

log = logging.getLogger(__name__)


class TickScheduler:
    def __init__(self, engine: CoordinationEngine, interval_sec: float | None = None) -> None:
        self.engine = engine
        self.interval_sec = interval_sec or engine.config.evaluation.cadence_sec
        self.ticks = 0
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="coordwatch-ticks", daemon=True)
        self._thread.start()
        log.info("Tick scheduler started (every %.1fs)", self.interval_sec)

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        log.info("Tick scheduler stopped after %d ticks", self.ticks)

    def _run(self) -> None:
        while not self._stop.wait(self.interval_sec):
            result = self.engine.evaluate(cancel=self._stop)
            if not (result.skipped or result.cancelled):
                self.ticks += 1

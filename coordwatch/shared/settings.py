"""Engine settings — every threshold and window is configurable.

Settings are read from ``config/engine.yaml`` (or any mapping with the
same shape) and overlaid on the defaults below.  ``validate()`` fails
fast with ``InvalidConfiguration`` so a bad value never reaches the
engine at runtime.

Layout
──────
  normalizer   clock_skew_sec
  graph        finalization_delay_sec, retention_sec,
               activity_half_life_sec, coordination_half_life_sec
  window       expiry_sec, max_entries
  detectors    coordinated_repost / bot_rate / sock_puppet
  alerts       thresholds{kind: value}, hysteresis, confirm_ticks, cooldown_ticks
  evaluation   cadence_sec, detector_timeout_sec, snapshot_timeout_sec, max_workers
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any

from coordwatch.contracts.enums import DetectorKind
from coordwatch.contracts.errors import InvalidConfiguration
from coordwatch.shared.config_loader import load_yaml

log = logging.getLogger(__name__)


@dataclass
class NormalizerSettings:
    clock_skew_sec: float = 60.0


@dataclass
class GraphSettings:
    finalization_delay_sec: float = 5.0
    retention_sec: float = 7 * 86400.0
    activity_half_life_sec: float = 86400.0
    coordination_half_life_sec: float = 48 * 3600.0


@dataclass
class WindowSettings:
    expiry_sec: float = 86400.0
    max_entries: int = 1_000_000


@dataclass
class CoordinatedRepostSettings:
    proximity_sec: float = 300.0
    min_co_occurrence: int = 11
    baseline_per_day: float = 20.0
    horizon_sec: float = 86400.0


@dataclass
class BotRateSettings:
    rate_threshold: float = 100.0
    horizon_sec: float = 86400.0


@dataclass
class SockPuppetSettings:
    jaccard_threshold: float = 0.6
    min_topics: int = 1
    horizon_sec: float = 86400.0


@dataclass
class DetectorSettings:
    coordinated_repost: CoordinatedRepostSettings = field(default_factory=CoordinatedRepostSettings)
    bot_rate: BotRateSettings = field(default_factory=BotRateSettings)
    sock_puppet: SockPuppetSettings = field(default_factory=SockPuppetSettings)


def _default_thresholds() -> dict[str, float]:
    return {
        DetectorKind.COORDINATED_REPOST.value: 0.5,
        DetectorKind.BOT_RATE.value: 1.0,
        DetectorKind.SOCK_PUPPET.value: 0.6,
    }


@dataclass
class AlertSettings:
    thresholds: dict[str, float] = field(default_factory=_default_thresholds)
    hysteresis: float = 0.8
    confirm_ticks: int = 2
    cooldown_ticks: int = 1

    def threshold(self, kind: DetectorKind) -> float:
        return self.thresholds[kind.value]


@dataclass
class EvaluationSettings:
    cadence_sec: float = 60.0
    detector_timeout_sec: float = 10.0
    snapshot_timeout_sec: float = 2.0
    max_workers: int = 3


@dataclass
class EngineConfig:
    """Validated engine configuration."""

    normalizer: NormalizerSettings = field(default_factory=NormalizerSettings)
    graph: GraphSettings = field(default_factory=GraphSettings)
    window: WindowSettings = field(default_factory=WindowSettings)
    detectors: DetectorSettings = field(default_factory=DetectorSettings)
    alerts: AlertSettings = field(default_factory=AlertSettings)
    evaluation: EvaluationSettings = field(default_factory=EvaluationSettings)

    # ── construction ─────────────────────────────────────────────────────

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> EngineConfig:
        """Overlay *data* on the defaults and validate the result."""
        cfg = cls()
        _overlay(cfg, data or {}, prefix="")
        cfg.validate()
        return cfg

    @classmethod
    def load(cls, path: str | Path) -> EngineConfig:
        """Read a YAML file and build a validated config from it."""
        cfg = cls.from_dict(load_yaml(path))
        log.info("Engine config loaded from %s", path)
        return cfg

    # ── validation ───────────────────────────────────────────────────────

    def validate(self) -> None:
        """Raise InvalidConfiguration on the first out-of-range value."""
        _positive("graph.retention_sec", self.graph.retention_sec)
        _positive("graph.activity_half_life_sec", self.graph.activity_half_life_sec)
        _positive("graph.coordination_half_life_sec", self.graph.coordination_half_life_sec)
        _non_negative("normalizer.clock_skew_sec", self.normalizer.clock_skew_sec)
        _non_negative("graph.finalization_delay_sec", self.graph.finalization_delay_sec)

        _positive("window.expiry_sec", self.window.expiry_sec)
        if self.window.max_entries < 1:
            raise InvalidConfiguration("window.max_entries", "must be >= 1")

        cr = self.detectors.coordinated_repost
        _positive("detectors.coordinated_repost.proximity_sec", cr.proximity_sec)
        _positive("detectors.coordinated_repost.baseline_per_day", cr.baseline_per_day)
        _positive("detectors.coordinated_repost.horizon_sec", cr.horizon_sec)
        if cr.min_co_occurrence < 1:
            raise InvalidConfiguration("detectors.coordinated_repost.min_co_occurrence", "must be >= 1")

        br = self.detectors.bot_rate
        _positive("detectors.bot_rate.rate_threshold", br.rate_threshold)
        _positive("detectors.bot_rate.horizon_sec", br.horizon_sec)

        sp = self.detectors.sock_puppet
        _unit_interval("detectors.sock_puppet.jaccard_threshold", sp.jaccard_threshold)
        _positive("detectors.sock_puppet.horizon_sec", sp.horizon_sec)
        if sp.min_topics < 1:
            raise InvalidConfiguration("detectors.sock_puppet.min_topics", "must be >= 1")

        al = self.alerts
        for kind in DetectorKind:
            if kind.value not in al.thresholds:
                raise InvalidConfiguration(f"alerts.thresholds.{kind.value}", "missing")
        for name, value in al.thresholds.items():
            if name not in {k.value for k in DetectorKind}:
                raise InvalidConfiguration(f"alerts.thresholds.{name}", "unknown detector kind")
            _unit_interval(f"alerts.thresholds.{name}", value)
        if not 0.0 < al.hysteresis <= 1.0:
            raise InvalidConfiguration("alerts.hysteresis", f"must be in (0, 1], got {al.hysteresis}")
        if al.confirm_ticks < 1:
            raise InvalidConfiguration("alerts.confirm_ticks", "must be >= 1")
        if al.cooldown_ticks < 1:
            raise InvalidConfiguration("alerts.cooldown_ticks", "must be >= 1")

        ev = self.evaluation
        _positive("evaluation.cadence_sec", ev.cadence_sec)
        _positive("evaluation.detector_timeout_sec", ev.detector_timeout_sec)
        _positive("evaluation.snapshot_timeout_sec", ev.snapshot_timeout_sec)
        if ev.max_workers < 1:
            raise InvalidConfiguration("evaluation.max_workers", "must be >= 1")


# ═══════════════════════════════════════════════════════════════════════════
#  Helpers
# ═══════════════════════════════════════════════════════════════════════════


def _overlay(target: Any, data: dict[str, Any], prefix: str) -> None:
    """Copy values from *data* into the nested dataclass *target*."""
    if not isinstance(data, dict):
        raise InvalidConfiguration(prefix.rstrip(".") or "<root>", "must be a mapping")
    known = {f.name: f for f in fields(target)}
    for key, value in data.items():
        path = f"{prefix}{key}"
        if key not in known:
            log.warning("Unknown config key ignored: %s", path)
            continue
        current = getattr(target, key)
        if is_dataclass(current):
            _overlay(current, value, prefix=f"{path}.")
        elif isinstance(current, dict):
            if not isinstance(value, dict):
                raise InvalidConfiguration(path, "must be a mapping")
            merged = dict(current)
            for k, v in value.items():
                merged[str(k)] = _coerce(f"{path}.{k}", v, float)
            setattr(target, key, merged)
        else:
            setattr(target, key, _coerce(path, value, type(current)))


def _coerce(path: str, value: Any, kind: type) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidConfiguration(path, f"expected a number, got {value!r}")
    if kind is int:
        if float(value) != int(value):
            raise InvalidConfiguration(path, f"expected an integer, got {value!r}")
        return int(value)
    return float(value)


def _positive(key: str, value: float) -> None:
    if not value > 0:
        raise InvalidConfiguration(key, f"must be > 0, got {value}")


def _non_negative(key: str, value: float) -> None:
    if value < 0:
        raise InvalidConfiguration(key, f"must be >= 0, got {value}")


def _unit_interval(key: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise InvalidConfiguration(key, f"must be in [0, 1], got {value}")

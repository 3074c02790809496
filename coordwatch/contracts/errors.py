"""Error taxonomy of the engine.

Per-event errors (``MalformedEvent``, ``OutOfOrderEvent``,
``ConflictingContent``, ``DanglingReference``) are isolated by the engine
and reported per event; ``InvalidConfiguration`` is fatal at startup;
``DetectorTimeout`` and ``SnapshotUnavailable`` only skip work for one tick.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for all coordwatch errors."""


class MalformedEvent(EngineError):
    """A required field is missing or invalid."""

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"{field}: {reason}")
        self.field = field
        self.reason = reason


class OutOfOrderEvent(EngineError):
    """Event older than the window low-water-mark minus clock skew."""

    def __init__(self, timestamp: float, low_water_mark: float) -> None:
        super().__init__(
            f"timestamp {timestamp:.3f} is older than low-water-mark {low_water_mark:.3f}"
        )
        self.timestamp = timestamp
        self.low_water_mark = low_water_mark


class DuplicateContent(EngineError):
    """Content id already recorded with identical payload."""

    def __init__(self, content_id: str) -> None:
        super().__init__(f"content {content_id!r} already recorded")
        self.content_id = content_id


class ConflictingContent(EngineError):
    """Content id already recorded with a different payload."""

    def __init__(self, content_id: str) -> None:
        super().__init__(f"content {content_id!r} conflicts with recorded content")
        self.content_id = content_id


class DanglingReference(EngineError):
    """Edge endpoint does not exist in the store."""


class InvalidConfiguration(EngineError):
    """A configuration value is out of its valid range."""

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"{key}: {reason}")
        self.key = key


class DetectorTimeout(EngineError):
    """A detector exceeded its soft timeout for one tick."""


class SnapshotUnavailable(EngineError):
    """A consistent snapshot could not be taken for this tick."""


class EvaluationCancelled(EngineError):
    """An evaluation tick was cancelled before commit; it is discarded."""

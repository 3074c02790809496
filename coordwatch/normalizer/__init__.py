"""Event Normalizer — raw enriched record → CanonicalEvent."""

from coordwatch.normalizer.parser import normalize_event

__all__ = ["normalize_event"]

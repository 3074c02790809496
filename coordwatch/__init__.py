"""coordwatch — incremental coordination-detection engine for social event streams."""

__version__ = "0.1.0"

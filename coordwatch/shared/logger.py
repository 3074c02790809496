"""Налаштування логування."""

from __future__ import annotations

import logging
import sys

_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"


def setup_logging(level: str = "INFO", detectors_level: str | None = None) -> None:
    """Налаштовує логер engine з лаконічним форматом.

    Пакет сам логування не налаштовує: функцію один раз викликає
    застосунок, що вбудовує engine (до створення CoordinationEngine).

    Args:
        level: Рівень логування (DEBUG, INFO, WARNING, ERROR).
        detectors_level: Окремий рівень для ``coordwatch.analyzer.detector``
            (детектори на кожному тіку пишуть багато DEBUG).
    """
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format=_FORMAT,
        datefmt="%H:%M:%S",
        stream=sys.stderr,
        force=True,
    )
    if detectors_level:
        logging.getLogger("coordwatch.analyzer.detector").setLevel(
            getattr(logging, detectors_level.upper(), numeric)
        )

"""Event parser: raw enriched record → CanonicalEvent.

A pure function of the record and the current low-water-mark; it never
touches graph state.  Records look like::

    {"kind": "repost", "id": "c-42", "author_id": "acc-7",
     "timestamp": "2026-02-26T10:00:00Z", "target_id": "c-1",
     "mentions": ["acc-3"], "topics": ["#Election"]}

Validation
──────────
  kind        one of post | repost | mention | hashtag
  id          non-empty string
  author_id   non-empty string
  timestamp   ISO-8601 string or epoch seconds, not older than
              ``low_water_mark - clock_skew`` (else OutOfOrderEvent)
  target_id   required for repost, must differ from id
  mentions    list of non-empty strings, required (non-empty) for mention
  topics      list of non-empty strings, required (non-empty) for hashtag
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from coordwatch.contracts.enums import EventKind
from coordwatch.contracts.errors import MalformedEvent, OutOfOrderEvent
from coordwatch.contracts.event import CanonicalEvent
from coordwatch.shared.timeutil import parse_ts

log = logging.getLogger(__name__)

_KINDS = {k.value: k for k in EventKind}


def normalize_event(
    raw: Any,
    low_water_mark: float | None = None,
    clock_skew_sec: float = 0.0,
) -> CanonicalEvent:
    """Validate and canonicalize one raw record.

    Raises:
        MalformedEvent: missing or invalid field.
        OutOfOrderEvent: timestamp older than the low-water-mark minus skew.
    """
    if not isinstance(raw, Mapping):
        raise MalformedEvent("record", f"expected a mapping, got {type(raw).__name__}")

    kind_raw = raw.get("kind")
    kind = _KINDS.get(str(kind_raw).strip().lower()) if kind_raw is not None else None
    if kind is None:
        raise MalformedEvent("kind", f"unknown event kind {kind_raw!r}")

    event_id = _required_id(raw, "id")
    author_id = _required_id(raw, "author_id")

    if raw.get("timestamp") is None:
        raise MalformedEvent("timestamp", "missing")
    try:
        ts = parse_ts(raw["timestamp"])
    except (TypeError, ValueError) as exc:
        raise MalformedEvent("timestamp", str(exc)) from exc

    if low_water_mark is not None and ts < low_water_mark - clock_skew_sec:
        raise OutOfOrderEvent(ts, low_water_mark)

    target_id: str | None = None
    if kind is EventKind.REPOST:
        target_id = _required_id(raw, "target_id")
        if target_id == event_id:
            raise MalformedEvent("target_id", "repost cannot reference itself")
    elif raw.get("target_id"):
        log.debug("Ignoring target_id on %s event %s", kind.value, event_id)

    mentions = _tokens(raw, "mentions", lower=False)
    topics = _tokens(raw, "topics", lower=True)
    if kind is EventKind.MENTION and not mentions:
        raise MalformedEvent("mentions", "mention event without mentioned accounts")
    if kind is EventKind.HASHTAG and not topics:
        raise MalformedEvent("topics", "hashtag event without topics")

    return CanonicalEvent(
        kind=kind,
        id=event_id,
        author_id=author_id,
        timestamp=ts,
        target_id=target_id,
        mentions=mentions,
        topics=topics,
    )


def _required_id(raw: Mapping[str, Any], name: str) -> str:
    value = raw.get(name)
    if value is None:
        raise MalformedEvent(name, "missing")
    if not isinstance(value, (str, int)) or isinstance(value, bool):
        raise MalformedEvent(name, f"expected a string id, got {type(value).__name__}")
    text = str(value).strip()
    if not text:
        raise MalformedEvent(name, "empty")
    return text


def _tokens(raw: Mapping[str, Any], name: str, lower: bool) -> tuple[str, ...]:
    """Canonical token list: stripped, deduplicated, sorted.

    Topics are lower-cased and lose a leading ``#``.
    """
    value = raw.get(name)
    if value is None:
        return ()
    if isinstance(value, (str, bytes)) or not isinstance(value, (list, tuple, set, frozenset)):
        raise MalformedEvent(name, "expected a list")
    out: set[str] = set()
    for item in value:
        if not isinstance(item, str):
            raise MalformedEvent(name, f"expected strings, got {type(item).__name__}")
        token = item.strip()
        if lower:
            token = token.lstrip("#").lower()
        if not token:
            raise MalformedEvent(name, "empty token")
        out.add(token)
    return tuple(sorted(out))

"""Canonical enumerations."""

from __future__ import annotations

from enum import Enum


class EventKind(str, Enum):
    POST = "post"
    REPOST = "repost"
    MENTION = "mention"
    HASHTAG = "hashtag"


class EdgeKind(str, Enum):
    POSTED = "POSTED"
    REPOSTS = "REPOSTS"
    MENTIONS = "MENTIONS"
    USES_TOPIC = "USES_TOPIC"
    COORDINATES_WITH = "COORDINATES_WITH"


class DetectorKind(str, Enum):
    COORDINATED_REPOST = "coordinated_repost"
    BOT_RATE = "bot_rate"
    SOCK_PUPPET = "sock_puppet"


class AlertState(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    RESOLVED = "resolved"

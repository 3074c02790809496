"""Contracts — canonical data structures shared by all modules."""

from coordwatch.contracts.alert import Alert, AlertTransition, Candidate
from coordwatch.contracts.enums import AlertState, DetectorKind, EdgeKind, EventKind
from coordwatch.contracts.event import CanonicalEvent
from coordwatch.contracts.graph import Account, Content, Edge, WindowEntry

__all__ = [
    "Account",
    "Alert",
    "AlertState",
    "AlertTransition",
    "CanonicalEvent",
    "Candidate",
    "Content",
    "DetectorKind",
    "Edge",
    "EdgeKind",
    "EventKind",
    "WindowEntry",
]

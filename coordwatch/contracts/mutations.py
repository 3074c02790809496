"""Idempotent graph mutation commands for a durable graph store.

A collaborator that applies the same command twice must end in the same
state; ``GraphStore.apply`` is the reference implementation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from coordwatch.contracts.enums import EdgeKind
from coordwatch.contracts.graph import Content


@dataclass(frozen=True, slots=True)
class UpsertAccount:
    account_id: str
    timestamp: float


@dataclass(frozen=True, slots=True)
class RecordContent:
    content: Content


@dataclass(frozen=True, slots=True)
class RecordEdge:
    kind: EdgeKind
    src: str
    dst: str
    timestamp: float
    attrs: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


Mutation = Union[UpsertAccount, RecordContent, RecordEdge]

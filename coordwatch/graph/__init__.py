"""Graph State Store, repost Window and immutable snapshots."""

from coordwatch.graph.snapshot import GraphSnapshot
from coordwatch.graph.store import EvictionNotice, GraphStore
from coordwatch.graph.window import RepostWindow

__all__ = ["EvictionNotice", "GraphSnapshot", "GraphStore", "RepostWindow"]

"""
Graph persistence for sources, signals, actors and the scout run lock.

- GraphReader / GraphWriter: protocols consumed by the pipeline
- GraphStore: asyncpg implementation
- InMemoryGraphStore: dict-backed implementation for tests and mock runs
"""

from civic_scout.graph.base import GraphReader, GraphWriter
from civic_scout.graph.memory import InMemoryGraphStore
from civic_scout.graph.schemas import ScoutLock
from civic_scout.graph.storage import GraphStore

__all__ = [
    "GraphReader",
    "GraphStore",
    "GraphWriter",
    "InMemoryGraphStore",
    "ScoutLock",
]

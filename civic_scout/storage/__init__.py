"""Storage layer: asyncpg connection pool shared by the graph store."""

from civic_scout.storage.database import Database

__all__ = ["Database"]

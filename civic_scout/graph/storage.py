"""asyncpg persistence for the scout graph.

Tables: sources, signals, actors, actor_signals, scout_locks. Each public
method runs one statement, or one transaction where a write touches two
tables, so a failure never leaves a half-written node behind.
"""

import logging
import uuid
from datetime import datetime
from typing import Any

from civic_scout.graph.schemas import ScoutLock
from civic_scout.signals.schemas import ReapStats, Signal, SignalKind, SignalReference
from civic_scout.sources.schemas import DiscoveryMethod, Source, SourceKind, SourceRole
from civic_scout.sources.urls import social_url_pattern
from civic_scout.storage.database import Database

logger = logging.getLogger(__name__)

CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS sources (
    canonical_key          TEXT PRIMARY KEY,
    city                   TEXT NOT NULL,
    kind                   TEXT NOT NULL,
    value                  TEXT NOT NULL,
    url                    TEXT,
    platform               TEXT,
    role                   TEXT NOT NULL DEFAULT 'mixed',
    discovery_method       TEXT NOT NULL DEFAULT 'curated',
    weight                 DOUBLE PRECISION NOT NULL DEFAULT 0.5,
    cadence_hours          DOUBLE PRECISION,
    active                 BOOLEAN NOT NULL DEFAULT TRUE,
    deactivation_reason    TEXT,
    quality_penalty        DOUBLE PRECISION NOT NULL DEFAULT 1.0,
    signals_produced       INTEGER NOT NULL DEFAULT 0,
    scrape_count           INTEGER NOT NULL DEFAULT 0,
    consecutive_empty_runs INTEGER NOT NULL DEFAULT 0,
    consecutive_failures   INTEGER NOT NULL DEFAULT 0,
    last_scraped           TIMESTAMPTZ,
    last_produced_signal   TIMESTAMPTZ,
    gap_context            TEXT,
    created_at             TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at             TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_sources_city_active
    ON sources(city) WHERE active = TRUE;
CREATE INDEX IF NOT EXISTS idx_sources_city_url ON sources(city, url);

CREATE TABLE IF NOT EXISTS signals (
    id                TEXT PRIMARY KEY,
    city              TEXT NOT NULL,
    kind              TEXT NOT NULL,
    title             TEXT NOT NULL,
    body              TEXT NOT NULL DEFAULT '',
    confidence        DOUBLE PRECISION NOT NULL,
    latitude          DOUBLE PRECISION,
    longitude         DOUBLE PRECISION,
    location_name     TEXT,
    embedding         REAL[],
    source_key        TEXT NOT NULL REFERENCES sources(canonical_key),
    source_url        TEXT NOT NULL,
    evidence          TEXT NOT NULL DEFAULT '',
    content_hash      TEXT,
    near_duplicate_of TEXT,
    similarity        DOUBLE PRECISION,
    implied_queries   TEXT[] NOT NULL DEFAULT '{}',
    review_status     TEXT NOT NULL DEFAULT 'pending',
    corroboration_count INTEGER NOT NULL DEFAULT 0,
    last_confirmed_at TIMESTAMPTZ,
    created_at        TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    expires_at        TIMESTAMPTZ
);
CREATE INDEX IF NOT EXISTS idx_signals_city_created ON signals(city, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_signals_expires ON signals(expires_at);

CREATE TABLE IF NOT EXISTS actors (
    id              TEXT PRIMARY KEY,
    city            TEXT NOT NULL,
    name            TEXT NOT NULL,
    normalized_name TEXT NOT NULL,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (city, normalized_name)
);

CREATE TABLE IF NOT EXISTS actor_signals (
    actor_id  TEXT NOT NULL REFERENCES actors(id) ON DELETE CASCADE,
    signal_id TEXT NOT NULL REFERENCES signals(id) ON DELETE CASCADE,
    linked_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (actor_id, signal_id)
);
CREATE INDEX IF NOT EXISTS idx_actor_signals_linked ON actor_signals(linked_at);

CREATE TABLE IF NOT EXISTS scout_locks (
    city       TEXT PRIMARY KEY,
    run_id     TEXT NOT NULL,
    started_at TIMESTAMPTZ NOT NULL
);
"""

_SOURCE_COLUMNS = """
    canonical_key, city, kind, value, url, platform, role, discovery_method,
    weight, cadence_hours, active, quality_penalty, signals_produced,
    scrape_count, consecutive_empty_runs, consecutive_failures,
    last_scraped, last_produced_signal, gap_context, created_at
"""

_INSERT_SOURCE_SQL = """
INSERT INTO sources (
    canonical_key, city, kind, value, url, platform, role, discovery_method,
    weight, cadence_hours, active, quality_penalty, gap_context
)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
ON CONFLICT (canonical_key) DO NOTHING
RETURNING canonical_key
"""

_RECORD_SCRAPE_SQL = """
UPDATE sources SET
    last_scraped = $3,
    scrape_count = scrape_count + 1,
    signals_produced = signals_produced + $2,
    consecutive_empty_runs = CASE WHEN $2 > 0 THEN 0 ELSE consecutive_empty_runs + 1 END,
    consecutive_failures = 0,
    last_produced_signal = CASE WHEN $2 > 0 THEN $3 ELSE last_produced_signal END,
    updated_at = NOW()
WHERE canonical_key = $1
"""

_INSERT_SIGNAL_SQL = """
INSERT INTO signals (
    id, city, kind, title, body, confidence, latitude, longitude,
    location_name, embedding, source_key, source_url, evidence, content_hash,
    near_duplicate_of, similarity, implied_queries, review_status,
    created_at, expires_at
)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14,
        $15, $16, $17, $18, $19, $20)
RETURNING id
"""

_ACQUIRE_LOCK_SQL = """
INSERT INTO scout_locks (city, run_id, started_at)
VALUES ($1, $2, $3)
ON CONFLICT (city) DO UPDATE
    SET run_id = EXCLUDED.run_id,
        started_at = EXCLUDED.started_at
    WHERE scout_locks.started_at < $4
RETURNING run_id
"""


def _row_to_source(row: Any) -> Source:
    return Source(
        canonical_key=row["canonical_key"],
        city=row["city"],
        kind=SourceKind(row["kind"]),
        value=row["value"],
        url=row["url"],
        platform=row["platform"],
        role=SourceRole(row["role"]),
        discovery_method=DiscoveryMethod(row["discovery_method"]),
        weight=row["weight"],
        cadence_hours=row["cadence_hours"],
        active=row["active"],
        quality_penalty=row["quality_penalty"],
        signals_produced=row["signals_produced"],
        scrape_count=row["scrape_count"],
        consecutive_empty_runs=row["consecutive_empty_runs"],
        consecutive_failures=row["consecutive_failures"],
        last_scraped=row["last_scraped"],
        last_produced_signal=row["last_produced_signal"],
        gap_context=row["gap_context"],
        created_at=row["created_at"],
    )


def _row_to_signal(row: Any) -> Signal:
    embedding = row["embedding"]
    return Signal(
        id=row["id"],
        city=row["city"],
        kind=SignalKind(row["kind"]),
        title=row["title"],
        body=row["body"],
        confidence=row["confidence"],
        latitude=row["latitude"],
        longitude=row["longitude"],
        location_name=row["location_name"],
        embedding=list(embedding) if embedding is not None else None,
        source_key=row["source_key"],
        source_url=row["source_url"],
        evidence=row["evidence"],
        content_hash=row["content_hash"],
        near_duplicate_of=row["near_duplicate_of"],
        similarity=row["similarity"],
        implied_queries=list(row["implied_queries"] or []),
        review_status=row["review_status"],
        corroboration_count=row["corroboration_count"],
        last_confirmed_at=row["last_confirmed_at"],
        created_at=row["created_at"],
        expires_at=row["expires_at"],
    )


class GraphStore:
    """PostgreSQL-backed GraphReader and GraphWriter."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_tables(self) -> None:
        """Create tables and indexes (idempotent)."""
        await self._db.execute(CREATE_TABLES_SQL)
        logger.info("Graph tables ensured")

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    async def get_active_sources(self, city: str) -> list[Source]:
        rows = await self._db.fetch(
            f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE city = $1 AND active = TRUE",
            city,
        )
        return [_row_to_source(r) for r in rows]

    async def list_sources(self, city: str, include_inactive: bool = False) -> list[Source]:
        sql = f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE city = $1"
        if not include_inactive:
            sql += " AND active = TRUE"
        rows = await self._db.fetch(sql + " ORDER BY weight DESC", city)
        return [_row_to_source(r) for r in rows]

    async def get_source_keys(self, city: str) -> set[str]:
        rows = await self._db.fetch(
            "SELECT canonical_key FROM sources WHERE city = $1", city
        )
        return {r["canonical_key"] for r in rows}

    async def upsert_source(self, source: Source) -> bool:
        row = await self._db.fetchrow(
            _INSERT_SOURCE_SQL,
            source.canonical_key,
            source.city,
            source.kind.value,
            source.value,
            source.url,
            source.platform,
            source.role.value,
            source.discovery_method.value,
            source.weight,
            source.cadence_hours,
            source.active,
            source.quality_penalty,
            source.gap_context,
        )
        return row is not None

    async def record_source_scrape(
        self, canonical_key: str, signals_produced: int, scraped_at: datetime
    ) -> None:
        await self._db.execute(
            _RECORD_SCRAPE_SQL, canonical_key, signals_produced, scraped_at
        )

    async def record_source_failure(self, canonical_key: str, failed_at: datetime) -> None:
        await self._db.execute(
            """
            UPDATE sources
            SET consecutive_failures = consecutive_failures + 1, updated_at = $2
            WHERE canonical_key = $1
            """,
            canonical_key,
            failed_at,
        )

    async def set_source_weight(
        self, canonical_key: str, weight: float, cadence_hours: float
    ) -> None:
        await self._db.execute(
            """
            UPDATE sources SET weight = $2, cadence_hours = $3, updated_at = NOW()
            WHERE canonical_key = $1
            """,
            canonical_key,
            weight,
            cadence_hours,
        )

    async def set_quality_penalty(self, canonical_key: str, penalty: float) -> None:
        await self._db.execute(
            """
            UPDATE sources SET quality_penalty = $2, updated_at = NOW()
            WHERE canonical_key = $1
            """,
            canonical_key,
            penalty,
        )

    async def deactivate_source(self, canonical_key: str, reason: str) -> None:
        await self._db.execute(
            """
            UPDATE sources
            SET active = FALSE, deactivation_reason = $2, updated_at = NOW()
            WHERE canonical_key = $1
            """,
            canonical_key,
            reason,
        )

    # ------------------------------------------------------------------
    # Signals and actors
    # ------------------------------------------------------------------

    async def create_node(self, signal: Signal) -> str:
        return await self._db.fetchval(
            _INSERT_SIGNAL_SQL,
            signal.id,
            signal.city,
            signal.kind.value,
            signal.title,
            signal.body,
            signal.confidence,
            signal.latitude,
            signal.longitude,
            signal.location_name,
            signal.embedding,
            signal.source_key,
            signal.source_url,
            signal.evidence,
            signal.content_hash,
            signal.near_duplicate_of,
            signal.similarity,
            signal.implied_queries,
            signal.review_status,
            signal.created_at,
            signal.expires_at,
        )

    async def corroborate_signal(self, signal_id: str, confirmed_at: datetime) -> None:
        await self._db.execute(
            """
            UPDATE signals
            SET corroboration_count = corroboration_count + 1, last_confirmed_at = $2
            WHERE id = $1
            """,
            signal_id,
            confirmed_at,
        )

    async def refresh_signal(self, signal_id: str, confirmed_at: datetime) -> None:
        await self._db.execute(
            "UPDATE signals SET last_confirmed_at = $2 WHERE id = $1",
            signal_id,
            confirmed_at,
        )

    async def upsert_actor(self, name: str, city: str) -> str:
        # DO UPDATE (not DO NOTHING) so RETURNING yields the existing id
        return await self._db.fetchval(
            """
            INSERT INTO actors (id, city, name, normalized_name)
            VALUES ($1, $2, $3, $4)
            ON CONFLICT (city, normalized_name) DO UPDATE SET name = actors.name
            RETURNING id
            """,
            str(uuid.uuid4()),
            city,
            name.strip(),
            name.strip().lower(),
        )

    async def link_actor_to_signal(
        self, actor_id: str, signal_id: str, linked_at: datetime
    ) -> None:
        await self._db.execute(
            """
            INSERT INTO actor_signals (actor_id, signal_id, linked_at)
            VALUES ($1, $2, $3)
            ON CONFLICT (actor_id, signal_id) DO NOTHING
            """,
            actor_id,
            signal_id,
            linked_at,
        )

    async def recently_linked_signals(self, city: str, since: datetime) -> list[Signal]:
        rows = await self._db.fetch(
            """
            SELECT * FROM signals
            WHERE city = $1
              AND id IN (SELECT signal_id FROM actor_signals WHERE linked_at >= $2)
            ORDER BY created_at DESC
            """,
            city,
            since,
        )
        return [_row_to_signal(r) for r in rows]

    async def recent_signals(self, city: str, since: datetime) -> list[Signal]:
        rows = await self._db.fetch(
            "SELECT * FROM signals WHERE city = $1 AND created_at >= $2",
            city,
            since,
        )
        return [_row_to_signal(r) for r in rows]

    async def unresolved_signal_references(
        self, city: str, limit: int, after: str | None = None
    ) -> list[SignalReference]:
        rows = await self._db.fetch(
            """
            SELECT DISTINCT ON (s.source_url) s.id, s.source_url, s.title
            FROM signals s
            WHERE s.city = $1
              AND s.source_url LIKE 'http%'
              AND s.source_url !~* $3
              AND ($4::text IS NULL OR s.source_url > $4)
              AND NOT EXISTS (
                  SELECT 1 FROM sources src
                  WHERE src.city = s.city AND src.url = s.source_url
              )
            ORDER BY s.source_url, s.created_at DESC
            LIMIT $2
            """,
            city,
            limit,
            social_url_pattern(),
            after,
        )
        return [
            SignalReference(signal_id=r["id"], url=r["source_url"], title=r["title"])
            for r in rows
        ]

    async def reap_expired_signals(self, city: str, now: datetime) -> ReapStats:
        async with self._db.transaction() as conn:
            reaped = await conn.fetch(
                "DELETE FROM signals WHERE city = $1 AND expires_at < $2 RETURNING id",
                city,
                now,
            )
            orphaned = await conn.fetch(
                """
                DELETE FROM actors a
                WHERE a.city = $1
                  AND NOT EXISTS (SELECT 1 FROM actor_signals x WHERE x.actor_id = a.id)
                RETURNING id
                """,
                city,
            )
        return ReapStats(signals_reaped=len(reaped), actors_orphaned=len(orphaned))

    # ------------------------------------------------------------------
    # Scout lock
    # ------------------------------------------------------------------

    async def try_acquire_scout_lock(
        self, city: str, run_id: str, now: datetime, stale_before: datetime
    ) -> bool:
        row = await self._db.fetchrow(_ACQUIRE_LOCK_SQL, city, run_id, now, stale_before)
        return row is not None

    async def release_scout_lock(self, city: str, run_id: str) -> None:
        await self._db.execute(
            "DELETE FROM scout_locks WHERE city = $1 AND run_id = $2",
            city,
            run_id,
        )

    async def get_scout_lock(self, city: str) -> ScoutLock | None:
        row = await self._db.fetchrow(
            "SELECT city, run_id, started_at FROM scout_locks WHERE city = $1",
            city,
        )
        if row is None:
            return None
        return ScoutLock(city=row["city"], run_id=row["run_id"], started_at=row["started_at"])

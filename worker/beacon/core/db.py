"""Postgres persistence for targets, batch jobs and scores."""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from psycopg2 import extras, pool

from beacon.core.models import BatchJob, BatchMetadata, JobStatus, Provenance, ScoreRecord, Target

logger = logging.getLogger(__name__)


class StoreError(RuntimeError):
    """Raised when the store cannot be opened."""


_SCHEMA = """
CREATE TABLE IF NOT EXISTS targets (
    target_id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    address TEXT NOT NULL,
    city TEXT,
    postal_code TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS batch_jobs (
    batch_id TEXT PRIMARY KEY,
    status TEXT NOT NULL DEFAULT 'submitted',
    target_ids JSONB NOT NULL DEFAULT '[]'::jsonb,
    target_count INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    completed_at TIMESTAMPTZ,
    output_file_id TEXT,
    success_count INTEGER NOT NULL DEFAULT 0,
    error_count INTEGER NOT NULL DEFAULT 0,
    total_tokens INTEGER NOT NULL DEFAULT 0,
    cost_estimate DOUBLE PRECISION NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS scores (
    target_id TEXT PRIMARY KEY REFERENCES targets (target_id),
    decoration SMALLINT,
    coffee SMALLINT,
    study_suitable SMALLINT,
    parking TEXT,
    evidence JSONB NOT NULL DEFAULT '[]'::jsonb,
    sources JSONB NOT NULL DEFAULT '[]'::jsonb,
    model TEXT,
    batch_id TEXT REFERENCES batch_jobs (batch_id),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS targets_city_idx ON targets (city);
CREATE INDEX IF NOT EXISTS scores_updated_at_idx ON scores (updated_at);
"""

_INSERT_TARGET = """
INSERT INTO targets (target_id, name, address, city, postal_code)
VALUES (%(target_id)s, %(name)s, %(address)s, %(city)s, %(postal_code)s)
ON CONFLICT (target_id) DO NOTHING;
"""

_SELECT_NEEDING_SCORE = """
SELECT t.target_id, t.name, t.address, t.city, t.postal_code
FROM targets t
LEFT JOIN scores s ON s.target_id = t.target_id
WHERE s.target_id IS NULL
   OR s.updated_at < %(cutoff)s
ORDER BY t.target_id
LIMIT %(limit)s;
"""

_INSERT_BATCH = """
INSERT INTO batch_jobs (batch_id, status, target_ids, target_count)
VALUES (%(batch_id)s, %(status)s, %(target_ids)s, %(target_count)s);
"""

_SELECT_PENDING = """
SELECT batch_id, status, target_ids, target_count, created_at
FROM batch_jobs
WHERE status = %(status)s
ORDER BY created_at;
"""

_UPSERT_SCORE = """
INSERT INTO scores (
    target_id,
    decoration,
    coffee,
    study_suitable,
    parking,
    evidence,
    sources,
    model,
    batch_id,
    updated_at
) VALUES (
    %(target_id)s,
    %(decoration)s,
    %(coffee)s,
    %(study_suitable)s,
    %(parking)s,
    %(evidence)s,
    %(sources)s,
    %(model)s,
    %(batch_id)s,
    NOW()
)
ON CONFLICT (target_id) DO UPDATE SET
    decoration = EXCLUDED.decoration,
    coffee = EXCLUDED.coffee,
    study_suitable = EXCLUDED.study_suitable,
    parking = EXCLUDED.parking,
    evidence = EXCLUDED.evidence,
    sources = EXCLUDED.sources,
    model = EXCLUDED.model,
    batch_id = EXCLUDED.batch_id,
    updated_at = NOW();
"""

_COMPLETE_BATCH = """
UPDATE batch_jobs
SET status = %(completed)s,
    completed_at = NOW(),
    output_file_id = %(output_file_id)s,
    success_count = %(success_count)s,
    error_count = %(error_count)s,
    total_tokens = %(total_tokens)s,
    cost_estimate = %(cost_estimate)s
WHERE batch_id = %(batch_id)s
  AND status = %(submitted)s;
"""

_CLOSE_BATCH = """
UPDATE batch_jobs
SET status = %(status)s,
    completed_at = NOW(),
    success_count = 0,
    error_count = target_count
WHERE batch_id = %(batch_id)s
  AND status = %(submitted)s;
"""

_SELECT_ENRICHED = """
SELECT
    t.target_id,
    t.name,
    t.address,
    t.city,
    t.postal_code,
    s.decoration,
    s.coffee,
    s.study_suitable,
    s.parking,
    s.evidence,
    s.sources,
    s.updated_at
FROM targets t
LEFT JOIN scores s ON s.target_id = t.target_id
WHERE %(city)s::text IS NULL OR t.city = %(city)s
ORDER BY t.name;
"""

_SELECT_BATCH_LOGS = """
SELECT
    batch_id,
    status,
    target_count,
    success_count,
    error_count,
    total_tokens,
    cost_estimate,
    created_at,
    completed_at,
    CASE
        WHEN completed_at IS NOT NULL
        THEN ROUND((EXTRACT(EPOCH FROM (completed_at - created_at)) / 3600)::numeric, 2)::float
        ELSE NULL
    END AS duration_hours
FROM batch_jobs
ORDER BY created_at DESC
LIMIT %(limit)s;
"""


def _score_params(record: ScoreRecord, provenance: Provenance) -> Dict[str, Any]:
    return {
        "target_id": record.target_id,
        "decoration": record.decoration,
        "coffee": record.coffee,
        "study_suitable": record.study_suitable,
        "parking": record.parking,
        "evidence": extras.Json(list(record.evidence)),
        "sources": extras.Json(list(record.sources)),
        "model": provenance.model,
        "batch_id": provenance.batch_id,
    }


class Store:
    """Handle over a psycopg2 connection pool.

    Open one per process with :meth:`open`, pass it to whatever needs
    persistence, and close it on the way out (or use it as a context manager).
    """

    def __init__(self, connection_pool: Any) -> None:
        self._pool = connection_pool

    @classmethod
    def open(cls, dsn: str, minconn: int = 1, maxconn: int = 5) -> "Store":
        if not dsn:
            raise StoreError("DATABASE_URL is required for database connections")
        connection_pool = pool.SimpleConnectionPool(
            minconn,
            maxconn,
            dsn=dsn,
            connect_timeout=10,
        )
        logger.info("Database connection pool initialised")
        return cls(connection_pool)

    def close(self) -> None:
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None
            logger.info("Database connection pool closed")

    def __enter__(self) -> "Store":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @contextmanager
    def connection(self):
        """Yield a pooled connection; commits on success, rolls back on error."""
        if self._pool is None:
            raise StoreError("store is closed")
        conn = self._pool.getconn()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    def _fetch_all(self, sql: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self.connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(sql, params)
                return [dict(row) for row in cur.fetchall()]

    def _execute(self, sql: str, params: Dict[str, Any]) -> int:
        with self.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.rowcount

    def ensure_schema(self) -> None:
        """Create tables and indexes if they are missing. Never drops anything."""
        with self.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(_SCHEMA)
        logger.info("Database schema ensured")

    # ---------- targets ----------

    def insert_targets(self, rows: Iterable[Dict[str, Any]]) -> int:
        inserted = 0
        with self.connection() as conn:
            with conn.cursor() as cur:
                for row in rows:
                    cur.execute(_INSERT_TARGET, row)
                    inserted += max(cur.rowcount, 0)
        logger.debug("Inserted %d new targets", inserted)
        return inserted

    def count_targets(self) -> int:
        rows = self._fetch_all("SELECT COUNT(*) AS count FROM targets;", {})
        return int(rows[0]["count"]) if rows else 0

    def select_targets_needing_score(self, limit: int, cutoff: datetime) -> List[Target]:
        rows = self._fetch_all(_SELECT_NEEDING_SCORE, {"limit": limit, "cutoff": cutoff})
        return [Target(**row) for row in rows]

    # ---------- batch jobs ----------

    def record_batch_start(self, batch_id: str, target_ids: List[str]) -> None:
        self._execute(
            _INSERT_BATCH,
            {
                "batch_id": batch_id,
                "status": JobStatus.SUBMITTED.value,
                "target_ids": extras.Json(list(target_ids)),
                "target_count": len(target_ids),
            },
        )
        logger.info("Recorded batch %s with %d targets", batch_id, len(target_ids))

    def pending_batches(self) -> List[BatchJob]:
        rows = self._fetch_all(_SELECT_PENDING, {"status": JobStatus.SUBMITTED.value})
        return [
            BatchJob(
                batch_id=row["batch_id"],
                status=JobStatus(row["status"]),
                target_ids=list(row.get("target_ids") or []),
                target_count=row.get("target_count") or 0,
                created_at=row.get("created_at"),
            )
            for row in rows
        ]

    def complete_batch(self, batch_id: str, metadata: BatchMetadata) -> bool:
        """Move a submitted job to completed. Returns False if it was not pending."""
        updated = self._execute(
            _COMPLETE_BATCH,
            {
                "batch_id": batch_id,
                "completed": JobStatus.COMPLETED.value,
                "submitted": JobStatus.SUBMITTED.value,
                "output_file_id": metadata.output_file_id,
                "success_count": metadata.success_count,
                "error_count": metadata.error_count,
                "total_tokens": metadata.total_tokens,
                "cost_estimate": metadata.cost_estimate,
            },
        )
        return updated > 0

    def close_batch(self, batch_id: str, status: JobStatus) -> bool:
        """Record a terminal-unsuccessful provider outcome for a submitted job."""
        if status in (JobStatus.SUBMITTED, JobStatus.COMPLETED):
            raise ValueError(f"close_batch only records unsuccessful outcomes, got {status.value}")
        updated = self._execute(
            _CLOSE_BATCH,
            {"batch_id": batch_id, "status": status.value, "submitted": JobStatus.SUBMITTED.value},
        )
        return updated > 0

    # ---------- scores ----------

    def upsert_score(self, record: ScoreRecord, provenance: Provenance) -> None:
        """Insert or fully replace the single score row of a target."""
        self._execute(_UPSERT_SCORE, _score_params(record, provenance))
        logger.debug("Upserted score for %s from batch %s", record.target_id, provenance.batch_id)

    # ---------- read-only views ----------

    def enriched_targets(self, city: Optional[str]) -> List[Dict[str, Any]]:
        return self._fetch_all(_SELECT_ENRICHED, {"city": city})

    def batch_logs(self, limit: int = 50) -> List[Dict[str, Any]]:
        return self._fetch_all(_SELECT_BATCH_LOGS, {"limit": limit})

"""SQLite-backed reputation storage."""

from __future__ import annotations

import contextlib
import json
import sqlite3
from datetime import datetime
from pathlib import Path
from threading import RLock

from marketplace_protocol.models import Badge, ReputationRecord


class DuplicateUpdateError(Exception):
    """Raised when an (escrow_id, subject_ref) update has already been applied."""


class DuplicateBadgeError(Exception):
    """Raised when a subject already holds a badge of the given type."""


class ReputationStore:
    """
    SQLite-backed storage for reputation records, applied-update keys, and badges.

    The applied-update key and the record it produced are written in the
    same transaction, so an update is counted at most once even across
    restarts and redeliveries.
    """

    _RECORD_COLUMNS_SQL = (
        "subject_ref, total_jobs, successful_jobs, cumulative_response_hours, "
        "quality_ratings, staked_amount, score, first_seen_at, updated_at"
    )
    _RECORD_UPSERT_SQL = (
        "INSERT INTO records ("
        "subject_ref, total_jobs, successful_jobs, cumulative_response_hours, "
        "quality_ratings, staked_amount, score, first_seen_at, updated_at"
        ") VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?) "
        "ON CONFLICT(subject_ref) DO UPDATE SET "
        "total_jobs = excluded.total_jobs, "
        "successful_jobs = excluded.successful_jobs, "
        "cumulative_response_hours = excluded.cumulative_response_hours, "
        "quality_ratings = excluded.quality_ratings, "
        "staked_amount = excluded.staked_amount, "
        "score = excluded.score, "
        "updated_at = excluded.updated_at"
    )

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA foreign_keys=ON")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._init_schema()

    def _init_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS records (
                    subject_ref               TEXT PRIMARY KEY,
                    total_jobs                INTEGER NOT NULL,
                    successful_jobs           INTEGER NOT NULL,
                    cumulative_response_hours REAL NOT NULL,
                    quality_ratings           TEXT NOT NULL,
                    staked_amount             INTEGER NOT NULL,
                    score                     INTEGER NOT NULL,
                    first_seen_at             TEXT NOT NULL,
                    updated_at                TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS applied_updates (
                    escrow_id    TEXT NOT NULL,
                    subject_ref  TEXT NOT NULL,
                    job_id       TEXT NOT NULL,
                    applied_at   TEXT NOT NULL
                );

                CREATE UNIQUE INDEX IF NOT EXISTS ux_applied_updates_key
                    ON applied_updates (escrow_id, subject_ref);

                CREATE TABLE IF NOT EXISTS badges (
                    subject_ref  TEXT NOT NULL,
                    badge_type   INTEGER NOT NULL,
                    name         TEXT NOT NULL,
                    issued_at    TEXT NOT NULL,
                    metadata     TEXT NOT NULL
                );

                CREATE UNIQUE INDEX IF NOT EXISTS ux_badges_subject_type
                    ON badges (subject_ref, badge_type);
                """
            )
            self._db.commit()

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> ReputationRecord:
        return ReputationRecord(
            subject_ref=row["subject_ref"],
            total_jobs=int(row["total_jobs"]),
            successful_jobs=int(row["successful_jobs"]),
            cumulative_response_hours=float(row["cumulative_response_hours"]),
            quality_ratings=tuple(float(value) for value in json.loads(row["quality_ratings"])),
            staked_amount=int(row["staked_amount"]),
            score=int(row["score"]),
            first_seen_at=datetime.fromisoformat(row["first_seen_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _record_values(record: ReputationRecord) -> tuple[object, ...]:
        return (
            record.subject_ref,
            record.total_jobs,
            record.successful_jobs,
            record.cumulative_response_hours,
            json.dumps(list(record.quality_ratings)),
            record.staked_amount,
            record.score,
            record.first_seen_at.isoformat(),
            record.updated_at.isoformat(),
        )

    def get_record(self, subject_ref: str) -> ReputationRecord | None:
        """Fetch a subject's record."""
        with self._lock:
            row = self._db.execute(
                f"SELECT {self._RECORD_COLUMNS_SQL} FROM records "  # nosec B608
                "WHERE subject_ref = ?",
                (subject_ref,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_record(row)

    def list_records(self) -> list[ReputationRecord]:
        """All records, highest score first."""
        with self._lock:
            rows = self._db.execute(
                f"SELECT {self._RECORD_COLUMNS_SQL} FROM records "  # nosec B608
                "ORDER BY score DESC, subject_ref"
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def has_applied(self, escrow_id: str, subject_ref: str) -> bool:
        with self._lock:
            row = self._db.execute(
                "SELECT 1 FROM applied_updates WHERE escrow_id = ? AND subject_ref = ?",
                (escrow_id, subject_ref),
            ).fetchone()
        return row is not None

    def commit_update(
        self,
        escrow_id: str,
        job_id: str,
        record: ReputationRecord,
        applied_at: datetime,
    ) -> None:
        """Record the idempotency key and the updated record atomically."""
        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                self._db.execute(
                    "INSERT INTO applied_updates (escrow_id, subject_ref, job_id, applied_at) "
                    "VALUES (?, ?, ?, ?)",
                    (escrow_id, record.subject_ref, job_id, applied_at.isoformat()),
                )
                self._db.execute(self._RECORD_UPSERT_SQL, self._record_values(record))
                self._db.commit()
            except sqlite3.IntegrityError as exc:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                if "unique" in str(exc).lower():
                    raise DuplicateUpdateError(
                        f"Update for escrow_id={escrow_id} subject={record.subject_ref} "
                        "already applied"
                    ) from exc
                raise
            except Exception:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise

    def save_record(self, record: ReputationRecord) -> None:
        """Insert or replace a record outside the job-update path (e.g. staking)."""
        with self._lock:
            self._db.execute(self._RECORD_UPSERT_SQL, self._record_values(record))
            self._db.commit()

    def insert_badge(self, badge: Badge) -> None:
        """Record a badge held by a subject."""
        with self._lock:
            try:
                self._db.execute(
                    "INSERT INTO badges (subject_ref, badge_type, name, issued_at, metadata) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (
                        badge.subject_ref,
                        badge.badge_type,
                        badge.name,
                        badge.issued_at.isoformat(),
                        json.dumps(badge.metadata, sort_keys=True),
                    ),
                )
                self._db.commit()
            except sqlite3.IntegrityError as exc:
                if "unique" in str(exc).lower():
                    raise DuplicateBadgeError(
                        f"{badge.subject_ref} already holds badge type {badge.badge_type}"
                    ) from exc
                raise

    def has_badge(self, subject_ref: str, badge_type: int) -> bool:
        with self._lock:
            row = self._db.execute(
                "SELECT 1 FROM badges WHERE subject_ref = ? AND badge_type = ?",
                (subject_ref, badge_type),
            ).fetchone()
        return row is not None

    def list_badges(self, subject_ref: str) -> list[Badge]:
        """Badges held by a subject, ordered by badge type."""
        with self._lock:
            rows = self._db.execute(
                "SELECT subject_ref, badge_type, name, issued_at, metadata FROM badges "
                "WHERE subject_ref = ? ORDER BY badge_type",
                (subject_ref,),
            ).fetchall()
        return [
            Badge(
                subject_ref=row["subject_ref"],
                badge_type=int(row["badge_type"]),
                name=row["name"],
                issued_at=datetime.fromisoformat(row["issued_at"]),
                metadata=json.loads(row["metadata"]),
            )
            for row in rows
        ]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()

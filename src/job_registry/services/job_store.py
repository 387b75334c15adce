"""SQLite-backed job and offer storage."""

from __future__ import annotations

import contextlib
import json
import sqlite3
from datetime import datetime
from pathlib import Path
from threading import RLock
from typing import Any

from marketplace_protocol.models import EscrowStatus, Job, JobStatus, Offer


class DuplicateJobError(Exception):
    """Raised when attempting to insert a job with a duplicate job_id."""


class DuplicateOfferError(Exception):
    """Raised when attempting to insert an offer with a duplicate offer_id."""


def _to_text(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _from_text(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value is not None else None


class JobStore:
    """
    SQLite-backed storage for jobs and their offers.

    Status changes go through :meth:`update_job` with ``expected_status``,
    which only touches the row while it is still in that status and reports
    the affected row count, making it the compare-and-swap for transitions.
    """

    _JOB_COLUMNS: tuple[str, ...] = (
        "job_id",
        "client_ref",
        "title",
        "description",
        "budget",
        "required_skills",
        "deadline",
        "status",
        "created_at",
        "escrow_id",
        "assigned_worker",
        "accepted_offer_id",
        "escrow_created",
        "escrow_status",
        "delivery_ref",
        "verification_score",
        "verification_passed",
        "assigned_at",
        "verified_at",
        "completed_at",
        "disputed_at",
    )
    _JOB_COLUMNS_SQL = (
        "job_id, client_ref, title, description, budget, required_skills, deadline, status, "
        "created_at, escrow_id, assigned_worker, accepted_offer_id, escrow_created, "
        "escrow_status, delivery_ref, verification_score, verification_passed, assigned_at, "
        "verified_at, completed_at, disputed_at"
    )
    _OFFER_COLUMNS_SQL = (
        "offer_id, job_id, worker_ref, price, eta, sla_terms, reputation_score, received_at"
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
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS jobs (
                    job_id              TEXT PRIMARY KEY,
                    client_ref          TEXT NOT NULL,
                    title               TEXT NOT NULL,
                    description         TEXT NOT NULL,
                    budget              INTEGER NOT NULL,
                    required_skills     TEXT NOT NULL,
                    deadline            TEXT,
                    status              TEXT NOT NULL DEFAULT 'open',
                    created_at          TEXT NOT NULL,
                    escrow_id           TEXT,
                    assigned_worker     TEXT,
                    accepted_offer_id   TEXT,
                    escrow_created      INTEGER NOT NULL DEFAULT 0,
                    escrow_status       INTEGER NOT NULL DEFAULT 0,
                    delivery_ref        TEXT,
                    verification_score  INTEGER,
                    verification_passed INTEGER,
                    assigned_at         TEXT,
                    verified_at         TEXT,
                    completed_at        TEXT,
                    disputed_at         TEXT
                );

                CREATE INDEX IF NOT EXISTS ix_jobs_status ON jobs (status);

                CREATE TABLE IF NOT EXISTS offers (
                    offer_id          TEXT PRIMARY KEY,
                    job_id            TEXT NOT NULL REFERENCES jobs (job_id),
                    worker_ref        TEXT NOT NULL,
                    price             INTEGER NOT NULL,
                    eta               TEXT NOT NULL,
                    sla_terms         TEXT NOT NULL,
                    reputation_score  INTEGER,
                    received_at       TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS ix_offers_job ON offers (job_id);
                """
            )
            self._db.commit()

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> Job:
        passed = row["verification_passed"]
        return Job(
            job_id=row["job_id"],
            client_ref=row["client_ref"],
            title=row["title"],
            description=row["description"],
            budget=int(row["budget"]),
            required_skills=tuple(json.loads(row["required_skills"])),
            deadline=_from_text(row["deadline"]),
            status=JobStatus(row["status"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            escrow_id=row["escrow_id"],
            assigned_worker=row["assigned_worker"],
            accepted_offer_id=row["accepted_offer_id"],
            escrow_created=bool(row["escrow_created"]),
            escrow_status=EscrowStatus(int(row["escrow_status"])),
            delivery_ref=row["delivery_ref"],
            verification_score=row["verification_score"],
            verification_passed=None if passed is None else bool(passed),
        )

    @staticmethod
    def _row_to_offer(row: sqlite3.Row) -> Offer:
        return Offer(
            offer_id=row["offer_id"],
            job_id=row["job_id"],
            worker_ref=row["worker_ref"],
            price=int(row["price"]),
            eta=row["eta"],
            sla_terms=row["sla_terms"],
            received_at=datetime.fromisoformat(row["received_at"]),
            reputation_score=row["reputation_score"],
        )

    def insert_job(self, job: Job) -> None:
        """Insert a new job row."""
        values = (
            job.job_id,
            job.client_ref,
            job.title,
            job.description,
            job.budget,
            json.dumps(list(job.required_skills)),
            _to_text(job.deadline),
            job.status.value,
            job.created_at.isoformat(),
        )
        with self._lock:
            try:
                self._db.execute("BEGIN IMMEDIATE")
                self._db.execute(
                    "INSERT INTO jobs (job_id, client_ref, title, description, budget, "
                    "required_skills, deadline, status, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    values,
                )
                self._db.commit()
            except sqlite3.IntegrityError as exc:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                if "unique" in str(exc).lower():
                    raise DuplicateJobError(
                        f"A job with job_id={job.job_id} already exists"
                    ) from exc
                raise
            except Exception:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise

    def get_job(self, job_id: str) -> Job | None:
        """Fetch a job by ID."""
        with self._lock:
            row = self._db.execute(
                f"SELECT {self._JOB_COLUMNS_SQL} FROM jobs WHERE job_id = ?",  # nosec B608
                (job_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_job(row)

    def update_job(
        self,
        job_id: str,
        updates: dict[str, Any],
        *,
        expected_status: JobStatus | None,
    ) -> int:
        """Update job columns and return the number of affected rows."""
        if len(updates) == 0:
            return 0

        if any(column not in self._JOB_COLUMNS for column in updates):
            msg = "Attempted to update unknown job column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = [
            value.isoformat() if isinstance(value, datetime) else value
            for value in updates.values()
        ]

        query = "UPDATE jobs SET " + set_clause + " WHERE job_id = ?"  # nosec B608
        params.append(job_id)
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status.value)

        with self._lock:
            cursor = self._db.execute(query, params)
            self._db.commit()
        return int(cursor.rowcount)

    def list_jobs(self, status: JobStatus | None = None) -> list[Job]:
        """List jobs, newest first, optionally filtered by status."""
        query = f"SELECT {self._JOB_COLUMNS_SQL} FROM jobs"  # nosec B608
        params: list[object] = []
        if status is not None:
            query += " WHERE status = ?"
            params.append(status.value)
        query += " ORDER BY created_at DESC"

        with self._lock:
            rows = self._db.execute(query, params).fetchall()
        return [self._row_to_job(row) for row in rows]

    def insert_offer(self, offer: Offer) -> None:
        """Append an offer to a job's offer list."""
        with self._lock:
            try:
                self._db.execute(
                    "INSERT INTO offers (offer_id, job_id, worker_ref, price, eta, sla_terms, "
                    "reputation_score, received_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        offer.offer_id,
                        offer.job_id,
                        offer.worker_ref,
                        offer.price,
                        offer.eta,
                        offer.sla_terms,
                        offer.reputation_score,
                        offer.received_at.isoformat(),
                    ),
                )
                self._db.commit()
            except sqlite3.IntegrityError as exc:
                with contextlib.suppress(sqlite3.Error):
                    self._db.rollback()
                if "unique" in str(exc).lower():
                    raise DuplicateOfferError(
                        f"An offer with offer_id={offer.offer_id} already exists"
                    ) from exc
                raise

    def get_offer(self, offer_id: str, job_id: str) -> Offer | None:
        """Fetch an offer by offer_id within a job."""
        with self._lock:
            row = self._db.execute(
                f"SELECT {self._OFFER_COLUMNS_SQL} FROM offers "  # nosec B608
                "WHERE offer_id = ? AND job_id = ?",
                (offer_id, job_id),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_offer(row)

    def get_offers_for_job(self, job_id: str) -> list[Offer]:
        """Fetch all offers for a job in arrival order."""
        with self._lock:
            rows = self._db.execute(
                f"SELECT {self._OFFER_COLUMNS_SQL} FROM offers "  # nosec B608
                "WHERE job_id = ? ORDER BY received_at, rowid",
                (job_id,),
            ).fetchall()
        return [self._row_to_offer(row) for row in rows]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()

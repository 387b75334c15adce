"""In-process storage for the worker's job cache, bids, and accepted work."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from marketplace_protocol.models import WorkStatus, can_transition

if TYPE_CHECKING:
    from datetime import datetime

    from marketplace_protocol.models import Delivery, Job


@dataclass(frozen=True)
class WorkItem:
    """Worker-side state for one accepted job, keyed by escrow."""

    escrow_id: str
    job_id: str
    offer_id: str
    registry_agent: str
    status: WorkStatus
    accepted_at: datetime
    funding_attempts: int = 0
    funding_exhausted: bool = False
    delivery: Delivery | None = None


class WorkStore:
    """
    Owned key-value store with guarded transitions.

    Handlers run on a single event loop and never await between a read and
    the guarded write, so :meth:`transition` acts as a compare-and-swap.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._bids: dict[str, str] = {}
        self._work: dict[str, WorkItem] = {}

    def cache_job(self, job: Job) -> bool:
        """Cache a broadcast job. Returns False when it was already known."""
        if job.job_id in self._jobs:
            return False
        self._jobs[job.job_id] = job
        return True

    def get_job(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    def list_jobs(self) -> list[Job]:
        return list(self._jobs.values())

    def record_bid(self, job_id: str, offer_id: str) -> None:
        self._bids[job_id] = offer_id

    def bid_for(self, job_id: str) -> str | None:
        return self._bids.get(job_id)

    def create_work(self, item: WorkItem) -> bool:
        """Insert new work. Returns False when work already exists for the escrow."""
        if item.escrow_id in self._work:
            return False
        self._work[item.escrow_id] = item
        return True

    def get_work(self, escrow_id: str) -> WorkItem | None:
        return self._work.get(escrow_id)

    def list_work(self, status: WorkStatus | None = None) -> list[WorkItem]:
        return [item for item in self._work.values() if status is None or item.status == status]

    def transition(
        self,
        escrow_id: str,
        expected: WorkStatus,
        target: WorkStatus,
        **changes: Any,
    ) -> WorkItem | None:
        """Move work from ``expected`` to ``target``; None when the guard fails."""
        current = self._work.get(escrow_id)
        if current is None or current.status != expected or not can_transition(expected, target):
            return None
        updated = dataclasses.replace(current, status=target, **changes)
        self._work[escrow_id] = updated
        return updated

    def update(self, escrow_id: str, **changes: Any) -> WorkItem | None:
        """Change non-status fields of existing work."""
        current = self._work.get(escrow_id)
        if current is None:
            return None
        updated = dataclasses.replace(current, **changes)
        self._work[escrow_id] = updated
        return updated

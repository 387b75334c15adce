"""Core entities and lifecycle enums shared across agents."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum, StrEnum


class EscrowStatus(IntEnum):
    """On-ledger escrow state. Values match the ledger's numeric encoding."""

    NONE = 0
    CREATED = 1
    FUNDED = 2
    DELIVERED = 3
    DISPUTED = 4
    RELEASED = 5
    REFUNDED = 6


def is_funded(status: int) -> bool:
    """An escrow is funded once it has reached Funded or any later state."""
    return status >= EscrowStatus.FUNDED


class JobStatus(StrEnum):
    """Client-side job lifecycle."""

    OPEN = "open"
    ASSIGNED = "assigned"
    DELIVERED_PENDING_VERIFICATION = "delivered_pending_verification"
    VERIFIED = "verified"
    COMPLETED = "completed"
    DISPUTED = "disputed"


JOB_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.OPEN: frozenset({JobStatus.ASSIGNED}),
    JobStatus.ASSIGNED: frozenset({JobStatus.DELIVERED_PENDING_VERIFICATION}),
    JobStatus.DELIVERED_PENDING_VERIFICATION: frozenset({JobStatus.VERIFIED, JobStatus.DISPUTED}),
    JobStatus.VERIFIED: frozenset({JobStatus.COMPLETED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.DISPUTED: frozenset(),
}


class WorkStatus(StrEnum):
    """Worker-side lifecycle for one accepted job."""

    IN_PROGRESS = "in_progress"
    AWAITING_FUNDING = "awaiting_funding"
    DELIVERING = "delivering"
    DELIVERED = "delivered"


WORK_TRANSITIONS: dict[WorkStatus, frozenset[WorkStatus]] = {
    WorkStatus.IN_PROGRESS: frozenset({WorkStatus.AWAITING_FUNDING}),
    WorkStatus.AWAITING_FUNDING: frozenset({WorkStatus.DELIVERING}),
    WorkStatus.DELIVERING: frozenset({WorkStatus.DELIVERED}),
    WorkStatus.DELIVERED: frozenset(),
}


def can_transition(current: StrEnum, target: StrEnum) -> bool:
    """Check a job or work transition against its fixed table."""
    if isinstance(current, JobStatus) and isinstance(target, JobStatus):
        return target in JOB_TRANSITIONS[current]
    if isinstance(current, WorkStatus) and isinstance(target, WorkStatus):
        return target in WORK_TRANSITIONS[current]
    return False


@dataclass(frozen=True)
class Job:
    """A unit of work posted by a client."""

    job_id: str
    client_ref: str
    title: str
    description: str
    budget: int
    required_skills: tuple[str, ...]
    deadline: datetime | None
    status: JobStatus
    created_at: datetime
    escrow_id: str | None = None
    assigned_worker: str | None = None
    accepted_offer_id: str | None = None
    escrow_created: bool = False
    escrow_status: EscrowStatus = EscrowStatus.NONE
    delivery_ref: str | None = None
    verification_score: int | None = None
    verification_passed: bool | None = None


@dataclass(frozen=True)
class Offer:
    """A worker's bid on a job."""

    offer_id: str
    job_id: str
    worker_ref: str
    price: int
    eta: str
    sla_terms: str
    received_at: datetime
    reputation_score: int | None = None


@dataclass(frozen=True)
class Escrow:
    """Ledger-side view of locked funds for one job."""

    escrow_id: str
    client: str
    worker: str
    amount: int
    status: EscrowStatus
    delivery_ref: str | None = None


@dataclass(frozen=True)
class Delivery:
    """Worker output handed to verification."""

    escrow_id: str
    job_id: str
    delivery_ref: str
    delivered_at: datetime
    artifact: dict[str, object] = field(default_factory=dict)


@dataclass(frozen=True)
class CheckResult:
    """Outcome of one named verification check. ``score`` is None for pass/fail-only checks."""

    name: str
    passed: bool
    score: int | None
    details: str = ""


@dataclass(frozen=True)
class VerificationAttestation:
    """Immutable verifier verdict for one escrow."""

    escrow_id: str
    job_id: str
    delivery_ref: str
    passed: bool
    score: int
    checks: tuple[CheckResult, ...]
    verifier_ref: str
    verified_at: datetime
    mode: str = "single"
    agreement_ratio: float | None = None


@dataclass(frozen=True)
class ReputationRecord:
    """Aggregated history for one subject (worker or client)."""

    subject_ref: str
    total_jobs: int
    successful_jobs: int
    cumulative_response_hours: float
    quality_ratings: tuple[float, ...]
    staked_amount: int
    score: int
    first_seen_at: datetime
    updated_at: datetime

    @property
    def success_rate(self) -> float:
        """Fraction of successful jobs in [0, 1]; 0 when there is no history."""
        if self.total_jobs == 0:
            return 0.0
        return self.successful_jobs / self.total_jobs


@dataclass(frozen=True)
class Badge:
    """Non-transferable achievement held by a subject."""

    subject_ref: str
    badge_type: int
    name: str
    issued_at: datetime
    metadata: dict[str, str] = field(default_factory=dict)

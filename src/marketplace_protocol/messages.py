"""Typed message contracts exchanged between agents.

Every message carries a ``type`` literal. Raw payloads from the wire are
validated against the tagged union with :func:`parse_message`.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class Topic(StrEnum):
    """Bus topics."""

    JOBS = "marketplace.jobs"
    OFFERS = "marketplace.offers"
    OFFERS_ACCEPTED = "marketplace.offers.accepted"
    VERIFICATION_REQUESTS = "marketplace.verification.requests"
    VERIFICATION_CONSENSUS = "marketplace.verification.consensus"
    DELIVERIES = "marketplace.deliveries"
    VERIFICATIONS = "marketplace.verifications"
    REPUTATION_UPDATES = "marketplace.reputation.updates"


def _utc_now() -> datetime:
    return datetime.now(UTC)


class _BaseMessage(BaseModel):
    """Fields common to every message."""

    model_config = ConfigDict(extra="forbid", frozen=True)
    sender: str = Field(min_length=1)
    to: str | None = None
    sent_at: datetime = Field(default_factory=_utc_now)


class JobBroadcast(_BaseMessage):
    """A client announcing a new job."""

    type: Literal["job.broadcast"] = "job.broadcast"
    job_id: str
    title: str
    description: str
    budget: int = Field(gt=0)
    required_skills: tuple[str, ...]
    deadline: datetime | None = None


class JobBid(_BaseMessage):
    """A worker's offer on a job."""

    type: Literal["job.bid"] = "job.bid"
    job_id: str
    offer_id: str
    price: int = Field(gt=0)
    eta: str
    worker_ref: str
    sla_terms: str
    reputation_score: int | None = None


class OfferAccepted(_BaseMessage):
    """Client notification that an offer won and escrow is set up."""

    type: Literal["offer.accepted"] = "offer.accepted"
    job_id: str
    offer_id: str
    escrow_id: str


class VerificationRequest(_BaseMessage):
    """Worker asking the coordinator to verify a delivery."""

    type: Literal["verification.request"] = "verification.request"
    escrow_id: str
    job_id: str
    delivery_ref: str
    job_type: str
    deadline: datetime | None = None
    delivered_at: datetime | None = None
    reply_to: str | None = None


class CheckOutcome(BaseModel):
    """One named check result as carried on the wire."""

    model_config = ConfigDict(extra="forbid", frozen=True)
    name: str
    passed: bool
    score: int | None = None


class VerificationResult(_BaseMessage):
    """Verdict forwarded to the job registry."""

    type: Literal["verification.result"] = "verification.result"
    escrow_id: str
    job_id: str
    delivery_ref: str
    passed: bool
    score: int = Field(ge=0, le=100)
    checks: tuple[CheckOutcome, ...]
    verifier_ref: str
    mode: Literal["single", "consensus"]
    agreement_ratio: float | None = None


class VerificationAttestationMessage(_BaseMessage):
    """A single verifier's raw attestation, broadcast for audit."""

    type: Literal["verification.attestation"] = "verification.attestation"
    escrow_id: str
    job_id: str
    delivery_ref: str
    passed: bool
    score: int = Field(ge=0, le=100)
    checks: tuple[CheckOutcome, ...]
    verifier_ref: str


class ConsensusVote(BaseModel):
    """A verifier vote submitted for consensus."""

    model_config = ConfigDict(extra="forbid", frozen=True)
    verifier_ref: str
    passed: bool
    score: int = Field(ge=0, le=100)
    weight: float | None = None

    @field_validator("weight")
    @classmethod
    def _weight_must_be_positive(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            msg = "weight must be greater than zero"
            raise ValueError(msg)
        return value


class ConsensusRequest(_BaseMessage):
    """Externally assembled votes to aggregate into one verdict."""

    type: Literal["verification.consensus_request"] = "verification.consensus_request"
    escrow_id: str
    job_id: str
    delivery_ref: str
    votes: tuple[ConsensusVote, ...] = Field(min_length=1)
    reply_to: str | None = None


class ReputationScores(BaseModel):
    """Per-role score components of a reputation update."""

    model_config = ConfigDict(extra="forbid", frozen=True)
    worker: int
    client: int
    verification: int


class ReputationUpdate(_BaseMessage):
    """Completion report applied once per (escrow, subject)."""

    type: Literal["reputation.update"] = "reputation.update"
    escrow_id: str
    job_id: str
    worker: str
    client: str
    scores: ReputationScores


Message = Annotated[
    JobBroadcast
    | JobBid
    | OfferAccepted
    | VerificationRequest
    | VerificationResult
    | VerificationAttestationMessage
    | ConsensusRequest
    | ReputationUpdate,
    Field(discriminator="type"),
]

_MESSAGE_ADAPTER: TypeAdapter[Message] = TypeAdapter(Message)


def parse_message(raw: dict[str, Any]) -> Message:
    """
    Validate a raw payload against the message union.

    Raises:
        pydantic.ValidationError: If the payload matches no message type
    """
    return _MESSAGE_ADAPTER.validate_python(raw)


def to_wire(message: BaseModel) -> dict[str, Any]:
    """Serialize a message to a JSON-compatible dict."""
    result: dict[str, Any] = message.model_dump(mode="json")
    return result


def correlation_of(message: BaseModel) -> dict[str, str]:
    """Extract job/escrow identifiers for log context."""
    context: dict[str, str] = {}
    for field_name in ("job_id", "escrow_id"):
        value = getattr(message, field_name, None)
        if isinstance(value, str):
            context[field_name] = value
    return context

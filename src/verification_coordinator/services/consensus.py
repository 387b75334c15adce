"""Weighted multi-verifier consensus."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from verification_coordinator.checks.pipeline import PASS_THRESHOLD

if TYPE_CHECKING:
    from collections.abc import Sequence

DEFAULT_VERIFIER_WEIGHT = 1.0


@dataclass(frozen=True)
class VerifierVote:
    """One verifier's verdict and its voting weight."""

    verifier_ref: str
    passed: bool
    score: int
    weight: float = DEFAULT_VERIFIER_WEIGHT

    def __post_init__(self) -> None:
        if self.weight <= 0:
            msg = f"Verifier weight must be positive, got {self.weight} for {self.verifier_ref}"
            raise ValueError(msg)


@dataclass(frozen=True)
class ConsensusResult:
    """Outcome of aggregating verifier votes."""

    passed: bool
    score: float
    agreement_ratio: float
    pass_weight: float
    fail_weight: float
    total_weight: float

    @property
    def rounded_score(self) -> int:
        return int(self.score + 0.5)


def compute_consensus(votes: Sequence[VerifierVote]) -> ConsensusResult:
    """
    Aggregate weighted votes into one verdict.

    The consensus score is the weight-averaged score of the passing voters
    only (0 when nobody passed). Passing requires a strict weight majority,
    so an exact split fails, and a consensus score of at least 70.
    """
    if not votes:
        msg = "Consensus requires at least one vote"
        raise ValueError(msg)

    total_weight = sum(vote.weight for vote in votes)
    pass_weight = sum(vote.weight for vote in votes if vote.passed)
    fail_weight = total_weight - pass_weight

    if pass_weight > 0:
        score = sum(vote.weight * vote.score for vote in votes if vote.passed) / pass_weight
    else:
        score = 0.0

    return ConsensusResult(
        passed=pass_weight > fail_weight and score >= PASS_THRESHOLD,
        score=score,
        agreement_ratio=pass_weight / total_weight,
        pass_weight=pass_weight,
        fail_weight=fail_weight,
        total_weight=total_weight,
    )

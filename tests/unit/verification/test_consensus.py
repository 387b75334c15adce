"""Unit tests for weighted consensus."""

from __future__ import annotations

import pytest

from verification_coordinator.services.consensus import VerifierVote, compute_consensus


@pytest.mark.unit
def test_exact_split_fails() -> None:
    result = compute_consensus(
        [
            VerifierVote("v1", passed=True, score=95),
            VerifierVote("v2", passed=False, score=30),
        ]
    )

    assert result.passed is False
    assert result.agreement_ratio == 0.5
    assert result.pass_weight == result.fail_weight == 1.0


@pytest.mark.unit
def test_majority_with_enough_score_passes() -> None:
    result = compute_consensus(
        [
            VerifierVote("v1", passed=True, score=90),
            VerifierVote("v2", passed=True, score=70),
            VerifierVote("v3", passed=False, score=20),
        ]
    )

    assert result.passed is True
    assert result.score == 80
    assert result.agreement_ratio == pytest.approx(2 / 3)


@pytest.mark.unit
def test_heavier_dissent_outweighs_more_voters() -> None:
    result = compute_consensus(
        [
            VerifierVote("v1", passed=True, score=90, weight=1.0),
            VerifierVote("v2", passed=True, score=90, weight=1.0),
            VerifierVote("v3", passed=False, score=10, weight=3.0),
        ]
    )

    assert result.passed is False
    assert result.total_weight == 5.0
    assert result.agreement_ratio == pytest.approx(0.4)


@pytest.mark.unit
def test_unanimous_pass_below_threshold_fails() -> None:
    result = compute_consensus(
        [
            VerifierVote("v1", passed=True, score=60),
            VerifierVote("v2", passed=True, score=65),
        ]
    )

    assert result.passed is False
    assert result.score == 62.5


@pytest.mark.unit
def test_score_is_weighted_over_passing_voters_only() -> None:
    result = compute_consensus(
        [
            VerifierVote("v1", passed=True, score=100, weight=3.0),
            VerifierVote("v2", passed=True, score=60, weight=1.0),
            VerifierVote("v3", passed=False, score=0, weight=1.0),
        ]
    )

    assert result.score == 90
    assert result.passed is True


@pytest.mark.unit
def test_no_passing_voters_scores_zero() -> None:
    result = compute_consensus([VerifierVote("v1", passed=False, score=80)])

    assert result.score == 0
    assert result.passed is False
    assert result.agreement_ratio == 0


@pytest.mark.unit
def test_rounded_score_rounds_half_up() -> None:
    result = compute_consensus(
        [
            VerifierVote("v1", passed=True, score=70),
            VerifierVote("v2", passed=True, score=75),
        ]
    )

    assert result.rounded_score == 73


@pytest.mark.unit
def test_empty_votes_rejected() -> None:
    with pytest.raises(ValueError, match="at least one vote"):
        compute_consensus([])


@pytest.mark.unit
@pytest.mark.parametrize("weight", [0.0, -1.0])
def test_non_positive_weight_rejected(weight: float) -> None:
    with pytest.raises(ValueError, match="weight must be positive"):
        VerifierVote("v1", passed=True, score=90, weight=weight)

"""Reputation score formula.

The composite score is a weighted sum of five components, each clamped
to [0, 100] before weighting, rounded half-up to an integer in [0, 100].
"""

from __future__ import annotations

import dataclasses
import math
from datetime import timedelta
from typing import TYPE_CHECKING

from marketplace_protocol.models import ReputationRecord

if TYPE_CHECKING:
    from datetime import datetime

SUCCESS_RATE_WEIGHT = 0.35
RESPONSE_TIME_WEIGHT = 0.20
QUALITY_WEIGHT = 0.25
CONSISTENCY_WEIGHT = 0.10
STAKING_WEIGHT = 0.10

NEUTRAL_SUCCESS_RATE = 50.0
DEFAULT_RESPONSE_HOURS = 24.0
RESPONSE_WINDOW_HOURS = 48.0
DEFAULT_QUALITY = 75.0
CONSISTENCY_HORIZON_DAYS = 365.0
STAKING_CAP = 1000
SEED_ACCOUNT_AGE = timedelta(days=30)

# Fixed response-time samples per completed job, by subject role.
WORKER_RESPONSE_HOURS = 24.0
CLIENT_RESPONSE_HOURS = 12.0
QUALITY_RATING_MULTIPLIER = 15


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclasses.dataclass(frozen=True)
class ScoreBreakdown:
    """Individual clamped components and the resulting composite."""

    success_rate: float
    response_time: float
    quality: float
    consistency: float
    staking: float

    @property
    def composite(self) -> int:
        weighted = (
            self.success_rate * SUCCESS_RATE_WEIGHT
            + self.response_time * RESPONSE_TIME_WEIGHT
            + self.quality * QUALITY_WEIGHT
            + self.consistency * CONSISTENCY_WEIGHT
            + self.staking * STAKING_WEIGHT
        )
        return round_half_up(clamp(weighted))


def score_breakdown(record: ReputationRecord, now: datetime) -> ScoreBreakdown:
    """Compute each component for a record as of ``now``."""
    if record.total_jobs > 0:
        success_rate = record.successful_jobs / record.total_jobs * 100
        average_response = record.cumulative_response_hours / record.total_jobs
    else:
        success_rate = NEUTRAL_SUCCESS_RATE
        average_response = DEFAULT_RESPONSE_HOURS

    if record.quality_ratings:
        quality = sum(record.quality_ratings) / len(record.quality_ratings)
    else:
        quality = DEFAULT_QUALITY

    account_age_days = (now - record.first_seen_at).total_seconds() / 86400

    return ScoreBreakdown(
        success_rate=clamp(success_rate),
        response_time=clamp(100 - average_response / RESPONSE_WINDOW_HOURS * 100),
        quality=clamp(quality),
        consistency=clamp(account_age_days / CONSISTENCY_HORIZON_DAYS * 100),
        staking=clamp(record.staked_amount / STAKING_CAP * 100),
    )


def compute_score(record: ReputationRecord, now: datetime) -> int:
    return score_breakdown(record, now).composite


def new_record(subject_ref: str, now: datetime) -> ReputationRecord:
    """Default-initialized record for a subject seen for the first time."""
    record = ReputationRecord(
        subject_ref=subject_ref,
        total_jobs=0,
        successful_jobs=0,
        cumulative_response_hours=0.0,
        quality_ratings=(),
        staked_amount=0,
        score=0,
        first_seen_at=now - SEED_ACCOUNT_AGE,
        updated_at=now,
    )
    return dataclasses.replace(record, score=compute_score(record, now))


def record_completed_job(
    record: ReputationRecord,
    score_component: int,
    response_hours: float,
    now: datetime,
) -> ReputationRecord:
    """Apply one successful completion and recompute the score."""
    rating = clamp(score_component * QUALITY_RATING_MULTIPLIER)
    updated = dataclasses.replace(
        record,
        total_jobs=record.total_jobs + 1,
        successful_jobs=record.successful_jobs + 1,
        cumulative_response_hours=record.cumulative_response_hours + response_hours,
        quality_ratings=(*record.quality_ratings, rating),
        updated_at=now,
    )
    return dataclasses.replace(updated, score=compute_score(updated, now))


def record_with_stake(
    record: ReputationRecord,
    staked_amount: int,
    now: datetime,
) -> ReputationRecord:
    updated = dataclasses.replace(record, staked_amount=staked_amount, updated_at=now)
    return dataclasses.replace(updated, score=compute_score(updated, now))

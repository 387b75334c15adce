"""Badge eligibility rules and the badge issuer contract."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from reputation_ledger.services.scoring import round_half_up

if TYPE_CHECKING:
    from collections.abc import Callable

    from marketplace_protocol.models import ReputationRecord

TOP_RATED_THRESHOLD_BPS = 9000
RELIABLE_SUCCESS_RATE = 0.95
RELIABLE_MIN_JOBS = 10


@dataclass(frozen=True)
class BadgeRule:
    """A badge type and the predicate a record must satisfy to earn it."""

    badge_type: int
    name: str
    is_eligible: Callable[[ReputationRecord], bool]


def score_bps(record: ReputationRecord) -> int:
    """Score expressed in basis points of the 0-100 scale (90 -> 9000)."""
    return round_half_up(record.score * 100)


BADGE_RULES: tuple[BadgeRule, ...] = (
    BadgeRule(0, "FIRST_JOB", lambda record: record.total_jobs >= 1),
    BadgeRule(1, "TEN_JOBS", lambda record: record.total_jobs >= 10),
    BadgeRule(2, "HUNDRED_JOBS", lambda record: record.total_jobs >= 100),
    BadgeRule(3, "TOP_RATED", lambda record: score_bps(record) >= TOP_RATED_THRESHOLD_BPS),
    BadgeRule(
        5,
        "RELIABLE",
        lambda record: record.total_jobs >= RELIABLE_MIN_JOBS
        and record.success_rate >= RELIABLE_SUCCESS_RATE,
    ),
)


def eligible_badges(record: ReputationRecord) -> list[BadgeRule]:
    return [rule for rule in BADGE_RULES if rule.is_eligible(record)]


class BadgeIssuer(Protocol):
    """External issuer of non-transferable badges."""

    async def has_type(self, subject_ref: str, badge_type: int) -> bool: ...

    async def issue_badge(
        self, subject_ref: str, badge_type: int, metadata: dict[str, str]
    ) -> str: ...


class InMemoryBadgeIssuer:
    """Deterministic issuer for local runs and tests."""

    def __init__(self) -> None:
        self._held: dict[tuple[str, int], str] = {}
        self.issued: list[tuple[str, int, dict[str, str]]] = []

    async def has_type(self, subject_ref: str, badge_type: int) -> bool:
        return (subject_ref, badge_type) in self._held

    async def issue_badge(
        self, subject_ref: str, badge_type: int, metadata: dict[str, str]
    ) -> str:
        key = (subject_ref, badge_type)
        if key not in self._held:
            self._held[key] = f"badge-{len(self._held) + 1}"
            self.issued.append((subject_ref, badge_type, dict(metadata)))
        return self._held[key]

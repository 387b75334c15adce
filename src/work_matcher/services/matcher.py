"""Bid decision and pricing. Pure functions, no side effects."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable


def evaluate_job(required_skills: Iterable[str], worker_skills: Iterable[str]) -> bool:
    """
    Decide whether to bid on a job.

    A job with no required skills is open to everyone. Otherwise at least one
    required skill must appear, case-insensitively, inside one of the
    worker's skills ("python" matches "Python Backend").
    """
    required = [skill.strip().lower() for skill in required_skills if skill.strip()]
    if not required:
        return True
    own = [skill.strip().lower() for skill in worker_skills]
    return any(wanted in skill for wanted in required for skill in own)


def bid_price(budget: int, discount_percent: int) -> int:
    """Budget less the configured discount, never below 1."""
    return max(1, budget * (100 - discount_percent) // 100)


def job_type_for(required_skills: Iterable[str]) -> str:
    """The first required skill names the job type; jobs without skills are ``general``."""
    for skill in required_skills:
        if skill.strip():
            return skill.strip().lower()
    return "general"

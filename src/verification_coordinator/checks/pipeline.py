"""Check selection by job type and result aggregation."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

from verification_coordinator.checks.stubs import (
    CodeQualityCheck,
    CompletenessCheck,
    ContentCheck,
    DeadlineCheck,
    DesignQualityCheck,
    PlagiarismCheck,
    QualityCheck,
)

if TYPE_CHECKING:
    import random
    from collections.abc import Sequence

    from marketplace_protocol.models import CheckResult

    from verification_coordinator.checks.base import Check, CheckContext

PASS_THRESHOLD = 70


@dataclass(frozen=True)
class PipelineOutcome:
    """Aggregated verdict over all checks run for one delivery."""

    passed: bool
    score: int
    results: tuple[CheckResult, ...]


def aggregate(results: Sequence[CheckResult]) -> tuple[bool, int]:
    """
    Combine check results into (passed, score).

    The score is the half-up rounded mean of the checks that report a
    numeric score. When none do, it is 100 if every check passed, else 0.
    """
    all_passed = all(result.passed for result in results)
    numeric = [result.score for result in results if result.score is not None]
    if numeric:
        score = int(math.floor(sum(numeric) / len(numeric) + 0.5))
    else:
        score = 100 if all_passed else 0
    return all_passed and score >= PASS_THRESHOLD, score


class CheckPipeline:
    """Runs the checks registered for a job type, falling back to the default set."""

    def __init__(
        self,
        default_checks: Sequence[Check],
        checks_by_type: dict[str, Sequence[Check]],
    ) -> None:
        self._default_checks = tuple(default_checks)
        self._checks_by_type = {
            job_type.lower(): tuple(checks) for job_type, checks in checks_by_type.items()
        }

    def checks_for(self, job_type: str) -> tuple[Check, ...]:
        return self._checks_by_type.get(job_type.lower(), self._default_checks)

    async def run(self, context: CheckContext) -> PipelineOutcome:
        results = [await check.run(context) for check in self.checks_for(context.job_type)]
        passed, score = aggregate(results)
        return PipelineOutcome(passed=passed, score=score, results=tuple(results))


def build_stub_pipeline(rng: random.Random) -> CheckPipeline:
    """Pipeline of simulated checks sharing one random stream."""
    plagiarism = PlagiarismCheck(rng)
    completeness = CompletenessCheck(rng)
    deadline = DeadlineCheck()
    return CheckPipeline(
        default_checks=(ContentCheck(rng), plagiarism, QualityCheck(rng), completeness, deadline),
        checks_by_type={
            "coding": (plagiarism, CodeQualityCheck(rng), completeness, deadline),
            "design": (plagiarism, DesignQualityCheck(rng), completeness, deadline),
        },
    )

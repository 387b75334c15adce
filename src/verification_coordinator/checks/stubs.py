"""Simulated checks.

Each check draws from an injected ``random.Random`` so runs can be seeded.
They stand in for external AI, plagiarism, and code analysis services and
only need to produce plausible results.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from marketplace_protocol.models import CheckResult

from verification_coordinator.checks.base import Check, CheckContext

if TYPE_CHECKING:
    import random


def _weighted(parts: list[tuple[float, float]]) -> int:
    return round(sum(value * weight for value, weight in parts))


class ContentCheck(Check):
    """AI relevance/accuracy review of textual content."""

    name = "content"

    def __init__(self, rng: random.Random) -> None:
        self._rng = rng

    async def run(self, context: CheckContext) -> CheckResult:
        relevance = self._rng.randint(80, 99)
        accuracy = self._rng.randint(85, 99)
        completeness = self._rng.randint(80, 99)
        clarity = self._rng.randint(80, 99)
        score = _weighted(
            [(relevance, 0.3), (accuracy, 0.3), (completeness, 0.2), (clarity, 0.2)]
        )
        return CheckResult(name=self.name, passed=score >= 75, score=score)


class PlagiarismCheck(Check):
    """Similarity scan; passes while similarity stays under the threshold."""

    name = "plagiarism"

    def __init__(self, rng: random.Random, originality_threshold: int = 90) -> None:
        self._rng = rng
        self._max_similarity = 100 - originality_threshold

    async def run(self, context: CheckContext) -> CheckResult:
        similarity = round(self._rng.uniform(0, 20), 1)
        return CheckResult(
            name=self.name,
            passed=similarity < self._max_similarity,
            score=None,
            details=f"similarity={similarity}%",
        )


class QualityCheck(Check):
    """Rubric scoring over equally weighted criteria."""

    name = "quality"
    criteria = ("grammar", "structure", "originality", "relevance", "presentation")

    def __init__(self, rng: random.Random) -> None:
        self._rng = rng

    async def run(self, context: CheckContext) -> CheckResult:
        scores = [self._rng.randint(70, 99) for _ in self.criteria]
        score = round(sum(scores) / len(scores))
        return CheckResult(name=self.name, passed=score >= 70, score=score)


class CompletenessCheck(Check):
    name = "completeness"

    def __init__(self, rng: random.Random) -> None:
        self._rng = rng

    async def run(self, context: CheckContext) -> CheckResult:
        return CheckResult(name=self.name, passed=self._rng.random() > 0.2, score=None)


class DeadlineCheck(Check):
    """Deterministic: on time unless both timestamps are known and delivery is late."""

    name = "deadline"

    async def run(self, context: CheckContext) -> CheckResult:
        on_time = (
            context.deadline is None
            or context.delivered_at is None
            or context.delivered_at <= context.deadline
        )
        return CheckResult(name=self.name, passed=on_time, score=None)


class CodeQualityCheck(Check):
    """Lint, coverage, complexity and maintainability metrics for coding jobs."""

    name = "code_quality"

    def __init__(self, rng: random.Random) -> None:
        self._rng = rng

    async def run(self, context: CheckContext) -> CheckResult:
        lint = self._rng.randint(80, 99)
        coverage = self._rng.randint(70, 99)
        complexity = self._rng.randint(20, 39)
        maintainability = self._rng.randint(75, 94)
        score = _weighted(
            [(lint, 0.3), (coverage, 0.3), (100 - complexity, 0.2), (maintainability, 0.2)]
        )
        return CheckResult(
            name=self.name,
            passed=score >= 70 and coverage >= 60,
            score=score,
            details=f"coverage={coverage}%",
        )


class DesignQualityCheck(Check):
    """Aesthetics, usability, originality and consistency for design jobs."""

    name = "design_quality"

    def __init__(self, rng: random.Random) -> None:
        self._rng = rng

    async def run(self, context: CheckContext) -> CheckResult:
        aesthetics = self._rng.randint(80, 99)
        usability = self._rng.randint(75, 94)
        originality = self._rng.randint(80, 99)
        consistency = self._rng.randint(80, 99)
        score = _weighted(
            [(aesthetics, 0.3), (usability, 0.3), (originality, 0.2), (consistency, 0.2)]
        )
        return CheckResult(name=self.name, passed=score >= 75, score=score)

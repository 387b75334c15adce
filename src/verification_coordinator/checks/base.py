"""Check interfaces and value types."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

from marketplace_protocol.models import CheckResult

if TYPE_CHECKING:
    from datetime import datetime


@dataclass(frozen=True)
class CheckContext:
    """Inputs provided to checks for one delivery."""

    escrow_id: str
    job_id: str
    delivery_ref: str
    job_type: str
    deadline: datetime | None
    delivered_at: datetime | None


class Check(ABC):
    """Abstract verification check contract."""

    name: str

    @abstractmethod
    async def run(self, context: CheckContext) -> CheckResult:
        """Evaluate a delivery and return a result."""


class FixedCheck(Check):
    """Deterministic check implementation for local/testing use."""

    def __init__(self, name: str, passed: bool, score: int | None) -> None:
        self.name = name
        self._passed = passed
        self._score = score
        self.calls = 0

    async def run(self, _context: CheckContext) -> CheckResult:
        """Return a fixed result without evaluating the delivery."""
        self.calls += 1
        return CheckResult(name=self.name, passed=self._passed, score=self._score)

"""Verification checks."""

from verification_coordinator.checks.base import Check, CheckContext, FixedCheck
from verification_coordinator.checks.pipeline import CheckPipeline, PipelineOutcome

__all__ = ["Check", "CheckContext", "CheckPipeline", "FixedCheck", "PipelineOutcome"]

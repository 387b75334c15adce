"""Configuration for the Work Matcher agent."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, field_validator
from service_commons.config import get_config_path as resolve_config_path
from service_commons.config import load_yaml_config

if TYPE_CHECKING:
    from pathlib import Path


class FundingWatcherConfig(BaseModel):
    """Bounded polling schedule for escrow funding confirmation."""

    model_config = ConfigDict(extra="forbid")
    initial_delay_seconds: float = Field(ge=0)
    interval_seconds: float = Field(gt=0)
    max_attempts: int = Field(ge=1)


class WorkMatcherConfig(BaseModel):
    """Work Matcher behaviour settings."""

    model_config = ConfigDict(extra="forbid")

    worker_ref: str
    skills: list[str]
    eta: str
    sla_terms: str
    bid_discount_percent: int = Field(ge=0, le=99)
    coordinator_agent: str
    funding_watcher: FundingWatcherConfig

    @field_validator("worker_ref", "coordinator_agent")
    @classmethod
    def must_not_be_empty(cls, value: str) -> str:
        """Reject blank agent identities at startup."""
        if not value.strip():
            msg = "value must not be empty"
            raise ValueError(msg)
        return value


class _FileSettings(BaseModel):
    """Raw YAML file shape, restricted to the work_matcher section."""

    model_config = ConfigDict(extra="allow")

    work_matcher: WorkMatcherConfig


def load_work_matcher_settings(config_path: Path | None = None) -> WorkMatcherConfig:
    """Load Work Matcher settings from config.yaml."""
    if config_path is None:
        config_path = resolve_config_path(
            env_var_name="MARKETPLACE_CONFIG_PATH",
            default_filename="config.yaml",
        )
    return _FileSettings(**load_yaml_config(config_path)).work_matcher

"""Configuration for the Reputation Ledger agent."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from service_commons.config import get_config_path as resolve_config_path
from service_commons.config import load_yaml_config

if TYPE_CHECKING:
    from pathlib import Path


class BadgeIssuerHttpConfig(BaseModel):
    """Badge issuer HTTP endpoint configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    has_badge_path: str
    issue_path: str
    timeout_seconds: int


class BadgeIssuerConfig(BaseModel):
    """Which badge issuer backend to use."""

    model_config = ConfigDict(extra="forbid")
    backend: Literal["memory", "http"]
    http: BadgeIssuerHttpConfig | None = None

    @model_validator(mode="after")
    def http_backend_requires_endpoint(self) -> BadgeIssuerConfig:
        """Reject an http backend without endpoint settings."""
        if self.backend == "http" and self.http is None:
            msg = "badge_issuer.http is required when backend is 'http'"
            raise ValueError(msg)
        return self


class ReputationLedgerConfig(BaseModel):
    """Reputation Ledger behaviour settings."""

    model_config = ConfigDict(extra="forbid")

    agent_name: str
    database_path: str
    badge_issuer: BadgeIssuerConfig

    @field_validator("agent_name", "database_path")
    @classmethod
    def must_not_be_empty(cls, value: str) -> str:
        """Reject blank identity and storage settings at startup."""
        if not value.strip():
            msg = "value must not be empty"
            raise ValueError(msg)
        return value


class _FileSettings(BaseModel):
    """Raw YAML file shape, restricted to the reputation_ledger section."""

    model_config = ConfigDict(extra="allow")

    reputation_ledger: ReputationLedgerConfig


def load_reputation_ledger_settings(config_path: Path | None = None) -> ReputationLedgerConfig:
    """Load Reputation Ledger settings from config.yaml.

    Args:
        config_path: Explicit path to config.yaml. Falls back to the
                     MARKETPLACE_CONFIG_PATH env var, then to ``config.yaml``
                     in the working directory.
    """
    if config_path is None:
        config_path = resolve_config_path(
            env_var_name="MARKETPLACE_CONFIG_PATH",
            default_filename="config.yaml",
        )
    return _FileSettings(**load_yaml_config(config_path)).reputation_ledger

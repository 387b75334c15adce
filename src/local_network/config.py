"""
Configuration for running every agent in one process.

Loads configuration from YAML with ZERO defaults.
Every value must be explicitly specified or startup fails.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Literal

from job_registry.config import JobRegistryConfig
from pydantic import BaseModel, ConfigDict, Field, model_validator
from reputation_ledger.config import ReputationLedgerConfig
from service_commons.config import (
    REDACTION_MARKER,
    create_settings_loader,
    get_safe_model_config,
)
from service_commons.config import (
    get_config_path as resolve_config_path,
)
from verification_coordinator.config import VerificationCoordinatorConfig
from work_matcher.config import WorkMatcherConfig

if TYPE_CHECKING:
    from pathlib import Path


class ServiceConfig(BaseModel):
    """Service identity configuration."""

    model_config = ConfigDict(extra="forbid")
    name: str
    version: str


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")
    level: str
    directory: str | None = None


class LedgerHttpConfig(BaseModel):
    """Escrow ledger gateway connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    create_path: str
    fund_path: str
    status_path: str
    submit_path: str
    approve_path: str
    timeout_seconds: int


class LedgerConfig(BaseModel):
    """Which escrow ledger backend to use."""

    model_config = ConfigDict(extra="forbid")
    backend: Literal["memory", "http"]
    http: LedgerHttpConfig | None = None

    @model_validator(mode="after")
    def http_backend_requires_endpoint(self) -> LedgerConfig:
        """Reject an http backend without endpoint settings."""
        if self.backend == "http" and self.http is None:
            msg = "ledger.http is required when backend is 'http'"
            raise ValueError(msg)
        return self


class DemoJobConfig(BaseModel):
    """A job posted by the registry at startup."""

    model_config = ConfigDict(extra="forbid")
    title: str
    description: str
    budget: int = Field(gt=0)
    required_skills: list[str]


class Settings(BaseModel):
    """
    Root configuration container.

    All fields are REQUIRED. No defaults exist.
    Missing fields cause immediate startup failure.
    """

    model_config = ConfigDict(extra="forbid")
    service: ServiceConfig
    logging: LoggingConfig
    ledger: LedgerConfig
    job_registry: JobRegistryConfig
    work_matcher: WorkMatcherConfig
    verification_coordinator: VerificationCoordinatorConfig
    reputation_ledger: ReputationLedgerConfig
    demo_jobs: list[DemoJobConfig]

    @model_validator(mode="after")
    def agents_must_agree_on_names(self) -> Settings:
        """Cross-agent routing names must point at the configured agents."""
        if self.work_matcher.coordinator_agent != self.verification_coordinator.agent_name:
            msg = "work_matcher.coordinator_agent must match verification_coordinator.agent_name"
            raise ValueError(msg)
        if self.verification_coordinator.registry_agent != self.job_registry.agent_name:
            msg = "verification_coordinator.registry_agent must match job_registry.agent_name"
            raise ValueError(msg)
        return self


def get_config_path() -> Path:
    """Determine configuration file path."""
    return resolve_config_path(
        env_var_name="MARKETPLACE_CONFIG_PATH",
        default_filename="config.yaml",
    )


get_settings, clear_settings_cache = create_settings_loader(Settings, get_config_path)


def get_safe_config() -> dict[str, Any]:
    """Get configuration with sensitive values redacted."""
    return get_safe_model_config(get_settings(), REDACTION_MARKER)

"""Configuration for the Job Registry agent."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, field_validator
from service_commons.config import get_config_path as resolve_config_path
from service_commons.config import load_yaml_config

if TYPE_CHECKING:
    from pathlib import Path


class JobRegistryConfig(BaseModel):
    """Job Registry behaviour settings."""

    model_config = ConfigDict(extra="forbid")

    agent_name: str
    client_ref: str
    database_path: str
    auto_accept_offers: bool
    auto_approve_verified: bool

    @field_validator("agent_name", "client_ref", "database_path")
    @classmethod
    def must_not_be_empty(cls, value: str) -> str:
        """Reject blank identity and storage settings at startup."""
        if not value.strip():
            msg = "value must not be empty"
            raise ValueError(msg)
        return value


class _FileSettings(BaseModel):
    """Raw YAML file shape, restricted to the job_registry section."""

    model_config = ConfigDict(extra="allow")

    job_registry: JobRegistryConfig


def load_job_registry_settings(config_path: Path | None = None) -> JobRegistryConfig:
    """Load Job Registry settings from config.yaml."""
    if config_path is None:
        config_path = resolve_config_path(
            env_var_name="MARKETPLACE_CONFIG_PATH",
            default_filename="config.yaml",
        )
    return _FileSettings(**load_yaml_config(config_path)).job_registry

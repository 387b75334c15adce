"""Configuration for the Verification Coordinator agent."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from service_commons.config import get_config_path as resolve_config_path
from service_commons.config import load_yaml_config

if TYPE_CHECKING:
    from pathlib import Path


class VerifierConfig(BaseModel):
    """One verifier on the consensus panel."""

    model_config = ConfigDict(extra="forbid")
    verifier_ref: str
    weight: float = Field(gt=0)


class VerificationCoordinatorConfig(BaseModel):
    """Verification Coordinator behaviour settings."""

    model_config = ConfigDict(extra="forbid")

    agent_name: str
    verifier_ref: str
    registry_agent: str
    mode: Literal["single", "consensus"]
    seed: int | None
    panel: list[VerifierConfig]

    @field_validator("agent_name", "verifier_ref", "registry_agent")
    @classmethod
    def must_not_be_empty(cls, value: str) -> str:
        """Reject blank agent identities at startup."""
        if not value.strip():
            msg = "value must not be empty"
            raise ValueError(msg)
        return value

    @model_validator(mode="after")
    def validate_panel(self) -> VerificationCoordinatorConfig:
        """Consensus mode needs a panel of distinct verifiers."""
        if self.mode == "consensus" and len(self.panel) < 2:
            msg = "INVALID_PANEL: consensus mode requires at least two verifiers"
            raise ValueError(msg)

        seen: set[str] = set()
        for verifier in self.panel:
            if verifier.verifier_ref in seen:
                msg = f"Duplicate verifier_ref: {verifier.verifier_ref}"
                raise ValueError(msg)
            seen.add(verifier.verifier_ref)
        return self


class _FileSettings(BaseModel):
    """Raw YAML file shape, restricted to the verification_coordinator section."""

    model_config = ConfigDict(extra="allow")

    verification_coordinator: VerificationCoordinatorConfig


def load_verification_coordinator_settings(
    config_path: Path | None = None,
) -> VerificationCoordinatorConfig:
    """Load Verification Coordinator settings from config.yaml."""
    if config_path is None:
        config_path = resolve_config_path(
            env_var_name="MARKETPLACE_CONFIG_PATH",
            default_filename="config.yaml",
        )
    return _FileSettings(**load_yaml_config(config_path)).verification_coordinator

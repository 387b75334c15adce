"""Configuration loading tests for the Job Registry."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from job_registry.config import load_job_registry_settings

VALID = """\
job_registry:
  agent_name: "job-registry"
  client_ref: "client-1"
  database_path: "data/jobs.db"
  auto_accept_offers: false
  auto_approve_verified: true
other_section:
  ignored: true
"""


@pytest.mark.unit
def test_loads_section_from_explicit_path(tmp_path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(VALID)

    config = load_job_registry_settings(path)

    assert config.agent_name == "job-registry"
    assert config.auto_approve_verified is True
    assert config.auto_accept_offers is False


@pytest.mark.unit
def test_loads_from_env_var(tmp_path, monkeypatch) -> None:
    path = tmp_path / "marketplace.yaml"
    path.write_text(VALID)
    monkeypatch.setenv("MARKETPLACE_CONFIG_PATH", str(path))

    assert load_job_registry_settings().client_ref == "client-1"


@pytest.mark.unit
def test_missing_field_fails(tmp_path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(VALID.replace('  client_ref: "client-1"\n', ""))

    with pytest.raises(ValidationError):
        load_job_registry_settings(path)


@pytest.mark.unit
def test_extra_field_fails(tmp_path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(VALID.replace("  client_ref:", "  fee: 3\n  client_ref:"))

    with pytest.raises(ValidationError):
        load_job_registry_settings(path)


@pytest.mark.unit
def test_blank_agent_name_fails(tmp_path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(VALID.replace('"job-registry"', '"  "'))

    with pytest.raises(ValidationError):
        load_job_registry_settings(path)

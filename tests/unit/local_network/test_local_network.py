"""Tests for single-process configuration and wiring."""

from __future__ import annotations

from pathlib import Path

import pytest
from marketplace_protocol.escrow import InMemoryEscrowLedger
from marketplace_protocol.ledger_client import EscrowLedgerClient
from pydantic import ValidationError

from local_network.config import (
    LedgerConfig,
    LedgerHttpConfig,
    clear_settings_cache,
    get_safe_config,
    get_settings,
)
from local_network.network import LocalNetwork, build_ledger

REPO_CONFIG = Path(__file__).resolve().parents[3] / "config.yaml"


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    def _write(text: str) -> Path:
        path = tmp_path / "config.yaml"
        path.write_text(text)
        monkeypatch.setenv("MARKETPLACE_CONFIG_PATH", str(path))
        clear_settings_cache()
        return path

    yield _write
    clear_settings_cache()


def _repo_config(tmp_path) -> str:
    text = REPO_CONFIG.read_text()
    text = text.replace('"data/job-registry.db"', f'"{tmp_path / "jobs.db"}"')
    return text.replace('"data/reputation.db"', f'"{tmp_path / "reputation.db"}"')


@pytest.mark.unit
def test_shipped_config_loads(config_file, tmp_path) -> None:
    config_file(_repo_config(tmp_path))

    settings = get_settings()

    assert settings.service.name == "marketplace"
    assert settings.job_registry.agent_name == "job-registry"
    assert settings.work_matcher.coordinator_agent == "verification-coordinator"
    assert [job.budget for job in settings.demo_jobs] == [100]
    assert get_settings() is settings


@pytest.mark.unit
def test_safe_config_is_plain_dict(config_file, tmp_path) -> None:
    config_file(_repo_config(tmp_path))

    safe = get_safe_config()

    assert safe["ledger"]["backend"] == "memory"
    assert safe["reputation_ledger"]["agent_name"] == "reputation-ledger"


@pytest.mark.unit
def test_mismatched_coordinator_name_rejected(config_file, tmp_path) -> None:
    config_file(
        _repo_config(tmp_path).replace(
            'coordinator_agent: "verification-coordinator"', 'coordinator_agent: "elsewhere"'
        )
    )

    with pytest.raises(ValidationError, match="coordinator_agent must match"):
        get_settings()


@pytest.mark.unit
def test_mismatched_registry_name_rejected(config_file, tmp_path) -> None:
    config_file(
        _repo_config(tmp_path).replace('registry_agent: "job-registry"', 'registry_agent: "other"')
    )

    with pytest.raises(ValidationError, match="registry_agent must match"):
        get_settings()


@pytest.mark.unit
def test_missing_section_rejected(config_file, tmp_path) -> None:
    text = _repo_config(tmp_path)
    config_file(text.split("demo_jobs:")[0])

    with pytest.raises(ValidationError):
        get_settings()


@pytest.mark.unit
async def test_build_ledger_backends() -> None:
    assert isinstance(build_ledger(LedgerConfig(backend="memory")), InMemoryEscrowLedger)

    client = build_ledger(
        LedgerConfig(
            backend="http",
            http=LedgerHttpConfig(
                base_url="http://localhost:9000",
                create_path="/escrows",
                fund_path="/escrows/{escrow_id}/fund",
                status_path="/escrows/{escrow_id}",
                submit_path="/escrows/{escrow_id}/delivery",
                approve_path="/escrows/{escrow_id}/approve",
                timeout_seconds=5,
            ),
        )
    )
    assert isinstance(client, EscrowLedgerClient)
    await client.close()


@pytest.mark.unit
def test_http_ledger_requires_endpoint() -> None:
    with pytest.raises(ValidationError, match="ledger.http is required"):
        LedgerConfig(backend="http")


@pytest.mark.unit
async def test_network_registers_every_agent(config_file, tmp_path, clock) -> None:
    config_file(_repo_config(tmp_path))
    network = LocalNetwork(get_settings(), clock=clock)

    network.start()

    assert network.worker.name == "worker-1"
    assert network.verifier.coordinator.mode == "single"
    assert network._reputation_score("worker-1") is None
    await network.close()

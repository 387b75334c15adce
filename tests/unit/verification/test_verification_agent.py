"""Bus routing tests for the Verification Coordinator agent."""

from __future__ import annotations

import pytest
from marketplace_protocol.messages import Topic, VerificationRequest

from verification_coordinator.agent import VerificationAgent
from verification_coordinator.checks import CheckPipeline, FixedCheck
from verification_coordinator.config import VerificationCoordinatorConfig
from verification_coordinator.services.coordinator import PanelVerifier


def _make_agent(bus, clock) -> VerificationAgent:
    config = VerificationCoordinatorConfig(
        agent_name="verification-coordinator",
        verifier_ref="coordinator",
        registry_agent="job-registry",
        mode="single",
        seed=1,
        panel=[],
    )
    panel = [PanelVerifier("v1", 1.0, CheckPipeline([FixedCheck("quality", True, 88)], {}))]
    agent = VerificationAgent(config, bus, clock, panel=panel)
    agent.register()
    return agent


def _request(to: str) -> VerificationRequest:
    return VerificationRequest(
        sender="worker-1",
        to=to,
        escrow_id="0xesc",
        job_id="0xjob",
        delivery_ref="sha256:abc",
        job_type="general",
        reply_to="job-registry",
    )


@pytest.mark.unit
async def test_handles_request_addressed_to_it(bus, clock) -> None:
    agent = _make_agent(bus, clock)

    await bus.publish(Topic.VERIFICATION_REQUESTS, _request("verification-coordinator"))

    assert agent.coordinator.get_attestation("0xesc") is not None
    assert bus.messages_on(Topic.DELIVERIES)[0]["score"] == 88


@pytest.mark.unit
async def test_ignores_request_for_another_coordinator(bus, clock) -> None:
    agent = _make_agent(bus, clock)

    await bus.publish(Topic.VERIFICATION_REQUESTS, _request("someone-else"))

    assert agent.coordinator.list_attestations() == []
    assert bus.messages_on(Topic.DELIVERIES) == []


@pytest.mark.unit
def test_default_panel_built_from_config(bus, clock) -> None:
    config = VerificationCoordinatorConfig(
        agent_name="verification-coordinator",
        verifier_ref="coordinator",
        registry_agent="job-registry",
        mode="single",
        seed=3,
        panel=[],
    )

    agent = VerificationAgent(config, bus, clock)

    assert agent.name == "verification-coordinator"
    assert agent.coordinator.mode == "single"

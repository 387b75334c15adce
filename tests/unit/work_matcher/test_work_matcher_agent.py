"""Unit tests for WorkMatcherAgent."""

from __future__ import annotations

import httpx
import pytest
from marketplace_protocol.ledger_client import EscrowLedgerClient
from marketplace_protocol.messages import JobBroadcast, OfferAccepted, Topic
from marketplace_protocol.models import EscrowStatus, WorkStatus

from work_matcher.agent import WorkMatcherAgent
from work_matcher.config import FundingWatcherConfig, WorkMatcherConfig


def _make_config(**overrides: object) -> WorkMatcherConfig:
    fields: dict[str, object] = {
        "worker_ref": "worker-1",
        "skills": ["python", "data"],
        "eta": "2h",
        "sla_terms": "one revision",
        "bid_discount_percent": 10,
        "coordinator_agent": "verification-coordinator",
        "funding_watcher": FundingWatcherConfig(
            initial_delay_seconds=2, interval_seconds=5, max_attempts=30
        ),
    }
    fields.update(overrides)
    return WorkMatcherConfig(**fields)


def _broadcast(job_id: str = "0xjob", skills: tuple[str, ...] = ("python",)) -> JobBroadcast:
    return JobBroadcast(
        sender="job-registry",
        job_id=job_id,
        title="Dedupe CSV",
        description="Remove duplicate rows",
        budget=100,
        required_skills=skills,
    )


def _accepted(agent: WorkMatcherAgent, job_id: str = "0xjob", **overrides: str) -> OfferAccepted:
    fields = {
        "sender": "job-registry",
        "to": "worker-1",
        "job_id": job_id,
        "offer_id": agent.store.bid_for(job_id) or "0xunknown",
        "escrow_id": "0xesc",
    }
    fields.update(overrides)
    return OfferAccepted(**fields)


async def _funded_escrow(ledger) -> None:
    await ledger.create_escrow("0xesc", "client-1", "worker-1")
    await ledger.fund_escrow("0xesc", 100)


@pytest.mark.unit
async def test_bids_on_matching_job_targeted_to_poster(bus, ledger, clock) -> None:
    agent = WorkMatcherAgent(_make_config(), bus, ledger, clock, reputation_lookup=lambda _: 64)
    agent.register()

    await bus.publish(Topic.JOBS, _broadcast())

    bids = bus.messages_on(Topic.OFFERS)
    assert len(bids) == 1
    assert bids[0]["to"] == "job-registry"
    assert bids[0]["price"] == 90
    assert bids[0]["worker_ref"] == "worker-1"
    assert bids[0]["reputation_score"] == 64
    assert bids[0]["offer_id"] == agent.store.bid_for("0xjob")


@pytest.mark.unit
async def test_skips_job_without_matching_skills(bus, ledger, clock) -> None:
    agent = WorkMatcherAgent(_make_config(), bus, ledger, clock)
    agent.register()

    await bus.publish(Topic.JOBS, _broadcast(skills=("rust",)))

    assert bus.messages_on(Topic.OFFERS) == []
    assert [job.job_id for job in agent.list_available_jobs()] == ["0xjob"]


@pytest.mark.unit
async def test_redelivered_broadcast_is_not_bid_twice(bus, ledger, clock) -> None:
    agent = WorkMatcherAgent(_make_config(), bus, ledger, clock)
    agent.register()

    await bus.publish(Topic.JOBS, _broadcast())
    await bus.redeliver(0)

    assert len(bus.messages_on(Topic.OFFERS)) == 1


@pytest.mark.unit
async def test_acceptance_watches_funding_then_delivers(bus, ledger, clock) -> None:
    agent = WorkMatcherAgent(_make_config(), bus, ledger, clock)
    agent.register()
    await bus.publish(Topic.JOBS, _broadcast())
    await _funded_escrow(ledger)

    await bus.publish(Topic.OFFERS_ACCEPTED, _accepted(agent))
    await agent.wait_idle()

    work = agent.get_work("0xesc")
    assert work is not None
    assert work.status == WorkStatus.DELIVERED
    assert work.funding_attempts == 1
    assert work.delivery is not None
    assert work.delivery.delivery_ref.startswith("sha256:")
    assert agent.escrow_status("0xesc") == EscrowStatus.DELIVERED
    assert (await ledger.get_escrow("0xesc")).delivery_ref == work.delivery.delivery_ref

    requests = bus.messages_on(Topic.VERIFICATION_REQUESTS)
    assert len(requests) == 1
    assert requests[0]["to"] == "verification-coordinator"
    assert requests[0]["reply_to"] == "job-registry"
    assert requests[0]["job_type"] == "python"
    assert requests[0]["delivery_ref"] == work.delivery.delivery_ref


@pytest.mark.unit
async def test_acceptance_for_unknown_job_or_foreign_offer_is_dropped(bus, ledger, clock) -> None:
    agent = WorkMatcherAgent(_make_config(), bus, ledger, clock)
    agent.register()
    await bus.publish(Topic.JOBS, _broadcast())

    await bus.publish(Topic.OFFERS_ACCEPTED, _accepted(agent, job_id="0xother"))
    await bus.publish(Topic.OFFERS_ACCEPTED, _accepted(agent, offer_id="0xsomeone-else"))

    assert agent.list_work() == []


@pytest.mark.unit
async def test_duplicate_acceptance_starts_one_watch(bus, ledger, clock) -> None:
    agent = WorkMatcherAgent(_make_config(), bus, ledger, clock)
    agent.register()
    await bus.publish(Topic.JOBS, _broadcast())
    await _funded_escrow(ledger)

    await bus.publish(Topic.OFFERS_ACCEPTED, _accepted(agent))
    await bus.redeliver(len(bus.published) - 1)
    await agent.wait_idle()

    assert len(agent.list_work()) == 1
    assert len(bus.messages_on(Topic.VERIFICATION_REQUESTS)) == 1


@pytest.mark.unit
async def test_unfunded_escrow_is_never_delivered(bus, ledger, clock) -> None:
    config = _make_config(
        funding_watcher=FundingWatcherConfig(
            initial_delay_seconds=2, interval_seconds=5, max_attempts=4
        )
    )
    agent = WorkMatcherAgent(config, bus, ledger, clock)
    agent.register()
    await bus.publish(Topic.JOBS, _broadcast())
    await ledger.create_escrow("0xesc", "client-1", "worker-1")

    await bus.publish(Topic.OFFERS_ACCEPTED, _accepted(agent))
    await agent.wait_idle()

    work = agent.get_work("0xesc")
    assert work is not None
    assert work.status == WorkStatus.AWAITING_FUNDING
    assert work.funding_exhausted is True
    assert work.funding_attempts == 4
    assert bus.messages_on(Topic.VERIFICATION_REQUESTS) == []
    assert ("submit_delivery", "0xesc") not in ledger.calls


@pytest.mark.unit
async def test_deliver_work_refuses_before_funding_is_observed(bus, ledger, clock) -> None:
    config = _make_config(
        funding_watcher=FundingWatcherConfig(
            initial_delay_seconds=0, interval_seconds=5, max_attempts=1
        )
    )
    agent = WorkMatcherAgent(config, bus, ledger, clock)
    agent.register()
    await bus.publish(Topic.JOBS, _broadcast())
    await bus.publish(Topic.OFFERS_ACCEPTED, _accepted(agent))
    await agent.wait_idle()

    assert await agent.deliver_work("0xesc") is None
    assert await agent.deliver_work("0xmissing") is None
    assert bus.messages_on(Topic.VERIFICATION_REQUESTS) == []


@pytest.mark.unit
async def test_ledger_submission_failure_still_requests_verification(bus, ledger, clock) -> None:
    agent = WorkMatcherAgent(_make_config(), bus, ledger, clock)
    agent.register()
    await bus.publish(Topic.JOBS, _broadcast())
    await _funded_escrow(ledger)
    ledger.fail_next("submit_delivery")

    await bus.publish(Topic.OFFERS_ACCEPTED, _accepted(agent))
    await agent.wait_idle()

    assert agent.get_work("0xesc").status == WorkStatus.DELIVERED
    assert agent.escrow_status("0xesc") == EscrowStatus.FUNDED
    assert len(bus.messages_on(Topic.VERIFICATION_REQUESTS)) == 1


@pytest.mark.unit
async def test_delivered_work_is_not_delivered_again(bus, ledger, clock) -> None:
    agent = WorkMatcherAgent(_make_config(), bus, ledger, clock)
    agent.register()
    await bus.publish(Topic.JOBS, _broadcast())
    await _funded_escrow(ledger)
    await bus.publish(Topic.OFFERS_ACCEPTED, _accepted(agent))
    await agent.wait_idle()

    assert await agent.deliver_work("0xesc") is None
    assert len(bus.messages_on(Topic.VERIFICATION_REQUESTS)) == 1
    await agent.close()


def _gateway_ledger(handler) -> EscrowLedgerClient:
    client = EscrowLedgerClient(
        base_url="http://mock-ledger:9000",
        create_path="/escrows",
        fund_path="/escrows/{escrow_id}/fund",
        status_path="/escrows/{escrow_id}",
        submit_path="/escrows/{escrow_id}/delivery",
        approve_path="/escrows/{escrow_id}/approve",
        timeout_seconds=5,
    )
    client._client = httpx.AsyncClient(
        base_url="http://mock-ledger:9000", transport=httpx.MockTransport(handler)
    )
    return client


@pytest.mark.unit
async def test_unreadable_gateway_rejection_still_requests_verification(bus, clock) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/delivery"):
            return httpx.Response(409, text="<html>Conflict</html>")
        return httpx.Response(
            200,
            json={
                "escrow_id": "0xesc",
                "client": "client-1",
                "worker": "worker-1",
                "amount": 100,
                "status": 2,
            },
        )

    ledger = _gateway_ledger(handler)
    agent = WorkMatcherAgent(_make_config(), bus, ledger, clock)
    agent.register()
    await bus.publish(Topic.JOBS, _broadcast())

    await bus.publish(Topic.OFFERS_ACCEPTED, _accepted(agent))
    await agent.wait_idle()

    assert agent.get_work("0xesc").status == WorkStatus.DELIVERED
    assert len(bus.messages_on(Topic.VERIFICATION_REQUESTS)) == 1
    await ledger.close()


@pytest.mark.unit
async def test_finished_watches_are_forgotten(bus, ledger, clock) -> None:
    config = _make_config(
        funding_watcher=FundingWatcherConfig(
            initial_delay_seconds=0, interval_seconds=5, max_attempts=1
        )
    )
    agent = WorkMatcherAgent(config, bus, ledger, clock)
    agent.register()
    await bus.publish(Topic.JOBS, _broadcast("0xjob-a"))
    await bus.publish(Topic.JOBS, _broadcast("0xjob-b"))
    await ledger.create_escrow("0xesc-a", "client-1", "worker-1")
    await ledger.fund_escrow("0xesc-a", 100)

    await bus.publish(Topic.OFFERS_ACCEPTED, _accepted(agent, "0xjob-a", escrow_id="0xesc-a"))
    await bus.publish(Topic.OFFERS_ACCEPTED, _accepted(agent, "0xjob-b", escrow_id="0xesc-b"))
    await agent.wait_idle()

    assert agent.get_work("0xesc-a").status == WorkStatus.DELIVERED
    assert agent.get_work("0xesc-b").funding_exhausted is True
    assert agent._watch_tasks == {}

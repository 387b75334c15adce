"""Unit tests for idempotent reputation updates and badge issuance."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from marketplace_protocol.messages import ReputationScores, ReputationUpdate, Topic
from service_commons.exceptions import ServiceError

from reputation_ledger.agent import ReputationAgent
from reputation_ledger.config import BadgeIssuerConfig, ReputationLedgerConfig
from reputation_ledger.services.badges import InMemoryBadgeIssuer
from reputation_ledger.services.ledger import ReputationLedger
from reputation_ledger.services.reputation_store import ReputationStore


def _make_config(**overrides) -> ReputationLedgerConfig:
    defaults = {
        "agent_name": "reputation-ledger",
        "database_path": ":memory:",
        "badge_issuer": BadgeIssuerConfig(backend="memory"),
    }
    defaults.update(overrides)
    return ReputationLedgerConfig(**defaults)


def _update(escrow_id: str = "0xesc", worker: str = "worker-1", client: str = "client-1"):
    return ReputationUpdate(
        sender="job-registry",
        escrow_id=escrow_id,
        job_id=f"job-{escrow_id}",
        worker=worker,
        client=client,
        scores=ReputationScores(worker=5, client=3, verification=85),
    )


@pytest.fixture
def issuer() -> InMemoryBadgeIssuer:
    return InMemoryBadgeIssuer()


@pytest.fixture
def reputation(clock, issuer):
    store = ReputationStore(":memory:")
    yield ReputationLedger(store, issuer, clock)
    store.close()


@pytest.mark.unit
async def test_update_applies_to_worker_and_client(reputation) -> None:
    applied = await reputation.apply_update(_update())

    assert [record.subject_ref for record in applied] == ["worker-1", "client-1"]
    assert reputation.get_record("worker-1").score == 65
    assert reputation.get_record("client-1").score == 62
    assert [record.subject_ref for record in reputation.leaderboard()] == [
        "worker-1",
        "client-1",
    ]


@pytest.mark.unit
async def test_repeated_update_changes_nothing(reputation, issuer) -> None:
    await reputation.apply_update(_update())

    again = await reputation.apply_update(_update())

    assert again == []
    assert reputation.get_record("worker-1").total_jobs == 1
    assert len(issuer.issued) == 2


@pytest.mark.unit
async def test_distinct_escrows_accumulate(reputation) -> None:
    await reputation.apply_update(_update("0xesc-1"))
    await reputation.apply_update(_update("0xesc-2"))

    record = reputation.get_record("worker-1")
    assert record.total_jobs == 2
    assert record.quality_ratings == (75, 75)


@pytest.mark.unit
@pytest.mark.parametrize("worker", ["", "unknown", "Unknown "])
async def test_unidentified_subject_is_skipped(reputation, worker) -> None:
    applied = await reputation.apply_update(_update(worker=worker))

    assert [record.subject_ref for record in applied] == ["client-1"]
    assert reputation.get_record(worker) is None


@pytest.mark.unit
async def test_first_job_badge_issued_once(reputation, issuer) -> None:
    await reputation.apply_update(_update("0xesc-1"))
    await reputation.apply_update(_update("0xesc-2"))

    assert [(subject, badge_type) for subject, badge_type, _ in issuer.issued] == [
        ("worker-1", 0),
        ("client-1", 0),
    ]
    [badge] = reputation.list_badges("worker-1")
    assert badge.name == "FIRST_JOB"


@pytest.mark.unit
async def test_badge_already_held_externally_is_recorded_without_reissue(clock) -> None:
    issuer = AsyncMock()
    issuer.has_type.return_value = True
    store = ReputationStore(":memory:")
    reputation = ReputationLedger(store, issuer, clock)

    await reputation.apply_update(_update())

    issuer.issue_badge.assert_not_awaited()
    assert [badge.name for badge in reputation.list_badges("worker-1")] == ["FIRST_JOB"]
    store.close()


@pytest.mark.unit
async def test_issuer_failure_is_retried_on_next_evaluation(clock) -> None:
    issuer = AsyncMock()
    issuer.has_type.return_value = False
    issuer.issue_badge.side_effect = ServiceError(
        "BADGE_ISSUER_UNAVAILABLE", "Cannot reach badge issuer", 502, {}
    )
    store = ReputationStore(":memory:")
    reputation = ReputationLedger(store, issuer, clock)

    await reputation.apply_update(_update())
    assert reputation.list_badges("worker-1") == []

    issuer.issue_badge.side_effect = None
    issuer.issue_badge.return_value = "badge-1"
    issued = await reputation.evaluate_badges("worker-1")

    assert [badge.name for badge in issued] == ["FIRST_JOB"]
    assert reputation.get_record("worker-1").total_jobs == 1
    store.close()


@pytest.mark.unit
async def test_evaluate_badges_for_unknown_subject(reputation) -> None:
    assert await reputation.evaluate_badges("nobody") == []


@pytest.mark.unit
def test_record_stake(reputation) -> None:
    record = reputation.record_stake("worker-1", 1000)

    assert record.staked_amount == 1000
    assert record.score == 57
    assert reputation.get_record("worker-1") == record


@pytest.mark.unit
def test_negative_stake_rejected(reputation) -> None:
    with pytest.raises(ServiceError) as exc_info:
        reputation.record_stake("worker-1", -1)

    assert exc_info.value.error == "INVALID_STAKE"
    assert exc_info.value.status_code == 400


@pytest.mark.unit
async def test_agent_redelivery_is_idempotent(bus, clock) -> None:
    agent = ReputationAgent(_make_config(), bus, clock)
    agent.register()

    await bus.publish(Topic.REPUTATION_UPDATES, _update())
    await bus.redeliver(0)

    assert agent.ledger.get_record("worker-1").total_jobs == 1
    assert len(agent.badge_issuer.issued) == 2
    await agent.close()

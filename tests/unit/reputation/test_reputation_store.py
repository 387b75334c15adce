"""Unit tests for the SQLite reputation store."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from marketplace_protocol.models import Badge

from reputation_ledger.services.reputation_store import (
    DuplicateBadgeError,
    DuplicateUpdateError,
    ReputationStore,
)
from reputation_ledger.services.scoring import new_record, record_completed_job

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def store(tmp_path):
    reputation_store = ReputationStore(str(tmp_path / "reputation.db"))
    yield reputation_store
    reputation_store.close()


@pytest.mark.unit
def test_commit_update_persists_record_and_key(store) -> None:
    record = record_completed_job(new_record("worker-1", NOW), 5, 24.0, NOW)

    store.commit_update("0xesc", "0xjob", record, NOW)

    assert store.has_applied("0xesc", "worker-1") is True
    assert store.has_applied("0xesc", "client-1") is False
    assert store.get_record("worker-1") == record


@pytest.mark.unit
def test_duplicate_update_key_rejected_and_record_unchanged(store) -> None:
    first = record_completed_job(new_record("worker-1", NOW), 5, 24.0, NOW)
    store.commit_update("0xesc", "0xjob", first, NOW)
    second = record_completed_job(first, 5, 24.0, NOW)

    with pytest.raises(DuplicateUpdateError):
        store.commit_update("0xesc", "0xjob", second, NOW)

    assert store.get_record("worker-1").total_jobs == 1


@pytest.mark.unit
def test_records_survive_reopen(tmp_path) -> None:
    path = str(tmp_path / "nested" / "reputation.db")
    first = ReputationStore(path)
    first.commit_update(
        "0xesc", "0xjob", record_completed_job(new_record("worker-1", NOW), 5, 24.0, NOW), NOW
    )
    first.close()

    reopened = ReputationStore(path)
    try:
        assert reopened.has_applied("0xesc", "worker-1") is True
        assert reopened.get_record("worker-1").quality_ratings == (75,)
    finally:
        reopened.close()


@pytest.mark.unit
def test_list_records_orders_by_score(store) -> None:
    store.save_record(new_record("low", NOW))
    store.commit_update(
        "0xesc", "0xjob", record_completed_job(new_record("high", NOW), 5, 24.0, NOW), NOW
    )

    assert [record.subject_ref for record in store.list_records()] == ["high", "low"]


@pytest.mark.unit
def test_badges_are_unique_per_type(store) -> None:
    badge = Badge("worker-1", 0, "FIRST_JOB", NOW, {"score": "65"})
    store.insert_badge(badge)

    with pytest.raises(DuplicateBadgeError):
        store.insert_badge(badge)

    assert store.has_badge("worker-1", 0) is True
    assert store.list_badges("worker-1") == [badge]

"""Unit tests for the in-process message bus."""

from __future__ import annotations

import pytest
from marketplace_protocol.messages import JobBroadcast, OfferAccepted, Topic, to_wire


def _broadcast() -> JobBroadcast:
    return JobBroadcast(
        sender="job-registry",
        job_id="0xjob",
        title="Dedupe CSV",
        description="Remove duplicate rows",
        budget=100,
        required_skills=("python",),
    )


@pytest.mark.unit
async def test_untargeted_message_reaches_every_subscriber(bus) -> None:
    received: list[tuple[str, str]] = []

    async def first(message):
        received.append(("first", message.type))

    async def second(message):
        received.append(("second", message.type))

    bus.subscribe(Topic.JOBS, first, "worker-1")
    bus.subscribe(Topic.JOBS, second, "worker-2")

    await bus.publish(Topic.JOBS, _broadcast())

    assert received == [("first", "job.broadcast"), ("second", "job.broadcast")]
    assert [payload["job_id"] for payload in bus.messages_on(Topic.JOBS)] == ["0xjob"]


@pytest.mark.unit
async def test_targeted_message_reaches_only_named_agent(bus) -> None:
    received: list[str] = []

    async def worker_one(message):
        received.append("worker-1")

    async def worker_two(message):
        received.append("worker-2")

    bus.subscribe(Topic.OFFERS_ACCEPTED, worker_one, "worker-1")
    bus.subscribe(Topic.OFFERS_ACCEPTED, worker_two, "worker-2")

    await bus.publish(
        Topic.OFFERS_ACCEPTED,
        OfferAccepted(
            sender="job-registry",
            to="worker-2",
            job_id="0xjob",
            offer_id="0xoffer",
            escrow_id="0xesc",
        ),
    )

    assert received == ["worker-2"]


@pytest.mark.unit
async def test_invalid_payload_is_dropped(bus) -> None:
    received: list[object] = []

    async def handler(message):
        received.append(message)

    bus.subscribe(Topic.JOBS, handler)
    payload = to_wire(_broadcast())
    payload["budget"] = "lots"

    await bus.publish_raw(Topic.JOBS, payload)

    assert received == []
    assert len(bus.published) == 1


@pytest.mark.unit
async def test_failing_handler_does_not_block_other_subscribers(bus) -> None:
    received: list[str] = []

    async def broken(message):
        raise RuntimeError("boom")

    async def healthy(message):
        received.append(message.job_id)

    bus.subscribe(Topic.JOBS, broken)
    bus.subscribe(Topic.JOBS, healthy)

    await bus.publish(Topic.JOBS, _broadcast())

    assert received == ["0xjob"]


@pytest.mark.unit
async def test_redeliver_replays_the_same_payload(bus) -> None:
    received: list[str] = []

    async def handler(message):
        received.append(message.job_id)

    bus.subscribe(Topic.JOBS, handler)
    await bus.publish(Topic.JOBS, _broadcast())

    await bus.redeliver(0)

    assert received == ["0xjob", "0xjob"]
    assert len(bus.published) == 1

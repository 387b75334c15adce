"""Unit tests for the manual clock."""

from __future__ import annotations

from datetime import timedelta

import pytest


@pytest.mark.unit
async def test_sleep_advances_time_and_records_schedule(clock) -> None:
    start = clock.now()

    await clock.sleep(2)
    await clock.sleep(5)

    assert clock.sleeps == [2, 5]
    assert clock.now() - start == timedelta(seconds=7)


@pytest.mark.unit
def test_advance_moves_time_without_recording_sleep(clock) -> None:
    start = clock.now()

    clock.advance(60)

    assert clock.now() - start == timedelta(minutes=1)
    assert clock.sleeps == []

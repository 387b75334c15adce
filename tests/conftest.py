"""Shared fixtures for every test suite."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from marketplace_protocol.bus import InMemoryMessageBus
from marketplace_protocol.clock import ManualClock
from marketplace_protocol.escrow import InMemoryEscrowLedger

START = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(START)


@pytest.fixture
def bus() -> InMemoryMessageBus:
    return InMemoryMessageBus()


@pytest.fixture
def ledger() -> InMemoryEscrowLedger:
    return InMemoryEscrowLedger()

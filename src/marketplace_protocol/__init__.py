"""Shared types, message contracts, and ledger/bus adapters for the marketplace agents."""

from marketplace_protocol.bus import InMemoryMessageBus, MessageBus
from marketplace_protocol.clock import Clock, ManualClock, SystemClock
from marketplace_protocol.escrow import EscrowLedger, EscrowStatusCache, InMemoryEscrowLedger
from marketplace_protocol.messages import Topic, parse_message
from marketplace_protocol.models import EscrowStatus, JobStatus, WorkStatus

__all__ = [
    "Clock",
    "EscrowLedger",
    "EscrowStatus",
    "EscrowStatusCache",
    "InMemoryEscrowLedger",
    "InMemoryMessageBus",
    "JobStatus",
    "ManualClock",
    "MessageBus",
    "SystemClock",
    "Topic",
    "WorkStatus",
    "parse_message",
]

"""Escrow ledger interface, in-process ledger, and the local status cache."""

from __future__ import annotations

import asyncio
import dataclasses
from typing import Protocol

from service_commons.exceptions import ServiceError
from service_commons.logging import get_logger

from marketplace_protocol.models import Escrow, EscrowStatus

logger = get_logger(__name__)


class EscrowLedger(Protocol):
    """Operations consumed from the escrow contract."""

    async def create_escrow(self, escrow_id: str, client: str, worker: str) -> Escrow: ...

    async def fund_escrow(self, escrow_id: str, amount: int) -> Escrow: ...

    async def get_escrow(self, escrow_id: str) -> Escrow | None: ...

    async def submit_delivery(self, escrow_id: str, delivery_ref: str) -> Escrow: ...

    async def approve_work(self, escrow_id: str) -> Escrow: ...


def _rejected(escrow_id: str, operation: str, status: EscrowStatus | None) -> ServiceError:
    return ServiceError(
        "LEDGER_REJECTED",
        f"Escrow ledger rejected {operation}",
        409,
        {"escrow_id": escrow_id, "status": None if status is None else status.name},
    )


class InMemoryEscrowLedger:
    """
    Single-process escrow contract.

    Enforces the contract's transition rules (create once, fund only when
    Created, submit only when Funded, approve from Funded or Delivered)
    and serializes calls with a lock the way the chain serializes
    transactions. Tests can inject failures with :meth:`fail_next` and
    hide a completed funding from queries with :meth:`delay_funding`.
    """

    def __init__(self) -> None:
        self._escrows: dict[str, Escrow] = {}
        self._lock = asyncio.Lock()
        self._failures: dict[str, list[Exception]] = {}
        self._hidden_polls: dict[str, int] = {}
        self.calls: list[tuple[str, str]] = []

    def fail_next(self, operation: str, error: Exception | None = None) -> None:
        """Make the next call to ``operation`` raise."""
        failure = error or ServiceError(
            "LEDGER_UNAVAILABLE", "Escrow ledger timed out", 502, {"operation": operation}
        )
        self._failures.setdefault(operation, []).append(failure)

    def delay_funding(self, escrow_id: str, polls: int) -> None:
        """Report a funded escrow as Created for the first ``polls - 1`` queries."""
        self._hidden_polls[escrow_id] = max(0, polls - 1)

    def _maybe_fail(self, operation: str, escrow_id: str) -> None:
        self.calls.append((operation, escrow_id))
        pending = self._failures.get(operation)
        if pending:
            raise pending.pop(0)

    async def create_escrow(self, escrow_id: str, client: str, worker: str) -> Escrow:
        async with self._lock:
            self._maybe_fail("create_escrow", escrow_id)
            if escrow_id in self._escrows:
                raise _rejected(escrow_id, "create_escrow", self._escrows[escrow_id].status)
            escrow = Escrow(
                escrow_id=escrow_id,
                client=client,
                worker=worker,
                amount=0,
                status=EscrowStatus.CREATED,
            )
            self._escrows[escrow_id] = escrow
            return escrow

    async def fund_escrow(self, escrow_id: str, amount: int) -> Escrow:
        async with self._lock:
            self._maybe_fail("fund_escrow", escrow_id)
            escrow = self._escrows.get(escrow_id)
            if escrow is None or escrow.status != EscrowStatus.CREATED or amount <= 0:
                raise _rejected(escrow_id, "fund_escrow", None if escrow is None else escrow.status)
            funded = dataclasses.replace(escrow, amount=amount, status=EscrowStatus.FUNDED)
            return self._store(funded)

    async def get_escrow(self, escrow_id: str) -> Escrow | None:
        async with self._lock:
            self._maybe_fail("get_escrow", escrow_id)
            escrow = self._escrows.get(escrow_id)
            hidden = self._hidden_polls.get(escrow_id, 0)
            if escrow is not None and hidden > 0 and escrow.status == EscrowStatus.FUNDED:
                self._hidden_polls[escrow_id] = hidden - 1
                return dataclasses.replace(escrow, amount=0, status=EscrowStatus.CREATED)
            return escrow

    async def submit_delivery(self, escrow_id: str, delivery_ref: str) -> Escrow:
        async with self._lock:
            self._maybe_fail("submit_delivery", escrow_id)
            escrow = self._escrows.get(escrow_id)
            if escrow is None or escrow.status != EscrowStatus.FUNDED:
                raise _rejected(
                    escrow_id, "submit_delivery", None if escrow is None else escrow.status
                )
            return self._store(
                dataclasses.replace(
                    escrow, status=EscrowStatus.DELIVERED, delivery_ref=delivery_ref
                )
            )

    async def approve_work(self, escrow_id: str) -> Escrow:
        async with self._lock:
            self._maybe_fail("approve_work", escrow_id)
            escrow = self._escrows.get(escrow_id)
            if escrow is None or escrow.status not in (EscrowStatus.FUNDED, EscrowStatus.DELIVERED):
                status = None if escrow is None else escrow.status
                raise _rejected(escrow_id, "approve_work", status)
            return self._store(dataclasses.replace(escrow, status=EscrowStatus.RELEASED))

    def _store(self, escrow: Escrow) -> Escrow:
        self._escrows[escrow.escrow_id] = escrow
        logger.info(
            "Escrow transitioned",
            extra={"escrow_id": escrow.escrow_id, "status": escrow.status.name},
        )
        return escrow


class EscrowStatusCache:
    """
    Local, possibly stale view of escrow statuses.

    Observed statuses only ever move forward: a lower status reported
    after a higher one (a stale read) is ignored.
    """

    def __init__(self) -> None:
        self._statuses: dict[str, EscrowStatus] = {}

    def observe(self, escrow_id: str, status: int) -> EscrowStatus:
        """Record a reported status and return the effective one."""
        reported = EscrowStatus(status)
        current = self._statuses.get(escrow_id, EscrowStatus.NONE)
        if reported < current:
            logger.debug(
                "Ignoring stale escrow status",
                extra={"escrow_id": escrow_id, "reported": reported.name, "current": current.name},
            )
            return current
        self._statuses[escrow_id] = reported
        return reported

    def get(self, escrow_id: str) -> EscrowStatus:
        return self._statuses.get(escrow_id, EscrowStatus.NONE)

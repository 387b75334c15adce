"""Bounded polling of the escrow ledger until an accepted job is funded."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from marketplace_protocol.models import is_funded
from service_commons.exceptions import ServiceError
from service_commons.logging import get_logger

if TYPE_CHECKING:
    from marketplace_protocol.clock import Clock
    from marketplace_protocol.escrow import EscrowLedger, EscrowStatusCache
    from marketplace_protocol.models import Escrow


@dataclass
class RetryState:
    """Explicit poll budget: how many attempts were made and how far apart."""

    max_attempts: int
    interval_seconds: float
    attempt: int = 0

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts

    def record_attempt(self) -> None:
        self.attempt += 1


@dataclass(frozen=True)
class FundingOutcome:
    """Result of one watch: funded or gave up, and after how many polls."""

    funded: bool
    attempts: int
    escrow: Escrow | None


class EscrowFundingWatcher:
    """
    Polls the ledger for an escrow until it reports Funded with a positive
    amount, or the attempt budget runs out.

    A failed query counts as an attempt. Giving up is terminal for the job:
    it is logged and reported to the caller, nothing retries automatically.
    """

    def __init__(
        self,
        ledger: EscrowLedger,
        clock: Clock,
        status_cache: EscrowStatusCache,
        initial_delay_seconds: float,
        interval_seconds: float,
        max_attempts: int,
    ) -> None:
        self._ledger = ledger
        self._clock = clock
        self._status_cache = status_cache
        self._initial_delay_seconds = initial_delay_seconds
        self._interval_seconds = interval_seconds
        self._max_attempts = max_attempts
        self._logger = get_logger(__name__)

    def new_retry_state(self) -> RetryState:
        return RetryState(max_attempts=self._max_attempts, interval_seconds=self._interval_seconds)

    async def wait_for_funding(self, escrow_id: str, job_id: str) -> FundingOutcome:
        """Poll until funded or exhausted."""
        state = self.new_retry_state()
        if self._initial_delay_seconds > 0:
            await self._clock.sleep(self._initial_delay_seconds)

        while not state.exhausted:
            state.record_attempt()
            escrow = await self._poll(escrow_id, job_id, state)
            if escrow is not None:
                status = self._status_cache.observe(escrow_id, escrow.status)
                if is_funded(status) and escrow.amount > 0:
                    self._logger.info(
                        "Escrow funding confirmed",
                        extra={"escrow_id": escrow_id, "job_id": job_id, "attempt": state.attempt},
                    )
                    return FundingOutcome(funded=True, attempts=state.attempt, escrow=escrow)
            if not state.exhausted:
                await self._clock.sleep(state.interval_seconds)

        self._logger.error(
            "Escrow never funded, giving up on job",
            extra={"escrow_id": escrow_id, "job_id": job_id, "attempts": state.attempt},
        )
        return FundingOutcome(funded=False, attempts=state.attempt, escrow=None)

    async def _poll(self, escrow_id: str, job_id: str, state: RetryState) -> Escrow | None:
        try:
            escrow = await self._ledger.get_escrow(escrow_id)
        except ServiceError as exc:
            self._logger.warning(
                "Escrow status query failed",
                extra={
                    "escrow_id": escrow_id,
                    "job_id": job_id,
                    "attempt": state.attempt,
                    "error": exc.error,
                },
            )
            return None
        if escrow is None:
            self._logger.debug(
                "Escrow not yet on ledger",
                extra={"escrow_id": escrow_id, "job_id": job_id, "attempt": state.attempt},
            )
        return escrow

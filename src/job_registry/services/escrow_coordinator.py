"""Escrow ledger coordination for job lifecycle transitions."""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeVar

from marketplace_protocol.models import EscrowStatus, is_funded
from service_commons.exceptions import ServiceError
from service_commons.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from marketplace_protocol.escrow import EscrowLedger, EscrowStatusCache
    from marketplace_protocol.models import Escrow, Job

    from job_registry.services.job_store import JobStore

_T = TypeVar("_T")


class EscrowCoordinator:
    """Creates, funds, and releases escrows, mirroring progress into the job store."""

    def __init__(
        self,
        ledger: EscrowLedger,
        store: JobStore,
        status_cache: EscrowStatusCache,
    ) -> None:
        self._ledger = ledger
        self._store = store
        self._cache = status_cache
        self._logger = get_logger(__name__)

    async def setup_escrow(self, job: Job, escrow_id: str, worker_ref: str) -> Escrow:
        """
        Create then fund the escrow for an assigned job.

        The amount locked is the job budget. The job is only marked
        ``escrow_created`` once funding succeeds.

        Raises ServiceError("LEDGER_UNAVAILABLE", ..., 502) or the ledger's
        own ServiceError on failure.
        """
        created = await self._call(
            "create_escrow",
            escrow_id,
            self._ledger.create_escrow(escrow_id, job.client_ref, worker_ref),
        )
        self._record_status(job.job_id, escrow_id, created.status)
        return await self._fund(job, escrow_id)

    async def resume_setup(self, job: Job) -> Escrow:
        """
        Finish a partially completed escrow setup from whatever the ledger reports.

        Raises ServiceError on ledger failure, or ESCROW_NOT_FUNDABLE (409)
        when the escrow is in a state funding can no longer reach.
        """
        if job.escrow_id is None or job.assigned_worker is None:
            raise ServiceError(
                "INVALID_JOB_STATE",
                "Job has no escrow to set up",
                409,
                {"job_id": job.job_id},
            )
        escrow_id = job.escrow_id

        escrow = await self._call("get_escrow", escrow_id, self._ledger.get_escrow(escrow_id))
        if escrow is None:
            return await self.setup_escrow(job, escrow_id, job.assigned_worker)

        status = self._record_status(job.job_id, escrow_id, escrow.status)
        if status == EscrowStatus.CREATED:
            return await self._fund(job, escrow_id)
        if is_funded(status) and status not in (EscrowStatus.REFUNDED, EscrowStatus.DISPUTED):
            self._store.update_job(job.job_id, {"escrow_created": 1}, expected_status=None)
            return escrow
        raise ServiceError(
            "ESCROW_NOT_FUNDABLE",
            "Escrow is in a state that cannot be funded",
            409,
            {"job_id": job.job_id, "escrow_id": escrow_id, "status": status.name},
        )

    async def release_escrow(self, job: Job) -> Escrow:
        """
        Approve the work on the ledger and confirm the funds were released.

        An escrow the ledger already reports as Released (an earlier approval
        whose confirmation was lost) is not approved again. A rejected
        approval is re-checked against the ledger before it fails.

        Raises ServiceError("ESCROW_NOT_RELEASED", ..., 409) when the ledger
        does not report Released after approval.
        """
        escrow_id = job.escrow_id or ""
        current = await self._call("get_escrow", escrow_id, self._ledger.get_escrow(escrow_id))
        if current is not None and current.status == EscrowStatus.RELEASED:
            self._record_status(job.job_id, escrow_id, current.status)
            self._logger.info(
                "Escrow already released, skipping approval",
                extra={"job_id": job.job_id, "escrow_id": escrow_id},
            )
            return current

        rejection: ServiceError | None = None
        try:
            await self._call("approve_work", escrow_id, self._ledger.approve_work(escrow_id))
        except ServiceError as exc:
            if exc.error != "LEDGER_REJECTED":
                raise
            rejection = exc

        confirmed = await self._call("get_escrow", escrow_id, self._ledger.get_escrow(escrow_id))
        reported = EscrowStatus.NONE if confirmed is None else confirmed.status
        status = self._record_status(job.job_id, escrow_id, reported)
        if confirmed is None or status != EscrowStatus.RELEASED:
            if rejection is not None:
                raise rejection
            raise ServiceError(
                "ESCROW_NOT_RELEASED",
                "Escrow was not released after approval",
                409,
                {"job_id": job.job_id, "escrow_id": escrow_id, "status": status.name},
            )
        return confirmed

    async def _fund(self, job: Job, escrow_id: str) -> Escrow:
        funded = await self._call(
            "fund_escrow", escrow_id, self._ledger.fund_escrow(escrow_id, job.budget)
        )
        status = self._record_status(job.job_id, escrow_id, funded.status)
        self._store.update_job(
            job.job_id,
            {"escrow_created": 1 if is_funded(status) else 0},
            expected_status=None,
        )
        return funded

    def _record_status(self, job_id: str, escrow_id: str, reported: int) -> EscrowStatus:
        status = self._cache.observe(escrow_id, reported)
        self._store.update_job(job_id, {"escrow_status": int(status)}, expected_status=None)
        return status

    async def _call(self, operation: str, escrow_id: str, call: Awaitable[_T]) -> _T:
        try:
            return await call
        except ServiceError:
            self._logger.warning(
                "Escrow ledger call failed",
                extra={"operation": operation, "escrow_id": escrow_id},
            )
            raise
        except Exception as exc:
            self._logger.warning(
                "Escrow ledger call failed",
                extra={"operation": operation, "escrow_id": escrow_id},
            )
            raise ServiceError(
                "LEDGER_UNAVAILABLE",
                f"Escrow ledger {operation} failed",
                502,
                {"escrow_id": escrow_id},
            ) from exc

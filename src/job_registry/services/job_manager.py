"""Job lifecycle business logic for the client-side registry."""

from __future__ import annotations

from typing import TYPE_CHECKING

from marketplace_protocol.escrow import EscrowStatusCache
from marketplace_protocol.ids import escrow_id_for, job_id_for, new_nonce
from marketplace_protocol.messages import (
    JobBroadcast,
    OfferAccepted,
    ReputationScores,
    ReputationUpdate,
    Topic,
)
from marketplace_protocol.models import EscrowStatus, Job, JobStatus, Offer
from service_commons.exceptions import ServiceError
from service_commons.logging import get_logger

from job_registry.services.escrow_coordinator import EscrowCoordinator
from job_registry.services.job_store import DuplicateJobError, DuplicateOfferError

if TYPE_CHECKING:
    from datetime import datetime

    from marketplace_protocol.bus import MessageBus
    from marketplace_protocol.clock import Clock
    from marketplace_protocol.escrow import EscrowLedger
    from marketplace_protocol.messages import JobBid, VerificationResult

    from job_registry.config import JobRegistryConfig
    from job_registry.services.job_store import JobStore

logger = get_logger(__name__)

WORKER_SCORE_COMPONENT = 5
CLIENT_SCORE_COMPONENT = 3


class JobManager:
    """
    Owns the job lifecycle:

    ``open -> assigned -> delivered_pending_verification -> verified -> completed``,
    or ``delivered_pending_verification -> disputed``.

    Every status change is a compare-and-swap on the store, so concurrent
    or redelivered triggers can never move a job twice.
    """

    def __init__(
        self,
        config: JobRegistryConfig,
        store: JobStore,
        ledger: EscrowLedger,
        bus: MessageBus,
        clock: Clock,
    ) -> None:
        self._config = config
        self._store = store
        self._bus = bus
        self._clock = clock
        self.escrow_cache = EscrowStatusCache()
        self._escrow = EscrowCoordinator(ledger, store, self.escrow_cache)
        self._approving: set[str] = set()

    # ------------------------------------------------------------------
    # Posting and offers
    # ------------------------------------------------------------------

    async def post_job(
        self,
        title: str,
        description: str,
        budget: int,
        required_skills: list[str] | tuple[str, ...],
        deadline: datetime | None = None,
        nonce: str | None = None,
    ) -> Job:
        """
        Create an open job and broadcast it to workers.

        Posting the same content with the same nonce again returns the
        stored job without a second broadcast.

        Raises:
            ServiceError: INVALID_BUDGET (400) or INVALID_TITLE (400)
        """
        if isinstance(budget, bool) or not isinstance(budget, int) or budget <= 0:
            raise ServiceError(
                "INVALID_BUDGET",
                "Budget must be a positive integer",
                400,
                {"budget": str(budget)},
            )
        if not title.strip():
            raise ServiceError("INVALID_TITLE", "Title must not be empty", 400, {})

        skills = tuple(required_skills)
        content = {
            "title": title,
            "description": description,
            "budget": budget,
            "required_skills": list(skills),
            "deadline": deadline.isoformat() if deadline is not None else None,
        }
        job = Job(
            job_id=job_id_for(self._config.client_ref, content, nonce or new_nonce()),
            client_ref=self._config.client_ref,
            title=title,
            description=description,
            budget=budget,
            required_skills=skills,
            deadline=deadline,
            status=JobStatus.OPEN,
            created_at=self._clock.now(),
        )

        try:
            self._store.insert_job(job)
        except DuplicateJobError:
            logger.info("Job already posted, not re-broadcasting", extra={"job_id": job.job_id})
            existing = self._store.get_job(job.job_id)
            if existing is None:
                raise
            return existing

        logger.info("Job posted", extra={"job_id": job.job_id, "budget": budget})
        await self._bus.publish(
            Topic.JOBS,
            JobBroadcast(
                sender=self._config.agent_name,
                job_id=job.job_id,
                title=title,
                description=description,
                budget=budget,
                required_skills=skills,
                deadline=deadline,
            ),
        )
        return job

    def receive_offer(self, bid: JobBid) -> Offer | None:
        """Record a bid on an open job; anything else is logged and dropped."""
        context = {"job_id": bid.job_id, "offer_id": bid.offer_id}
        job = self._store.get_job(bid.job_id)
        if job is None:
            logger.warning("Offer for unknown job, dropping", extra=context)
            return None
        if job.status != JobStatus.OPEN:
            logger.info(
                "Offer for job that is no longer open, dropping",
                extra={**context, "status": job.status.value},
            )
            return None

        offer = Offer(
            offer_id=bid.offer_id,
            job_id=bid.job_id,
            worker_ref=bid.worker_ref,
            price=bid.price,
            eta=bid.eta,
            sla_terms=bid.sla_terms,
            received_at=self._clock.now(),
            reputation_score=bid.reputation_score,
        )
        try:
            self._store.insert_offer(offer)
        except DuplicateOfferError:
            logger.info("Duplicate offer ignored", extra=context)
            return None

        logger.info(
            "Offer received",
            extra={**context, "worker_ref": bid.worker_ref, "price": bid.price},
        )
        return offer

    # ------------------------------------------------------------------
    # Assignment and escrow
    # ------------------------------------------------------------------

    async def accept_offer(self, job_id: str, offer_id: str) -> Job:
        """
        Assign the job to an offer, then create and fund its escrow.

        The job is moved to ``assigned`` before any ledger call. If the
        ledger fails the job stays assigned with ``escrow_created`` false
        and the error propagates; :meth:`retry_escrow_setup` resumes it.

        Raises:
            ServiceError: JOB_NOT_FOUND, INVALID_JOB_STATE, OFFER_NOT_FOUND,
                          or a ledger error
        """
        job = self._require_job(job_id)
        if job.status != JobStatus.OPEN:
            raise self._invalid_state(job, "accept an offer")
        offer = self._store.get_offer(offer_id, job_id)
        if offer is None:
            raise ServiceError(
                "OFFER_NOT_FOUND",
                "Offer not found for this job",
                404,
                {"job_id": job_id, "offer_id": offer_id},
            )

        escrow_id = escrow_id_for(job_id, offer_id, new_nonce())
        rows = self._store.update_job(
            job_id,
            {
                "status": JobStatus.ASSIGNED.value,
                "assigned_worker": offer.worker_ref,
                "accepted_offer_id": offer_id,
                "escrow_id": escrow_id,
                "escrow_created": 0,
                "assigned_at": self._clock.now(),
            },
            expected_status=JobStatus.OPEN,
        )
        if rows == 0:
            raise self._invalid_state(self._require_job(job_id), "accept an offer")

        logger.info(
            "Offer accepted, setting up escrow",
            extra={"job_id": job_id, "offer_id": offer_id, "escrow_id": escrow_id},
        )
        assigned = self._require_job(job_id)
        try:
            await self._escrow.setup_escrow(assigned, escrow_id, offer.worker_ref)
        except ServiceError:
            logger.warning(
                "Escrow setup failed, job stays assigned without escrow",
                extra={"job_id": job_id, "escrow_id": escrow_id},
            )
            raise

        await self._announce_acceptance(self._require_job(job_id))
        return self._require_job(job_id)

    async def retry_escrow_setup(self, job_id: str) -> Job:
        """
        Resume escrow creation/funding for an assigned job whose setup failed.

        Raises:
            ServiceError: JOB_NOT_FOUND, INVALID_JOB_STATE, or a ledger error
        """
        job = self._require_job(job_id)
        if job.status != JobStatus.ASSIGNED:
            raise self._invalid_state(job, "retry escrow setup")
        if job.escrow_created:
            return job

        await self._escrow.resume_setup(job)
        updated = self._require_job(job_id)
        if updated.escrow_created:
            await self._announce_acceptance(updated)
        return updated

    # ------------------------------------------------------------------
    # Delivery, verification, settlement
    # ------------------------------------------------------------------

    async def receive_delivery_receipt(self, result: VerificationResult) -> Job | None:
        """
        Apply a verification verdict to an assigned job.

        Results for unknown jobs, for jobs not in ``assigned``, or whose
        escrow does not match are logged and dropped.
        """
        context = {"job_id": result.job_id, "escrow_id": result.escrow_id}
        job = self._store.get_job(result.job_id)
        if job is None:
            logger.warning("Verification result for unknown job, dropping", extra=context)
            return None
        if job.escrow_id != result.escrow_id:
            logger.warning("Verification result for a different escrow, dropping", extra=context)
            return None
        if job.status != JobStatus.ASSIGNED:
            logger.info(
                "Verification result for job not awaiting delivery, dropping",
                extra={**context, "status": job.status.value},
            )
            return None

        rows = self._store.update_job(
            job.job_id,
            {
                "status": JobStatus.DELIVERED_PENDING_VERIFICATION.value,
                "delivery_ref": result.delivery_ref,
                "verification_score": result.score,
                "verification_passed": 1 if result.passed else 0,
            },
            expected_status=JobStatus.ASSIGNED,
        )
        if rows == 0:
            logger.info("Concurrent delivery receipt already applied", extra=context)
            return None

        now = self._clock.now()
        if result.passed:
            target, updates = JobStatus.VERIFIED, {"verified_at": now}
        else:
            target, updates = JobStatus.DISPUTED, {"disputed_at": now}
        self._store.update_job(
            job.job_id,
            {"status": target.value, **updates},
            expected_status=JobStatus.DELIVERED_PENDING_VERIFICATION,
        )
        logger.info(
            "Verification applied",
            extra={**context, "status": target.value, "score": result.score},
        )

        if target == JobStatus.VERIFIED and self._config.auto_approve_verified:
            try:
                await self.approve_work(job.job_id)
            except ServiceError as exc:
                logger.warning(
                    "Automatic approval failed, job stays verified",
                    extra={**context, "error": exc.error},
                )
        return self._store.get_job(job.job_id)

    async def approve_work(self, job_id: str) -> Job:
        """
        Release the escrow for a verified job and report the completion.

        Completion is recorded only once the ledger confirms Released.

        Raises:
            ServiceError: JOB_NOT_FOUND, INVALID_JOB_STATE, ESCROW_NOT_RELEASED,
                          or a ledger error
        """
        job = self._require_job(job_id)
        if job.status != JobStatus.VERIFIED or job_id in self._approving:
            raise self._invalid_state(job, "approve work")

        self._approving.add(job_id)
        try:
            await self._escrow.release_escrow(job)
            rows = self._store.update_job(
                job_id,
                {
                    "status": JobStatus.COMPLETED.value,
                    "escrow_status": int(EscrowStatus.RELEASED),
                    "completed_at": self._clock.now(),
                },
                expected_status=JobStatus.VERIFIED,
            )
        finally:
            self._approving.discard(job_id)
        if rows == 0:
            raise self._invalid_state(self._require_job(job_id), "approve work")

        completed = self._require_job(job_id)
        logger.info(
            "Job completed, escrow released",
            extra={"job_id": job_id, "escrow_id": completed.escrow_id},
        )
        await self._bus.publish(
            Topic.REPUTATION_UPDATES,
            ReputationUpdate(
                sender=self._config.agent_name,
                escrow_id=completed.escrow_id or "",
                job_id=job_id,
                worker=completed.assigned_worker or "",
                client=completed.client_ref,
                scores=ReputationScores(
                    worker=WORKER_SCORE_COMPONENT,
                    client=CLIENT_SCORE_COMPONENT,
                    verification=1 if completed.verification_passed else 0,
                ),
            ),
        )
        return completed

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_job(self, job_id: str) -> Job | None:
        return self._store.get_job(job_id)

    def list_jobs(self, status: JobStatus | None = None) -> list[Job]:
        return self._store.list_jobs(status)

    def list_offers(self, job_id: str) -> list[Offer]:
        return self._store.get_offers_for_job(job_id)

    def best_offer(self, job_id: str) -> Offer | None:
        """Cheapest offer; ties go to higher reputation, then to the earliest."""
        offers = self._store.get_offers_for_job(job_id)
        if not offers:
            return None
        ranked = sorted(
            enumerate(offers),
            key=lambda item: (
                item[1].price,
                -(item[1].reputation_score if item[1].reputation_score is not None else -1),
                item[0],
            ),
        )
        return ranked[0][1]

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _announce_acceptance(self, job: Job) -> None:
        await self._bus.publish(
            Topic.OFFERS_ACCEPTED,
            OfferAccepted(
                sender=self._config.agent_name,
                to=job.assigned_worker,
                job_id=job.job_id,
                offer_id=job.accepted_offer_id or "",
                escrow_id=job.escrow_id or "",
            ),
        )
        logger.info(
            "Acceptance announced",
            extra={"job_id": job.job_id, "escrow_id": job.escrow_id},
        )

    def _require_job(self, job_id: str) -> Job:
        job = self._store.get_job(job_id)
        if job is None:
            raise ServiceError("JOB_NOT_FOUND", "Job not found", 404, {"job_id": job_id})
        return job

    @staticmethod
    def _invalid_state(job: Job, action: str) -> ServiceError:
        return ServiceError(
            "INVALID_JOB_STATE",
            f"Cannot {action} while job is {job.status.value}",
            409,
            {"job_id": job.job_id, "status": job.status.value},
        )

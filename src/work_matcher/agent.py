"""Worker-side state machine: discovery, bidding, funding watch, and delivery."""

from __future__ import annotations

import asyncio
from functools import partial
from typing import TYPE_CHECKING

from marketplace_protocol.escrow import EscrowStatusCache
from marketplace_protocol.ids import delivery_ref_for, offer_id_for
from marketplace_protocol.messages import (
    JobBid,
    JobBroadcast,
    OfferAccepted,
    Topic,
    VerificationRequest,
)
from marketplace_protocol.models import (
    Delivery,
    EscrowStatus,
    Job,
    JobStatus,
    WorkStatus,
    is_funded,
)
from service_commons.exceptions import ServiceError
from service_commons.logging import get_logger

from work_matcher.services.funding_watcher import EscrowFundingWatcher
from work_matcher.services.matcher import bid_price, evaluate_job, job_type_for
from work_matcher.services.work_store import WorkItem, WorkStore

if TYPE_CHECKING:
    from collections.abc import Callable

    from marketplace_protocol.bus import MessageBus
    from marketplace_protocol.clock import Clock
    from marketplace_protocol.escrow import EscrowLedger
    from marketplace_protocol.messages import Message

    from work_matcher.config import WorkMatcherConfig

logger = get_logger(__name__)


class WorkMatcherAgent:
    """
    Bids on matching jobs and carries accepted work through
    ``in_progress -> awaiting_funding -> delivering -> delivered``.

    Funding is only ever confirmed by querying the ledger, never assumed
    from the acceptance message.
    """

    def __init__(
        self,
        config: WorkMatcherConfig,
        bus: MessageBus,
        ledger: EscrowLedger,
        clock: Clock,
        reputation_lookup: Callable[[str], int | None] | None = None,
    ) -> None:
        self._config = config
        self._bus = bus
        self._ledger = ledger
        self._clock = clock
        self._reputation_lookup = reputation_lookup
        self.store = WorkStore()
        self.escrow_cache = EscrowStatusCache()
        self.watcher = EscrowFundingWatcher(
            ledger=ledger,
            clock=clock,
            status_cache=self.escrow_cache,
            initial_delay_seconds=config.funding_watcher.initial_delay_seconds,
            interval_seconds=config.funding_watcher.interval_seconds,
            max_attempts=config.funding_watcher.max_attempts,
        )
        self._watch_tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def name(self) -> str:
        return self._config.worker_ref

    def register(self) -> None:
        """Subscribe handlers on the bus."""
        self._bus.subscribe(Topic.JOBS, self.on_job_broadcast, self.name)
        self._bus.subscribe(Topic.OFFERS_ACCEPTED, self.on_offer_accepted, self.name)

    # ------------------------------------------------------------------
    # Message handlers
    # ------------------------------------------------------------------

    async def on_job_broadcast(self, message: Message) -> None:
        """Cache the job and bid once if it matches our skills."""
        if not isinstance(message, JobBroadcast):
            return

        job = Job(
            job_id=message.job_id,
            client_ref=message.sender,
            title=message.title,
            description=message.description,
            budget=message.budget,
            required_skills=message.required_skills,
            deadline=message.deadline,
            status=JobStatus.OPEN,
            created_at=message.sent_at,
        )
        if not self.store.cache_job(job):
            logger.debug("Job already seen", extra={"job_id": job.job_id})
            return

        if not evaluate_job(job.required_skills, self._config.skills):
            logger.info(
                "Skipping job without matching skills",
                extra={"job_id": job.job_id, "required_skills": list(job.required_skills)},
            )
            return

        offer_id = offer_id_for(job.job_id, self._config.worker_ref)
        self.store.record_bid(job.job_id, offer_id)
        price = bid_price(job.budget, self._config.bid_discount_percent)
        await self._bus.publish(
            Topic.OFFERS,
            JobBid(
                sender=self.name,
                to=job.client_ref,
                job_id=job.job_id,
                offer_id=offer_id,
                price=price,
                eta=self._config.eta,
                worker_ref=self._config.worker_ref,
                sla_terms=self._config.sla_terms,
                reputation_score=self._current_reputation(),
            ),
        )
        logger.info(
            "Bid submitted",
            extra={"job_id": job.job_id, "offer_id": offer_id, "price": price},
        )

    async def on_offer_accepted(self, message: Message) -> None:
        """Record accepted work and start watching for escrow funding."""
        if not isinstance(message, OfferAccepted):
            return

        context = {"job_id": message.job_id, "escrow_id": message.escrow_id}
        job = self.store.get_job(message.job_id)
        if job is None:
            logger.warning("Acceptance for unknown job, dropping", extra=context)
            return
        if self.store.bid_for(message.job_id) != message.offer_id:
            logger.warning(
                "Acceptance for an offer we did not make, dropping",
                extra={**context, "offer_id": message.offer_id},
            )
            return

        created = self.store.create_work(
            WorkItem(
                escrow_id=message.escrow_id,
                job_id=message.job_id,
                offer_id=message.offer_id,
                registry_agent=message.sender,
                status=WorkStatus.IN_PROGRESS,
                accepted_at=self._clock.now(),
            )
        )
        if not created:
            logger.info("Duplicate acceptance ignored", extra=context)
            return

        self.store.transition(
            message.escrow_id, WorkStatus.IN_PROGRESS, WorkStatus.AWAITING_FUNDING
        )
        logger.info("Offer accepted, awaiting escrow funding", extra=context)
        task = asyncio.create_task(self._watch_and_deliver(message.escrow_id, message.job_id))
        self._watch_tasks[message.escrow_id] = task
        task.add_done_callback(partial(self._forget_watch, message.escrow_id))

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def deliver_work(self, escrow_id: str) -> Delivery | None:
        """
        Produce the delivery for funded work and request verification.

        The on-ledger submission is best effort; verification is requested
        even if it fails.
        """
        work = self.store.get_work(escrow_id)
        if work is None:
            logger.warning("Delivery requested for unknown work", extra={"escrow_id": escrow_id})
            return None
        context = {"escrow_id": escrow_id, "job_id": work.job_id}
        if not is_funded(self.escrow_cache.get(escrow_id)):
            logger.warning("Refusing to deliver before escrow is funded", extra=context)
            return None
        started = self.store.transition(
            escrow_id, WorkStatus.AWAITING_FUNDING, WorkStatus.DELIVERING
        )
        if started is None:
            logger.info("Work is not awaiting delivery, ignoring", extra=context)
            return None

        job = self.store.get_job(work.job_id)
        required_skills = job.required_skills if job is not None else ()
        artifact: dict[str, object] = {
            "job_id": work.job_id,
            "escrow_id": escrow_id,
            "worker_ref": self._config.worker_ref,
            "title": job.title if job is not None else "",
            "result": f"Completed work for {job.title if job is not None else work.job_id}",
        }
        delivery = Delivery(
            escrow_id=escrow_id,
            job_id=work.job_id,
            delivery_ref=delivery_ref_for(artifact),
            delivered_at=self._clock.now(),
            artifact=artifact,
        )

        try:
            escrow = await self._ledger.submit_delivery(escrow_id, delivery.delivery_ref)
            self.escrow_cache.observe(escrow_id, escrow.status)
        except ServiceError as exc:
            logger.warning(
                "On-ledger delivery submission failed, continuing off-ledger",
                extra={**context, "error": exc.error},
            )

        await self._bus.publish(
            Topic.VERIFICATION_REQUESTS,
            VerificationRequest(
                sender=self.name,
                to=self._config.coordinator_agent,
                escrow_id=escrow_id,
                job_id=work.job_id,
                delivery_ref=delivery.delivery_ref,
                job_type=job_type_for(required_skills),
                deadline=job.deadline if job is not None else None,
                delivered_at=delivery.delivered_at,
                reply_to=work.registry_agent,
            ),
        )
        self.store.transition(
            escrow_id, WorkStatus.DELIVERING, WorkStatus.DELIVERED, delivery=delivery
        )
        logger.info(
            "Work delivered, verification requested",
            extra={**context, "delivery_ref": delivery.delivery_ref},
        )
        return delivery

    def get_work(self, escrow_id: str) -> WorkItem | None:
        return self.store.get_work(escrow_id)

    def list_work(self, status: WorkStatus | None = None) -> list[WorkItem]:
        return self.store.list_work(status)

    def list_available_jobs(self) -> list[Job]:
        """Cached jobs we have not been accepted for."""
        taken = {item.job_id for item in self.store.list_work()}
        return [job for job in self.store.list_jobs() if job.job_id not in taken]

    def escrow_status(self, escrow_id: str) -> EscrowStatus:
        return self.escrow_cache.get(escrow_id)

    async def wait_idle(self) -> None:
        """Wait for all running funding watches to finish."""
        tasks = list(self._watch_tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self) -> None:
        """Cancel running funding watches."""
        tasks = list(self._watch_tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._watch_tasks.clear()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _watch_and_deliver(self, escrow_id: str, job_id: str) -> None:
        try:
            outcome = await self.watcher.wait_for_funding(escrow_id, job_id)
            self.store.update(escrow_id, funding_attempts=outcome.attempts)
            if not outcome.funded:
                self.store.update(escrow_id, funding_exhausted=True)
                return
            await self.deliver_work(escrow_id)
        except asyncio.CancelledError:
            logger.info("Funding watch cancelled", extra={"escrow_id": escrow_id, "job_id": job_id})
            raise
        except Exception:
            logger.exception(
                "Unhandled error while watching escrow",
                extra={"escrow_id": escrow_id, "job_id": job_id},
            )

    def _current_reputation(self) -> int | None:
        if self._reputation_lookup is None:
            return None
        return self._reputation_lookup(self._config.worker_ref)

    def _forget_watch(self, escrow_id: str, task: asyncio.Task[None]) -> None:
        if self._watch_tasks.get(escrow_id) is task:
            del self._watch_tasks[escrow_id]

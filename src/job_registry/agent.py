"""Bus wiring for the Job Registry."""

from __future__ import annotations

from typing import TYPE_CHECKING

from marketplace_protocol.messages import JobBid, Topic, VerificationResult
from marketplace_protocol.models import JobStatus
from service_commons.exceptions import ServiceError
from service_commons.logging import get_logger

from job_registry.services.job_manager import JobManager
from job_registry.services.job_store import JobStore

if TYPE_CHECKING:
    from marketplace_protocol.bus import MessageBus
    from marketplace_protocol.clock import Clock
    from marketplace_protocol.escrow import EscrowLedger
    from marketplace_protocol.messages import Message

    from job_registry.config import JobRegistryConfig

logger = get_logger(__name__)


class JobRegistryAgent:
    """Receives offers and verification results for the jobs this client posts."""

    def __init__(
        self,
        config: JobRegistryConfig,
        bus: MessageBus,
        ledger: EscrowLedger,
        clock: Clock,
    ) -> None:
        self._config = config
        self._bus = bus
        self._store = JobStore(db_path=config.database_path)
        self.manager = JobManager(config, self._store, ledger, bus, clock)

    @property
    def name(self) -> str:
        return self._config.agent_name

    def register(self) -> None:
        """Subscribe handlers on the bus."""
        self._bus.subscribe(Topic.OFFERS, self.on_job_bid, self.name)
        self._bus.subscribe(Topic.DELIVERIES, self.on_verification_result, self.name)

    async def on_job_bid(self, message: Message) -> None:
        """Record the bid and, when configured, accept the first offer on an open job."""
        if not isinstance(message, JobBid):
            return
        offer = self.manager.receive_offer(message)
        if offer is None or not self._config.auto_accept_offers:
            return

        job = self.manager.get_job(offer.job_id)
        if job is None or job.status != JobStatus.OPEN:
            return
        try:
            await self.manager.accept_offer(offer.job_id, offer.offer_id)
        except ServiceError as exc:
            logger.warning(
                "Automatic offer acceptance failed",
                extra={"job_id": offer.job_id, "offer_id": offer.offer_id, "error": exc.error},
            )

    async def on_verification_result(self, message: Message) -> None:
        if not isinstance(message, VerificationResult):
            return
        await self.manager.receive_delivery_receipt(message)

    async def close(self) -> None:
        self._store.close()

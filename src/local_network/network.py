"""Builds the bus, ledger, and agents for a single-process marketplace."""

from __future__ import annotations

from typing import TYPE_CHECKING

from job_registry.agent import JobRegistryAgent
from marketplace_protocol.bus import InMemoryMessageBus
from marketplace_protocol.clock import SystemClock
from marketplace_protocol.escrow import InMemoryEscrowLedger
from marketplace_protocol.ledger_client import EscrowLedgerClient
from reputation_ledger.agent import ReputationAgent
from service_commons.logging import get_logger
from verification_coordinator.agent import VerificationAgent
from work_matcher.agent import WorkMatcherAgent

if TYPE_CHECKING:
    from collections.abc import Sequence

    from marketplace_protocol.clock import Clock
    from marketplace_protocol.escrow import EscrowLedger
    from reputation_ledger.services.badges import BadgeIssuer
    from verification_coordinator.services.coordinator import PanelVerifier

    from local_network.config import LedgerConfig, Settings

logger = get_logger(__name__)


def build_ledger(config: LedgerConfig) -> EscrowLedger:
    """Instantiate the configured escrow ledger backend."""
    if config.backend == "http" and config.http is not None:
        return EscrowLedgerClient(
            base_url=config.http.base_url,
            create_path=config.http.create_path,
            fund_path=config.http.fund_path,
            status_path=config.http.status_path,
            submit_path=config.http.submit_path,
            approve_path=config.http.approve_path,
            timeout_seconds=config.http.timeout_seconds,
        )
    return InMemoryEscrowLedger()


class LocalNetwork:
    """
    All four agents subscribed to one in-process bus.

    The worker looks up its own reputation score from the reputation
    agent in the same process when bidding.
    """

    def __init__(
        self,
        settings: Settings,
        clock: Clock | None = None,
        ledger: EscrowLedger | None = None,
        badge_issuer: BadgeIssuer | None = None,
        panel: Sequence[PanelVerifier] | None = None,
    ) -> None:
        self.settings = settings
        self.clock = clock or SystemClock()
        self.bus = InMemoryMessageBus()
        self.ledger = ledger or build_ledger(settings.ledger)

        self.reputation = ReputationAgent(
            settings.reputation_ledger, self.bus, self.clock, badge_issuer=badge_issuer
        )
        self.verifier = VerificationAgent(
            settings.verification_coordinator, self.bus, self.clock, panel=panel
        )
        self.worker = WorkMatcherAgent(
            settings.work_matcher,
            self.bus,
            self.ledger,
            self.clock,
            reputation_lookup=self._reputation_score,
        )
        self.registry = JobRegistryAgent(settings.job_registry, self.bus, self.ledger, self.clock)

    def start(self) -> None:
        """Subscribe every agent on the bus."""
        for agent in (self.reputation, self.verifier, self.worker, self.registry):
            agent.register()
            logger.info("Agent registered", extra={"agent": agent.name})

    async def close(self) -> None:
        await self.worker.close()
        await self.registry.close()
        await self.reputation.close()
        if isinstance(self.ledger, EscrowLedgerClient):
            await self.ledger.close()

    def _reputation_score(self, subject_ref: str) -> int | None:
        record = self.reputation.ledger.get_record(subject_ref)
        return record.score if record is not None else None

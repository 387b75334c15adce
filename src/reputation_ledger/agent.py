"""Bus wiring for the Reputation Ledger."""

from __future__ import annotations

from typing import TYPE_CHECKING

from marketplace_protocol.messages import ReputationUpdate, Topic
from service_commons.logging import get_logger

from reputation_ledger.clients.badge_issuer_client import BadgeIssuerClient
from reputation_ledger.services.badges import InMemoryBadgeIssuer
from reputation_ledger.services.ledger import ReputationLedger
from reputation_ledger.services.reputation_store import ReputationStore

if TYPE_CHECKING:
    from marketplace_protocol.bus import MessageBus
    from marketplace_protocol.clock import Clock
    from marketplace_protocol.messages import Message

    from reputation_ledger.config import BadgeIssuerConfig, ReputationLedgerConfig
    from reputation_ledger.services.badges import BadgeIssuer

logger = get_logger(__name__)


def build_badge_issuer(config: BadgeIssuerConfig) -> BadgeIssuer:
    """Instantiate the configured badge issuer backend."""
    if config.backend == "http" and config.http is not None:
        return BadgeIssuerClient(
            base_url=config.http.base_url,
            has_badge_path=config.http.has_badge_path,
            issue_path=config.http.issue_path,
            timeout_seconds=config.http.timeout_seconds,
        )
    return InMemoryBadgeIssuer()


class ReputationAgent:
    """Consumes reputation updates from the bus and applies them."""

    def __init__(
        self,
        config: ReputationLedgerConfig,
        bus: MessageBus,
        clock: Clock,
        badge_issuer: BadgeIssuer | None = None,
    ) -> None:
        self._config = config
        self._bus = bus
        self._store = ReputationStore(db_path=config.database_path)
        self.badge_issuer = badge_issuer or build_badge_issuer(config.badge_issuer)
        self.ledger = ReputationLedger(self._store, self.badge_issuer, clock)

    @property
    def name(self) -> str:
        return self._config.agent_name

    def register(self) -> None:
        """Subscribe handlers on the bus."""
        self._bus.subscribe(Topic.REPUTATION_UPDATES, self.on_reputation_update, self.name)

    async def on_reputation_update(self, message: Message) -> None:
        if not isinstance(message, ReputationUpdate):
            logger.warning("Unexpected message on reputation topic", extra={"type": message.type})
            return
        await self.ledger.apply_update(message)

    async def close(self) -> None:
        if isinstance(self.badge_issuer, BadgeIssuerClient):
            await self.badge_issuer.close()
        self._store.close()

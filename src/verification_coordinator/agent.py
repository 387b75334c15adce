"""Bus wiring for the Verification Coordinator."""

from __future__ import annotations

from typing import TYPE_CHECKING

from marketplace_protocol.messages import ConsensusRequest, Topic, VerificationRequest
from service_commons.logging import get_logger

from verification_coordinator.services.coordinator import VerificationCoordinator, build_panel

if TYPE_CHECKING:
    from collections.abc import Sequence

    from marketplace_protocol.bus import MessageBus
    from marketplace_protocol.clock import Clock
    from marketplace_protocol.messages import Message

    from verification_coordinator.config import VerificationCoordinatorConfig
    from verification_coordinator.services.coordinator import PanelVerifier

logger = get_logger(__name__)


class VerificationAgent:
    """Consumes targeted verification and consensus requests."""

    def __init__(
        self,
        config: VerificationCoordinatorConfig,
        bus: MessageBus,
        clock: Clock,
        panel: Sequence[PanelVerifier] | None = None,
    ) -> None:
        self._config = config
        self._bus = bus
        self.coordinator = VerificationCoordinator(
            config=config,
            bus=bus,
            clock=clock,
            panel=panel if panel is not None else build_panel(config),
        )

    @property
    def name(self) -> str:
        return self._config.agent_name

    def register(self) -> None:
        """Subscribe handlers on the bus."""
        self._bus.subscribe(Topic.VERIFICATION_REQUESTS, self.on_verification_request, self.name)
        self._bus.subscribe(Topic.VERIFICATION_CONSENSUS, self.on_consensus_request, self.name)

    async def on_verification_request(self, message: Message) -> None:
        if not isinstance(message, VerificationRequest):
            logger.warning("Unexpected message on verification topic", extra={"type": message.type})
            return
        await self.coordinator.handle_request(message)

    async def on_consensus_request(self, message: Message) -> None:
        if not isinstance(message, ConsensusRequest):
            logger.warning("Unexpected message on consensus topic", extra={"type": message.type})
            return
        await self.coordinator.handle_consensus_request(message)

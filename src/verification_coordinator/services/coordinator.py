"""Attestation production, consensus, and result forwarding."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import TYPE_CHECKING

from marketplace_protocol.messages import (
    CheckOutcome,
    Topic,
    VerificationAttestationMessage,
    VerificationResult,
)
from marketplace_protocol.models import CheckResult, VerificationAttestation
from service_commons.logging import get_logger

from verification_coordinator.checks.base import CheckContext
from verification_coordinator.checks.pipeline import build_stub_pipeline
from verification_coordinator.services.consensus import (
    DEFAULT_VERIFIER_WEIGHT,
    VerifierVote,
    compute_consensus,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from marketplace_protocol.bus import MessageBus
    from marketplace_protocol.clock import Clock
    from marketplace_protocol.messages import ConsensusRequest, VerificationRequest

    from verification_coordinator.checks.pipeline import CheckPipeline
    from verification_coordinator.config import VerificationCoordinatorConfig


@dataclass(frozen=True)
class PanelVerifier:
    """A verifier identity, its voting weight, and the checks it runs."""

    verifier_ref: str
    weight: float
    pipeline: CheckPipeline


def build_panel(config: VerificationCoordinatorConfig) -> list[PanelVerifier]:
    """Build the verifier panel from configuration using simulated checks."""
    if config.mode == "single":
        return [
            PanelVerifier(
                verifier_ref=config.verifier_ref,
                weight=DEFAULT_VERIFIER_WEIGHT,
                pipeline=build_stub_pipeline(random.Random(config.seed)),  # nosec B311
            )
        ]
    return [
        PanelVerifier(
            verifier_ref=verifier.verifier_ref,
            weight=verifier.weight,
            pipeline=build_stub_pipeline(
                random.Random(None if config.seed is None else config.seed + index)  # nosec B311
            ),
        )
        for index, verifier in enumerate(config.panel)
    ]


def _outcomes(checks: Sequence[CheckResult]) -> tuple[CheckOutcome, ...]:
    return tuple(
        CheckOutcome(name=check.name, passed=check.passed, score=check.score) for check in checks
    )


class VerificationCoordinator:
    """
    Turns verification requests into exactly one attestation per escrow.

    The verdict goes to the requesting registry as a targeted message and
    each raw verifier attestation is broadcast for audit. A repeated request
    for an attested escrow re-forwards the stored verdict without re-running
    any checks.
    """

    def __init__(
        self,
        config: VerificationCoordinatorConfig,
        bus: MessageBus,
        clock: Clock,
        panel: Sequence[PanelVerifier],
    ) -> None:
        if not panel:
            msg = "Verification panel must not be empty"
            raise ValueError(msg)
        self._config = config
        self._bus = bus
        self._clock = clock
        self._panel = tuple(panel)
        self._attestations: dict[str, VerificationAttestation] = {}
        self._raw_attestations: dict[str, tuple[VerificationAttestation, ...]] = {}
        self._in_flight: set[str] = set()
        self._logger = get_logger(__name__)

    @property
    def mode(self) -> str:
        return self._config.mode

    async def handle_request(self, request: VerificationRequest) -> VerificationAttestation | None:
        """Verify a delivery and forward the verdict."""
        reply_to = request.reply_to or self._config.registry_agent
        existing = self._attestations.get(request.escrow_id)
        if existing is not None:
            self._logger.info(
                "Escrow already attested, re-forwarding stored verdict",
                extra={"escrow_id": request.escrow_id, "job_id": request.job_id},
            )
            await self._forward(existing, reply_to)
            return existing

        if request.escrow_id in self._in_flight:
            self._logger.info(
                "Verification already in progress, dropping duplicate request",
                extra={"escrow_id": request.escrow_id, "job_id": request.job_id},
            )
            return None

        context = CheckContext(
            escrow_id=request.escrow_id,
            job_id=request.job_id,
            delivery_ref=request.delivery_ref,
            job_type=request.job_type,
            deadline=request.deadline,
            delivered_at=request.delivered_at,
        )

        self._in_flight.add(request.escrow_id)
        try:
            raw = [await self._attest(verifier, context) for verifier in self._panel]
        finally:
            self._in_flight.discard(request.escrow_id)

        if self.mode == "single":
            verdict = raw[0]
        else:
            votes = [
                VerifierVote(
                    verifier_ref=verifier.verifier_ref,
                    passed=attestation.passed,
                    score=attestation.score,
                    weight=verifier.weight,
                )
                for verifier, attestation in zip(self._panel, raw, strict=True)
            ]
            verdict = self._consensus_attestation(
                request.escrow_id, request.job_id, request.delivery_ref, votes
            )

        return await self._publish_verdict(verdict, raw, reply_to)

    async def handle_consensus_request(
        self, request: ConsensusRequest
    ) -> VerificationAttestation | None:
        """Aggregate externally collected votes for one escrow."""
        reply_to = request.reply_to or self._config.registry_agent
        existing = self._attestations.get(request.escrow_id)
        if existing is not None:
            self._logger.info(
                "Escrow already attested, re-forwarding stored verdict",
                extra={"escrow_id": request.escrow_id, "job_id": request.job_id},
            )
            await self._forward(existing, reply_to)
            return existing

        votes = [
            VerifierVote(
                verifier_ref=vote.verifier_ref,
                passed=vote.passed,
                score=vote.score,
                weight=vote.weight if vote.weight is not None else DEFAULT_VERIFIER_WEIGHT,
            )
            for vote in request.votes
        ]
        verdict = self._consensus_attestation(
            request.escrow_id, request.job_id, request.delivery_ref, votes
        )
        return await self._publish_verdict(verdict, [], reply_to)

    def get_attestation(self, escrow_id: str) -> VerificationAttestation | None:
        return self._attestations.get(escrow_id)

    def list_attestations(self) -> list[VerificationAttestation]:
        return list(self._attestations.values())

    def raw_attestations(self, escrow_id: str) -> tuple[VerificationAttestation, ...]:
        return self._raw_attestations.get(escrow_id, ())

    async def _attest(
        self, verifier: PanelVerifier, context: CheckContext
    ) -> VerificationAttestation:
        outcome = await verifier.pipeline.run(context)
        return VerificationAttestation(
            escrow_id=context.escrow_id,
            job_id=context.job_id,
            delivery_ref=context.delivery_ref,
            passed=outcome.passed,
            score=outcome.score,
            checks=outcome.results,
            verifier_ref=verifier.verifier_ref,
            verified_at=self._clock.now(),
        )

    def _consensus_attestation(
        self,
        escrow_id: str,
        job_id: str,
        delivery_ref: str,
        votes: Sequence[VerifierVote],
    ) -> VerificationAttestation:
        result = compute_consensus(votes)
        self._logger.info(
            "Consensus computed",
            extra={
                "escrow_id": escrow_id,
                "job_id": job_id,
                "passed": result.passed,
                "score": result.score,
                "agreement_ratio": result.agreement_ratio,
                "voters": len(votes),
            },
        )
        return VerificationAttestation(
            escrow_id=escrow_id,
            job_id=job_id,
            delivery_ref=delivery_ref,
            passed=result.passed,
            score=result.rounded_score,
            checks=tuple(
                CheckResult(
                    name=f"verifier:{vote.verifier_ref}",
                    passed=vote.passed,
                    score=vote.score,
                )
                for vote in votes
            ),
            verifier_ref=self._config.verifier_ref,
            verified_at=self._clock.now(),
            mode="consensus",
            agreement_ratio=result.agreement_ratio,
        )

    async def _publish_verdict(
        self,
        verdict: VerificationAttestation,
        raw: Sequence[VerificationAttestation],
        reply_to: str,
    ) -> VerificationAttestation:
        # A concurrent duplicate may have finished first; the first verdict stays authoritative.
        stored = self._attestations.setdefault(verdict.escrow_id, verdict)
        if stored is not verdict:
            await self._forward(stored, reply_to)
            return stored

        self._raw_attestations[verdict.escrow_id] = tuple(raw)
        self._logger.info(
            "Delivery verified",
            extra={
                "escrow_id": verdict.escrow_id,
                "job_id": verdict.job_id,
                "passed": verdict.passed,
                "score": verdict.score,
                "mode": verdict.mode,
            },
        )
        await self._forward(verdict, reply_to)
        for attestation in raw:
            await self._bus.publish(
                Topic.VERIFICATIONS,
                VerificationAttestationMessage(
                    sender=self._config.agent_name,
                    escrow_id=attestation.escrow_id,
                    job_id=attestation.job_id,
                    delivery_ref=attestation.delivery_ref,
                    passed=attestation.passed,
                    score=attestation.score,
                    checks=_outcomes(attestation.checks),
                    verifier_ref=attestation.verifier_ref,
                ),
            )
        return verdict

    async def _forward(self, verdict: VerificationAttestation, reply_to: str) -> None:
        await self._bus.publish(
            Topic.DELIVERIES,
            VerificationResult(
                sender=self._config.agent_name,
                to=reply_to,
                escrow_id=verdict.escrow_id,
                job_id=verdict.job_id,
                delivery_ref=verdict.delivery_ref,
                passed=verdict.passed,
                score=verdict.score,
                checks=_outcomes(verdict.checks),
                verifier_ref=verdict.verifier_ref,
                mode="consensus" if verdict.mode == "consensus" else "single",
                agreement_ratio=verdict.agreement_ratio,
            ),
        )

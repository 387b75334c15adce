"""Idempotent reputation aggregation and badge issuance."""

from __future__ import annotations

from typing import TYPE_CHECKING

from marketplace_protocol.models import Badge
from service_commons.exceptions import ServiceError
from service_commons.logging import get_logger

from reputation_ledger.services.badges import eligible_badges
from reputation_ledger.services.reputation_store import DuplicateBadgeError, DuplicateUpdateError
from reputation_ledger.services.scoring import (
    CLIENT_RESPONSE_HOURS,
    WORKER_RESPONSE_HOURS,
    new_record,
    record_completed_job,
    record_with_stake,
)

if TYPE_CHECKING:
    from marketplace_protocol.clock import Clock
    from marketplace_protocol.messages import ReputationUpdate
    from marketplace_protocol.models import ReputationRecord

    from reputation_ledger.services.badges import BadgeIssuer
    from reputation_ledger.services.reputation_store import ReputationStore

_UNKNOWN_SUBJECTS = frozenset({"", "unknown"})


class ReputationLedger:
    """
    Applies completion reports to reputation records exactly once per
    (escrow_id, subject_ref) and issues badges the subject newly qualifies for.
    """

    def __init__(self, store: ReputationStore, badge_issuer: BadgeIssuer, clock: Clock) -> None:
        self._store = store
        self._badge_issuer = badge_issuer
        self._clock = clock
        self._logger = get_logger(__name__)

    async def apply_update(self, update: ReputationUpdate) -> list[ReputationRecord]:
        """
        Apply a reputation update to the worker and the client independently.

        Returns the records that changed. A redelivered update changes nothing.
        """
        subjects = (
            ("worker", update.worker, update.scores.worker, WORKER_RESPONSE_HOURS),
            ("client", update.client, update.scores.client, CLIENT_RESPONSE_HOURS),
        )
        applied: list[ReputationRecord] = []

        for role, subject_ref, score_component, response_hours in subjects:
            if subject_ref.strip().lower() in _UNKNOWN_SUBJECTS:
                self._logger.warning(
                    "Skipping reputation update for unidentified subject",
                    extra={"escrow_id": update.escrow_id, "job_id": update.job_id, "role": role},
                )
                continue

            if self._store.has_applied(update.escrow_id, subject_ref):
                self._logger.info(
                    "Reputation update already applied",
                    extra={"escrow_id": update.escrow_id, "subject_ref": subject_ref},
                )
                continue

            now = self._clock.now()
            current = self._store.get_record(subject_ref) or new_record(subject_ref, now)
            updated = record_completed_job(current, score_component, response_hours, now)
            try:
                self._store.commit_update(update.escrow_id, update.job_id, updated, now)
            except DuplicateUpdateError:
                self._logger.info(
                    "Reputation update already applied",
                    extra={"escrow_id": update.escrow_id, "subject_ref": subject_ref},
                )
                continue

            self._logger.info(
                "Reputation updated",
                extra={
                    "escrow_id": update.escrow_id,
                    "job_id": update.job_id,
                    "subject_ref": subject_ref,
                    "role": role,
                    "score": updated.score,
                    "total_jobs": updated.total_jobs,
                    "verification": update.scores.verification,
                },
            )
            applied.append(updated)

        for record in applied:
            await self.evaluate_badges(record.subject_ref)
        return applied

    async def evaluate_badges(self, subject_ref: str) -> list[Badge]:
        """
        Check-then-issue every badge the subject qualifies for.

        Badges already held (per the issuer) are skipped. Issuer failures are
        logged and retried on the next evaluation.
        """
        record = self._store.get_record(subject_ref)
        if record is None:
            return []

        issued: list[Badge] = []
        for rule in eligible_badges(record):
            if self._store.has_badge(subject_ref, rule.badge_type):
                continue
            try:
                already_held = await self._badge_issuer.has_type(subject_ref, rule.badge_type)
                if not already_held:
                    await self._badge_issuer.issue_badge(
                        subject_ref,
                        rule.badge_type,
                        {"name": rule.name, "score": str(record.score)},
                    )
            except ServiceError:
                self._logger.warning(
                    "Badge issuance failed, will retry on next evaluation",
                    extra={"subject_ref": subject_ref, "badge": rule.name},
                )
                continue

            badge = Badge(
                subject_ref=subject_ref,
                badge_type=rule.badge_type,
                name=rule.name,
                issued_at=self._clock.now(),
                metadata={"score": str(record.score)},
            )
            try:
                self._store.insert_badge(badge)
            except DuplicateBadgeError:
                continue
            if not already_held:
                self._logger.info(
                    "Badge issued",
                    extra={"subject_ref": subject_ref, "badge": rule.name},
                )
                issued.append(badge)
        return issued

    def record_stake(self, subject_ref: str, amount: int) -> ReputationRecord:
        """Set a subject's staked amount and recompute its score."""
        if amount < 0:
            raise ServiceError(
                "INVALID_STAKE",
                "Staked amount must not be negative",
                400,
                {"subject_ref": subject_ref},
            )
        now = self._clock.now()
        current = self._store.get_record(subject_ref) or new_record(subject_ref, now)
        updated = record_with_stake(current, amount, now)
        self._store.save_record(updated)
        return updated

    def get_record(self, subject_ref: str) -> ReputationRecord | None:
        return self._store.get_record(subject_ref)

    def list_badges(self, subject_ref: str) -> list[Badge]:
        return self._store.list_badges(subject_ref)

    def leaderboard(self) -> list[ReputationRecord]:
        return self._store.list_records()

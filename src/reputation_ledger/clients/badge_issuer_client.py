"""Async HTTP client for the badge issuer."""

from __future__ import annotations

from typing import Any

import httpx
from service_commons.exceptions import ServiceError
from service_commons.logging import get_logger


class BadgeIssuerClient:
    """
    Client for the badge issuer's existence-check and issue endpoints.

    ``has_badge_path`` may contain ``{subject_ref}`` and ``{badge_type}``.
    All transport failures and unexpected statuses raise
    BADGE_ISSUER_UNAVAILABLE (502).
    """

    def __init__(
        self,
        base_url: str,
        has_badge_path: str,
        issue_path: str,
        timeout_seconds: int,
    ) -> None:
        self._base_url = base_url
        self._has_badge_path = has_badge_path
        self._issue_path = issue_path
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    def _unavailable(self, message: str) -> ServiceError:
        return ServiceError(
            error="BADGE_ISSUER_UNAVAILABLE",
            message=message,
            status_code=502,
            details={},
        )

    async def has_type(self, subject_ref: str, badge_type: int) -> bool:
        """Return True when the subject already holds a badge of this type."""
        logger = get_logger(__name__)
        path = self._has_badge_path.format(subject_ref=subject_ref, badge_type=badge_type)
        try:
            response = await self._client.get(path)
        except httpx.HTTPError as exc:
            logger.warning(
                "Badge issuer request failed",
                extra={"error": str(exc), "subject_ref": subject_ref, "base_url": self._base_url},
            )
            raise self._unavailable("Cannot reach badge issuer") from exc

        if response.status_code == 404:
            return False
        if response.status_code == 200:
            body: dict[str, Any] = response.json()
            return bool(body.get("held", False))

        logger.warning(
            "Badge issuer unexpected status on existence check",
            extra={"status_code": response.status_code, "subject_ref": subject_ref},
        )
        raise self._unavailable("Badge issuer returned unexpected status")

    async def issue_badge(
        self, subject_ref: str, badge_type: int, metadata: dict[str, str]
    ) -> str:
        """Issue a badge and return its identifier."""
        logger = get_logger(__name__)
        try:
            response = await self._client.post(
                self._issue_path,
                json={"subject_ref": subject_ref, "badge_type": badge_type, "metadata": metadata},
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "Badge issuer request failed",
                extra={"error": str(exc), "subject_ref": subject_ref, "base_url": self._base_url},
            )
            raise self._unavailable("Cannot reach badge issuer") from exc

        if response.status_code in (200, 201):
            body: dict[str, Any] = response.json()
            return str(body["badge_id"])

        logger.warning(
            "Badge issuer unexpected status on issue",
            extra={"status_code": response.status_code, "subject_ref": subject_ref},
        )
        raise self._unavailable("Badge issuer returned unexpected status")

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

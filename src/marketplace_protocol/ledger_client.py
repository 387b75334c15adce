"""Async HTTP client for an escrow ledger gateway."""

from __future__ import annotations

import json
from typing import Any, NoReturn

import httpx
from service_commons.exceptions import ServiceError
from service_commons.logging import get_logger

from marketplace_protocol.models import Escrow, EscrowStatus


def escrow_from_payload(payload: dict[str, Any]) -> Escrow:
    """Build an Escrow from the gateway's JSON representation."""
    delivery_ref = payload.get("delivery_ref")
    return Escrow(
        escrow_id=str(payload["escrow_id"]),
        client=str(payload.get("client", "")),
        worker=str(payload.get("worker", "")),
        amount=int(payload.get("amount", 0)),
        status=EscrowStatus(int(payload["status"])),
        delivery_ref=str(delivery_ref) if delivery_ref is not None else None,
    )


class EscrowLedgerClient:
    """
    Client for the escrow contract exposed through an HTTP gateway.

    Path templates may contain ``{escrow_id}``. Transport failures, unexpected
    statuses and unreadable response bodies raise LEDGER_UNAVAILABLE (502) so
    callers treat them as retryable; a 409 from the gateway means the contract
    rejected the transition and raises LEDGER_REJECTED.
    """

    def __init__(
        self,
        base_url: str,
        create_path: str,
        fund_path: str,
        status_path: str,
        submit_path: str,
        approve_path: str,
        timeout_seconds: int,
    ) -> None:
        self._base_url = base_url
        self._create_path = create_path
        self._fund_path = fund_path
        self._status_path = status_path
        self._submit_path = submit_path
        self._approve_path = approve_path
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def _request(
        self,
        method: str,
        path: str,
        escrow_id: str,
        payload: dict[str, Any] | None,
    ) -> httpx.Response:
        logger = get_logger(__name__)
        try:
            return await self._client.request(method, path, json=payload)
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            logger.warning(
                "Escrow ledger connection failed",
                extra={"error": str(exc), "escrow_id": escrow_id, "base_url": self._base_url},
            )
            raise ServiceError(
                error="LEDGER_UNAVAILABLE",
                message="Cannot connect to escrow ledger",
                status_code=502,
                details={},
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "Escrow ledger HTTP error",
                extra={"error": str(exc), "escrow_id": escrow_id, "base_url": self._base_url},
            )
            raise ServiceError(
                error="LEDGER_UNAVAILABLE",
                message="Escrow ledger request failed",
                status_code=502,
                details={},
            ) from exc

    def _unexpected_response(
        self, response: httpx.Response, escrow_id: str, operation: str
    ) -> ServiceError:
        get_logger(__name__).warning(
            "Escrow ledger unexpected response body",
            extra={
                "status_code": response.status_code,
                "escrow_id": escrow_id,
                "operation": operation,
            },
        )
        return ServiceError(
            error="LEDGER_UNAVAILABLE",
            message=(
                f"Escrow ledger returned unexpected response on {operation} "
                f"(status {response.status_code})"
            ),
            status_code=502,
            details={"escrow_id": escrow_id},
        )

    def _json_body(
        self, response: httpx.Response, escrow_id: str, operation: str
    ) -> dict[str, Any]:
        try:
            body = response.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise self._unexpected_response(response, escrow_id, operation) from exc
        if not isinstance(body, dict):
            raise self._unexpected_response(response, escrow_id, operation)
        return body

    def _escrow(self, response: httpx.Response, escrow_id: str, operation: str) -> Escrow:
        body = self._json_body(response, escrow_id, operation)
        try:
            return escrow_from_payload(body)
        except (KeyError, TypeError, ValueError) as exc:
            raise self._unexpected_response(response, escrow_id, operation) from exc

    def _raise_for_status(
        self,
        response: httpx.Response,
        escrow_id: str,
        operation: str,
    ) -> NoReturn:
        if response.status_code == 409:
            error_body = self._json_body(response, escrow_id, operation)
            raise ServiceError(
                error=error_body.get("error", "LEDGER_REJECTED"),
                message=error_body.get("message", f"Escrow ledger rejected {operation}"),
                status_code=409,
                details=error_body.get("details", {"escrow_id": escrow_id}),
            )

        get_logger(__name__).warning(
            "Escrow ledger unexpected status",
            extra={
                "status_code": response.status_code,
                "escrow_id": escrow_id,
                "operation": operation,
            },
        )
        raise ServiceError(
            error="LEDGER_UNAVAILABLE",
            message=f"Escrow ledger returned unexpected status on {operation}",
            status_code=502,
            details={},
        )

    async def create_escrow(self, escrow_id: str, client: str, worker: str) -> Escrow:
        """Create an escrow record in the Created state."""
        response = await self._request(
            "POST",
            self._create_path,
            escrow_id,
            {"escrow_id": escrow_id, "client": client, "worker": worker},
        )
        if response.status_code in (200, 201):
            return self._escrow(response, escrow_id, "create_escrow")
        self._raise_for_status(response, escrow_id, "create_escrow")

    async def fund_escrow(self, escrow_id: str, amount: int) -> Escrow:
        """Lock ``amount`` into a Created escrow."""
        response = await self._request(
            "POST",
            self._fund_path.format(escrow_id=escrow_id),
            escrow_id,
            {"amount": amount},
        )
        if response.status_code == 200:
            return self._escrow(response, escrow_id, "fund_escrow")
        self._raise_for_status(response, escrow_id, "fund_escrow")

    async def get_escrow(self, escrow_id: str) -> Escrow | None:
        """Query the authoritative escrow state; None when it does not exist."""
        response = await self._request(
            "GET", self._status_path.format(escrow_id=escrow_id), escrow_id, None
        )
        if response.status_code == 200:
            return self._escrow(response, escrow_id, "get_escrow")
        if response.status_code == 404:
            return None
        self._raise_for_status(response, escrow_id, "get_escrow")

    async def submit_delivery(self, escrow_id: str, delivery_ref: str) -> Escrow:
        """Record the delivery reference on the ledger."""
        response = await self._request(
            "POST",
            self._submit_path.format(escrow_id=escrow_id),
            escrow_id,
            {"delivery_ref": delivery_ref},
        )
        if response.status_code == 200:
            return self._escrow(response, escrow_id, "submit_delivery")
        self._raise_for_status(response, escrow_id, "submit_delivery")

    async def approve_work(self, escrow_id: str) -> Escrow:
        """Release escrowed funds to the worker."""
        response = await self._request(
            "POST", self._approve_path.format(escrow_id=escrow_id), escrow_id, {}
        )
        if response.status_code == 200:
            return self._escrow(response, escrow_id, "approve_work")
        self._raise_for_status(response, escrow_id, "approve_work")

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

"""
Domain exception shared by every agent.
"""

from __future__ import annotations

from typing import Any


class ServiceError(Exception):
    """
    Error raised by agent operations and outbound clients.

    Attributes:
        error: Upper-snake machine-readable code (e.g. ``JOB_NOT_FOUND``)
        message: Human-readable description
        status_code: HTTP-style status used to classify the failure
        details: Additional structured context
    """

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error = error
        self.message = message
        self.status_code = status_code
        self.details: dict[str, Any] = details if details is not None else {}

    @property
    def retryable(self) -> bool:
        """Transport-level failures (5xx) may succeed on retry."""
        return self.status_code >= 500

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for logs and messages."""
        return {"error": self.error, "message": self.message, "details": self.details}

    def __repr__(self) -> str:
        return f"ServiceError({self.error!r}, {self.message!r}, {self.status_code})"

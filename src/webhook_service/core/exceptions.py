"""Common exceptions for domain and repository layers."""
from __future__ import annotations

from typing import Any


class WebhookServiceError(Exception):
    """Base error for service layer."""


class RepositoryError(WebhookServiceError):
    """Raised when repository operations fail."""


class NotFoundError(RepositoryError):
    """Raised when requested webhook or delivery is missing."""


class ValidationError(WebhookServiceError):
    """Raised when subscription input is malformed.

    ``errors`` holds one ``{"field": ..., "message": ...}`` entry per problem so the
    API layer can report all of them at once.
    """

    def __init__(self, errors: list[dict[str, Any]] | str):
        if isinstance(errors, str):
            errors = [{"field": None, "message": errors}]
        self.errors = errors
        super().__init__("; ".join(self._format(e) for e in errors))

    @staticmethod
    def _format(error: dict[str, Any]) -> str:
        field = error.get("field")
        return f"{field}: {error['message']}" if field else str(error["message"])


class DeliveryTransportError(WebhookServiceError):
    """Network failure, timeout or DNS failure during a delivery attempt."""


class InvalidStatusTransitionError(WebhookServiceError):
    """Raised when a delivery attempts an unsupported status change."""

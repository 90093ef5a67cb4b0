"""Typed errors raised by the deal lifecycle.

Every error carries the HTTP status the API layer answers with and a stable
machine-readable ``code``. None of them are retried inside the core.
"""

from __future__ import annotations

from typing import Any


class DealError(Exception):
    """Base class for all lifecycle errors."""

    status_code: int = 500
    default_message: str = "Deal operation failed"
    retryable: bool = False

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message or self.default_message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(DealError):
    """Entity id does not exist."""

    status_code = 404
    default_message = "Resource not found"


class ForbiddenError(DealError):
    """Actor lacks ownership or turn rights, or the entity is closed."""

    status_code = 403
    default_message = "Operation not permitted"


class ConflictError(DealError):
    """Stale turn, lost concurrent update, or duplicate settlement."""

    status_code = 409
    default_message = "Resource conflict"


class ValidationError(DealError):
    """Malformed field, unknown section, inconsistent dates."""

    status_code = 422
    default_message = "Validation error"


class StoreUnavailableError(DealError):
    """The persistence collaborator failed or timed out. Safe to retry."""

    status_code = 503
    default_message = "Store unavailable"
    retryable = True

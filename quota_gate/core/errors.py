"""Domain exceptions.

Services and adapters raise these; ``core.exception_handlers`` maps them to
HTTP responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Optional structured context attached to an error."""

    hint: str
    policy: str
    backend: str
    field: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base class for errors the API reports in a structured body.

    Attributes:
        code: Machine-readable error code, e.g. ``"store_unavailable"``.
        message: Text shown to clients.
        details: Extra context, omitted from the body when empty.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Invalid configuration or input (e.g. a bad policy override)."""


class AuthenticationAppError(AppError):
    """Missing or wrong operator API key."""


class StoreUnavailableError(AppError):
    """Raised when the window store backend cannot be reached in time."""


@dataclass
class RateLimitExceededError(AppError):
    """Raised by the FastAPI admission dependency when a request is denied.

    ``retry_after_seconds`` and ``headers`` are carried so the global handler
    can build the 429 response without consulting the limiter again.
    """

    retry_after_seconds: int | None = None
    headers: dict[str, str] | None = None

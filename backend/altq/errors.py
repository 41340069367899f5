"""
Domain errors raised by the queue services.

Each error carries the HTTP status code it maps to; ``main`` installs a
handler that turns any ``QueueError`` into a JSON response. The last two
are never surfaced to a caller: they are logged where they happen.
"""

from typing import Any, Optional

from fastapi import status


class QueueError(Exception):
    """Base class for errors a queue operation reports to its caller."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, errors: Optional[list[dict[str, Any]]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []

    def to_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {"detail": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


class ValidationError(QueueError):
    """Malformed or missing fields in a request."""
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class InvalidTransitionError(ValidationError):
    """Requested status change is not an edge of the lifecycle graph."""


class ConflictError(QueueError):
    """Customer already queued, or a concurrent update won the race."""
    status_code = status.HTTP_409_CONFLICT


class AuthorizationError(QueueError):
    """Actor is not allowed to perform the operation."""
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(QueueError):
    """Referenced entry, salon, service or offer does not exist."""
    status_code = status.HTTP_404_NOT_FOUND


class TransientDispatchError(Exception):
    """A notification or broadcast send failed."""


class SweepError(Exception):
    """A scheduled sweep tick failed."""

"""
Error taxonomy for the claim routing core.

Every failure path in the core raises one of these typed errors. Callers
classify them by the ``retryable`` flag (consumer redelivery) and by
``status_code`` (HTTP surface).
"""

from typing import Any


class ClaimRoutingError(Exception):
    """Base class for all claim routing errors."""

    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def error_type(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize the error for API responses and audit payloads.

        Returns:
            Dictionary with error type, message and details
        """
        return {
            "success": False,
            "error": self.error_type,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(ClaimRoutingError, ValueError):
    """Malformed input. Never retried."""

    status_code = 400


class NotFoundError(ClaimRoutingError):
    """Unknown company, assignment or rule. Never retried."""

    status_code = 404


class ConflictError(ClaimRoutingError):
    """Duplicate name or a concurrent transition that lost the race."""

    status_code = 409


class InvalidTransitionError(ClaimRoutingError):
    """Illegal assignment lifecycle move."""

    status_code = 409

    def __init__(self, assignment_id: int | None, current_status: str, transition: str):
        super().__init__(
            f"Cannot {transition} assignment {assignment_id} in status '{current_status}'",
            details={
                "assignment_id": assignment_id,
                "current_status": current_status,
                "transition": transition,
            },
        )
        self.assignment_id = assignment_id
        self.current_status = current_status
        self.transition = transition


class NoRouteError(ClaimRoutingError):
    """No active rule matched the claim. Reported, never fatal."""

    status_code = 200


class TransientInfrastructureError(ClaimRoutingError):
    """Database or queue unavailable. Retried with backoff."""

    status_code = 503
    retryable = True

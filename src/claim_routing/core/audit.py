"""
Builders for audit entries that describe failures.
"""

from typing import Any

from claim_routing.core.exceptions import ClaimRoutingError
from claim_routing.core.models import AuditLog


def error_entry(
    error: Exception,
    service: str,
    action: str,
    payload: Any = None,
    claim_id: str | None = None,
    assignment_id: int | None = None,
    actor: str | None = None,
) -> AuditLog:
    """
    Audit entry for a failure, carrying the triggering payload.

    Args:
        error: The exception being reported
        service: Component that observed the failure
        action: What was being attempted
        payload: Triggering message or request body
        claim_id: Claim involved, if known
        assignment_id: Assignment involved, if known
        actor: Who triggered the action

    Returns:
        AuditLog at warning level for reported outcomes, error level otherwise
    """
    if isinstance(error, ClaimRoutingError):
        details = error.details
        level = "warning" if error.status_code < 500 else "error"
        message = error.message
    else:
        details = {}
        level = "error"
        message = str(error) or type(error).__name__

    return AuditLog(
        level=level,
        service=service,
        action=action,
        message=message,
        claim_id=claim_id,
        assignment_id=assignment_id,
        actor=actor,
        payload={
            "error_type": type(error).__name__,
            "details": _jsonable(details),
            "payload": _jsonable(payload),
        },
    )


def _jsonable(value: Any) -> Any:
    """Best-effort conversion of payloads into JSON-compatible values."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (bytes, bytearray)):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    return str(value)

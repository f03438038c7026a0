"""
AuditLog model representing a durable audit trail entry.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from claim_routing.core.clock import utcnow


class AuditLog(BaseModel):
    """
    Audit trail entry for lifecycle transitions, routing outcomes and errors.

    Attributes:
        log_id: Auto-increment primary key
        level: Severity ("info", "warning", "error")
        service: Component that wrote the entry
        action: What happened (e.g. "reassign", "no_route", "bootstrap_failed")
        message: Human-readable summary
        assignment_id: Assignment affected, if any
        claim_id: Claim affected, if any
        actor: Who triggered the action (user id, token subject or "system")
        previous_status: Status before a transition
        new_status: Status after a transition
        previous_user_id: Owner before a transition
        new_user_id: Owner after a transition
        payload: Triggering message or request body and extra context
        created_at: When the entry was written
    """

    log_id: int | None = None
    level: Literal["info", "warning", "error"] = "info"
    service: str
    action: str
    message: str
    assignment_id: int | None = None
    claim_id: str | None = None
    actor: str | None = None
    previous_status: str | None = None
    new_status: str | None = None
    previous_user_id: int | None = None
    new_user_id: int | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    class Config:
        json_schema_extra = {
            "example": {
                "log_id": 1,
                "level": "info",
                "service": "assignment_lifecycle",
                "action": "reassign",
                "message": "Assignment 10 reassigned from None to 42",
                "assignment_id": 10,
                "actor": "7",
                "previous_status": "pending",
                "new_status": "assigned",
                "previous_user_id": None,
                "new_user_id": 42,
            }
        }

"""
TransitionEvent model describing one successful lifecycle transition.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from claim_routing.core.clock import utcnow
from claim_routing.core.models.assignment import Assignment


class TransitionEvent(BaseModel):
    """
    Before/after state of an assignment transition.

    ``before`` is None for creation.
    """

    transition: str
    assignment_id: int | None
    before: Assignment | None = None
    after: Assignment
    actor: str | None = None
    occurred_at: datetime = Field(default_factory=utcnow)

"""
Assignment model representing the durable record of a routing decision.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from claim_routing.core.clock import utcnow


class AssignmentStatus(str, Enum):
    """Lifecycle states of an assignment."""

    PENDING = "pending"
    ASSIGNED = "assigned"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    UNASSIGNED = "unassigned"

    @property
    def is_terminal(self) -> bool:
        return self in (AssignmentStatus.COMPLETED, AssignmentStatus.CANCELLED)


OPEN_STATUSES = (AssignmentStatus.ASSIGNED, AssignmentStatus.ACTIVE)


class Assignment(BaseModel):
    """
    A claim routed to (at most) one reviewer.

    Attributes:
        id: Primary key
        user_id: Current owner (None while pending or unassigned)
        company_id: Company whose rules produced the routing
        claim_id: Natural key part 1
        document_number: Natural key part 2
        process_id: Upstream process identifier
        source: Tax ID of the company that raised the claim
        target: Tax ID of the company that received the claim
        objection_code: Objection code from the claim
        concept_application_code: Concept code from the claim
        external_reference: Upstream reference
        invoice_amount: Invoice total
        value: Disputed value
        type: Routing label (e.g. "OBJECTION_OBJ-01")
        rule_id: Rule that produced the routing (None for manual creation)
        status: Lifecycle state
        start_date: When the assignment was created
        end_date: Set iff status is completed or cancelled
        version: Optimistic lock counter, bumped on every write
    """

    id: int | None = None
    user_id: int | None = None
    company_id: int
    claim_id: str
    document_number: str
    process_id: int | None = None
    source: str | None = None
    target: str | None = None
    objection_code: str | None = None
    concept_application_code: str | None = None
    external_reference: str | None = None
    invoice_amount: float | None = None
    value: float | None = None
    type: str | None = None
    rule_id: int | None = None
    status: AssignmentStatus = AssignmentStatus.PENDING
    start_date: datetime = Field(default_factory=utcnow)
    end_date: datetime | None = None
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Config:
        json_schema_extra = {
            "example": {
                "id": 10,
                "user_id": 42,
                "company_id": 1,
                "claim_id": "CLM-555",
                "document_number": "FE-2024-0001",
                "source": "800000513",
                "objection_code": "OBJ-01",
                "value": 200000,
                "type": "OBJECTION_OBJ-01",
                "rule_id": 7,
                "status": "assigned",
                "version": 0,
            }
        }

    @property
    def natural_key(self) -> tuple[str, str]:
        return (self.claim_id, self.document_number)

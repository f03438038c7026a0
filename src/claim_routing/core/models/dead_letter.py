"""
DeadLetterRecord model representing a message that could not be processed.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from claim_routing.core.clock import utcnow


class DeadLetterRecord(BaseModel):
    """
    A claim message parked for manual inspection.

    Attributes:
        dead_letter_id: Auto-increment primary key
        message_key: Broker coordinates ("topic:partition:offset") or "manual"
        claim_id: Claim id when the payload could be decoded that far
        raw_payload: Message body exactly as received
        error_type: Exception class that caused dead-lettering
        error_message: Exception message
        attempts: Delivery attempts made before giving up
        dead_lettered_at: When the record was written
        reviewed: Whether an operator has looked at it
        reprocess_requested: Whether the operator asked for a retry
        reprocessed_at: When it was successfully reprocessed
    """

    dead_letter_id: int | None = None
    message_key: str
    claim_id: str | None = None
    raw_payload: str
    error_type: str
    error_message: str
    attempts: int = Field(default=1, ge=1)
    dead_lettered_at: datetime = Field(default_factory=utcnow)
    reviewed: bool = False
    reprocess_requested: bool = False
    reprocessed_at: datetime | None = None

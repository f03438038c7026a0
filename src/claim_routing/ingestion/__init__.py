"""
Claim ingestion: message decoding, the routing pipeline, the queue
consumer and its bootstrap supervisor.
"""

from .consumer import ClaimQueueConsumer
from .messages import decode_claim, parse_claim
from .pipeline import IngestionOutcome, IngestionPipeline, IngestionStatus
from .supervisor import BootstrapSupervisor, SupervisorState

__all__ = [
    "ClaimQueueConsumer",
    "IngestionPipeline",
    "IngestionOutcome",
    "IngestionStatus",
    "BootstrapSupervisor",
    "SupervisorState",
    "decode_claim",
    "parse_claim",
]

"""
Assignment lifecycle state machine.
"""

from .assignment_lifecycle import (
    AssignmentLifecycle,
    BulkReassignItem,
    BulkReassignResult,
    Transition,
)

__all__ = [
    "AssignmentLifecycle",
    "BulkReassignItem",
    "BulkReassignResult",
    "Transition",
]

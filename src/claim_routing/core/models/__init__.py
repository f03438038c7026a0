"""
Core data models for the claim routing service.

All models use Pydantic for runtime validation and type safety.
"""

from .assignment import OPEN_STATUSES, Assignment, AssignmentStatus
from .audit_log import AuditLog
from .claim import Claim
from .company import Company, normalize_nit
from .dead_letter import DeadLetterRecord
from .match_result import MatchResult, RuleEvaluation
from .rule import Rule
from .rule_type import Criterion, RuleType
from .transition import TransitionEvent
from .user import Role, User

__all__ = [
    "Assignment",
    "AssignmentStatus",
    "OPEN_STATUSES",
    "AuditLog",
    "Claim",
    "Company",
    "normalize_nit",
    "DeadLetterRecord",
    "MatchResult",
    "RuleEvaluation",
    "Rule",
    "Criterion",
    "RuleType",
    "TransitionEvent",
    "Role",
    "User",
]

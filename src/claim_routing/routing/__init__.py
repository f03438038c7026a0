"""
Reviewer resolution and selection.
"""

from .role_resolver import RoleResolver
from .selection import (
    FirstEligibleSelectionPolicy,
    LeastLoadedSelectionPolicy,
    RoundRobinSelectionPolicy,
    UserSelectionPolicy,
    create_selection_policy,
)

__all__ = [
    "RoleResolver",
    "UserSelectionPolicy",
    "FirstEligibleSelectionPolicy",
    "LeastLoadedSelectionPolicy",
    "RoundRobinSelectionPolicy",
    "create_selection_policy",
]

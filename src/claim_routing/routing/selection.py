"""
Strategies for choosing one reviewer among the eligible users.
"""

import threading
from abc import ABC, abstractmethod

from claim_routing.core.models import Claim, User
from claim_routing.core.ports import AssignmentRepository


class UserSelectionPolicy(ABC):
    """Chooses exactly one user from a non-empty eligible set."""

    name: str = "abstract"

    @abstractmethod
    def select(self, users: list[User], claim: Claim | None = None) -> User | None:
        """
        Pick a user.

        Args:
            users: Eligible users, ordered by id
            claim: Claim being routed, for policies that need it

        Returns:
            Selected user, or None when ``users`` is empty
        """


class FirstEligibleSelectionPolicy(UserSelectionPolicy):
    """Always the eligible user with the lowest id."""

    name = "first"

    def select(self, users: list[User], claim: Claim | None = None) -> User | None:
        if not users:
            return None
        return min(users, key=lambda u: u.id)


class LeastLoadedSelectionPolicy(UserSelectionPolicy):
    """User with the fewest open (assigned or active) assignments; ties go to the lowest id."""

    name = "least_loaded"

    def __init__(self, repository: AssignmentRepository):
        self.repository = repository

    def select(self, users: list[User], claim: Claim | None = None) -> User | None:
        if not users:
            return None
        load = self.repository.count_open_by_user([u.id for u in users])
        return min(users, key=lambda u: (load.get(u.id, 0), u.id))


class RoundRobinSelectionPolicy(UserSelectionPolicy):
    """Rotates through each distinct eligible set in id order."""

    name = "round_robin"

    def __init__(self):
        self._positions: dict[tuple[int, ...], int] = {}
        self._lock = threading.Lock()

    def select(self, users: list[User], claim: Claim | None = None) -> User | None:
        if not users:
            return None
        ordered = sorted(users, key=lambda u: u.id)
        key = tuple(u.id for u in ordered)
        with self._lock:
            position = self._positions.get(key, 0)
            self._positions[key] = (position + 1) % len(ordered)
        return ordered[position]


def create_selection_policy(name: str, repository: AssignmentRepository) -> UserSelectionPolicy:
    """
    Factory function to build a selection policy by name.

    Args:
        name: "least_loaded", "round_robin" or "first"
        repository: Assignment repository (used by least_loaded)

    Returns:
        UserSelectionPolicy instance

    Raises:
        ValueError: If the name is unknown
    """
    normalized = name.strip().lower().replace("-", "_")
    if normalized == LeastLoadedSelectionPolicy.name:
        return LeastLoadedSelectionPolicy(repository)
    if normalized == RoundRobinSelectionPolicy.name:
        return RoundRobinSelectionPolicy()
    if normalized == FirstEligibleSelectionPolicy.name:
        return FirstEligibleSelectionPolicy()
    raise ValueError(f"Unknown selection policy: {name}")

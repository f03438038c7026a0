"""
Interfaces of the collaborators the routing core depends on.

Concrete adapters live in ``claim_routing.storage`` (PostgreSQL and
in-memory) and ``claim_routing.notifications``.
"""

from abc import ABC, abstractmethod

from claim_routing.core.models import (
    Assignment,
    AuditLog,
    Company,
    DeadLetterRecord,
    Rule,
    TransitionEvent,
    User,
)


class RuleStore(ABC):
    """Companies and their routing rules."""

    @abstractmethod
    def get_company(self, company_id: int) -> Company | None:
        """Company by primary key."""

    @abstractmethod
    def find_company_by_nit(self, nit: str) -> Company | None:
        """Company by exact document number, falling back to a normalized match."""

    @abstractmethod
    def list_rules(self, company_id: int) -> list[Rule]:
        """All rules of a company, active or not."""

    @abstractmethod
    def rules_revision(self, company_id: int) -> int:
        """Counter bumped on every rule write for the company."""

    @abstractmethod
    def save_rule(self, rule: Rule) -> Rule:
        """Insert or update a rule after strict validation."""

    @abstractmethod
    def set_rule_active(self, rule_id: int, is_active: bool) -> Rule:
        """Soft-enable or soft-disable a rule."""


class UserDirectory(ABC):
    """Read access to users and their role bindings."""

    @abstractmethod
    def users_with_roles(self, role_ids: list[int]) -> list[User]:
        """Users holding any of the roles, regardless of company or status."""

    @abstractmethod
    def get_user(self, user_id: int) -> User | None:
        """User by primary key."""


class AssignmentRepository(ABC):
    """Durable assignment rows."""

    @abstractmethod
    def get(self, assignment_id: int) -> Assignment | None:
        """Assignment by primary key."""

    @abstractmethod
    def get_by_natural_key(self, claim_id: str, document_number: str) -> Assignment | None:
        """Assignment by (claim_id, document_number)."""

    @abstractmethod
    def insert_if_absent(self, assignment: Assignment) -> tuple[Assignment, bool]:
        """
        Insert unless the natural key exists.

        Returns:
            (stored assignment, True if it was inserted by this call)
        """

    @abstractmethod
    def update(self, assignment: Assignment, expected_version: int) -> Assignment:
        """
        Write the assignment if the stored version still equals ``expected_version``.

        Returns:
            The stored assignment with its version incremented

        Raises:
            ConflictError: If another writer got there first
            NotFoundError: If the row does not exist
        """

    @abstractmethod
    def count_open_by_user(self, user_ids: list[int]) -> dict[int, int]:
        """Number of assigned/active assignments per user."""


class AuditSink(ABC):
    """Durable audit trail."""

    @abstractmethod
    def record(self, entry: AuditLog) -> AuditLog:
        """Persist an entry and return it with its id."""

    @abstractmethod
    def query(
        self,
        assignment_id: int | None = None,
        claim_id: str | None = None,
        action: str | None = None,
        limit: int = 100,
    ) -> list[AuditLog]:
        """Most recent entries first."""


class DeadLetterSink(ABC):
    """Messages parked for manual inspection."""

    @abstractmethod
    def store(self, record: DeadLetterRecord) -> DeadLetterRecord:
        """Persist a dead letter and return it with its id."""

    @abstractmethod
    def get(self, dead_letter_id: int) -> DeadLetterRecord | None:
        """Dead letter by id."""

    @abstractmethod
    def list_records(self, reviewed: bool | None = None, limit: int = 100) -> list[DeadLetterRecord]:
        """Dead letters, newest first, optionally filtered by review state."""

    @abstractmethod
    def mark_reviewed(self, dead_letter_id: int) -> bool:
        """Flag as reviewed. False if not found."""

    @abstractmethod
    def request_reprocess(self, dead_letter_id: int) -> bool:
        """Flag for reprocessing. False if not found."""

    @abstractmethod
    def mark_reprocessed(self, dead_letter_id: int) -> bool:
        """Record a successful reprocess. False if not found."""


class NotificationSink(ABC):
    """Outbound notification of lifecycle transitions (orchestrator, webhooks)."""

    @abstractmethod
    def notify(self, event: TransitionEvent) -> None:
        """Deliver the event. Raising signals a failed delivery."""


class AuthTokenProvider(ABC):
    """Opaque bearer token capability used to identify API actors."""

    @abstractmethod
    def verify(self, token: str) -> str:
        """
        Resolve a token to its subject.

        Raises:
            ValidationError: If the token is unknown or malformed
        """

"""
In-memory adapters for local runs and tests.

They honour the same contracts as the PostgreSQL adapters: natural-key
uniqueness, optimistic versioning and rule revisions.
"""

import itertools
import threading

from claim_routing.core.clock import utcnow
from claim_routing.core.exceptions import ConflictError, NotFoundError
from claim_routing.core.models import (
    OPEN_STATUSES,
    Assignment,
    AuditLog,
    Company,
    DeadLetterRecord,
    Role,
    Rule,
    User,
    normalize_nit,
)
from claim_routing.core.ports import (
    AssignmentRepository,
    AuditSink,
    DeadLetterSink,
    RuleStore,
    UserDirectory,
)


class InMemoryRuleStore(RuleStore):
    """Companies and rules held in dictionaries."""

    def __init__(self, companies: list[Company] | None = None, rules: list[Rule] | None = None):
        self._lock = threading.Lock()
        self._companies: dict[int, Company] = {}
        self._rules: dict[int, Rule] = {}
        self._revisions: dict[int, int] = {}
        for company in companies or []:
            self.add_company(company)
        for rule in rules or []:
            self._put_rule(rule)

    def add_company(self, company: Company) -> Company:
        with self._lock:
            if company.id is None:
                company = company.model_copy(update={"id": max(self._companies, default=0) + 1})
            self._companies[company.id] = company
            return company

    def _put_rule(self, rule: Rule) -> Rule:
        with self._lock:
            if rule.id is None:
                rule = rule.model_copy(update={"id": max(self._rules, default=0) + 1})
            self._rules[rule.id] = rule
            self._revisions[rule.company_id] = self._revisions.get(rule.company_id, 0) + 1
            return rule

    def get_company(self, company_id: int) -> Company | None:
        return self._companies.get(company_id)

    def find_company_by_nit(self, nit: str) -> Company | None:
        for company in self._companies.values():
            if company.document_number == nit:
                return company
        wanted = normalize_nit(nit)
        for company in self._companies.values():
            if normalize_nit(company.document_number) == wanted:
                return company
        return None

    def list_rules(self, company_id: int) -> list[Rule]:
        with self._lock:
            return sorted(
                (rule for rule in self._rules.values() if rule.company_id == company_id),
                key=lambda r: r.id,
            )

    def rules_revision(self, company_id: int) -> int:
        return self._revisions.get(company_id, 0)

    def save_rule(self, rule: Rule) -> Rule:
        rule.ensure_valid()
        if self.get_company(rule.company_id) is None:
            raise NotFoundError(f"Company {rule.company_id} not found", details={"company_id": rule.company_id})
        return self._put_rule(rule.model_copy(update={"updated_at": utcnow()}))

    def set_rule_active(self, rule_id: int, is_active: bool) -> Rule:
        rule = self._rules.get(rule_id)
        if rule is None:
            raise NotFoundError(f"Rule {rule_id} not found", details={"rule_id": rule_id})
        return self._put_rule(rule.model_copy(update={"is_active": is_active, "updated_at": utcnow()}))


class InMemoryUserDirectory(UserDirectory):
    """
    Users held in a dictionary.

    Role ids without a registered Role are treated as active; registered
    roles that are inactive or archived authorize nobody.
    """

    def __init__(self, users: list[User] | None = None, roles: list[Role] | None = None):
        self._users: dict[int, User] = {user.id: user for user in users or []}
        self._roles: dict[int, Role] = {role.id: role for role in roles or []}

    def add_user(self, user: User) -> User:
        self._users[user.id] = user
        return user

    def add_role(self, role: Role) -> Role:
        self._roles[role.id] = role
        return role

    def users_with_roles(self, role_ids: list[int]) -> list[User]:
        wanted = {
            role_id for role_id in role_ids
            if role_id not in self._roles or self._roles[role_id].is_assignable
        }
        return sorted(
            (user for user in self._users.values() if wanted.intersection(user.role_ids)),
            key=lambda u: u.id,
        )

    def get_user(self, user_id: int) -> User | None:
        return self._users.get(user_id)


class InMemoryAssignmentRepository(AssignmentRepository):
    """Assignments keyed by id with a natural-key index."""

    def __init__(self):
        self._lock = threading.Lock()
        self._rows: dict[int, Assignment] = {}
        self._by_key: dict[tuple[str, str], int] = {}
        self._ids = itertools.count(1)

    def get(self, assignment_id: int) -> Assignment | None:
        return self._rows.get(assignment_id)

    def get_by_natural_key(self, claim_id: str, document_number: str) -> Assignment | None:
        assignment_id = self._by_key.get((claim_id, document_number))
        return self._rows.get(assignment_id) if assignment_id is not None else None

    def insert_if_absent(self, assignment: Assignment) -> tuple[Assignment, bool]:
        with self._lock:
            existing_id = self._by_key.get(assignment.natural_key)
            if existing_id is not None:
                return self._rows[existing_id], False
            stored = assignment.model_copy(update={"id": next(self._ids), "version": 0})
            self._rows[stored.id] = stored
            self._by_key[stored.natural_key] = stored.id
            return stored, True

    def update(self, assignment: Assignment, expected_version: int) -> Assignment:
        with self._lock:
            current = self._rows.get(assignment.id)
            if current is None:
                raise NotFoundError(f"Assignment {assignment.id} not found", details={"assignment_id": assignment.id})
            if current.version != expected_version:
                raise ConflictError(
                    f"Assignment {assignment.id} was modified concurrently",
                    details={
                        "assignment_id": assignment.id,
                        "expected_version": expected_version,
                        "current_version": current.version,
                    },
                )
            stored = assignment.model_copy(update={"version": expected_version + 1})
            self._rows[stored.id] = stored
            return stored

    def count_open_by_user(self, user_ids: list[int]) -> dict[int, int]:
        counts = {user_id: 0 for user_id in user_ids}
        for assignment in self._rows.values():
            if assignment.user_id in counts and assignment.status in OPEN_STATUSES:
                counts[assignment.user_id] += 1
        return counts

    def all(self) -> list[Assignment]:
        return sorted(self._rows.values(), key=lambda a: a.id)


class InMemoryAuditSink(AuditSink):
    """Audit entries appended to a list."""

    def __init__(self):
        self._lock = threading.Lock()
        self.entries: list[AuditLog] = []

    def record(self, entry: AuditLog) -> AuditLog:
        with self._lock:
            stored = entry.model_copy(update={"log_id": len(self.entries) + 1})
            self.entries.append(stored)
            return stored

    def query(
        self,
        assignment_id: int | None = None,
        claim_id: str | None = None,
        action: str | None = None,
        limit: int = 100,
    ) -> list[AuditLog]:
        matches = [
            entry for entry in reversed(self.entries)
            if (assignment_id is None or entry.assignment_id == assignment_id)
            and (claim_id is None or entry.claim_id == claim_id)
            and (action is None or entry.action == action)
        ]
        return matches[:limit]


class InMemoryDeadLetterSink(DeadLetterSink):
    """Dead letters held in a dictionary."""

    def __init__(self):
        self._lock = threading.Lock()
        self._records: dict[int, DeadLetterRecord] = {}

    def store(self, record: DeadLetterRecord) -> DeadLetterRecord:
        with self._lock:
            stored = record.model_copy(update={"dead_letter_id": len(self._records) + 1})
            self._records[stored.dead_letter_id] = stored
            return stored

    def get(self, dead_letter_id: int) -> DeadLetterRecord | None:
        return self._records.get(dead_letter_id)

    def list_records(self, reviewed: bool | None = None, limit: int = 100) -> list[DeadLetterRecord]:
        records = [
            record for record in sorted(self._records.values(), key=lambda r: r.dead_letter_id, reverse=True)
            if reviewed is None or record.reviewed == reviewed
        ]
        return records[:limit]

    def _flag(self, dead_letter_id: int, **changes) -> bool:
        with self._lock:
            record = self._records.get(dead_letter_id)
            if record is None:
                return False
            self._records[dead_letter_id] = record.model_copy(update=changes)
            return True

    def mark_reviewed(self, dead_letter_id: int) -> bool:
        return self._flag(dead_letter_id, reviewed=True)

    def request_reprocess(self, dead_letter_id: int) -> bool:
        return self._flag(dead_letter_id, reprocess_requested=True)

    def mark_reprocessed(self, dead_letter_id: int) -> bool:
        return self._flag(dead_letter_id, reprocessed_at=utcnow(), reprocess_requested=False, reviewed=True)

"""
Assignment lifecycle state machine.

States: pending -> assigned -> active -> completed, with cancelled reachable
from any non-terminal state and unassigned reachable from assigned/active.
Repeating a transition that has already been reached is a no-op; any other
move out of the allowed states raises InvalidTransitionError.

Writes are guarded by the assignment's ``version``: a transition that loses
a race against another writer raises ConflictError instead of overwriting.
"""

import threading
from dataclasses import dataclass
from typing import Any, Callable

from claim_routing.core.clock import utcnow
from claim_routing.core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
)
from claim_routing.core.models import (
    Assignment,
    AssignmentStatus,
    AuditLog,
    Claim,
    TransitionEvent,
)
from claim_routing.core.ports import (
    AssignmentRepository,
    AuditSink,
    NotificationSink,
    RuleStore,
    UserDirectory,
)
from claim_routing.observability.logger import get_logger
from claim_routing.observability.metrics import (
    increment_counter,
    lifecycle_transitions_total,
    notification_failures_total,
)

logger = get_logger(__name__)

SERVICE_NAME = "assignment_lifecycle"

NON_TERMINAL = frozenset({
    AssignmentStatus.PENDING,
    AssignmentStatus.ASSIGNED,
    AssignmentStatus.ACTIVE,
    AssignmentStatus.UNASSIGNED,
})


@dataclass(frozen=True)
class Transition:
    """Allowed source states and target state of a lifecycle move."""

    name: str
    allowed_from: frozenset[AssignmentStatus]
    target: AssignmentStatus
    # Repeating the move once the target is reached returns the record unchanged
    repeatable: bool = True


ACTIVATE = Transition(
    "activate",
    frozenset({AssignmentStatus.PENDING, AssignmentStatus.ASSIGNED}),
    AssignmentStatus.ACTIVE,
)
COMPLETE = Transition("complete", NON_TERMINAL, AssignmentStatus.COMPLETED)
CANCEL = Transition("cancel", NON_TERMINAL, AssignmentStatus.CANCELLED, repeatable=False)
UNASSIGN = Transition(
    "unassign",
    frozenset({AssignmentStatus.ASSIGNED, AssignmentStatus.ACTIVE}),
    AssignmentStatus.UNASSIGNED,
)
REASSIGN = Transition(
    "reassign",
    frozenset({AssignmentStatus.PENDING, AssignmentStatus.ASSIGNED}),
    AssignmentStatus.ASSIGNED,
)


@dataclass
class BulkReassignItem:
    """Per-assignment outcome of a bulk reassignment."""

    assignment_id: int
    success: bool
    previous_user_id: int | None = None
    previous_status: str | None = None
    new_status: str | None = None
    status_changed: bool = False
    error: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "assignmentId": self.assignment_id,
            "success": self.success,
            "previousUserId": self.previous_user_id,
            "previousStatus": self.previous_status,
            "newStatus": self.new_status,
            "statusChanged": self.status_changed,
            "error": self.error,
        }


@dataclass
class BulkReassignResult:
    """Outcome of a bulk reassignment."""

    company_id: int
    user_id: int
    items: list[BulkReassignItem]

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.items if item.success)

    @property
    def failed(self) -> int:
        return len(self.items) - self.succeeded

    def to_dict(self) -> dict[str, Any]:
        return {
            "companyId": self.company_id,
            "userId": self.user_id,
            "total": len(self.items),
            "succeeded": self.succeeded,
            "failed": self.failed,
            "results": [item.to_dict() for item in self.items],
        }


class AssignmentLifecycle:
    """
    Owns every state change of an assignment.

    Every applied transition writes an audit entry and, when a
    NotificationSink is configured, notifies it with the before/after
    state. A failed notification is logged and audited; the transition
    stands.
    """

    LOCK_STRIPES = 64

    def __init__(
        self,
        repository: AssignmentRepository,
        audit: AuditSink,
        notifier: NotificationSink | None = None,
        user_directory: UserDirectory | None = None,
        rule_store: RuleStore | None = None,
        clock: Callable = utcnow,
    ):
        """
        Args:
            repository: Assignment persistence
            audit: Audit trail
            notifier: Optional outbound notification sink
            user_directory: When given, reassignment targets must exist
            rule_store: When given, manually created assignments need an existing company
            clock: Returns the current (UTC) datetime
        """
        self.repository = repository
        self.audit = audit
        self.notifier = notifier
        self.user_directory = user_directory
        self.rule_store = rule_store
        self._clock = clock
        self._stripes = [threading.Lock() for _ in range(self.LOCK_STRIPES)]

    # =======================
    # CREATION
    # =======================

    def create(
        self,
        claim: Claim,
        user_id: int | None,
        company_id: int,
        rule_id: int | None = None,
        actor: str = "system",
    ) -> tuple[Assignment, bool]:
        """
        Create the assignment for a claim, idempotently.

        A claim whose natural key (claim_id, document_number) already has an
        assignment gets the existing record back unchanged.

        Args:
            claim: Routed claim
            user_id: Selected reviewer, None when nobody is eligible
            company_id: Company whose rules routed the claim
            rule_id: Winning rule
            actor: Who triggered the creation

        Returns:
            (assignment, True if created by this call)
        """
        now = self._clock()
        draft = Assignment(
            user_id=user_id,
            company_id=company_id,
            claim_id=claim.claim_id,
            document_number=claim.document_number,
            process_id=claim.process_id,
            source=claim.source,
            target=claim.target,
            objection_code=claim.objection_code or None,
            concept_application_code=claim.concept_application_code or None,
            external_reference=claim.external_reference or None,
            invoice_amount=claim.invoice_amount,
            value=claim.value,
            type=claim.assignment_type,
            rule_id=rule_id,
            status=AssignmentStatus.ASSIGNED if user_id is not None else AssignmentStatus.PENDING,
            start_date=now,
            created_at=now,
            updated_at=now,
        )
        return self._insert(draft, actor, payload={"claim": claim.to_wire()})

    def create_manual(self, draft: Assignment, actor: str = "system") -> Assignment:
        """
        Create an assignment directly, bypassing rule matching.

        Args:
            draft: Assignment fields (status is derived from user_id)
            actor: Operator performing the creation

        Returns:
            Created assignment

        Raises:
            ConflictError: If the natural key already has an assignment
            NotFoundError: If the company or the user does not exist
        """
        self._require_company(draft.company_id)
        if draft.user_id is not None:
            self._require_user(draft.user_id)

        now = self._clock()
        draft = draft.model_copy(update={
            "id": None,
            "status": AssignmentStatus.ASSIGNED if draft.user_id is not None else AssignmentStatus.PENDING,
            "start_date": now,
            "end_date": None,
            "version": 0,
            "created_at": now,
            "updated_at": now,
        })
        assignment, created = self._insert(draft, actor, payload={"manual": True})
        if not created:
            raise ConflictError(
                f"Assignment already exists for claim {draft.claim_id} / document {draft.document_number}",
                details={"assignment_id": assignment.id},
            )
        return assignment

    def _insert(self, draft: Assignment, actor: str, payload: dict[str, Any]) -> tuple[Assignment, bool]:
        with self._lock_for(draft.natural_key):
            existing = self.repository.get_by_natural_key(draft.claim_id, draft.document_number)
            if existing is None:
                assignment, created = self.repository.insert_if_absent(draft)
            else:
                assignment, created = existing, False

            if created:
                increment_counter(lifecycle_transitions_total, transition="create", result="applied")
                logger.info(
                    f"Created assignment {assignment.id} for claim {assignment.claim_id} "
                    f"with status {assignment.status.value}, user_id={assignment.user_id}"
                )
                self._record("create", None, assignment, actor, payload)
                return assignment, True

            increment_counter(lifecycle_transitions_total, transition="create", result="noop")
            logger.info(
                f"Assignment already exists for claim {draft.claim_id} / "
                f"document {draft.document_number}: id={assignment.id}"
            )
            if not self.audit.query(assignment_id=assignment.id, action="create", limit=1):
                # Stored by an earlier attempt that failed before its audit entry was written
                logger.warning(f"Assignment {assignment.id} has no creation audit entry; recording it now")
                self._record("create", None, assignment, actor, {**payload, "replayed": True})
            return assignment, False

    def _lock_for(self, key: tuple[str, str]) -> threading.Lock:
        return self._stripes[hash(key) % self.LOCK_STRIPES]

    # =======================
    # TRANSITIONS
    # =======================

    def activate(self, assignment_id: int, actor: str = "system", expected_version: int | None = None) -> Assignment:
        """pending|assigned -> active."""
        return self._apply(ACTIVATE, assignment_id, actor, expected_version)

    def complete(self, assignment_id: int, actor: str = "system", expected_version: int | None = None) -> Assignment:
        """Any non-terminal state -> completed, stamping end_date."""
        return self._apply(COMPLETE, assignment_id, actor, expected_version)

    def cancel(self, assignment_id: int, actor: str = "system", expected_version: int | None = None) -> Assignment:
        """Any non-terminal state -> cancelled, stamping end_date. Cancelling twice is rejected."""
        return self._apply(CANCEL, assignment_id, actor, expected_version)

    def unassign(self, assignment_id: int, actor: str = "system", expected_version: int | None = None) -> Assignment:
        """assigned|active -> unassigned, clearing the owner."""
        return self._apply(UNASSIGN, assignment_id, actor, expected_version, user_id=None)

    def reassign(
        self,
        assignment_id: int,
        new_user_id: int,
        actor: str = "system",
        expected_version: int | None = None,
    ) -> Assignment:
        """
        Give the assignment to another user.

        pending -> assigned; assigned stays assigned with the new owner.
        The audit entry records the actor, previous/new owner and
        previous/new status.

        Args:
            assignment_id: Assignment to reassign
            new_user_id: New owner
            actor: Operator performing the override
            expected_version: Optional optimistic lock supplied by the caller

        Returns:
            Updated assignment (unchanged if it already belongs to the user)

        Raises:
            NotFoundError: Unknown assignment or user
            InvalidTransitionError: Assignment is not pending or assigned
            ConflictError: Lost a concurrent update
        """
        self._require_user(new_user_id)
        return self._apply(REASSIGN, assignment_id, actor, expected_version, user_id=new_user_id)

    def complete_by_natural_key(self, claim_id: str, document_number: str, actor: str = "system") -> Assignment:
        """
        Complete the assignment identified by (claim_id, document_number).

        Raises:
            NotFoundError: If no assignment has that natural key
        """
        assignment = self.repository.get_by_natural_key(claim_id, document_number)
        if assignment is None:
            raise NotFoundError(
                f"No assignment for claim {claim_id} / document {document_number}",
                details={"claim_id": claim_id, "document_number": document_number},
            )
        return self.complete(assignment.id, actor=actor)

    def bulk_reassign(
        self,
        company_id: int,
        user_id: int,
        assignment_ids: list[int],
        actor: str = "system",
    ) -> BulkReassignResult:
        """
        Reassign several assignments of one company to a user.

        Each item succeeds or fails on its own; failures are reported per
        item with their error payload.

        Args:
            company_id: Company the assignments must belong to
            user_id: New owner
            assignment_ids: Assignments to move
            actor: Operator performing the override

        Returns:
            BulkReassignResult with one item per requested id

        Raises:
            NotFoundError: If the user does not exist
        """
        self._require_user(user_id)
        items: list[BulkReassignItem] = []

        for assignment_id in assignment_ids:
            current = self.repository.get(assignment_id)
            if current is None or current.company_id != company_id:
                error = NotFoundError(
                    f"Assignment {assignment_id} not found for company {company_id}",
                    details={"assignment_id": assignment_id, "company_id": company_id},
                )
                items.append(BulkReassignItem(assignment_id=assignment_id, success=False, error=error.to_dict()))
                continue

            try:
                updated = self._apply(
                    REASSIGN, assignment_id, actor, expected_version=current.version, user_id=user_id,
                    payload={"bulk": True, "company_id": company_id},
                )
            except (InvalidTransitionError, ConflictError) as e:
                logger.warning(f"Bulk reassign skipped assignment {assignment_id}: {e.message}")
                items.append(BulkReassignItem(
                    assignment_id=assignment_id,
                    success=False,
                    previous_user_id=current.user_id,
                    previous_status=current.status.value,
                    error=e.to_dict(),
                ))
                continue

            items.append(BulkReassignItem(
                assignment_id=assignment_id,
                success=True,
                previous_user_id=current.user_id,
                previous_status=current.status.value,
                new_status=updated.status.value,
                status_changed=current.status != updated.status,
            ))

        result = BulkReassignResult(company_id=company_id, user_id=user_id, items=items)
        logger.info(
            f"Bulk reassign to user {user_id} in company {company_id}: "
            f"{result.succeeded} succeeded, {result.failed} failed"
        )
        return result

    def get(self, assignment_id: int) -> Assignment:
        """
        Raises:
            NotFoundError: If the assignment does not exist
        """
        assignment = self.repository.get(assignment_id)
        if assignment is None:
            raise NotFoundError(
                f"Assignment {assignment_id} not found",
                details={"assignment_id": assignment_id},
            )
        return assignment

    # =======================
    # INTERNALS
    # =======================

    _UNSET = object()

    def _apply(
        self,
        transition: Transition,
        assignment_id: int,
        actor: str,
        expected_version: int | None = None,
        user_id: Any = _UNSET,
        payload: dict[str, Any] | None = None,
    ) -> Assignment:
        current = self.get(assignment_id)

        if expected_version is not None and expected_version != current.version:
            increment_counter(lifecycle_transitions_total, transition=transition.name, result="conflict")
            raise ConflictError(
                f"Assignment {assignment_id} was modified concurrently",
                details={
                    "assignment_id": assignment_id,
                    "expected_version": expected_version,
                    "current_version": current.version,
                },
            )

        owner_unchanged = user_id is self._UNSET or user_id == current.user_id
        if transition.repeatable and current.status == transition.target and owner_unchanged:
            increment_counter(lifecycle_transitions_total, transition=transition.name, result="noop")
            logger.debug(f"{transition.name} on assignment {assignment_id} is a no-op")
            return current

        if current.status not in transition.allowed_from:
            increment_counter(lifecycle_transitions_total, transition=transition.name, result="rejected")
            raise InvalidTransitionError(assignment_id, current.status.value, transition.name)

        now = self._clock()
        changes: dict[str, Any] = {"status": transition.target, "updated_at": now}
        if user_id is not self._UNSET:
            changes["user_id"] = user_id
        if transition.target.is_terminal:
            changes["end_date"] = now

        try:
            stored = self.repository.update(current.model_copy(update=changes), expected_version=current.version)
        except ConflictError:
            increment_counter(lifecycle_transitions_total, transition=transition.name, result="conflict")
            raise

        increment_counter(lifecycle_transitions_total, transition=transition.name, result="applied")
        logger.info(
            f"Assignment {assignment_id} {transition.name}: "
            f"{current.status.value} -> {stored.status.value}, "
            f"user {current.user_id} -> {stored.user_id}, actor={actor}"
        )
        self._record(transition.name, current, stored, actor, payload or {})
        return stored

    def _require_company(self, company_id: int) -> None:
        if self.rule_store is None:
            return
        if self.rule_store.get_company(company_id) is None:
            raise NotFoundError(f"Company {company_id} not found", details={"company_id": company_id})

    def _require_user(self, user_id: int) -> None:
        if self.user_directory is None:
            return
        if self.user_directory.get_user(user_id) is None:
            raise NotFoundError(f"User {user_id} not found", details={"user_id": user_id})

    def _record(
        self,
        transition: str,
        before: Assignment | None,
        after: Assignment,
        actor: str,
        payload: dict[str, Any],
    ) -> None:
        self.audit.record(AuditLog(
            level="info",
            service=SERVICE_NAME,
            action=transition,
            message=(
                f"Assignment {after.id} {transition}: "
                f"{before.status.value if before else None} -> {after.status.value}"
            ),
            assignment_id=after.id,
            claim_id=after.claim_id,
            actor=actor,
            previous_status=before.status.value if before else None,
            new_status=after.status.value,
            previous_user_id=before.user_id if before else None,
            new_user_id=after.user_id,
            payload={"version": after.version, **payload},
        ))

        if self.notifier is None:
            return

        event = TransitionEvent(
            transition=transition,
            assignment_id=after.id,
            before=before,
            after=after,
            actor=actor,
        )
        try:
            self.notifier.notify(event)
        except Exception as e:  # noqa: BLE001 - outbound sinks may raise anything
            self._notification_failed(event, e)

    def _notification_failed(self, event: TransitionEvent, error: Exception) -> None:
        increment_counter(notification_failures_total, transition=event.transition)
        logger.error(
            f"Notification failed for assignment {event.assignment_id} "
            f"({event.transition}): {type(error).__name__}: {error}"
        )
        self.audit.record(AuditLog(
            level="error",
            service=SERVICE_NAME,
            action="notification_failed",
            message=f"Notification for {event.transition} failed: {error}",
            assignment_id=event.assignment_id,
            claim_id=event.after.claim_id,
            actor=event.actor,
            payload={"error_type": type(error).__name__, "event": event.model_dump(mode="json")},
        ))

"""
Ingestion pipeline: one claim message in, one routing decision out.

The pipeline is synchronous and stateless between messages; the queue
consumer and the HTTP surface both drive it.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from claim_routing.core.exceptions import NoRouteError, NotFoundError
from claim_routing.core.models import (
    Assignment,
    AuditLog,
    Claim,
    Company,
    MatchResult,
    Rule,
    User,
)
from claim_routing.core.ports import AuditSink, RuleStore
from claim_routing.core.rules import RuleMatcher
from claim_routing.ingestion.messages import decode_claim, parse_claim
from claim_routing.lifecycle import AssignmentLifecycle
from claim_routing.observability.logger import get_logger
from claim_routing.observability.metrics import (
    claim_processing_seconds,
    claims_processed_total,
    increment_counter,
    rule_configuration_errors_total,
    rules_matched_total,
    track_duration,
)
from claim_routing.routing import RoleResolver, UserSelectionPolicy

logger = get_logger(__name__)

SERVICE_NAME = "ingestion_pipeline"


class IngestionStatus(str, Enum):
    """How a processed claim ended up."""

    ASSIGNED = "assigned"
    PENDING = "pending"
    DUPLICATE = "duplicate"
    NO_ROUTE = "no_route"


@dataclass
class IngestionOutcome:
    """
    Result of processing one claim.

    ``no_route`` is a reportable outcome, not an exception: the match
    details are kept so operators can see why nothing applied.
    """

    status: IngestionStatus
    claim: Claim
    company: Company
    match: MatchResult
    assignment: Assignment | None = None
    matched_rule: Rule | None = None
    selected_user: User | None = None
    eligible_user_ids: list[int] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status != IngestionStatus.NO_ROUTE

    @property
    def error(self) -> NoRouteError | None:
        if self.status != IngestionStatus.NO_ROUTE:
            return None
        return NoRouteError(
            f"No active rule of company {self.company.id} matches claim {self.claim.claim_id}",
            details={
                "company_id": self.company.id,
                "claim_id": self.claim.claim_id,
                "evaluations": [e.model_dump() for e in self.match.evaluations],
            },
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "status": self.status.value,
            "claimId": self.claim.claim_id,
            "companyId": self.company.id,
            "assignment": self.assignment.model_dump(mode="json") if self.assignment else None,
            "matchedRule": self.matched_rule.model_dump(mode="json") if self.matched_rule else None,
            "selectedUser": self.selected_user.model_dump(mode="json") if self.selected_user else None,
            "eligibleUserIds": self.eligible_user_ids,
            "match": self.match.summary(),
        }
        error = self.error
        if error is not None:
            data.update(error.to_dict())
        return data


class IngestionPipeline:
    """
    Routes a claim: company lookup, rule matching, reviewer resolution and
    selection, then idempotent assignment creation.

    Raises typed errors for permanent failures (ValidationError,
    NotFoundError) and lets TransientInfrastructureError from the adapters
    propagate so callers can retry.
    """

    def __init__(
        self,
        rule_store: RuleStore,
        matcher: RuleMatcher,
        resolver: RoleResolver,
        selection_policy: UserSelectionPolicy,
        lifecycle: AssignmentLifecycle,
        audit: AuditSink,
    ):
        self.rule_store = rule_store
        self.matcher = matcher
        self.resolver = resolver
        self.selection_policy = selection_policy
        self.lifecycle = lifecycle
        self.audit = audit

    def process(
        self,
        message: Claim | dict[str, Any] | bytes | str,
        entrypoint: str = "queue",
        actor: str = "system",
    ) -> IngestionOutcome:
        """
        Process one claim message end to end.

        Args:
            message: Claim, decoded payload or raw message body
            entrypoint: "queue" or "api", used for metrics
            actor: Who triggered processing, recorded in audit entries

        Returns:
            IngestionOutcome (status NO_ROUTE when no rule matched)

        Raises:
            ValidationError: Malformed message
            NotFoundError: Unknown or inactive target company
            TransientInfrastructureError: Storage unavailable
        """
        with track_duration(claim_processing_seconds, entrypoint=entrypoint):
            claim = self._to_claim(message)
            company = self._resolve_company(claim)

            rules = self.rule_store.list_rules(company.id)
            match = self.matcher.resolve(claim, rules)
            if match.configuration_errors:
                increment_counter(
                    rule_configuration_errors_total,
                    value=len(match.configuration_errors),
                    company_id=str(company.id),
                )

            if match.winning_rule is None:
                return self._report_no_route(claim, company, match, actor)

            rule = match.winning_rule
            increment_counter(rules_matched_total, rule_type=rule.rule_type.value)

            users = self.resolver.users_for(rule.role_ids)
            selected = self.selection_policy.select(users, claim)
            if selected is None:
                logger.warning(
                    f"Rule {rule.id} matched claim {claim.claim_id} but no eligible user holds "
                    f"roles {rule.role_ids}; creating a pending assignment"
                )

            assignment, created = self.lifecycle.create(
                claim,
                user_id=selected.id if selected else None,
                company_id=company.id,
                rule_id=rule.id,
                actor=actor,
            )

        if not created:
            status = IngestionStatus.DUPLICATE
        elif assignment.user_id is None:
            status = IngestionStatus.PENDING
        else:
            status = IngestionStatus.ASSIGNED
        increment_counter(claims_processed_total, outcome=status.value)

        logger.info(
            f"Claim {claim.claim_id} routed by rule {rule.id} ({rule.rule_type.value}): "
            f"status={status.value}, assignment_id={assignment.id}, user_id={assignment.user_id}"
        )
        return IngestionOutcome(
            status=status,
            claim=claim,
            company=company,
            match=match,
            assignment=assignment,
            matched_rule=rule,
            selected_user=selected if created else None,
            eligible_user_ids=[u.id for u in users],
        )

    def evaluate(self, message: Claim | dict[str, Any] | bytes | str) -> MatchResult:
        """
        Dry run: match a claim against its company's rules without creating anything.

        Raises:
            ValidationError: Malformed message
            NotFoundError: Unknown or inactive target company
        """
        claim = self._to_claim(message)
        company = self._resolve_company(claim)
        return self.matcher.resolve(claim, self.rule_store.list_rules(company.id))

    @staticmethod
    def _to_claim(message: Claim | dict[str, Any] | bytes | str) -> Claim:
        if isinstance(message, Claim):
            return message
        if isinstance(message, dict):
            return parse_claim(message)
        return decode_claim(message)

    def _resolve_company(self, claim: Claim) -> Company:
        company = self.rule_store.find_company_by_nit(claim.target)
        if company is None:
            raise NotFoundError(
                f"No company registered with NIT {claim.target}",
                details={"target": claim.target, "claim_id": claim.claim_id},
            )
        if not company.is_available:
            raise NotFoundError(
                f"Company {company.id} ({claim.target}) is inactive",
                details={"target": claim.target, "company_id": company.id, "claim_id": claim.claim_id},
            )
        return company

    def _report_no_route(self, claim: Claim, company: Company, match: MatchResult, actor: str) -> IngestionOutcome:
        outcome = IngestionOutcome(
            status=IngestionStatus.NO_ROUTE,
            claim=claim,
            company=company,
            match=match,
        )
        increment_counter(claims_processed_total, outcome=IngestionStatus.NO_ROUTE.value)
        logger.warning(
            f"No route for claim {claim.claim_id} in company {company.id}: "
            f"{len(match.evaluations)} active rules evaluated, none matched"
        )
        self.audit.record(AuditLog(
            level="warning",
            service=SERVICE_NAME,
            action="no_route",
            message=outcome.error.message,
            claim_id=claim.claim_id,
            actor=actor,
            payload={
                "claim": claim.to_wire(),
                "company_id": company.id,
                "evaluations": [e.model_dump() for e in match.evaluations],
            },
        ))
        return outcome

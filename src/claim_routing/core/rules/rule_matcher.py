"""
Rule matcher for resolving which routing rule applies to a claim.

Each rule type is a conjunction of criteria; each criterion has a
predicate. Matching rules are ordered by specificity rank and then by rule
id, and the first one wins.
"""

from collections import Counter as TallyCounter
from typing import Callable

from claim_routing.core.models import (
    Claim,
    Criterion,
    MatchResult,
    Rule,
    RuleEvaluation,
    normalize_nit,
)
from claim_routing.observability.logger import get_logger

logger = get_logger(__name__)


def _company_matches(rule: Rule, claim: Claim) -> bool:
    return normalize_nit(rule.nit_associated_company) == claim.normalized_source


def _amount_matches(rule: Rule, claim: Claim) -> bool:
    return rule.minimum_amount <= claim.value <= rule.maximum_amount


def _code_matches(rule: Rule, claim: Claim) -> bool:
    # Exact, case-sensitive
    return claim.objection_code == rule.objection_code


CRITERION_PREDICATES: dict[Criterion, Callable[[Rule, Claim], bool]] = {
    Criterion.COMPANY: _company_matches,
    Criterion.AMOUNT: _amount_matches,
    Criterion.CODE: _code_matches,
}

# Evaluation order of criteria, used for the first-failure reason
_CRITERION_ORDER = (Criterion.CODE, Criterion.AMOUNT, Criterion.COMPANY)


class RuleMatcher:
    """
    Resolves the winning routing rule for a claim.

    Only active rules are considered. A rule whose fields do not fit its
    declared type never matches; it is logged as a configuration error and
    listed on the result so operators can fix it.
    """

    def resolve(self, claim: Claim, rules: list[Rule]) -> MatchResult:
        """
        Compute the ordered applicable rules and the winner.

        Args:
            claim: Incoming claim
            rules: The target company's rules (inactive ones are skipped)

        Returns:
            MatchResult whose winning_rule is None when nothing matched
        """
        active_rules = sorted((r for r in rules if r.is_active), key=lambda r: r.sort_key)

        evaluations: list[RuleEvaluation] = []
        candidates: list[Rule] = []
        configuration_errors: dict[int, list[str]] = {}

        for rule in active_rules:
            evaluation = self.evaluate(rule, claim)
            evaluations.append(evaluation)
            if evaluation.configuration_errors:
                configuration_errors[rule.id if rule.id is not None else -1] = evaluation.configuration_errors
                logger.error(
                    f"Rule configuration error: rule_id={rule.id}, company_id={rule.company_id}, "
                    f"type={rule.type}, errors={evaluation.configuration_errors}"
                )
            elif evaluation.matched:
                candidates.append(rule)

        winning_rule = candidates[0] if candidates else None

        if winning_rule is not None:
            logger.debug(
                f"Claim {claim.claim_id} matched rule {winning_rule.id} "
                f"({winning_rule.rule_type.value}) out of {len(candidates)} candidates"
            )
        else:
            logger.info(
                f"No rule matched claim {claim.claim_id}: "
                f"{len(active_rules)} active rules evaluated"
            )

        return MatchResult(
            winning_rule=winning_rule,
            candidates=candidates,
            evaluations=evaluations,
            configuration_errors=configuration_errors,
        )

    def evaluate(self, rule: Rule, claim: Claim) -> RuleEvaluation:
        """
        Evaluate a single rule against a claim, with a readable reason.

        Args:
            rule: Rule to test (its active flag is ignored here)
            claim: Claim to test against

        Returns:
            RuleEvaluation describing whether and why the rule matched
        """
        rule_type = rule.rule_type

        def result(matched: bool, reason: str, errors: list[str] | None = None) -> RuleEvaluation:
            return RuleEvaluation(
                rule_id=rule.id,
                rule_name=rule.name,
                rule_type=rule_type.value,
                rank=rule_type.rank,
                matched=matched,
                reason=reason,
                configuration_errors=errors or [],
            )

        errors = rule.configuration_errors()
        if errors:
            return result(False, "Rule is misconfigured for its type", errors)

        if rule_type.is_catch_all:
            return result(True, f"Catch-all rule (declared type '{rule.type}')")

        for criterion in _CRITERION_ORDER:
            if not rule_type.requires(criterion):
                continue
            if not CRITERION_PREDICATES[criterion](rule, claim):
                return result(False, self._failure_reason(criterion, rule, claim))

        return result(True, f"All {rule_type.value} criteria satisfied")

    def summarize(self, rules: list[Rule]) -> dict:
        """
        Rule statistics for a company.

        Args:
            rules: All rules of the company

        Returns:
            Totals, active/inactive counts, counts per type and misconfigured ids
        """
        by_type = TallyCounter(rule.rule_type.value for rule in rules)
        active = sum(1 for rule in rules if rule.is_active)
        return {
            "total": len(rules),
            "active": active,
            "inactive": len(rules) - active,
            "by_type": dict(sorted(by_type.items())),
            "misconfigured_rule_ids": sorted(
                rule.id for rule in rules if rule.id is not None and rule.configuration_errors()
            ),
        }

    @staticmethod
    def _failure_reason(criterion: Criterion, rule: Rule, claim: Claim) -> str:
        if criterion is Criterion.CODE:
            return f"Objection code '{claim.objection_code}' does not equal '{rule.objection_code}'"
        if criterion is Criterion.AMOUNT:
            return (
                f"Value {claim.value} outside range "
                f"[{rule.minimum_amount}, {rule.maximum_amount}]"
            )
        return f"Source '{claim.source}' does not equal '{rule.nit_associated_company}'"


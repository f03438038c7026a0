"""
Results produced by the rule matcher.
"""

from pydantic import BaseModel, Field

from claim_routing.core.models.rule import Rule


class RuleEvaluation(BaseModel):
    """Outcome of evaluating one rule against one claim."""

    rule_id: int | None
    rule_name: str
    rule_type: str
    rank: int
    matched: bool
    reason: str
    configuration_errors: list[str] = Field(default_factory=list)


class MatchResult(BaseModel):
    """
    Winning rule and the ordered candidates for a claim.

    Attributes:
        winning_rule: Most specific matching rule, None means "no route"
        candidates: All matching rules ordered by (rank, id)
        evaluations: One entry per active rule considered
        configuration_errors: Rule id -> problems for malformed rules
    """

    winning_rule: Rule | None = None
    candidates: list[Rule] = Field(default_factory=list)
    evaluations: list[RuleEvaluation] = Field(default_factory=list)
    configuration_errors: dict[int, list[str]] = Field(default_factory=dict)

    @property
    def matched(self) -> bool:
        return self.winning_rule is not None

    def summary(self) -> dict:
        """Compact form for logs and API responses."""
        return {
            "matched": self.matched,
            "winning_rule_id": self.winning_rule.id if self.winning_rule else None,
            "winning_rule_type": self.winning_rule.rule_type.value if self.winning_rule else None,
            "candidate_ids": [rule.id for rule in self.candidates],
            "misconfigured_rule_ids": sorted(self.configuration_errors),
        }

"""
Closed set of routing rule types.

Each rule type is a conjunction of criteria (company, amount range,
objection code) and carries a specificity rank: the lower the rank, the
more specific the rule. Free-form and legacy type strings collapse onto
``RuleType.CUSTOM``, the catch-all.
"""

from enum import Enum


class Criterion(str, Enum):
    """Independent condition a rule can require of a claim."""

    COMPANY = "company"
    AMOUNT = "amount"
    CODE = "code"


class RuleType(str, Enum):
    """Routing rule type with its criteria and specificity rank."""

    CODE_AMOUNT_COMPANY = "CODE-AMOUNT-COMPANY"
    COMPANY_CODE = "COMPANY-CODE"
    CODE_AMOUNT = "CODE-AMOUNT"
    COMPANY_AMOUNT = "COMPANY-AMOUNT"
    CODE = "CODE"
    AMOUNT = "AMOUNT"
    COMPANY = "COMPANY"
    CUSTOM = "CUSTOM"

    @property
    def criteria(self) -> frozenset[Criterion]:
        return _CRITERIA[self]

    @property
    def rank(self) -> int:
        return _RANKS[self]

    @property
    def is_catch_all(self) -> bool:
        return not self.criteria

    def requires(self, criterion: Criterion) -> bool:
        return criterion in self.criteria

    @classmethod
    def parse(cls, raw: str | None) -> "RuleType":
        """
        Map a declared type string onto a rule type.

        Matching is case-insensitive and accepts underscores in place of
        hyphens. Anything unrecognised is a catch-all.

        Args:
            raw: Declared type as stored on the rule

        Returns:
            Parsed RuleType (CUSTOM for legacy or free-form values)
        """
        if not raw:
            return cls.CUSTOM
        normalized = raw.strip().upper().replace("_", "-")
        try:
            return cls(normalized)
        except ValueError:
            return cls.CUSTOM


_CRITERIA: dict[RuleType, frozenset[Criterion]] = {
    RuleType.CODE_AMOUNT_COMPANY: frozenset({Criterion.CODE, Criterion.AMOUNT, Criterion.COMPANY}),
    RuleType.COMPANY_CODE: frozenset({Criterion.COMPANY, Criterion.CODE}),
    RuleType.CODE_AMOUNT: frozenset({Criterion.CODE, Criterion.AMOUNT}),
    RuleType.COMPANY_AMOUNT: frozenset({Criterion.COMPANY, Criterion.AMOUNT}),
    RuleType.CODE: frozenset({Criterion.CODE}),
    RuleType.AMOUNT: frozenset({Criterion.AMOUNT}),
    RuleType.COMPANY: frozenset({Criterion.COMPANY}),
    RuleType.CUSTOM: frozenset(),
}

# COMPANY-CODE and CODE-AMOUNT share a rank; rule id breaks the tie.
_RANKS: dict[RuleType, int] = {
    RuleType.CODE_AMOUNT_COMPANY: 1,
    RuleType.COMPANY_CODE: 2,
    RuleType.CODE_AMOUNT: 2,
    RuleType.COMPANY_AMOUNT: 3,
    RuleType.CODE: 4,
    RuleType.AMOUNT: 5,
    RuleType.COMPANY: 6,
    RuleType.CUSTOM: 7,
}

_missing = [t.value for t in RuleType if t not in _CRITERIA or t not in _RANKS]
if _missing:
    raise RuntimeError(f"Rule types without criteria or rank: {_missing}")

"""
Rule model representing a company-scoped routing rule.
"""

import re
from datetime import datetime

from pydantic import BaseModel, Field

from claim_routing.core.clock import utcnow
from claim_routing.core.exceptions import ValidationError
from claim_routing.core.models.rule_type import Criterion, RuleType

RULE_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9\s._-]+$")
NIT_PATTERN = re.compile(r"^[0-9]{8,15}-?[0-9kK]?$")
MAX_DESCRIPTION_LENGTH = 500
MAX_OBJECTION_CODE_LENGTH = 100


class Rule(BaseModel):
    """
    A routing rule owned by one company.

    Rules load leniently: a stored rule whose fields do not fit its declared
    type still parses, and ``configuration_errors()`` reports what is wrong.
    The administration path calls ``ensure_valid()`` before writing.

    Attributes:
        id: Primary key
        name: Human-readable name
        description: Optional free text
        company_id: Owning company
        type: Declared type as stored ("COMPANY-AMOUNT", legacy values, ...)
        minimum_amount: Lower bound of the amount range (AMOUNT types)
        maximum_amount: Upper bound of the amount range (AMOUNT types)
        nit_associated_company: Counter-party tax ID (COMPANY types)
        objection_code: Objection code (CODE types)
        is_active: Inactive rules are never considered
        role_ids: Ordered roles this rule authorizes
    """

    id: int | None = None
    name: str
    description: str | None = None
    company_id: int
    type: str
    minimum_amount: float | None = None
    maximum_amount: float | None = None
    nit_associated_company: str | None = None
    objection_code: str | None = None
    is_active: bool = True
    role_ids: list[int] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Config:
        json_schema_extra = {
            "example": {
                "id": 7,
                "name": "Large objections from ACME",
                "company_id": 1,
                "type": "CODE-AMOUNT-COMPANY",
                "minimum_amount": 100000,
                "maximum_amount": 5000000,
                "nit_associated_company": "800000513",
                "objection_code": "OBJ-01",
                "is_active": True,
                "role_ids": [3, 4],
            }
        }

    @property
    def rule_type(self) -> RuleType:
        return RuleType.parse(self.type)

    @property
    def sort_key(self) -> tuple[int, int]:
        """Specificity rank first, then rule id ascending."""
        return (self.rule_type.rank, self.id if self.id is not None else 0)

    def configuration_errors(self) -> list[str]:
        """
        Check that the fields required by the rule type are populated.

        Returns:
            List of human-readable problems (empty when the rule is well formed)
        """
        errors: list[str] = []
        rule_type = self.rule_type

        if rule_type.requires(Criterion.AMOUNT):
            if self.minimum_amount is None or self.maximum_amount is None:
                errors.append(f"{rule_type.value} rule requires minimum_amount and maximum_amount")
            else:
                if self.minimum_amount < 0 or self.maximum_amount < 0:
                    errors.append("Amounts must be non-negative")
                if self.minimum_amount > self.maximum_amount:
                    errors.append(
                        f"minimum_amount ({self.minimum_amount}) is greater than "
                        f"maximum_amount ({self.maximum_amount})"
                    )

        if rule_type.requires(Criterion.COMPANY):
            if not self.nit_associated_company:
                errors.append(f"{rule_type.value} rule requires nit_associated_company")
            elif not NIT_PATTERN.match(self.nit_associated_company.strip()):
                errors.append(f"Invalid NIT format: {self.nit_associated_company}")

        if rule_type.requires(Criterion.CODE):
            if not self.objection_code:
                errors.append(f"{rule_type.value} rule requires objection_code")
            elif len(self.objection_code) > MAX_OBJECTION_CODE_LENGTH:
                errors.append(f"objection_code exceeds {MAX_OBJECTION_CODE_LENGTH} characters")

        return errors

    def ensure_valid(self) -> "Rule":
        """
        Strict validation used before a rule is written.

        Returns:
            The rule itself

        Raises:
            ValidationError: If the name, description or typed fields are invalid
        """
        errors = []
        name = self.name.strip()
        if not 2 <= len(name) <= 100:
            errors.append("Rule name must be between 2 and 100 characters")
        elif not RULE_NAME_PATTERN.match(name):
            errors.append("Rule name may only contain letters, digits, spaces, dots, hyphens and underscores")
        if self.description and len(self.description) > MAX_DESCRIPTION_LENGTH:
            errors.append(f"Description exceeds {MAX_DESCRIPTION_LENGTH} characters")
        errors.extend(self.configuration_errors())

        if errors:
            raise ValidationError(
                f"Invalid rule '{self.name}'",
                details={"rule_id": self.id, "errors": errors},
            )
        return self

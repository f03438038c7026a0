"""
Rule configuration management.

Loads routing rules from YAML files (offline evaluation, seeding, tests)
and provides a fluent builder for assembling rule sets in code.
"""

from pathlib import Path
from typing import Any

import pydantic
import yaml

from claim_routing.core.models import Company, Rule


class RuleConfigLoader:
    """
    Loads routing rules from YAML configuration files.

    Expected YAML format:
    ```yaml
    company:
      id: 1
      name: Clinica Central
      document_number: "900123456"

    rules:
      - id: 1
        name: Large objections from ACME
        type: CODE-AMOUNT-COMPANY
        objection_code: OBJ-01
        minimum_amount: 100000
        maximum_amount: 5000000
        nit_associated_company: "800000513"
        roles: [3, 4]

      - id: 2
        name: Fallback
        type: CUSTOM
        roles: [9]
    ```

    Rules are loaded leniently: a rule whose fields do not fit its type is
    still returned, and the matcher reports it as misconfigured.
    """

    def __init__(self, config_path: str | Path):
        """
        Initialize the rule config loader.

        Args:
            config_path: Path to the YAML configuration file
        """
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise FileNotFoundError(f"Rule configuration file not found: {config_path}")
        self._config: dict[str, Any] | None = None

    def _load(self) -> dict[str, Any]:
        if self._config is None:
            with open(self.config_path) as f:
                config = yaml.safe_load(f)
            if not config or "rules" not in config:
                raise ValueError("Configuration file must contain 'rules' section")
            if not isinstance(config["rules"], list):
                raise ValueError("'rules' section must be a list")
            self._config = config
        return self._config

    def load_company(self) -> Company | None:
        """
        Parse the optional company section.

        Returns:
            Company, or None when the file has no company section
        """
        company = self._load().get("company")
        if not company:
            return None
        try:
            return Company(**company)
        except pydantic.ValidationError as e:
            raise ValueError(f"Invalid company section: {e}") from e

    def load_rules(self) -> list[Rule]:
        """
        Load and parse routing rules from the YAML file.

        Returns:
            List of Rule models

        Raises:
            ValueError: If YAML is invalid or a rule is missing required keys
        """
        config = self._load()
        company = self.load_company()
        default_company_id = company.id if company and company.id is not None else 0

        return [
            self._parse_rule(rule_def, idx, default_company_id)
            for idx, rule_def in enumerate(config["rules"], start=1)
        ]

    def _parse_rule(self, rule_def: dict[str, Any], idx: int, company_id: int) -> Rule:
        """
        Parse a single rule definition.

        Args:
            rule_def: The rule definition from YAML
            idx: Position in the file, used as id when none is given
            company_id: Company id to use when the rule does not name one

        Returns:
            Parsed Rule

        Raises:
            ValueError: If rule definition is invalid
        """
        if not isinstance(rule_def, dict):
            raise ValueError(f"Rule #{idx} must be a mapping")
        if "type" not in rule_def:
            raise ValueError(f"Rule #{idx} is missing 'type'")

        fields = dict(rule_def)
        fields.setdefault("id", idx)
        fields.setdefault("name", f"{fields['type']}_{idx}")
        fields.setdefault("company_id", company_id)
        fields["role_ids"] = fields.pop("roles", fields.get("role_ids", []))
        if fields.get("nit_associated_company") is not None:
            fields["nit_associated_company"] = str(fields["nit_associated_company"])
        if fields.get("objection_code") is not None:
            fields["objection_code"] = str(fields["objection_code"])

        try:
            return Rule(**fields)
        except pydantic.ValidationError as e:
            raise ValueError(f"Invalid rule #{idx}: {e}") from e


class RuleConfigBuilder:
    """
    Programmatically build rule sets (for testing or dynamic rules).
    """

    def __init__(self, company_id: int = 1):
        """Initialize an empty rule set for one company."""
        self.company_id = company_id
        self.rules: list[Rule] = []

    def _next_id(self) -> int:
        return max((rule.id or 0 for rule in self.rules), default=0) + 1

    def add_rule(self, rule_type: str, roles: list[int] | None = None, **fields) -> "RuleConfigBuilder":
        """Add a rule of any declared type."""
        rule_id = fields.pop("id", None) or self._next_id()
        self.rules.append(Rule(
            id=rule_id,
            name=fields.pop("name", f"{rule_type.lower()}_{rule_id}"),
            company_id=fields.pop("company_id", self.company_id),
            type=rule_type,
            role_ids=roles or [],
            **fields,
        ))
        return self

    def add_company(self, nit: str, roles: list[int] | None = None, **fields) -> "RuleConfigBuilder":
        """Add a COMPANY rule."""
        return self.add_rule("COMPANY", roles, nit_associated_company=nit, **fields)

    def add_amount(
        self,
        minimum: float,
        maximum: float,
        roles: list[int] | None = None,
        **fields,
    ) -> "RuleConfigBuilder":
        """Add an AMOUNT rule."""
        return self.add_rule("AMOUNT", roles, minimum_amount=minimum, maximum_amount=maximum, **fields)

    def add_code(self, code: str, roles: list[int] | None = None, **fields) -> "RuleConfigBuilder":
        """Add a CODE rule."""
        return self.add_rule("CODE", roles, objection_code=code, **fields)

    def add_company_amount(
        self,
        nit: str,
        minimum: float,
        maximum: float,
        roles: list[int] | None = None,
        **fields,
    ) -> "RuleConfigBuilder":
        """Add a COMPANY-AMOUNT rule."""
        return self.add_rule(
            "COMPANY-AMOUNT", roles,
            nit_associated_company=nit, minimum_amount=minimum, maximum_amount=maximum,
            **fields,
        )

    def add_code_amount(
        self,
        code: str,
        minimum: float,
        maximum: float,
        roles: list[int] | None = None,
        **fields,
    ) -> "RuleConfigBuilder":
        """Add a CODE-AMOUNT rule."""
        return self.add_rule(
            "CODE-AMOUNT", roles,
            objection_code=code, minimum_amount=minimum, maximum_amount=maximum,
            **fields,
        )

    def add_company_code(self, nit: str, code: str, roles: list[int] | None = None, **fields) -> "RuleConfigBuilder":
        """Add a COMPANY-CODE rule."""
        return self.add_rule(
            "COMPANY-CODE", roles, nit_associated_company=nit, objection_code=code, **fields
        )

    def add_code_amount_company(
        self,
        code: str,
        minimum: float,
        maximum: float,
        nit: str,
        roles: list[int] | None = None,
        **fields,
    ) -> "RuleConfigBuilder":
        """Add a CODE-AMOUNT-COMPANY rule."""
        return self.add_rule(
            "CODE-AMOUNT-COMPANY", roles,
            objection_code=code, minimum_amount=minimum, maximum_amount=maximum,
            nit_associated_company=nit,
            **fields,
        )

    def add_catch_all(self, roles: list[int] | None = None, rule_type: str = "CUSTOM", **fields) -> "RuleConfigBuilder":
        """Add a catch-all rule (CUSTOM or any legacy type string)."""
        return self.add_rule(rule_type, roles, **fields)

    def build(self) -> list[Rule]:
        """Build and return the rule set."""
        return list(self.rules)

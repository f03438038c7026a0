"""
Unit tests for rule configuration loading and building.
"""

import pytest

from claim_routing.core.models import RuleType
from claim_routing.core.rules import RuleConfigBuilder, RuleConfigLoader

RULES_YAML = """
company:
  id: 7
  name: Clinica Central
  document_number: "900123456"

rules:
  - id: 10
    name: Large objections from ACME
    type: CODE-AMOUNT-COMPANY
    objection_code: OBJ-01
    minimum_amount: 100000
    maximum_amount: 5000000
    nit_associated_company: 800000513
    roles: [3, 4]

  - name: Fallback
    type: legacy_type
    roles: [9]
"""


@pytest.mark.unit
class TestRuleConfigLoader:
    """Tests for RuleConfigLoader"""

    def test_load_rules(self, tmp_path):
        """Test rules and company load from YAML"""
        path = tmp_path / "rules.yaml"
        path.write_text(RULES_YAML)

        loader = RuleConfigLoader(path)
        company = loader.load_company()
        rules = loader.load_rules()

        assert company.id == 7
        assert len(rules) == 2
        assert rules[0].id == 10
        assert rules[0].role_ids == [3, 4]
        assert rules[0].nit_associated_company == "800000513"
        assert rules[0].company_id == 7
        assert rules[0].configuration_errors() == []

    def test_rule_defaults(self, tmp_path):
        """Test ids default to file position and unknown types become catch-all"""
        path = tmp_path / "rules.yaml"
        path.write_text(RULES_YAML)

        fallback = RuleConfigLoader(path).load_rules()[1]

        assert fallback.id == 2
        assert fallback.rule_type == RuleType.CUSTOM

    def test_missing_file(self, tmp_path):
        """Test a missing file raises FileNotFoundError"""
        with pytest.raises(FileNotFoundError):
            RuleConfigLoader(tmp_path / "missing.yaml")

    def test_missing_rules_section(self, tmp_path):
        """Test a file without rules raises ValueError"""
        path = tmp_path / "rules.yaml"
        path.write_text("company:\n  name: x\n")

        with pytest.raises(ValueError, match="rules"):
            RuleConfigLoader(path).load_rules()

    def test_rule_without_type(self, tmp_path):
        """Test a rule without a type raises ValueError"""
        path = tmp_path / "rules.yaml"
        path.write_text("rules:\n  - name: nameless\n")

        with pytest.raises(ValueError, match="missing 'type'"):
            RuleConfigLoader(path).load_rules()


@pytest.mark.unit
class TestRuleConfigBuilder:
    """Tests for RuleConfigBuilder"""

    def test_build_assigns_ids(self):
        """Test ids auto-increment and company id is applied"""
        rules = RuleConfigBuilder(company_id=5) \
            .add_company("800000513", roles=[1]) \
            .add_amount(0, 10, roles=[2]) \
            .build()

        assert [r.id for r in rules] == [1, 2]
        assert all(r.company_id == 5 for r in rules)
        assert rules[1].minimum_amount == 0
        assert rules[1].role_ids == [2]

    def test_catch_all_with_legacy_type(self):
        """Test catch-all rules keep their declared type string"""
        rule = RuleConfigBuilder().add_catch_all(roles=[1], rule_type="OLD-ROUTING").build()[0]

        assert rule.type == "OLD-ROUTING"
        assert rule.rule_type == RuleType.CUSTOM

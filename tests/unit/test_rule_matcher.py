"""
Unit tests for rule matching and specificity ordering.
"""

import pytest

from conftest import SOURCE_NIT, make_claim

from claim_routing.core.models import Rule, RuleType
from claim_routing.core.rules import RuleConfigBuilder, RuleMatcher


@pytest.mark.unit
class TestRuleMatcher:
    """Tests for RuleMatcher.resolve"""

    def test_amount_rule_outside_range_gives_no_route(self):
        """Test an AMOUNT rule does not match a value above its maximum"""
        rules = RuleConfigBuilder().add_amount(1000, 50000, roles=[3]).build()

        result = RuleMatcher().resolve(make_claim(Value=200000), rules)

        assert result.matched is False
        assert result.winning_rule is None
        assert result.candidates == []
        assert len(result.evaluations) == 1

    def test_company_amount_beats_company(self):
        """Test COMPANY-AMOUNT wins over COMPANY for the same counter-party"""
        rules = RuleConfigBuilder() \
            .add_company(SOURCE_NIT, roles=[3]) \
            .add_company_amount(SOURCE_NIT, 0, 1000000, roles=[9]) \
            .build()

        result = RuleMatcher().resolve(make_claim(Source=SOURCE_NIT, Value=200000), rules)

        assert result.winning_rule.rule_type == RuleType.COMPANY_AMOUNT
        assert [r.rule_type for r in result.candidates] == [RuleType.COMPANY_AMOUNT, RuleType.COMPANY]

    def test_full_specificity_order(self):
        """Test every rule type matching at once is ordered by rank"""
        rules = RuleConfigBuilder() \
            .add_catch_all(roles=[1]) \
            .add_company(SOURCE_NIT, roles=[1]) \
            .add_amount(0, 1000000, roles=[1]) \
            .add_code("OBJ-01", roles=[1]) \
            .add_company_amount(SOURCE_NIT, 0, 1000000, roles=[1]) \
            .add_code_amount("OBJ-01", 0, 1000000, roles=[1]) \
            .add_company_code(SOURCE_NIT, "OBJ-01", roles=[1]) \
            .add_code_amount_company("OBJ-01", 0, 1000000, SOURCE_NIT, roles=[1]) \
            .build()

        result = RuleMatcher().resolve(make_claim(), rules)

        assert [r.rule_type.rank for r in result.candidates] == [1, 2, 2, 3, 4, 5, 6, 7]
        assert result.winning_rule.rule_type == RuleType.CODE_AMOUNT_COMPANY

    def test_equal_rank_tie_breaks_on_lowest_id(self):
        """Test COMPANY-CODE and CODE-AMOUNT share a rank and the lower id wins"""
        rules = [
            Rule(id=9, name="company code", company_id=1, type="COMPANY-CODE",
                 nit_associated_company=SOURCE_NIT, objection_code="OBJ-01", role_ids=[3]),
            Rule(id=4, name="code amount", company_id=1, type="CODE-AMOUNT",
                 objection_code="OBJ-01", minimum_amount=0, maximum_amount=500000, role_ids=[3]),
        ]

        result = RuleMatcher().resolve(make_claim(), rules)

        assert result.winning_rule.id == 4
        assert [r.id for r in result.candidates] == [4, 9]

    def test_inactive_rules_are_ignored(self):
        """Test inactive rules are neither evaluated nor matched"""
        rules = RuleConfigBuilder() \
            .add_code("OBJ-01", roles=[3], is_active=False) \
            .add_catch_all(roles=[9]) \
            .build()

        result = RuleMatcher().resolve(make_claim(), rules)

        assert result.winning_rule.rule_type == RuleType.CUSTOM
        assert [e.rule_id for e in result.evaluations] == [2]

    def test_code_match_is_case_sensitive(self):
        """Test objection codes compare exactly"""
        rules = RuleConfigBuilder().add_code("obj-01", roles=[3]).build()

        result = RuleMatcher().resolve(make_claim(ObjectionCode="OBJ-01"), rules)

        assert result.matched is False
        assert "does not equal" in result.evaluations[0].reason

    def test_company_match_normalizes_nit(self):
        """Test hyphens and check-digit case are ignored when comparing NITs"""
        rules = RuleConfigBuilder().add_company("80000051-3", roles=[3]).build()

        result = RuleMatcher().resolve(make_claim(Source="800000513"), rules)

        assert result.matched is True

    def test_amount_bounds_are_inclusive(self):
        """Test values equal to the bounds match"""
        rules = RuleConfigBuilder().add_amount(1000, 50000, roles=[3]).build()
        matcher = RuleMatcher()

        assert matcher.resolve(make_claim(Value=1000), rules).matched is True
        assert matcher.resolve(make_claim(Value=50000), rules).matched is True
        assert matcher.resolve(make_claim(Value=999.99), rules).matched is False

    def test_misconfigured_rule_never_matches(self):
        """Test a COMPANY-AMOUNT rule without amounts is reported, not matched"""
        rules = [
            Rule(id=1, name="broken", company_id=1, type="COMPANY-AMOUNT",
                 nit_associated_company=SOURCE_NIT, role_ids=[3]),
            Rule(id=2, name="fallback", company_id=1, type="CUSTOM", role_ids=[9]),
        ]

        result = RuleMatcher().resolve(make_claim(), rules)

        assert result.winning_rule.id == 2
        assert 1 in result.configuration_errors
        assert "requires minimum_amount and maximum_amount" in result.configuration_errors[1][0]
        assert result.summary()["misconfigured_rule_ids"] == [1]

    def test_legacy_type_is_catch_all(self):
        """Test unknown declared types rank as catch-all"""
        rules = [Rule(id=1, name="legacy", company_id=1, type="LEGACY_ROUTING", role_ids=[3])]

        result = RuleMatcher().resolve(make_claim(), rules)

        assert result.winning_rule.rule_type == RuleType.CUSTOM
        assert result.evaluations[0].rank == 7

    def test_empty_rule_set(self):
        """Test no rules gives no route"""
        result = RuleMatcher().resolve(make_claim(), [])

        assert result.matched is False
        assert result.evaluations == []


@pytest.mark.unit
class TestRuleEvaluation:
    """Tests for RuleMatcher.evaluate and summarize"""

    def test_evaluate_reports_failing_criterion(self):
        """Test the reason names the first failing criterion"""
        rule = RuleConfigBuilder().add_code_amount("OBJ-01", 0, 100, roles=[3]).build()[0]

        evaluation = RuleMatcher().evaluate(rule, make_claim(Value=200000))

        assert evaluation.matched is False
        assert "200000" in evaluation.reason

    def test_evaluate_match_reason(self):
        """Test a matching rule explains itself"""
        rule = RuleConfigBuilder().add_code("OBJ-01", roles=[3]).build()[0]

        evaluation = RuleMatcher().evaluate(rule, make_claim())

        assert evaluation.matched is True
        assert evaluation.rule_type == "CODE"
        assert evaluation.rank == 4

    def test_summarize(self):
        """Test rule statistics"""
        rules = RuleConfigBuilder() \
            .add_code("OBJ-01", roles=[3]) \
            .add_code("OBJ-02", roles=[3], is_active=False) \
            .add_rule("AMOUNT", roles=[3]) \
            .build()

        summary = RuleMatcher().summarize(rules)

        assert summary["total"] == 3
        assert summary["active"] == 2
        assert summary["inactive"] == 1
        assert summary["by_type"] == {"AMOUNT": 1, "CODE": 2}
        assert summary["misconfigured_rule_ids"] == [3]

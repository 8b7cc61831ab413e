"""Tests for rule and condition evaluation"""
import pytest

from approvalflow.domain.enums import ConditionOperator, LogicalOperator
from approvalflow.domain.models import Condition, EvaluationRule
from approvalflow.engine.rule_evaluator import RuleEvaluator, RuleFormatError, resolve_operator


@pytest.fixture
def evaluator(clock):
    return RuleEvaluator(clock)


def rule(field, operator, value, action, priority=0, **kwargs):
    return EvaluationRule(field=field, operator=operator, value=value, action=action, priority=priority, **kwargs)


def condition(field, operator, value, group_id=0):
    return Condition(field=field, operator=operator, value=value, group_id=group_id)


class TestResolveOperator:

    def test_case_insensitive(self):
        assert resolve_operator("GreaterThan") == ConditionOperator.GREATER_THAN
        assert resolve_operator("notin") == ConditionOperator.NOT_IN

    def test_legacy_aliases(self):
        assert resolve_operator("greaterThanOrEqual") == ConditionOperator.GREATER_OR_EQUAL
        assert resolve_operator("lessThanOrEqual") == ConditionOperator.LESS_OR_EQUAL

    def test_unknown(self):
        with pytest.raises(RuleFormatError):
            resolve_operator("matches")


class TestEvaluateRules:

    RULES = [
        rule("amount", "greaterThan", 10000, "RequireApproval", priority=1),
        rule("amount", "lessThan", 1000, "AutoApprove", priority=2),
    ]

    def test_large_amount_requires_approval(self, evaluator):
        result = evaluator.evaluate_rules(self.RULES, {"amount": 15000}, default_action="Escalate")

        assert result.is_valid
        assert result.result_action == "RequireApproval"
        assert [m.action for m in result.matched_rules] == ["RequireApproval"]

    def test_small_amount_auto_approves(self, evaluator):
        result = evaluator.evaluate_rules(self.RULES, {"amount": 500}, default_action="Escalate")
        assert result.result_action == "AutoApprove"

    def test_default_action_when_nothing_matches(self, evaluator):
        result = evaluator.evaluate_rules(self.RULES, {"amount": 5000}, default_action="Escalate")

        assert result.matched_rules == []
        assert result.result_action == "Escalate"

    def test_last_match_wins_without_stop(self, evaluator):
        rules = [
            rule("amount", "greaterThan", 100, "Escalate", priority=5),
            rule("amount", "greaterThan", 10, "RequireApproval", priority=1),
        ]
        result = evaluator.evaluate_rules(rules, {"amount": 500}, stop_on_first_match=False)

        assert len(result.matched_rules) == 2
        assert result.result_action == "Escalate"

    def test_stop_on_first_match(self, evaluator):
        rules = [
            rule("amount", "greaterThan", 100, "Escalate", priority=5),
            rule("amount", "greaterThan", 10, "RequireApproval", priority=1),
        ]
        result = evaluator.evaluate_rules(rules, {"amount": 500}, stop_on_first_match=True)

        assert len(result.matched_rules) == 1
        assert result.result_action == "RequireApproval"

    def test_inactive_rules_are_skipped(self, evaluator):
        rules = [rule("amount", "greaterThan", 10, "RejectRequest", is_active=False)]
        result = evaluator.evaluate_rules(rules, {"amount": 500}, default_action="AutoApprove")
        assert result.result_action == "AutoApprove"

    def test_malformed_rule_is_reported_not_raised(self, evaluator):
        rules = [
            rule("amount", "between", 5, "RejectRequest"),
            rule("amount", "greaterThan", 10, "RequireApproval", priority=1),
        ]
        result = evaluator.evaluate_rules(rules, {"amount": 500})

        assert not result.is_valid
        assert len(result.errors) == 1
        assert result.result_action == "RequireApproval"

    def test_missing_field_does_not_match(self, evaluator):
        rules = [rule("amount", "notEquals", 1, "RejectRequest")]
        result = evaluator.evaluate_rules(rules, {}, default_action="AutoApprove")
        assert result.result_action == "AutoApprove"

    def test_evaluated_at_uses_clock(self, evaluator, clock):
        result = evaluator.evaluate_rules([], {"amount": 1})
        assert result.evaluated_at == clock.now()

    def test_camel_case_rules_load(self, evaluator):
        loaded = EvaluationRule.model_validate(
            {"field": "amount", "operator": "lessThan", "value": 10, "action": "AutoApprove", "isActive": True}
        )
        result = evaluator.evaluate_rules([loaded], {"amount": 5})
        assert result.result_action == "AutoApprove"


class TestOperators:

    @pytest.mark.parametrize("operator,value,data,expected", [
        ("equals", "finance", {"dept": "Finance"}, True),
        ("notEquals", "finance", {"dept": "HR"}, True),
        ("greaterOrEqual", 100, {"amount": "100"}, True),
        ("lessOrEqual", 99, {"amount": 100}, False),
        ("contains", "lap", {"title": "New LAPTOP"}, True),
        ("contains", "vip", {"tags": ["vip", "urgent"]}, True),
        ("in", ["HR", "IT"], {"dept": "it"}, True),
        ("notIn", ["HR", "IT"], {"dept": "Sales"}, True),
        ("between", [100, 200], {"amount": 200}, True),
        ("between", [100, 200], {"amount": 201}, False),
        ("between", ["2024-01-01", "2024-12-31"], {"start": "2024-06-15"}, True),
    ])
    def test_operator(self, evaluator, operator, value, data, expected):
        rules = [rule(next(iter(data)), operator, value, "Escalate")]
        result = evaluator.evaluate_rules(rules, data, default_action="AutoApprove")
        assert (result.result_action == "Escalate") is expected

    def test_dot_path(self, evaluator):
        rules = [rule("cost.amount", "greaterThan", 10, "Escalate")]
        result = evaluator.evaluate_rules(rules, {"cost": {"amount": 50}})
        assert result.result_action == "Escalate"

    def test_exact_key_wins_over_dot_path(self, evaluator):
        rules = [rule("cost.amount", "equals", 1, "Escalate")]
        result = evaluator.evaluate_rules(rules, {"cost.amount": 1, "cost": {"amount": 2}})
        assert result.result_action == "Escalate"

    def test_in_requires_list(self, evaluator):
        result = evaluator.evaluate_rules([rule("dept", "in", "HR", "Escalate")], {"dept": "HR"})
        assert not result.is_valid


class TestEvaluateConditions:

    def test_empty_is_satisfied(self, evaluator):
        assert evaluator.evaluate_conditions([], {"amount": 1})

    def test_and_within_group(self, evaluator):
        conditions = [
            condition("amount", "greaterThan", 100),
            condition("dept", "equals", "IT"),
        ]
        assert evaluator.evaluate_conditions(conditions, {"amount": 500, "dept": "IT"})
        assert not evaluator.evaluate_conditions(conditions, {"amount": 500, "dept": "HR"})

    def test_or_across_groups(self, evaluator):
        conditions = [
            condition("amount", "greaterThan", 100, group_id=1),
            condition("dept", "equals", "IT", group_id=2),
        ]
        assert evaluator.evaluate_conditions(conditions, {"amount": 5, "dept": "IT"})
        assert not evaluator.evaluate_conditions(conditions, {"amount": 5, "dept": "HR"})

    def test_malformed_condition_is_false(self, evaluator):
        assert not evaluator.evaluate_conditions([condition("amount", "sortOf", 1)], {"amount": 1})

    def test_logical_operator_loads_from_camel_case(self):
        loaded = Condition.model_validate(
            {"field": "a", "operator": "equals", "value": 1, "logicalOperator": "OR", "groupId": 3}
        )
        assert loaded.logical_operator == LogicalOperator.OR
        assert loaded.group_id == 3


class TestValidation:

    def test_valid_rule(self, evaluator):
        assert evaluator.validate_rule(rule("amount", "in", [1, 2], "Escalate")) == []

    def test_invalid_rule(self, evaluator):
        errors = evaluator.validate_rule(rule("", "between", [5], "Escalate"))
        assert len(errors) == 2

    def test_unknown_operator(self, evaluator):
        errors = evaluator.validate_condition(condition("amount", "like", "x"))
        assert errors == ["Unsupported operator 'like'"]

    def test_supported_operators(self):
        operators = RuleEvaluator.supported_operators()

        assert len(operators) == 10
        assert "greaterOrEqual" in operators
        assert "greaterThanOrEqual" not in operators
        assert all(resolve_operator(name).value == name for name in operators)

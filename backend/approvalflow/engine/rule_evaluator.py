"""Rule Evaluator - Safe evaluation of business rules and conditions"""
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..config.settings import settings
from ..domain.enums import ConditionOperator
from ..domain.models import Condition, EvaluationRule, MatchedRule, RuleEvaluationResult
from ..utils.logger import get_logger
from ..utils.time import Clock, SystemClock
from .values import TypedValue, ValueKind, compare_values, values_equal

logger = get_logger(__name__)


_OPERATORS: Dict[str, ConditionOperator] = {op.value.lower(): op for op in ConditionOperator}
_OPERATORS.update({
    "greaterthanorequal": ConditionOperator.GREATER_OR_EQUAL,
    "lessthanorequal": ConditionOperator.LESS_OR_EQUAL,
})

_MISSING = object()


class RuleFormatError(ValueError):
    """A rule or condition cannot be evaluated as written"""


def resolve_operator(name: Optional[str]) -> ConditionOperator:
    """Map an operator name (case-insensitive, legacy aliases allowed) to the closed set"""
    operator = _OPERATORS.get((name or "").strip().lower())
    if operator is None:
        raise RuleFormatError(f"Unsupported operator '{name}'")
    return operator


class RuleEvaluator:
    """
    Evaluate evaluation rules and start/completion conditions

    Uses a closed operator set - no eval() or exec(). Evaluation never
    raises for bad input: malformed rules are reported in the result's
    errors and treated as not matching.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or SystemClock()

    # =========================================================================
    # Rules
    # =========================================================================

    def evaluate_rules(
        self,
        rules: Sequence[EvaluationRule],
        data: Optional[Dict[str, Any]],
        stop_on_first_match: Optional[bool] = None,
        default_action: Optional[str] = None
    ) -> RuleEvaluationResult:
        """
        Evaluate active rules in ascending priority

        Args:
            rules: Rules to evaluate
            data: Request data bag
            stop_on_first_match: Halt at the first match (settings default when None)
            default_action: Action when nothing matches (settings default when None)

        Returns:
            RuleEvaluationResult. Without stop_on_first_match every match is
            collected and result_action comes from the match with the highest
            priority value.
        """
        data = data or {}
        if stop_on_first_match is None:
            stop_on_first_match = settings.stop_on_first_match
        if default_action is None:
            default_action = settings.default_rule_action

        result = RuleEvaluationResult(
            evaluated_at=self._clock.now(),
            evaluation_data=dict(data)
        )

        # sorted() is stable, so equal priorities keep authored order
        active_rules = sorted((r for r in rules if r.is_active), key=lambda r: r.priority)
        winning: Optional[EvaluationRule] = None

        for rule in active_rules:
            try:
                matched = self._matches(rule.field, rule.operator, rule.value, data)
            except RuleFormatError as e:
                result.is_valid = False
                result.errors.append(f"Rule '{rule.field} {rule.operator}': {e}")
                continue

            if not matched:
                continue

            result.matched_rules.append(MatchedRule(
                field=rule.field,
                operator=rule.operator,
                value=rule.value,
                action=rule.action,
                priority=rule.priority,
                description=rule.description
            ))
            winning = rule
            if stop_on_first_match:
                break

        result.result_action = winning.action if winning else default_action

        logger.debug(
            f"Evaluated {len(active_rules)} rules, {len(result.matched_rules)} matched",
            extra={"action": result.result_action, "count": len(result.matched_rules)}
        )
        return result

    # =========================================================================
    # Conditions
    # =========================================================================

    def evaluate_conditions(
        self,
        conditions: Sequence[Condition],
        data: Optional[Dict[str, Any]]
    ) -> bool:
        """
        Evaluate conditions: AND within a group_id, OR across groups

        An empty list is satisfied. A malformed condition evaluates false.
        """
        if not conditions:
            return True

        data = data or {}
        groups: Dict[int, List[Condition]] = {}
        for condition in sorted(conditions, key=lambda c: c.priority):
            groups.setdefault(condition.group_id, []).append(condition)

        for group in groups.values():
            if all(self._evaluate_condition(c, data) for c in group):
                return True
        return False

    def _evaluate_condition(self, condition: Condition, data: Dict[str, Any]) -> bool:
        try:
            return self._matches(condition.field, condition.operator, condition.value, data)
        except RuleFormatError as e:
            logger.warning(f"Condition on '{condition.field}' not evaluable: {e}")
            return False  # Fail closed

    # =========================================================================
    # Validation (configuration authoring)
    # =========================================================================

    def validate_rule(self, rule: EvaluationRule) -> List[str]:
        """Return validation messages for a rule; empty when valid"""
        errors = self._validate_expression(rule.field, rule.operator, rule.value)
        if not (rule.action or "").strip():
            errors.append(f"Rule on '{rule.field}' has no action")
        return errors

    def validate_condition(self, condition: Condition) -> List[str]:
        """Return validation messages for a condition; empty when valid"""
        return self._validate_expression(condition.field, condition.operator, condition.value)

    @staticmethod
    def supported_operators() -> List[str]:
        """Canonical operator names accepted in rules and conditions"""
        return [op.value for op in ConditionOperator]

    def _validate_expression(self, field: str, operator_name: str, value: Any) -> List[str]:
        errors: List[str] = []
        if not (field or "").strip():
            errors.append("Field name is required")
        try:
            operator = resolve_operator(operator_name)
        except RuleFormatError as e:
            errors.append(str(e))
            return errors

        try:
            if operator in (ConditionOperator.IN, ConditionOperator.NOT_IN):
                self._require_list(operator, TypedValue.of(value))
            elif operator == ConditionOperator.BETWEEN:
                self._require_range(TypedValue.of(value))
        except RuleFormatError as e:
            errors.append(f"'{field}': {e}")
        return errors

    # =========================================================================
    # Matching
    # =========================================================================

    def _matches(self, field: str, operator_name: str, rule_value: Any, data: Dict[str, Any]) -> bool:
        operator = resolve_operator(operator_name)
        field_value = self._get_field_value(field, data)
        if field_value is _MISSING:
            return False
        return self._compare(TypedValue.of(field_value), operator, TypedValue.of(rule_value))

    def _get_field_value(self, field_path: str, data: Dict[str, Any]) -> Any:
        """
        Get field value by exact key, falling back to dot notation

        Example: "cost.amount" -> data["cost"]["amount"]
        """
        if field_path in data:
            return data[field_path]

        value: Any = data
        for part in field_path.split("."):
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return _MISSING
        return value

    def _compare(
        self,
        field_value: TypedValue,
        operator: ConditionOperator,
        rule_value: TypedValue
    ) -> bool:
        """Compare values using operator"""

        if operator == ConditionOperator.EQUALS:
            return values_equal(field_value, rule_value)

        elif operator == ConditionOperator.NOT_EQUALS:
            return not values_equal(field_value, rule_value)

        elif operator in _ORDERED:
            order = compare_values(field_value, rule_value)
            if order is None:
                return False
            return _ORDERED[operator](order)

        elif operator == ConditionOperator.CONTAINS:
            if field_value.kind == ValueKind.LIST:
                return any(values_equal(item, rule_value) for item in field_value.as_list())
            if field_value.kind == ValueKind.NULL:
                return False
            return rule_value.as_text().casefold() in field_value.as_text().casefold()

        elif operator == ConditionOperator.IN:
            options = self._require_list(operator, rule_value)
            return any(values_equal(field_value, option) for option in options)

        elif operator == ConditionOperator.NOT_IN:
            options = self._require_list(operator, rule_value)
            return not any(values_equal(field_value, option) for option in options)

        elif operator == ConditionOperator.BETWEEN:
            low, high = self._require_range(rule_value)
            lower = compare_values(field_value, low)
            upper = compare_values(field_value, high)
            if lower is None or upper is None:
                return False
            return lower >= 0 and upper <= 0

        raise RuleFormatError(f"Unsupported operator '{operator}'")

    @staticmethod
    def _require_list(operator: ConditionOperator, value: TypedValue) -> List[TypedValue]:
        options = value.as_list()
        if options is None:
            raise RuleFormatError(f"Operator '{operator.value}' requires a list value")
        return options

    @staticmethod
    def _require_range(value: TypedValue) -> Tuple[TypedValue, TypedValue]:
        bounds = value.as_list()
        if bounds is None or len(bounds) != 2:
            raise RuleFormatError("Operator 'between' requires a [low, high] value")
        low, high = bounds
        if compare_values(low, high) is None:
            raise RuleFormatError("Operator 'between' bounds are not comparable")
        return low, high


_ORDERED = {
    ConditionOperator.GREATER_THAN: lambda order: order > 0,
    ConditionOperator.LESS_THAN: lambda order: order < 0,
    ConditionOperator.GREATER_OR_EQUAL: lambda order: order >= 0,
    ConditionOperator.LESS_OR_EQUAL: lambda order: order <= 0,
}

"""Condition rules used by CONDITION nodes, loop break checks,
DATA_TRANSFORM filters and event-trigger filters.

A rule is ``{"field": ..., "operator": ..., "value": ...}``. ``field`` is
a dotted path looked up through a resolver (a Scope or a plain dict);
rules are combined with AND / OR.

Supported operators:
- equals / not_equals
- greater_than / less_than / greater_than_or_equal / less_than_or_equal
- contains / not_contains
- starts_with / ends_with
- is_empty / is_not_empty
- in / not_in
"""

from typing import Any, Callable, Literal, Optional, Union

import structlog
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from core.utils import get_path

logger = structlog.get_logger(__name__)


def _contains(actual: Any, target: Any) -> bool:
    if actual is None:
        return False
    if isinstance(actual, str):
        return str(target) in actual
    if isinstance(actual, (list, tuple, set, dict)):
        return target in actual
    return False


def _is_empty(actual: Any) -> bool:
    if actual is None:
        return True
    if isinstance(actual, (str, list, tuple, dict, set)):
        return len(actual) == 0
    return False


def _ordered(compare: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    """Wrap a comparison so numeric strings compare as numbers."""

    def _apply(actual: Any, target: Any) -> bool:
        if actual is None or target is None:
            return False
        try:
            return compare(float(actual), float(target))
        except (TypeError, ValueError):
            pass
        try:
            return compare(actual, target)
        except TypeError:
            return False

    return _apply


def _equals(actual: Any, target: Any) -> bool:
    if actual == target:
        return True
    # "5" == 5 should hold for values coming from form payloads
    if isinstance(actual, (int, float, str)) and isinstance(target, (int, float, str)):
        return str(actual) == str(target)
    return False


OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "equals": _equals,
    "not_equals": lambda a, t: not _equals(a, t),
    "greater_than": _ordered(lambda a, t: a > t),
    "less_than": _ordered(lambda a, t: a < t),
    "greater_than_or_equal": _ordered(lambda a, t: a >= t),
    "less_than_or_equal": _ordered(lambda a, t: a <= t),
    "contains": _contains,
    "not_contains": lambda a, t: not _contains(a, t),
    "starts_with": lambda a, t: a is not None and str(a).startswith(str(t)),
    "ends_with": lambda a, t: a is not None and str(a).endswith(str(t)),
    "is_empty": lambda a, t: _is_empty(a),
    "is_not_empty": lambda a, t: not _is_empty(a),
    "in": lambda a, t: a in t if isinstance(t, (list, tuple)) else _equals(a, t),
    "not_in": lambda a, t: a not in t if isinstance(t, (list, tuple)) else not _equals(a, t),
}


class ConditionRule(BaseModel):
    """One ``field operator value`` comparison."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    field: str
    operator: str = "equals"
    value: Any = None

    @field_validator("operator")
    @classmethod
    def _known_operator(cls, value: str) -> str:
        if value not in OPERATORS:
            raise ValueError(f"Unknown condition operator: {value}")
        return value


LogicalOperator = Literal["AND", "OR"]


def _lookup(source: Any, path: str) -> Any:
    if hasattr(source, "get_path"):
        return source.get_path(path)
    return get_path(source, path)


def evaluate_rule(rule: Union[ConditionRule, dict], source: Any) -> bool:
    """Evaluate one rule against a Scope or a plain dict."""
    if isinstance(rule, dict):
        rule = ConditionRule.model_validate(rule)
    actual = _lookup(source, rule.field)
    result = OPERATORS[rule.operator](actual, rule.value)
    logger.debug(
        "Condition evaluated",
        field=rule.field,
        operator=rule.operator,
        result=result,
    )
    return result


def evaluate_conditions(
    rules: list,
    source: Any,
    logical_operator: Optional[str] = "AND",
) -> bool:
    """Combine rules with AND (default) or OR.

    An empty rule list is true.
    """
    if not rules:
        return True
    results = (evaluate_rule(rule, source) for rule in rules)
    if (logical_operator or "AND").upper() == "OR":
        return any(results)
    return all(results)

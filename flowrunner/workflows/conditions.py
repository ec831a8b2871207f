"""
Condition Evaluation

Evaluates a condition node's ``data.condition`` against run variables.

Accepted shapes:
- bool literal
- {"field": "result.status", "operator": "==", "value": "success"}
- a list of such mappings (all must pass)
- "field operator literal" or "field" (truthiness) strings
"""

import json
import re
from typing import Any, Dict, List, Union

from flowrunner.exceptions import ConditionEvaluationError

ConditionSpec = Union[bool, str, Dict[str, Any], List[Dict[str, Any]], None]

UNARY_OPERATORS = ("is_none", "is_not_none", "is_true", "is_false")
BINARY_OPERATORS = ("==", "!=", "<=", ">=", "<", ">", "not_in", "in", "contains")

# Longest operators first so "<=" is not read as "<"
_EXPRESSION = re.compile(
    r"^\s*(?P<field>[A-Za-z_][\w.]*)\s*"
    r"(?:(?P<op>==|!=|<=|>=|<|>|\bnot_in\b|\bin\b|\bcontains\b|\bis_none\b|\bis_not_none\b|\bis_true\b|\bis_false\b)"
    r"\s*(?P<value>.*?))?\s*$"
)


def get_nested_value(data: Dict[str, Any], path: str) -> Any:
    """Get nested value using dot notation."""
    value: Any = data
    for key in path.split("."):
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return None
    return value


def compare(actual: Any, operator: str, expected: Any) -> bool:
    """
    Compare values using operator.

    Raises:
        ConditionEvaluationError: For unknown operators or incomparable operands
    """
    try:
        if operator == "==":
            return actual == expected
        elif operator == "!=":
            return actual != expected
        elif operator == "<":
            return actual < expected
        elif operator == ">":
            return actual > expected
        elif operator == "<=":
            return actual <= expected
        elif operator == ">=":
            return actual >= expected
        elif operator == "in":
            return actual in expected
        elif operator == "not_in":
            return actual not in expected
        elif operator == "contains":
            return expected in actual
        elif operator == "is_none":
            return actual is None
        elif operator == "is_not_none":
            return actual is not None
        elif operator == "is_true":
            return bool(actual)
        elif operator == "is_false":
            return not bool(actual)
    except TypeError as e:
        raise ConditionEvaluationError(
            f"Cannot apply '{operator}' to {actual!r} and {expected!r}: {e}"
        )
    raise ConditionEvaluationError(f"Unknown operator: {operator}")


def _parse_literal(raw: str) -> Any:
    raw = raw.strip()
    if not raw:
        return None
    if len(raw) >= 2 and raw[0] == raw[-1] == "'":
        return raw[1:-1]
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def parse_expression(expression: str) -> Dict[str, Any]:
    """
    Parse a "field operator literal" string into a clause mapping.

    A bare field name means truthiness (``is_true``).
    """
    match = _EXPRESSION.match(expression)
    if not match:
        raise ConditionEvaluationError(f"Malformed condition expression: {expression!r}")

    operator = match.group("op")
    if operator is None:
        return {"field": match.group("field"), "operator": "is_true"}

    if operator in UNARY_OPERATORS:
        if match.group("value"):
            raise ConditionEvaluationError(
                f"Operator '{operator}' takes no value: {expression!r}"
            )
        return {"field": match.group("field"), "operator": operator}

    if not match.group("value"):
        raise ConditionEvaluationError(f"Operator '{operator}' needs a value: {expression!r}")

    return {
        "field": match.group("field"),
        "operator": operator,
        "value": _parse_literal(match.group("value")),
    }


def _evaluate_clause(clause: Dict[str, Any], variables: Dict[str, Any]) -> bool:
    if not isinstance(clause, dict) or "field" not in clause:
        raise ConditionEvaluationError(f"Condition clause needs a 'field': {clause!r}")
    actual = get_nested_value(variables, str(clause["field"]))
    return compare(actual, clause.get("operator", "=="), clause.get("value"))


def evaluate_condition(condition: ConditionSpec, variables: Dict[str, Any]) -> bool:
    """
    Evaluate a condition against run variables.

    A missing condition evaluates to True.

    Raises:
        ConditionEvaluationError: If the condition is malformed
    """
    if condition is None:
        return True
    if isinstance(condition, bool):
        return condition
    if isinstance(condition, str):
        text = condition.strip()
        if not text:
            return True
        if text.lower() in ("true", "false"):
            return text.lower() == "true"
        return _evaluate_clause(parse_expression(text), variables)
    if isinstance(condition, dict):
        return _evaluate_clause(condition, variables)
    if isinstance(condition, list):
        return all(_evaluate_clause(clause, variables) for clause in condition)

    raise ConditionEvaluationError(
        f"Unsupported condition type: {type(condition).__name__}"
    )

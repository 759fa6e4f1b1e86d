"""Condition evaluation for condition nodes.

Supported operators:
- equals: Equal (==), with numeric coercion when both sides are numbers
- contains: String/list contains value (case-insensitive for strings)
- greater_than: Greater than (>)
- less_than: Less than (<)
- exists: Field is present and not None/empty
"""

import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

OPERATORS = ("equals", "contains", "greater_than", "less_than", "exists")

_TEMPLATE = re.compile(r"\{\{\s*([\w.]+)\s*\}\}|\{([\w.]+)\}")


def get_nested_value(data: dict[str, Any], field_path: str) -> Any:
    """Get a nested value using dot notation, e.g. "business.rating" or "items.0.name"."""
    if not data or not field_path:
        return None

    current: Any = data
    for part in field_path.split("."):
        if current is None:
            return None
        if part.isdigit() and isinstance(current, (list, tuple)):
            index = int(part)
            current = current[index] if 0 <= index < len(current) else None
        elif isinstance(current, dict):
            current = current.get(part)
        else:
            return None
    return current


def render_template(value: Any, context: dict[str, Any]) -> Any:
    """Substitute {name} and {{name}} placeholders from the variable context.

    Strings, lists and dicts are resolved recursively. Placeholders with no
    matching variable are left untouched. A string that is a single
    placeholder keeps the type of the resolved value.
    """
    if isinstance(value, dict):
        return {k: render_template(v, context) for k, v in value.items()}
    if isinstance(value, list):
        return [render_template(item, context) for item in value]
    if not isinstance(value, str) or "{" not in value:
        return value

    whole = _TEMPLATE.fullmatch(value.strip())
    if whole:
        resolved = get_nested_value(context, whole.group(1) or whole.group(2))
        if resolved is not None:
            return resolved

    def substitute(match: re.Match) -> str:
        resolved = get_nested_value(context, match.group(1) or match.group(2))
        return match.group(0) if resolved is None else str(resolved)

    return _TEMPLATE.sub(substitute, value)


def evaluate_condition(field: str, operator: str, value: Any, context: dict[str, Any]) -> bool:
    """Evaluate `context[field] <operator> value`.

    Raises ValueError for unknown operators; comparison errors between
    incompatible types evaluate to False.
    """
    if operator not in OPERATORS:
        raise ValueError(f"Unknown condition operator: '{operator}'")

    actual = get_nested_value(context, field)
    try:
        result = _apply(operator, actual, value)
    except (TypeError, ValueError) as e:
        logger.warning("Condition %s %s %r failed to evaluate: %s", field, operator, value, e)
        return False

    logger.debug("Condition %s %s %r (actual %r) -> %s", field, operator, value, actual, result)
    return result


def _apply(operator: str, actual: Any, target: Any) -> bool:
    if operator == "exists":
        return actual is not None and actual != "" and actual != [] and actual != {}

    if operator == "equals":
        if _is_number(actual) and _is_number(target):
            return float(actual) == float(target)
        return actual == target or (actual is not None and str(actual) == str(target))

    if operator == "contains":
        if actual is None:
            return False
        if isinstance(actual, str):
            return str(target).lower() in actual.lower()
        return target in actual

    if actual is None or target is None:
        return False

    left, right = float(actual), float(target)
    if operator == "greater_than":
        return left > right
    return left < right


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    if isinstance(value, str):
        try:
            float(value)
        except ValueError:
            return False
        return True
    return False

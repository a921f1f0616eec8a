"""Predicate evaluation for trigger and step conditions.

A predicate maps dotted field paths to either a plain value (equality) or an
operator object such as ``{"gte": 80}``. All fields must hold for the
predicate to pass. The same evaluator serves trigger matching against event
payloads and step gating against execution contexts.
"""

from collections.abc import Mapping, Sequence
from typing import Any, Callable, Dict, List, Optional

from .logging import get_logger

logger = get_logger(__name__)

OPERATORS = ("gte", "lte", "eq", "neq", "in")


def resolve_path(context: Optional[Mapping], path: str) -> Any:
    """
    Look up a dotted path in nested mappings.

    Args:
        context: Mapping to search
        path: Dotted field path such as ``"lead.company.size"``

    Returns:
        The value at the path, or None when any segment is missing
    """
    current: Any = context
    for segment in path.split("."):
        if isinstance(current, Mapping):
            if segment not in current:
                return None
            current = current[segment]
        elif isinstance(current, Sequence) and not isinstance(current, (str, bytes)) and segment.isdigit():
            index = int(segment)
            if index >= len(current):
                return None
            current = current[index]
        else:
            return None
    return current


def is_operator_object(expected: Any) -> bool:
    """Whether a predicate value is an operator object rather than a literal."""
    return isinstance(expected, Mapping) and any(key in OPERATORS for key in expected)


def values_equal(actual: Any, expected: Any) -> bool:
    """Equality that never conflates booleans with numbers."""
    if isinstance(actual, bool) or isinstance(expected, bool):
        return isinstance(actual, bool) and isinstance(expected, bool) and actual == expected
    return actual == expected


def _ordered(compare: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def check(actual: Any, expected: Any) -> bool:
        if actual is None or expected is None:
            return False
        if isinstance(actual, bool) != isinstance(expected, bool):
            return False
        try:
            return bool(compare(actual, expected))
        except TypeError:
            return False
    return check


def _contained(actual: Any, expected: Any) -> bool:
    if not isinstance(expected, (list, tuple, set, frozenset)):
        return False
    return any(values_equal(actual, item) for item in expected)


_OPERATOR_CHECKS: Dict[str, Callable[[Any, Any], bool]] = {
    "gte": _ordered(lambda a, b: a >= b),
    "lte": _ordered(lambda a, b: a <= b),
    "eq": values_equal,
    "neq": lambda a, b: not values_equal(a, b),
    "in": _contained,
}


def _check_field(actual: Any, expected: Any) -> bool:
    if not is_operator_object(expected):
        return values_equal(actual, expected)
    for operator, operand in expected.items():
        check = _OPERATOR_CHECKS.get(operator)
        if check is None or not check(actual, operand):
            return False
    return True


def evaluate(predicate: Optional[Mapping], context: Optional[Mapping]) -> bool:
    """
    Evaluate a predicate against a context.

    Args:
        predicate: Field path to expected value or operator object; None or empty always passes
        context: Event payload or execution context

    Returns:
        True when every field condition holds
    """
    if not predicate:
        return True
    context = context or {}
    for field, expected in predicate.items():
        actual = resolve_path(context, field)
        if not _check_field(actual, expected):
            logger.debug(f"Condition on '{field}' failed: actual={actual!r} expected={expected!r}")
            return False
    return True


def validate_predicate(predicate: Any, location: str = "conditions") -> List[str]:
    """Return structural problems in a predicate; an empty list means it is well formed."""
    if predicate is None:
        return []
    if not isinstance(predicate, Mapping):
        return [f"{location} must be a mapping of field paths to expected values"]

    errors = []
    for field, expected in predicate.items():
        if not isinstance(field, str) or not field:
            errors.append(f"{location} has an invalid field name: {field!r}")
            continue
        if not is_operator_object(expected):
            continue
        unknown = [key for key in expected if key not in OPERATORS]
        if unknown:
            errors.append(
                f"{location}.{field} mixes operators with unknown keys: {', '.join(map(str, unknown))}"
            )
        if "in" in expected and not isinstance(expected["in"], (list, tuple)):
            errors.append(f"{location}.{field}: 'in' operand must be a list")
    return errors

"""Conditional-display evaluation for application fields."""

from __future__ import annotations

from typing import Any

from permitflow.permit_types.models import (
    ConditionalDisplay,
    ConditionOperator,
    FieldDefinition,
)
from permitflow.validation.validators import parse_number


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def evaluate_condition(condition: ConditionalDisplay, actual: Any) -> bool:
    """Compare a payload value against a display rule's trigger value."""
    expected = _as_text(condition.value)
    op = condition.operator

    if op in (ConditionOperator.EQUALS, ConditionOperator.NOT_EQUALS):
        if isinstance(actual, (list, tuple, set)):
            matched = expected in {_as_text(v) for v in actual}
        else:
            matched = _as_text(actual) == expected
        return matched if op == ConditionOperator.EQUALS else not matched

    if op == ConditionOperator.CONTAINS:
        if isinstance(actual, (list, tuple, set)):
            return expected in {_as_text(v) for v in actual}
        return expected in _as_text(actual)

    left = parse_number(actual)
    right = parse_number(condition.value)
    if left is None or right is None:
        return False
    if op == ConditionOperator.GREATER_THAN:
        return left > right
    return left < right


def is_field_displayed(
    field: FieldDefinition,
    payload: dict[str, Any],
    fields_by_name: dict[str, FieldDefinition] | None = None,
) -> bool:
    """Whether the form shows ``field`` for this payload.

    A field whose controlling field is itself hidden is hidden too.
    """
    fields_by_name = fields_by_name or {}
    seen: set[str] = set()
    current: FieldDefinition | None = field
    while current is not None and current.conditional_display is not None:
        if current.name in seen:
            break
        seen.add(current.name)
        cond = current.conditional_display
        if not evaluate_condition(cond, payload.get(cond.depends_on)):
            return False
        current = fields_by_name.get(cond.depends_on)
    return True

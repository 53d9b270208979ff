"""Built-in type validators for application fields."""

from __future__ import annotations

import math
import re
from datetime import datetime
from typing import Any, Callable

from permitflow.permit_types.models import FieldDefinition, FieldType

TypeValidator = Callable[[FieldDefinition, Any], list[str]]

# Registry of type validators: field type -> callable(field, value) -> list of messages.
TYPE_VALIDATORS: dict[FieldType, TypeValidator] = {}

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def register(*field_types: FieldType):
    """Decorator to register a validator for one or more field types."""
    def decorator(fn: TypeValidator) -> TypeValidator:
        for field_type in field_types:
            TYPE_VALIDATORS[field_type] = fn
        return fn
    return decorator


def is_empty(field: FieldDefinition, value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    if value is False and field.type == FieldType.CHECKBOX:
        return True
    return False


def parse_number(value: Any) -> float | None:
    """Parse a numeric payload value. Currency symbols and thousands separators are ignored.

    NaN and infinities are not numbers an applicant can enter, so they
    parse as None, the same as the fee engine treats them.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().replace(",", "").lstrip("$").strip()
    elif not isinstance(value, (int, float)):
        return None
    try:
        result = float(value)
    except (ValueError, OverflowError):
        return None
    return result if math.isfinite(result) else None


def _fmt(bound: float) -> str:
    return str(int(bound)) if float(bound).is_integer() else str(bound)


@register(FieldType.EMAIL)
def validate_email(field: FieldDefinition, value: Any) -> list[str]:
    if not isinstance(value, str) or not _EMAIL_RE.match(value.strip()):
        return [f"{field.label} must be a valid email address"]
    return []


@register(FieldType.PHONE)
def validate_phone(field: FieldDefinition, value: Any) -> list[str]:
    digits = re.sub(r"[\s\-\(\)\+\.]", "", str(value))
    if not digits.isdigit() or len(digits) < 10:
        return [f"{field.label} must be a valid phone number (at least 10 digits)"]
    return []


@register(FieldType.DATE)
def validate_date(field: FieldDefinition, value: Any) -> list[str]:
    try:
        datetime.strptime(str(value).strip(), "%Y-%m-%d")
    except ValueError:
        return [f"{field.label} must be a valid date in YYYY-MM-DD format"]
    return []


@register(FieldType.NUMBER, FieldType.CURRENCY)
def validate_number(field: FieldDefinition, value: Any) -> list[str]:
    num = parse_number(value)
    if num is None:
        return [f"{field.label} must be a valid number"]
    errors: list[str] = []
    rules = field.validation
    if rules is not None:
        if rules.min is not None and num < rules.min:
            errors.append(f"{field.label} must be at least {_fmt(rules.min)}")
        if rules.max is not None and num > rules.max:
            errors.append(f"{field.label} must be no more than {_fmt(rules.max)}")
    return errors


@register(FieldType.TEXT, FieldType.TEXTAREA)
def validate_text(field: FieldDefinition, value: Any) -> list[str]:
    rules = field.validation
    if rules is None:
        return []
    text = str(value)
    errors: list[str] = []
    if rules.min_length is not None and len(text) < rules.min_length:
        errors.append(f"{field.label} must be at least {rules.min_length} characters")
    if rules.max_length is not None and len(text) > rules.max_length:
        errors.append(f"{field.label} must be no more than {rules.max_length} characters")
    if rules.pattern and not re.search(rules.pattern, text):
        errors.append(rules.custom_message or f"{field.label} format is invalid")
    return errors


@register(FieldType.SELECT, FieldType.RADIO)
def validate_choice(field: FieldDefinition, value: Any) -> list[str]:
    if str(value) not in field.option_values:
        return [f"{field.label} must be one of: {', '.join(o.value for o in field.options)}"]
    return []


@register(FieldType.CHECKBOX)
def validate_checkbox(field: FieldDefinition, value: Any) -> list[str]:
    # A bare checkbox is a boolean; with options it is a multi-select.
    if not field.options:
        return []
    selected = value if isinstance(value, (list, tuple, set)) else [value]
    unknown = [str(v) for v in selected if str(v) not in field.option_values]
    if unknown:
        return [f"{field.label} has unknown selections: {', '.join(unknown)}"]
    return []

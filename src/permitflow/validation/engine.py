"""Validation engine for dynamic permit application fields."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel

from permitflow.core.config import ValidationConfig
from permitflow.permit_types.models import FieldDefinition, FieldType, PermitTypeDefinition
from permitflow.validation.conditions import is_field_displayed
from permitflow.validation.validators import TYPE_VALIDATORS, TypeValidator, is_empty


class FieldError(BaseModel):
    """A single problem with one submitted field."""

    field: str
    label: str
    message: str
    code: str = "invalid"


class FieldValidationEngine:
    """Registry-based validator for application payloads.

    Validation is a pure function of the field schema and the payload.
    Fields hidden by their conditional-display rule are still validated
    unless ``ValidationConfig.skip_hidden_fields`` is set.
    """

    def __init__(self, config: ValidationConfig | None = None) -> None:
        self._config = config or ValidationConfig()
        self._validators: dict[FieldType, TypeValidator] = dict(TYPE_VALIDATORS)

    def register(self, field_type: FieldType, fn: TypeValidator) -> None:
        self._validators[field_type] = fn

    def validate_field(self, field: FieldDefinition, value: Any) -> list[FieldError]:
        """Validate a single field value."""
        if is_empty(field, value):
            if field.required:
                return [FieldError(
                    field=field.name,
                    label=field.label,
                    message=f"{field.label} is required",
                    code="required",
                )]
            return []

        fn = self._validators.get(field.type)
        if fn is None:
            return []
        return [
            FieldError(field=field.name, label=field.label, message=msg)
            for msg in fn(field, value)
        ]

    def validate(
        self, field_defs: Sequence[FieldDefinition], payload: dict[str, Any]
    ) -> list[FieldError]:
        """Validate a payload against a field schema. Empty list means valid."""
        by_name = {f.name: f for f in field_defs}
        errors: list[FieldError] = []
        for field in field_defs:
            if self._config.skip_hidden_fields and not is_field_displayed(field, payload, by_name):
                continue
            errors.extend(self.validate_field(field, payload.get(field.name)))
        return errors

    def validate_application(
        self, definition: PermitTypeDefinition, payload: dict[str, Any]
    ) -> list[FieldError]:
        return self.validate(definition.fields, payload)

    def displayed_fields(
        self, field_defs: Sequence[FieldDefinition], payload: dict[str, Any]
    ) -> list[FieldDefinition]:
        """Fields the application form shows for the current payload."""
        by_name = {f.name: f for f in field_defs}
        return [f for f in field_defs if is_field_displayed(f, payload, by_name)]

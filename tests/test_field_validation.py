"""Tests for application field validation and conditional display."""

from __future__ import annotations

import pytest

from conftest import BUILDING_PAYLOAD
from permitflow.core.config import ValidationConfig
from permitflow.permit_types.models import (
    ConditionalDisplay,
    ConditionOperator,
    FieldDefinition,
    FieldType,
)
from permitflow.validation.conditions import evaluate_condition, is_field_displayed
from permitflow.validation.engine import FieldValidationEngine


@pytest.fixture
def engine() -> FieldValidationEngine:
    return FieldValidationEngine(ValidationConfig())


def _field(**kwargs) -> FieldDefinition:
    kwargs.setdefault("name", "value")
    kwargs.setdefault("label", "Value")
    return FieldDefinition(**kwargs)


class TestFieldRules:
    def test_required_missing(self, engine):
        errors = engine.validate_field(_field(label="Project Address", required=True), None)
        assert len(errors) == 1
        assert errors[0].message == "Project Address is required"
        assert errors[0].code == "required"

    def test_blank_string_counts_as_missing(self, engine):
        errors = engine.validate_field(_field(required=True), "   ")
        assert [e.code for e in errors] == ["required"]

    def test_optional_empty_is_valid(self, engine):
        assert engine.validate_field(_field(type=FieldType.EMAIL), "") == []

    def test_zero_is_a_value(self, engine):
        assert engine.validate_field(_field(type=FieldType.NUMBER, required=True), 0) == []

    def test_unchecked_required_checkbox(self, engine):
        errors = engine.validate_field(_field(type=FieldType.CHECKBOX, required=True), False)
        assert [e.code for e in errors] == ["required"]

    def test_email(self, engine):
        field = _field(label="Contact Email", type=FieldType.EMAIL)
        assert engine.validate_field(field, "dana@example.com") == []
        errors = engine.validate_field(field, "not-an-email")
        assert errors[0].message == "Contact Email must be a valid email address"

    def test_phone(self, engine):
        field = _field(type=FieldType.PHONE)
        assert engine.validate_field(field, "(717) 555-0134") == []
        assert len(engine.validate_field(field, "555-0134")) == 1

    def test_date(self, engine):
        field = _field(type=FieldType.DATE)
        assert engine.validate_field(field, "2024-04-01") == []
        assert len(engine.validate_field(field, "04/01/2024")) == 1

    def test_number_bounds(self, engine):
        field = _field(label="Fence Height (ft)", type=FieldType.NUMBER, validation={"min": 1, "max": 8})
        assert engine.validate_field(field, 6) == []
        assert engine.validate_field(field, 9)[0].message == "Fence Height (ft) must be no more than 8"
        assert engine.validate_field(field, 0)[0].message == "Fence Height (ft) must be at least 1"

    def test_number_not_numeric(self, engine):
        errors = engine.validate_field(_field(type=FieldType.NUMBER), "lots")
        assert errors[0].message == "Value must be a valid number"

    def test_currency_accepts_formatted_amounts(self, engine):
        field = _field(type=FieldType.CURRENCY, validation={"min": 0})
        assert engine.validate_field(field, "$80,000.00") == []

    @pytest.mark.parametrize("field_type", [FieldType.NUMBER, FieldType.CURRENCY])
    @pytest.mark.parametrize("value", ["NaN", "nan", "inf", "-Infinity", float("nan"), float("inf")])
    def test_non_finite_values_are_not_numbers(self, engine, field_type, value):
        field = _field(type=field_type, required=True, validation={"min": 0, "max": 1000})
        errors = engine.validate_field(field, value)
        assert [e.message for e in errors] == ["Value must be a valid number"]

    def test_text_length(self, engine):
        field = _field(label="Description", type=FieldType.TEXTAREA, validation={"min_length": 10})
        errors = engine.validate_field(field, "short")
        assert errors[0].message == "Description must be at least 10 characters"

    def test_pattern_uses_custom_message(self, engine):
        field = _field(validation={"pattern": r"^\d{5}$", "custom_message": "Use a 5 digit ZIP code"})
        assert engine.validate_field(field, "17331") == []
        assert engine.validate_field(field, "1733")[0].message == "Use a 5 digit ZIP code"

    def test_pattern_default_message(self, engine):
        field = _field(label="ZIP", validation={"pattern": r"^\d{5}$"})
        assert engine.validate_field(field, "abc")[0].message == "ZIP format is invalid"

    def test_select_must_match_option(self, engine):
        field = _field(label="Type of Work", type=FieldType.SELECT, options=["new", "addition"])
        assert engine.validate_field(field, "new") == []
        errors = engine.validate_field(field, "demolition")
        assert errors[0].message == "Type of Work must be one of: new, addition"

    def test_multi_checkbox_unknown_selection(self, engine):
        field = _field(type=FieldType.CHECKBOX, options=["gas", "electric"])
        assert engine.validate_field(field, ["gas"]) == []
        assert len(engine.validate_field(field, ["gas", "solar"])) == 1

    def test_custom_validator_registration(self, engine):
        engine.register(FieldType.TEXT, lambda field, value: [] if value.isupper() else ["shout"])
        assert engine.validate_field(_field(), "LOUD") == []
        assert engine.validate_field(_field(), "quiet")[0].message == "shout"


class TestApplicationValidation:
    def test_valid_payload_has_no_errors(self, engine, registry):
        definition = registry.get("hanover-building")
        assert engine.validate_application(definition, BUILDING_PAYLOAD) == []

    def test_removing_a_required_field_yields_exactly_one_error(self, engine, registry):
        definition = registry.get("hanover-building")
        for field in definition.fields:
            if not field.required:
                continue
            payload = {k: v for k, v in BUILDING_PAYLOAD.items() if k != field.name}
            errors = engine.validate_application(definition, payload)
            assert len(errors) == 1, field.name
            assert field.label in errors[0].message
            assert errors[0].field == field.name

    def test_nan_project_value_rejected(self, engine, registry):
        definition = registry.get("hanover-building")
        payload = {**BUILDING_PAYLOAD, "project_value": "NaN"}
        errors = engine.validate_application(definition, payload)
        assert [e.field for e in errors] == ["project_value"]


class TestConditionalDisplay:
    @pytest.fixture
    def fields(self) -> list[FieldDefinition]:
        return [
            FieldDefinition(name="work_type", label="Type of Work", type=FieldType.SELECT,
                            options=["new", "addition"], required=True),
            FieldDefinition(
                name="footprint", label="Addition Footprint", type=FieldType.NUMBER, required=True,
                conditional_display=ConditionalDisplay(depends_on="work_type", value="addition"),
            ),
            FieldDefinition(
                name="basement", label="Basement Depth", type=FieldType.NUMBER,
                conditional_display=ConditionalDisplay(
                    depends_on="footprint", value=500, operator=ConditionOperator.GREATER_THAN,
                ),
            ),
        ]

    def test_hidden_fields_validated_by_default(self, engine, fields):
        errors = engine.validate(fields, {"work_type": "new"})
        assert [e.field for e in errors] == ["footprint"]

    def test_hidden_fields_skipped_when_configured(self, fields):
        engine = FieldValidationEngine(ValidationConfig(skip_hidden_fields=True))
        assert engine.validate(fields, {"work_type": "new"}) == []
        errors = engine.validate(fields, {"work_type": "addition"})
        assert [e.field for e in errors] == ["footprint"]

    def test_hidden_parent_hides_child(self, engine, fields):
        by_name = {f.name: f for f in fields}
        payload = {"work_type": "new", "footprint": 900}
        assert not is_field_displayed(by_name["basement"], payload, by_name)
        payload["work_type"] = "addition"
        assert is_field_displayed(by_name["basement"], payload, by_name)

    def test_displayed_fields(self, engine, fields):
        shown = engine.displayed_fields(fields, {"work_type": "addition", "footprint": 100})
        assert [f.name for f in shown] == ["work_type", "footprint"]

    def test_operators(self):
        assert evaluate_condition(ConditionalDisplay(depends_on="x", value=True), True)
        assert evaluate_condition(ConditionalDisplay(depends_on="x", value="true"), True)
        assert evaluate_condition(
            ConditionalDisplay(depends_on="x", value="a", operator=ConditionOperator.NOT_EQUALS), "b"
        )
        assert evaluate_condition(
            ConditionalDisplay(depends_on="x", value="gas", operator=ConditionOperator.CONTAINS),
            ["gas", "electric"],
        )
        assert evaluate_condition(
            ConditionalDisplay(depends_on="x", value=10, operator=ConditionOperator.LESS_THAN), "9"
        )
        assert not evaluate_condition(
            ConditionalDisplay(depends_on="x", value=10, operator=ConditionOperator.GREATER_THAN),
            "not a number",
        )

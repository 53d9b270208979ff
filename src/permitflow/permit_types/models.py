"""Models for per-municipality permit type configuration."""

from __future__ import annotations

import re
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from permitflow.core.types import Department


class FieldType(str, Enum):
    """Supported application field types."""

    TEXT = "text"
    TEXTAREA = "textarea"
    NUMBER = "number"
    CURRENCY = "currency"
    DATE = "date"
    EMAIL = "email"
    PHONE = "phone"
    SELECT = "select"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    FILE = "file"
    ADDRESS = "address"


class ConditionOperator(str, Enum):
    """Comparison used by a conditional-display rule."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"


class FeeRuleType(str, Enum):
    """Kinds of fee schedule components."""

    FIXED = "fixed"
    PERCENTAGE = "percentage"
    PER_UNIT = "per-unit"
    TIERED = "tiered"


class FieldOption(BaseModel):
    """One choice of a select, radio or checkbox field."""

    value: str
    label: str = ""

    @model_validator(mode="after")
    def _default_label(self) -> FieldOption:
        if not self.label:
            self.label = self.value
        return self


class FieldValidation(BaseModel):
    """Declarative constraints on a field value."""

    min: float | None = None
    max: float | None = None
    min_length: int | None = None
    max_length: int | None = None
    pattern: str | None = None
    custom_message: str | None = None

    @model_validator(mode="after")
    def _check_bounds(self) -> FieldValidation:
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError(f"min ({self.min}) is greater than max ({self.max})")
        if (
            self.min_length is not None
            and self.max_length is not None
            and self.min_length > self.max_length
        ):
            raise ValueError(
                f"min_length ({self.min_length}) is greater than max_length ({self.max_length})"
            )
        if self.pattern is not None:
            try:
                re.compile(self.pattern)
            except re.error as exc:
                raise ValueError(f"invalid pattern {self.pattern!r}: {exc}") from exc
        return self


class ConditionalDisplay(BaseModel):
    """Show a field only when another field's value satisfies a comparison."""

    depends_on: str
    value: Any = None
    operator: ConditionOperator = ConditionOperator.EQUALS


class FieldDefinition(BaseModel):
    """Definition of a single dynamic application field."""

    name: str
    label: str
    type: FieldType = FieldType.TEXT
    required: bool = False
    help_text: str = ""
    placeholder: str = ""
    options: list[FieldOption] = Field(default_factory=list)
    validation: FieldValidation | None = None
    conditional_display: ConditionalDisplay | None = None
    order: int = 0

    @field_validator("options", mode="before")
    @classmethod
    def _coerce_options(cls, value: Any) -> Any:
        # Plain strings are accepted as shorthand for {value, label}.
        if isinstance(value, list):
            return [{"value": str(v)} if not isinstance(v, dict) else v for v in value]
        return value

    @model_validator(mode="after")
    def _check_options(self) -> FieldDefinition:
        if self.type in (FieldType.SELECT, FieldType.RADIO) and not self.options:
            raise ValueError(f"field {self.name!r} of type {self.type.value!r} needs options")
        return self

    @property
    def option_values(self) -> set[str]:
        return {o.value for o in self.options}


class FeeTier(BaseModel):
    """One range of a tiered fee. Bounds are inclusive."""

    min: Decimal = Decimal("0")
    max: Decimal | None = None
    amount: Decimal | None = None
    percentage: Decimal | None = None

    @model_validator(mode="after")
    def _check_tier(self) -> FeeTier:
        if (self.amount is None) == (self.percentage is None):
            raise ValueError("a tier needs exactly one of amount or percentage")
        if self.max is not None and self.min > self.max:
            raise ValueError(f"tier min ({self.min}) is greater than max ({self.max})")
        for name in ("min", "amount", "percentage"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValueError(f"tier {name} must not be negative")
        return self

    def contains(self, value: Decimal) -> bool:
        return self.min <= value and (self.max is None or value <= self.max)


class FeeRule(BaseModel):
    """One component of a permit type's fee schedule."""

    name: str
    type: FeeRuleType
    description: str = ""
    amount: Decimal | None = None
    percentage: Decimal | None = None
    base_field: str | None = None
    unit_amount: Decimal | None = None
    unit_field: str | None = None
    tiers: list[FeeTier] = Field(default_factory=list)

    @field_validator("tiers")
    @classmethod
    def _sort_tiers(cls, tiers: list[FeeTier]) -> list[FeeTier]:
        return sorted(tiers, key=lambda t: t.min)

    @model_validator(mode="after")
    def _check_parameters(self) -> FeeRule:
        required: dict[FeeRuleType, tuple[str, ...]] = {
            FeeRuleType.FIXED: ("amount",),
            FeeRuleType.PERCENTAGE: ("percentage", "base_field"),
            FeeRuleType.PER_UNIT: ("unit_amount", "unit_field"),
            FeeRuleType.TIERED: ("base_field",),
        }
        missing = [name for name in required[self.type] if getattr(self, name) in (None, "")]
        if missing:
            raise ValueError(
                f"{self.type.value} fee rule {self.name!r} is missing {', '.join(missing)}"
            )
        if self.type == FeeRuleType.TIERED and not self.tiers:
            raise ValueError(f"tiered fee rule {self.name!r} has no tiers")
        for name in ("amount", "percentage", "unit_amount"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValueError(f"fee rule {self.name!r} has a negative {name}")
        return self


class RequiredInspection(BaseModel):
    """An inspection that must pass before a permit can be completed."""

    type: str
    name: str = ""
    description: str = ""
    required: bool = True
    order: int = 0


class Municipality(BaseModel):
    """The municipality record owned by the portal, read-only to the engine."""

    id: str
    name: str
    state: str = ""
    max_permit_fee: Decimal | None = None

    @model_validator(mode="after")
    def _check_name(self) -> Municipality:
        if not municipality_code(self.name):
            raise ValueError(f"municipality name {self.name!r} contains no letters")
        return self

    @property
    def code(self) -> str:
        return municipality_code(self.name)

    def snapshot(self) -> MunicipalitySnapshot:
        return MunicipalitySnapshot(id=self.id, name=self.name, code=self.code)


class MunicipalitySnapshot(BaseModel):
    """Municipality details frozen onto a permit at creation time."""

    model_config = {"frozen": True}

    id: str
    name: str
    code: str


class PermitTypeSnapshot(BaseModel):
    """Permit type details frozen onto a permit at creation time."""

    model_config = {"frozen": True}

    id: str
    code: str
    name: str
    required_departments: tuple[Department, ...] = ()
    required_inspections: tuple[RequiredInspection, ...] = ()
    expiration_months: int = 6


class PermitTypeDefinition(BaseModel):
    """Municipality-configured schema for one category of permit."""

    id: str
    municipality_id: str
    name: str
    code: str
    category: str = "other"
    description: str = ""
    fields: list[FieldDefinition] = Field(default_factory=list)
    fee_rules: list[FeeRule] = Field(default_factory=list)
    required_departments: list[Department] = Field(default_factory=list)
    required_inspections: list[RequiredInspection] = Field(default_factory=list)
    estimated_processing_days: int = 5
    expiration_months: int = 6
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def _upper_code(cls, code: str) -> str:
        return code.upper()

    @field_validator("fields")
    @classmethod
    def _sort_fields(cls, fields: list[FieldDefinition]) -> list[FieldDefinition]:
        return sorted(fields, key=lambda f: f.order)

    @field_validator("required_inspections")
    @classmethod
    def _sort_inspections(cls, inspections: list[RequiredInspection]) -> list[RequiredInspection]:
        return sorted(inspections, key=lambda i: i.order)

    @field_validator("required_departments")
    @classmethod
    def _dedupe_departments(cls, departments: list[Department]) -> list[Department]:
        return list(dict.fromkeys(departments))

    @model_validator(mode="after")
    def _check_field_graph(self) -> PermitTypeDefinition:
        names: set[str] = set()
        for f in self.fields:
            if f.name in names:
                raise ValueError(f"duplicate field name {f.name!r}")
            names.add(f.name)
        for f in self.fields:
            cond = f.conditional_display
            if cond is None:
                continue
            if cond.depends_on == f.name:
                raise ValueError(f"field {f.name!r} cannot depend on itself")
            if cond.depends_on not in names:
                raise ValueError(
                    f"field {f.name!r} depends on unknown field {cond.depends_on!r}"
                )
        parents = {
            f.name: f.conditional_display.depends_on
            for f in self.fields if f.conditional_display is not None
        }
        for start in parents:
            seen = {start}
            node = parents.get(start)
            while node is not None:
                if node in seen:
                    raise ValueError(f"conditional display of {start!r} forms a cycle")
                seen.add(node)
                node = parents.get(node)
        return self

    def get_field(self, name: str) -> FieldDefinition | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def snapshot(self, default_departments: tuple[Department, ...] = ()) -> PermitTypeSnapshot:
        departments = tuple(self.required_departments) or default_departments
        return PermitTypeSnapshot(
            id=self.id,
            code=self.code,
            name=self.name,
            required_departments=departments,
            required_inspections=tuple(i for i in self.required_inspections if i.required),
            expiration_months=self.expiration_months,
        )


def municipality_code(name: str) -> str:
    """Uppercase the name, keep letters only, truncate to six characters."""
    return re.sub(r"[^A-Z]", "", name.upper())[:6]

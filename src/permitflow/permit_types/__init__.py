"""Permit type definitions: application fields, fee rules, review departments."""

from permitflow.permit_types.models import (
    FeeRule,
    FeeRuleType,
    FieldDefinition,
    FieldType,
    Municipality,
    PermitTypeDefinition,
)
from permitflow.permit_types.registry import PermitTypeRegistry, parse_permit_type

__all__ = [
    "FeeRule",
    "FeeRuleType",
    "FieldDefinition",
    "FieldType",
    "Municipality",
    "PermitTypeDefinition",
    "PermitTypeRegistry",
    "parse_permit_type",
]

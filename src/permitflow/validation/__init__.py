"""Application field validation."""

from permitflow.validation.engine import FieldError, FieldValidationEngine

__all__ = ["FieldError", "FieldValidationEngine"]

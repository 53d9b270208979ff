"""Error hierarchy raised by the workflow engine.

Each error also derives from the builtin exception that callers would
catch for the same concern, so ``except ValueError`` keeps working for
code that predates the typed errors.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from permitflow.validation.engine import FieldError


class PermitflowError(Exception):
    """Base class for all workflow engine errors."""


class ApplicationValidationError(PermitflowError, ValueError):
    """A submitted payload failed field validation. The applicant must resubmit."""

    def __init__(self, errors: list[FieldError]) -> None:
        self.errors = list(errors)
        messages = "; ".join(e.message for e in self.errors)
        super().__init__(f"Application has {len(self.errors)} invalid field(s): {messages}")


class AuthorizationError(PermitflowError, PermissionError):
    """The actor is not allowed to perform the requested action."""


class TransitionError(PermitflowError, ValueError):
    """A status change was requested along an edge the state machine forbids."""

    def __init__(
        self,
        current: str,
        requested: str,
        allowed: Iterable[str],
        reason: str | None = None,
    ) -> None:
        self.current = current
        self.requested = requested
        self.allowed = sorted(str(s) for s in allowed)
        message = reason or (
            f"Cannot move permit from {current!r} to {requested!r}. "
            f"Allowed: {self.allowed}"
        )
        super().__init__(message)


class CompletionBlockedError(TransitionError):
    """The permit cannot be completed while required inspections are outstanding."""

    def __init__(self, current: str, missing: list[str], failed: list[str]) -> None:
        self.missing = missing
        self.failed = failed
        parts = []
        if missing:
            parts.append(f"missing required inspections: {', '.join(missing)}")
        if failed:
            parts.append(f"failed required inspections: {', '.join(failed)}")
        super().__init__(
            current,
            "completed",
            ["completed"],
            reason=f"Cannot complete permit: {'; '.join(parts)}",
        )


class ReviewClosedError(PermitflowError, ValueError):
    """A department review was submitted while the permit is not in review."""


class NumberingAllocationError(PermitflowError, RuntimeError):
    """The permit number counter could not be advanced. Safe to retry."""

    retryable = True


class ConcurrentModificationError(PermitflowError, RuntimeError):
    """A save lost an optimistic concurrency race. Reload and retry."""

    retryable = True


class SchemaConfigurationError(PermitflowError, ValueError):
    """A permit type, field or fee rule definition is malformed.

    Surfaced to municipal staff who maintain the definition, never to
    applicants.
    """

    audience = "municipal-staff"


class PermitNotFoundError(PermitflowError, KeyError):
    """No permit exists for the given id."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Permit not found"


class PermitTypeNotFoundError(PermitflowError, KeyError):
    """No permit type exists for the given id."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Permit type not found"


class MunicipalityNotFoundError(PermitflowError, KeyError):
    """No municipality is registered for the given id."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Municipality not found"

"""Core type definitions shared across all permitflow modules."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class PermitStatus(StrEnum):
    """Lifecycle status of a permit application."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under-review"
    ADDITIONAL_INFO = "additional-info"
    PENDING_CORRECTIONS = "pending-corrections"
    APPROVED = "approved"
    ACTIVE = "active"
    INSPECTION_REQUESTED = "inspection-requested"
    INSPECTIONS = "inspections"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DENIED = "denied"
    EXPIRED = "expired"


class Department(StrEnum):
    """Municipal departments that may be required to review a permit."""

    BUILDING = "building"
    PLANNING = "planning"
    FIRE = "fire"
    HEALTH = "health"
    ENGINEERING = "engineering"
    ZONING = "zoning"
    ENVIRONMENTAL = "environmental"
    FINANCE = "finance"


class ReviewStatus(StrEnum):
    """A single department's verdict on a permit under review."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CHANGES_REQUESTED = "changes-requested"


class InspectionOutcome(StrEnum):
    """Result of a site inspection."""

    SCHEDULED = "scheduled"
    PASSED = "passed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ActorRole(StrEnum):
    """Roles an authenticated actor can hold towards the workflow."""

    APPLICANT = "applicant"
    MUNICIPAL_STAFF = "municipal-staff"
    REVIEWER = "reviewer"
    ADMIN = "admin"
    SYSTEM = "system"


class Actor(BaseModel):
    """Authenticated identity handed to the engine by the session layer."""

    model_config = {"frozen": True}

    user_id: str
    display_name: str = ""
    role: ActorRole
    municipality_id: str | None = None
    department: Department | None = None

    @property
    def is_staff(self) -> bool:
        return self.role in (ActorRole.MUNICIPAL_STAFF, ActorRole.REVIEWER, ActorRole.ADMIN)

    @classmethod
    def system(cls, user_id: str = "system") -> Actor:
        return cls(user_id=user_id, display_name="System", role=ActorRole.SYSTEM)


class AuditEvent(BaseModel):
    """Immutable workflow audit entry."""

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    actor: str
    action: str
    permit_id: str
    permit_number: str | None = None
    from_status: str | None = None
    to_status: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)

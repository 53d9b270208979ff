"""Permit record data models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from permitflow.core.types import Department, InspectionOutcome, PermitStatus, ReviewStatus
from permitflow.fees.models import FeeLineItem
from permitflow.permit_types.models import MunicipalitySnapshot, PermitTypeSnapshot


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApplicantType(StrEnum):
    OWNER = "owner"
    CONTRACTOR = "contractor"
    AGENT = "agent"


class Address(BaseModel):
    street: str
    city: str
    state: str
    zip: str
    parcel_id: str | None = None


class ApplicantInfo(BaseModel):
    """The person applying for the permit."""

    user_id: str | None = None
    type: ApplicantType = ApplicantType.OWNER
    first_name: str
    last_name: str
    email: str
    phone: str | None = None
    address: Address | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class ContractorInfo(BaseModel):
    business_name: str
    license_number: str | None = None
    license_type: str | None = None
    contact_name: str | None = None
    email: str | None = None
    phone: str | None = None


class NoteKind(StrEnum):
    STATUS_CHANGE = "status-change"
    REVIEW = "review"
    REVIEW_RESET = "review-reset"
    INSPECTION = "inspection"
    COMMENT = "comment"


class PermitNote(BaseModel):
    """One immutable entry of a permit's audit trail."""

    model_config = {"frozen": True}

    author_id: str
    author_name: str = ""
    content: str
    kind: NoteKind = NoteKind.COMMENT
    from_status: PermitStatus | None = None
    to_status: PermitStatus | None = None
    is_public: bool = True
    created_at: datetime = Field(default_factory=_utcnow)


class DepartmentReview(BaseModel):
    """One department's verdict on a permit."""

    department: Department
    status: ReviewStatus = ReviewStatus.PENDING
    reviewer_id: str | None = None
    reviewer_name: str | None = None
    notes: str | None = None
    conditions: list[str] = Field(default_factory=list)
    reviewed_at: datetime | None = None
    updated_at: datetime = Field(default_factory=_utcnow)


class InspectionResult(BaseModel):
    """A recorded site inspection."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: str
    outcome: InspectionOutcome
    inspector_id: str | None = None
    notes: str | None = None
    recorded_at: datetime = Field(default_factory=_utcnow)


class InspectionStatusEntry(BaseModel):
    """Latest known state of one required inspection."""

    type: str
    name: str = ""
    result: str = "not-scheduled"
    recorded_at: datetime | None = None
    notes: str | None = None


class DepartmentReviewSummary(BaseModel):
    """Aggregated view of every required department's review."""

    permit_id: str
    status: PermitStatus
    per_department: dict[Department, DepartmentReview] = Field(default_factory=dict)
    pending: list[Department] = Field(default_factory=list)
    approved: list[Department] = Field(default_factory=list)
    rejected: list[Department] = Field(default_factory=list)
    changes_requested: list[Department] = Field(default_factory=list)
    can_approve: bool = False
    reason: str = ""


class PermitRecord(BaseModel):
    """One permit application and everything the workflow knows about it."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    permit_number: str | None = None

    # Live references for joins, plus the values frozen at creation time.
    municipality_id: str
    municipality: MunicipalitySnapshot
    permit_type_id: str
    permit_type: PermitTypeSnapshot

    applicant: ApplicantInfo
    contractor: ContractorInfo | None = None
    application_data: dict[str, Any] = Field(default_factory=dict)

    fees: list[FeeLineItem] = Field(default_factory=list)
    total_fees: Decimal = Decimal("0.00")

    status: PermitStatus = PermitStatus.DRAFT
    application_date: datetime = Field(default_factory=_utcnow)
    submitted_date: datetime | None = None
    approved_date: datetime | None = None
    expiration_date: datetime | None = None
    completion_date: datetime | None = None

    notes: tuple[PermitNote, ...] = ()
    department_reviews: dict[Department, DepartmentReview] = Field(default_factory=dict)
    inspections: list[InspectionResult] = Field(default_factory=list)

    version: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def required_departments(self) -> tuple[Department, ...]:
        return self.permit_type.required_departments

    def add_note(self, note: PermitNote) -> None:
        """Append to the audit trail. Existing notes are never modified."""
        self.notes = (*self.notes, note)

    def set_fees(self, fees: list[FeeLineItem]) -> None:
        self.fees = list(fees)
        self.refresh_totals()

    def refresh_totals(self) -> None:
        self.total_fees = sum((f.amount for f in self.fees), Decimal("0.00"))

    def is_overdue(self, now: datetime | None = None) -> bool:
        if self.expiration_date is None:
            return False
        now = now or _utcnow()
        return now > self.expiration_date and self.status not in (
            PermitStatus.COMPLETED,
            PermitStatus.CANCELLED,
            PermitStatus.DENIED,
            PermitStatus.EXPIRED,
        )

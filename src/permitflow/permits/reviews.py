"""Department review aggregation and auto-approval.

Auto-approval fires only when every required department has approved.
A rejection or a request for changes blocks it, but never denies the
permit automatically: denial stays a staff decision.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone

from permitflow.core.errors import AuthorizationError, ReviewClosedError
from permitflow.core.types import Actor, Department, PermitStatus, ReviewStatus
from permitflow.permits.models import (
    DepartmentReview,
    DepartmentReviewSummary,
    NoteKind,
    PermitNote,
    PermitRecord,
)
from permitflow.permits.state_machine import (
    PAST_REVIEW,
    REVIEW_PHASE,
    StatusTransitionController,
    open_department_reviews,
)

logger = logging.getLogger(__name__)

AUTO_APPROVAL_NOTE = "All department reviews completed"


class DepartmentReviewAggregator:
    """Tracks per-department outcomes on a permit and drives auto-approval.

    Callers are expected to hold the permit's lock across
    ``submit_review`` so the review write, the pending check and the
    approval transition happen as one step.
    """

    def __init__(
        self,
        controller: StatusTransitionController | None = None,
        system_actor: Actor | None = None,
    ) -> None:
        self._controller = controller or StatusTransitionController()
        self._system = system_actor or Actor.system()

    def submit_review(
        self,
        record: PermitRecord,
        department: Department,
        status: ReviewStatus,
        reviewer: Actor,
        notes: str | None = None,
        conditions: Sequence[str] = (),
        now: datetime | None = None,
    ) -> bool:
        """Record one department's verdict. Returns True if the permit was auto-approved.

        Raises:
            AuthorizationError: If the department is not required for this permit.
            ReviewClosedError: If the permit is not in a review phase.
        """
        department = Department(department)
        status = ReviewStatus(status)
        now = now or datetime.now(timezone.utc)

        if department not in record.required_departments:
            raise AuthorizationError(
                f"Department {department.value!r} is not required for permit "
                f"{record.permit_number or record.id}"
            )
        if record.status not in REVIEW_PHASE:
            raise ReviewClosedError(
                f"Permit {record.permit_number or record.id} is {record.status.value}; "
                f"reviews are accepted only while it is in review"
            )

        open_department_reviews(record, now)
        record.department_reviews[department] = DepartmentReview(
            department=department,
            status=status,
            reviewer_id=reviewer.user_id,
            reviewer_name=reviewer.display_name or None,
            notes=notes,
            conditions=list(conditions),
            reviewed_at=now,
            updated_at=now,
        )
        content = f"{department.value.title()} review: {status.value}"
        if notes:
            content = f"{content}: {notes}"
        record.add_note(PermitNote(
            author_id=reviewer.user_id,
            author_name=reviewer.display_name,
            content=content,
            kind=NoteKind.REVIEW,
            created_at=now,
        ))
        record.updated_at = now
        logger.info(
            "Department %s marked permit %s as %s",
            department, record.permit_number or record.id, status,
        )
        return self.check_auto_approval(record, now=now)

    def check_auto_approval(self, record: PermitRecord, now: datetime | None = None) -> bool:
        """Approve the permit if it is under review and no department is outstanding."""
        if record.status != PermitStatus.UNDER_REVIEW:
            return False
        summary = self.summary(record)
        if summary.rejected or summary.changes_requested:
            logger.warning(
                "Auto-approval of permit %s blocked: %s",
                record.permit_number or record.id, summary.reason,
            )
            return False
        if summary.pending:
            return False
        self._controller.transition(
            record, PermitStatus.APPROVED, self._system, notes=AUTO_APPROVAL_NOTE, now=now,
        )
        return True

    def summary(self, record: PermitRecord) -> DepartmentReviewSummary:
        per_department: dict[Department, DepartmentReview] = {}
        for department in record.required_departments:
            per_department[department] = record.department_reviews.get(
                department, DepartmentReview(department=department)
            )

        def with_status(status: ReviewStatus) -> list[Department]:
            return [d for d, r in per_department.items() if r.status == status]

        pending = with_status(ReviewStatus.PENDING)
        approved = with_status(ReviewStatus.APPROVED)
        rejected = with_status(ReviewStatus.REJECTED)
        changes = with_status(ReviewStatus.CHANGES_REQUESTED)

        if not per_department:
            reason = "No departments are required to review this permit"
        elif rejected:
            reason = f"Rejected by: {', '.join(d.value for d in rejected)}"
        elif changes:
            reason = f"Changes requested by: {', '.join(d.value for d in changes)}"
        elif pending:
            reason = f"Pending review by: {', '.join(d.value for d in pending)}"
        else:
            reason = "All departments have approved"

        return DepartmentReviewSummary(
            permit_id=record.id,
            status=record.status,
            per_department=per_department,
            pending=pending,
            approved=approved,
            rejected=rejected,
            changes_requested=changes,
            can_approve=bool(per_department) and len(approved) == len(per_department),
            reason=reason,
        )

    def reset_reviews(
        self,
        record: PermitRecord,
        departments: Iterable[Department] | None,
        notes: str | None,
        actor: Actor,
        now: datetime | None = None,
    ) -> PermitRecord:
        """Send the selected departments' reviews back to pending.

        With ``departments`` None, every required department is reset; an
        empty selection changes nothing. A permit that had moved past review
        is forced back to under-review.
        """
        now = now or datetime.now(timezone.utc)
        selected = (
            list(record.required_departments)
            if departments is None
            else [Department(d) for d in departments]
        )
        unknown = [d.value for d in selected if d not in record.required_departments]
        if unknown:
            raise AuthorizationError(
                f"Departments {unknown} are not required for permit "
                f"{record.permit_number or record.id}"
            )

        if not selected:
            return record

        if record.status in PAST_REVIEW:
            self._controller.rewind_to_review(record, actor, notes=notes, now=now)
        elif record.status != PermitStatus.UNDER_REVIEW:
            raise ReviewClosedError(
                f"Permit {record.permit_number or record.id} is {record.status.value}; "
                f"its reviews cannot be reset"
            )

        for department in selected:
            record.department_reviews[department] = DepartmentReview(
                department=department, updated_at=now,
            )
        content = f"Reviews reset to pending: {', '.join(d.value for d in selected)}"
        if notes:
            content = f"{content}: {notes}"
        record.add_note(PermitNote(
            author_id=actor.user_id,
            author_name=actor.display_name,
            content=content,
            kind=NoteKind.REVIEW_RESET,
            created_at=now,
        ))
        record.updated_at = now
        logger.info("Reset %s review(s) on permit %s", len(selected), record.permit_number or record.id)
        return record

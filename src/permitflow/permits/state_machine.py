"""Permit status state machine.

The adjacency table below is the only authority on which status changes
are legal. Every non-terminal status may additionally move to
``cancelled``. Terminal statuses have no outgoing edges.
"""

from __future__ import annotations

import calendar
import logging
from datetime import datetime, timezone

from permitflow.core.errors import CompletionBlockedError, TransitionError
from permitflow.core.types import Actor, InspectionOutcome, PermitStatus
from permitflow.permits.models import DepartmentReview, NoteKind, PermitNote, PermitRecord

logger = logging.getLogger(__name__)

S = PermitStatus

TERMINAL_STATES: frozenset[PermitStatus] = frozenset({
    S.COMPLETED, S.CANCELLED, S.DENIED, S.EXPIRED,
})

_EDGES: dict[PermitStatus, frozenset[PermitStatus]] = {
    S.DRAFT: frozenset({S.SUBMITTED}),
    S.SUBMITTED: frozenset({S.UNDER_REVIEW, S.ADDITIONAL_INFO}),
    S.UNDER_REVIEW: frozenset({S.APPROVED, S.DENIED, S.ADDITIONAL_INFO, S.PENDING_CORRECTIONS}),
    S.ADDITIONAL_INFO: frozenset({S.SUBMITTED, S.UNDER_REVIEW}),
    S.PENDING_CORRECTIONS: frozenset({S.UNDER_REVIEW}),
    S.APPROVED: frozenset({S.ACTIVE, S.INSPECTION_REQUESTED, S.INSPECTIONS, S.EXPIRED}),
    S.ACTIVE: frozenset({S.INSPECTION_REQUESTED, S.INSPECTIONS, S.EXPIRED}),
    S.INSPECTION_REQUESTED: frozenset({S.INSPECTIONS, S.ACTIVE, S.EXPIRED}),
    S.INSPECTIONS: frozenset({S.COMPLETED, S.ACTIVE, S.INSPECTION_REQUESTED, S.EXPIRED}),
}

ALLOWED_TRANSITIONS: dict[PermitStatus, frozenset[PermitStatus]] = {
    status: (
        frozenset()
        if status in TERMINAL_STATES
        else _EDGES.get(status, frozenset()) | {S.CANCELLED}
    )
    for status in PermitStatus
}

# Statuses in which department reviews may be recorded.
REVIEW_PHASE: frozenset[PermitStatus] = frozenset({
    S.UNDER_REVIEW, S.ADDITIONAL_INFO, S.PENDING_CORRECTIONS,
})

# Statuses a review reset rewinds to under-review.
PAST_REVIEW: frozenset[PermitStatus] = frozenset({
    S.ADDITIONAL_INFO, S.PENDING_CORRECTIONS, S.APPROVED, S.ACTIVE,
    S.INSPECTION_REQUESTED, S.INSPECTIONS,
})

# Statuses in which the permit is issued and inspections may be recorded.
ISSUED: frozenset[PermitStatus] = frozenset({
    S.APPROVED, S.ACTIVE, S.INSPECTION_REQUESTED, S.INSPECTIONS,
})


def allowed_transitions(status: PermitStatus) -> frozenset[PermitStatus]:
    return ALLOWED_TRANSITIONS[status]


def can_transition(current: PermitStatus, target: PermitStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def add_months(moment: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the end of the target month."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def open_department_reviews(record: PermitRecord, now: datetime) -> None:
    """Create a pending review for every snapshot department that has none."""
    for department in record.required_departments:
        if department not in record.department_reviews:
            record.department_reviews[department] = DepartmentReview(
                department=department, updated_at=now,
            )


def completion_blockers(record: PermitRecord) -> tuple[list[str], list[str]]:
    """Required inspections that have not passed, split into (missing, failed).

    The latest recorded result for each inspection type is the one that counts.
    """
    latest: dict[str, InspectionOutcome] = {}
    for result in sorted(record.inspections, key=lambda r: r.recorded_at):
        latest[result.type] = result.outcome

    missing: list[str] = []
    failed: list[str] = []
    for inspection in record.permit_type.required_inspections:
        outcome = latest.get(inspection.type)
        if outcome == InspectionOutcome.PASSED:
            continue
        if outcome == InspectionOutcome.FAILED:
            failed.append(inspection.type)
        else:
            missing.append(inspection.type)
    return missing, failed


class StatusTransitionController:
    """The single authority that changes a permit's status."""

    def transition(
        self,
        record: PermitRecord,
        new_status: PermitStatus,
        actor: Actor,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> PermitRecord:
        """Move ``record`` to ``new_status`` along a legal edge.

        Raises:
            TransitionError: If the edge is not in the adjacency table.
            CompletionBlockedError: If completing with required inspections outstanding.
        """
        new_status = PermitStatus(new_status)
        current = record.status
        if not can_transition(current, new_status):
            logger.warning(
                "Rejected transition of permit %s from %s to %s by %s",
                record.id, current, new_status, actor.user_id,
            )
            raise TransitionError(current, new_status, ALLOWED_TRANSITIONS[current])

        if new_status == S.COMPLETED:
            missing, failed = completion_blockers(record)
            if missing or failed:
                raise CompletionBlockedError(current, missing, failed)

        self._apply(record, new_status, actor, notes, now or datetime.now(timezone.utc))
        return record

    def rewind_to_review(
        self,
        record: PermitRecord,
        actor: Actor,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> PermitRecord:
        """Staff override that sends an in-flight permit back to under-review.

        The approval is revoked, so the approval and expiration dates are
        cleared and stamped afresh on the next approval.
        """
        current = record.status
        if current in TERMINAL_STATES:
            raise TransitionError(
                current, S.UNDER_REVIEW, (),
                reason=f"Permit {record.id} is {current.value} and cannot return to review",
            )
        if current == S.UNDER_REVIEW:
            return record
        record.approved_date = None
        record.expiration_date = None
        self._apply(record, S.UNDER_REVIEW, actor, notes, now or datetime.now(timezone.utc))
        return record

    def _apply(
        self,
        record: PermitRecord,
        new_status: PermitStatus,
        actor: Actor,
        notes: str | None,
        now: datetime,
    ) -> None:
        previous = record.status
        record.status = new_status

        if new_status == S.SUBMITTED and record.submitted_date is None:
            record.submitted_date = now
        elif new_status == S.APPROVED and record.approved_date is None:
            record.approved_date = now
            record.expiration_date = add_months(now, record.permit_type.expiration_months)
        elif new_status == S.COMPLETED and record.completion_date is None:
            record.completion_date = now
        elif new_status == S.UNDER_REVIEW:
            open_department_reviews(record, now)

        content = f"Status changed to {new_status.value}"
        if notes:
            content = f"{content}: {notes}"
        record.add_note(PermitNote(
            author_id=actor.user_id,
            author_name=actor.display_name,
            content=content,
            kind=NoteKind.STATUS_CHANGE,
            from_status=previous,
            to_status=new_status,
            created_at=now,
        ))
        record.updated_at = now
        logger.info(
            "Permit %s moved from %s to %s by %s",
            record.permit_number or record.id, previous, new_status, actor.user_id,
        )

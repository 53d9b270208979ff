"""Authorization checks for workflow actions.

All checks run before any state is touched and raise ``AuthorizationError``
on failure.
"""

from __future__ import annotations

from permitflow.core.errors import AuthorizationError
from permitflow.core.types import Actor, ActorRole, Department, PermitStatus
from permitflow.permits.models import PermitRecord

# Statuses an applicant may request on their own permit.
_APPLICANT_TRANSITIONS = frozenset({PermitStatus.SUBMITTED, PermitStatus.CANCELLED})


def ensure_municipality_access(actor: Actor, municipality_id: str) -> None:
    """Staff and reviewers may only act within their own municipality."""
    if actor.role in (ActorRole.SYSTEM, ActorRole.ADMIN):
        return
    if actor.role == ActorRole.APPLICANT:
        return
    if actor.municipality_id != municipality_id:
        raise AuthorizationError(
            f"{actor.user_id} is not permitted to act for municipality {municipality_id!r}"
        )


def ensure_applicant_owns(actor: Actor, record: PermitRecord) -> None:
    if record.applicant.user_id is None or record.applicant.user_id != actor.user_id:
        raise AuthorizationError(
            f"{actor.user_id} is not the applicant on permit {record.permit_number or record.id}"
        )


def ensure_can_submit(actor: Actor, municipality_id: str, applicant_user_id: str | None) -> None:
    if actor.role == ActorRole.APPLICANT:
        if applicant_user_id is not None and applicant_user_id != actor.user_id:
            raise AuthorizationError(f"{actor.user_id} cannot apply on behalf of another user")
        return
    if actor.role == ActorRole.REVIEWER:
        raise AuthorizationError("Reviewers cannot file permit applications")
    ensure_municipality_access(actor, municipality_id)


def ensure_can_transition(actor: Actor, record: PermitRecord, new_status: PermitStatus) -> None:
    if actor.role == ActorRole.APPLICANT:
        ensure_applicant_owns(actor, record)
        if new_status not in _APPLICANT_TRANSITIONS:
            raise AuthorizationError(
                f"Applicants may not move a permit to {PermitStatus(new_status).value!r}"
            )
        return
    if actor.role == ActorRole.REVIEWER:
        raise AuthorizationError("Reviewers record department reviews; they cannot change status")
    ensure_municipality_access(actor, record.municipality_id)


def ensure_staff(actor: Actor, record: PermitRecord, action: str) -> None:
    if actor.role not in (ActorRole.MUNICIPAL_STAFF, ActorRole.ADMIN, ActorRole.SYSTEM):
        raise AuthorizationError(f"Only municipal staff may {action}")
    ensure_municipality_access(actor, record.municipality_id)


def ensure_can_review(actor: Actor, record: PermitRecord, department: Department) -> None:
    """A reviewer must be assigned to a department the permit actually requires."""
    if actor.role == ActorRole.APPLICANT:
        raise AuthorizationError("Applicants cannot review permits")
    ensure_municipality_access(actor, record.municipality_id)
    if department not in record.required_departments:
        raise AuthorizationError(
            f"Department {Department(department).value!r} is not required for permit "
            f"{record.permit_number or record.id}"
        )
    if actor.role in (ActorRole.ADMIN, ActorRole.SYSTEM):
        return
    if actor.department is None:
        if actor.role == ActorRole.REVIEWER:
            raise AuthorizationError(f"Reviewer {actor.user_id} is not assigned to a department")
        return
    if actor.department != department:
        raise AuthorizationError(
            f"{actor.user_id} reviews for {actor.department.value!r}, "
            f"not {Department(department).value!r}"
        )

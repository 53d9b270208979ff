"""Permit workflow service.

Entry point for the portal layer. Every operation that changes a permit
loads it under the permit's lock, mutates it through the state machine or
the review aggregator, and saves it back with a version check.

What a permit is reviewed against is frozen on the record when it is
created: the municipality, the required departments and inspections, and
the expiration period. What the applicant fills in is not. Application
data is validated and priced against the live permit type definition,
both at first submission and whenever a draft or a permit returned for
more information is resubmitted, so staff edits to fields or fee rules
apply to the next submission while the review routing stays as it was.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime, timezone
from typing import Any

from permitflow.core.config import Settings
from permitflow.core.errors import (
    ApplicationValidationError,
    PermitNotFoundError,
    PermitTypeNotFoundError,
    TransitionError,
)
from permitflow.core.types import (
    Actor,
    ActorRole,
    AuditEvent,
    Department,
    InspectionOutcome,
    PermitStatus,
    ReviewStatus,
)
from permitflow.fees.engine import FeeEngine
from permitflow.governance.audit import WorkflowAuditLog
from permitflow.governance.authorization import (
    ensure_applicant_owns,
    ensure_can_review,
    ensure_can_submit,
    ensure_can_transition,
    ensure_staff,
)
from permitflow.permit_types.models import PermitTypeDefinition
from permitflow.permit_types.registry import PermitTypeRegistry
from permitflow.permits.models import (
    ApplicantInfo,
    ContractorInfo,
    DepartmentReviewSummary,
    InspectionResult,
    InspectionStatusEntry,
    NoteKind,
    PermitNote,
    PermitRecord,
)
from permitflow.permits.reviews import DepartmentReviewAggregator
from permitflow.permits.state_machine import ISSUED, StatusTransitionController
from permitflow.permits.store import PermitStore
from permitflow.validation.engine import FieldValidationEngine

logger = logging.getLogger(__name__)

# Statuses in which the applicant may still edit the application data.
_EDITABLE = frozenset({PermitStatus.DRAFT, PermitStatus.ADDITIONAL_INFO})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PermitWorkflowService:
    """Application intake, status changes, department reviews and inspections.

    Args:
        registry: Municipalities and permit type definitions.
        store: Permit persistence. Defaults to an in-memory PermitStore.
        validation_engine: Field validation. Defaults to one built from settings.
        fee_engine: Fee computation.
        controller: The status state machine.
        aggregator: Department review aggregation.
        audit_log: Optional hash-chained audit log for workflow events.
        settings: Root settings. Defaults to Settings(), read from the environment.
        clock: Returns the current time. Overridable in tests.
    """

    def __init__(
        self,
        registry: PermitTypeRegistry,
        store: PermitStore | None = None,
        validation_engine: FieldValidationEngine | None = None,
        fee_engine: FeeEngine | None = None,
        controller: StatusTransitionController | None = None,
        aggregator: DepartmentReviewAggregator | None = None,
        audit_log: WorkflowAuditLog | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self._registry = registry
        self._store = store or PermitStore()
        self._validation = validation_engine or FieldValidationEngine(self._settings.validation)
        self._fees = fee_engine or FeeEngine()
        self._controller = controller or StatusTransitionController()
        self._system = Actor.system(self._settings.workflow.system_actor_id)
        self._aggregator = aggregator or DepartmentReviewAggregator(
            self._controller, system_actor=self._system,
        )
        self._audit = audit_log
        self._clock = clock or _utcnow

    @property
    def store(self) -> PermitStore:
        return self._store

    # -- Intake --

    def submit(
        self,
        permit_type_id: str,
        applicant: ApplicantInfo,
        payload: dict[str, Any],
        actor: Actor | None = None,
        contractor: ContractorInfo | None = None,
    ) -> PermitRecord:
        """Validate, price and file a new application.

        Returns:
            The stored record in ``submitted`` status, with its permit number.

        Raises:
            ApplicationValidationError: If any field fails validation.
            PermitTypeNotFoundError: If the permit type is unknown or inactive.
        """
        definition = self._active_definition(permit_type_id)
        actor = actor or self._applicant_actor(applicant)
        ensure_can_submit(actor, definition.municipality_id, applicant.user_id)

        errors = self._validation.validate_application(definition, payload)
        if errors:
            logger.warning(
                "Rejected application for %s: %s invalid field(s)", permit_type_id, len(errors)
            )
            raise ApplicationValidationError(errors)

        now = self._clock()
        record = self._new_record(definition, applicant, payload, contractor, now)
        self._controller.transition(record, PermitStatus.SUBMITTED, actor, now=now)
        stored = self._store.save_permit(record)
        self._log_audit(actor, "permit_submitted", stored, None, PermitStatus.SUBMITTED, {
            "permit_type_id": permit_type_id,
            "total_fees": str(stored.total_fees),
        })
        return stored

    def save_draft(
        self,
        permit_type_id: str,
        applicant: ApplicantInfo,
        payload: dict[str, Any],
        actor: Actor | None = None,
        contractor: ContractorInfo | None = None,
    ) -> PermitRecord:
        """Store an incomplete application without validating it.

        The draft is priced from whatever it holds so far and receives its
        permit number on this first save.
        """
        definition = self._active_definition(permit_type_id)
        actor = actor or self._applicant_actor(applicant)
        ensure_can_submit(actor, definition.municipality_id, applicant.user_id)

        record = self._new_record(definition, applicant, payload, contractor, self._clock())
        stored = self._store.save_permit(record)
        self._log_audit(actor, "draft_saved", stored, None, PermitStatus.DRAFT, {
            "permit_type_id": permit_type_id,
        })
        return stored

    def update_application(
        self, permit_id: str, payload: dict[str, Any], actor: Actor
    ) -> PermitRecord:
        """Replace the application data of a draft or a permit awaiting more information.

        The new data is priced with the live fee rules; it is validated on
        resubmission.
        """
        with self._store.permit_lock(permit_id):
            record = self._load(permit_id)
            if actor.role == ActorRole.APPLICANT:
                ensure_applicant_owns(actor, record)
            else:
                ensure_staff(actor, record, "edit applications")
            if record.status not in _EDITABLE:
                raise TransitionError(
                    record.status, record.status, (),
                    reason=(
                        f"Permit {record.permit_number} is {record.status.value}; "
                        f"its application can no longer be edited"
                    ),
                )
            now = self._clock()
            record.application_data = dict(payload)
            self._price(record, self._registry.get(record.permit_type_id))
            record.updated_at = now
            stored = self._store.save_permit(record)
        self._log_audit(actor, "application_updated", stored, None, None, {
            "fields": sorted(payload),
        })
        return stored

    # -- Status --

    def transition(
        self,
        permit_id: str,
        new_status: PermitStatus,
        notes: str | None,
        actor: Actor,
    ) -> PermitRecord:
        """Move a permit to ``new_status``.

        Resubmitting a draft or a permit returned for more information
        re-validates the application data against the current permit type
        and re-prices it. Required departments and inspections keep the
        values snapshotted at creation.

        Raises:
            AuthorizationError: If the actor may not make this change.
            TransitionError: If the state machine forbids the edge.
            ApplicationValidationError: If a resubmission fails validation.
        """
        new_status = PermitStatus(new_status)
        with self._store.permit_lock(permit_id):
            record = self._load(permit_id)
            ensure_can_transition(actor, record, new_status)
            previous = record.status
            now = self._clock()

            if new_status == PermitStatus.SUBMITTED and previous in _EDITABLE:
                definition = self._registry.get(record.permit_type_id)
                errors = self._validation.validate_application(definition, record.application_data)
                if errors:
                    logger.warning(
                        "Resubmission of permit %s failed validation: %s invalid field(s)",
                        record.permit_number, len(errors),
                    )
                    raise ApplicationValidationError(errors)
                self._price(record, definition)

            self._controller.transition(record, new_status, actor, notes=notes, now=now)
            approved = False
            if new_status == PermitStatus.UNDER_REVIEW:
                approved = self._aggregator.check_auto_approval(record, now=now)
            stored = self._store.save_permit(record)

        self._log_audit(actor, "status_changed", stored, previous, new_status, {"notes": notes})
        if approved:
            self._log_audit(
                self._system, "auto_approved", stored, PermitStatus.UNDER_REVIEW,
                PermitStatus.APPROVED, {},
            )
        return stored

    # -- Department reviews --

    def submit_department_review(
        self,
        permit_id: str,
        department: Department,
        status: ReviewStatus,
        notes: str | None,
        actor: Actor,
        conditions: Sequence[str] = (),
    ) -> None:
        """Record a department's verdict and approve the permit if it was the last one.

        The review write, the outstanding-review check and the approval
        transition happen under the permit's lock, so when the final
        departments report concurrently exactly one of them approves.
        """
        department = Department(department)
        status = ReviewStatus(status)
        with self._store.permit_lock(permit_id):
            record = self._load(permit_id)
            ensure_can_review(actor, record, department)
            now = self._clock()
            approved = self._aggregator.submit_review(
                record, department, status, actor,
                notes=notes, conditions=conditions, now=now,
            )
            stored = self._store.save_permit(record)

        self._log_audit(actor, "department_review", stored, None, None, {
            "department": department.value,
            "status": status.value,
            "notes": notes,
        })
        if approved:
            self._log_audit(
                self._system, "auto_approved", stored, PermitStatus.UNDER_REVIEW,
                PermitStatus.APPROVED, {},
            )

    def get_department_review_summary(self, permit_id: str) -> DepartmentReviewSummary:
        return self._aggregator.summary(self._load(permit_id))

    def reset_reviews(
        self,
        permit_id: str,
        departments: Iterable[Department] | None,
        notes: str | None,
        actor: Actor,
    ) -> PermitRecord:
        """Return the selected departments' reviews to pending. Staff only.

        ``departments=None`` resets every required department. An empty
        selection is accepted and leaves the permit untouched.
        """
        if departments is not None:
            departments = [Department(d) for d in departments]
        with self._store.permit_lock(permit_id):
            record = self._load(permit_id)
            ensure_staff(actor, record, "reset department reviews")
            if departments == []:
                return record
            previous = record.status
            self._aggregator.reset_reviews(record, departments, notes, actor, now=self._clock())
            stored = self._store.save_permit(record)

        reset = departments if departments is not None else stored.required_departments
        self._log_audit(actor, "reviews_reset", stored, previous, stored.status, {
            "departments": [d.value for d in reset],
            "notes": notes,
        })
        return stored

    # -- Inspections --

    def record_inspection(
        self,
        permit_id: str,
        inspection_type: str,
        result: InspectionOutcome,
        notes: str | None,
        actor: Actor,
    ) -> PermitRecord:
        """Record an inspection on an issued permit.

        Scheduling an inspection on an approved or active permit moves it to
        ``inspection-requested``. A pass or fail moves it to ``inspections``.
        """
        result = InspectionOutcome(result)
        with self._store.permit_lock(permit_id):
            record = self._load(permit_id)
            ensure_staff(actor, record, "record inspections")
            if record.status not in ISSUED:
                raise TransitionError(
                    record.status, PermitStatus.INSPECTIONS, (),
                    reason=(
                        f"Permit {record.permit_number} is {record.status.value}; "
                        f"inspections are recorded only on issued permits"
                    ),
                )
            if not inspection_type:
                raise ValueError("inspection_type is required")

            now = self._clock()
            record.inspections.append(InspectionResult(
                type=inspection_type,
                outcome=result,
                inspector_id=actor.user_id,
                notes=notes,
                recorded_at=now,
            ))
            content = f"Inspection {inspection_type}: {result.value}"
            if notes:
                content = f"{content}: {notes}"
            record.add_note(PermitNote(
                author_id=actor.user_id,
                author_name=actor.display_name,
                content=content,
                kind=NoteKind.INSPECTION,
                created_at=now,
            ))

            target = None
            if result == InspectionOutcome.SCHEDULED and record.status in (
                PermitStatus.APPROVED, PermitStatus.ACTIVE,
            ):
                target = PermitStatus.INSPECTION_REQUESTED
            elif result in (InspectionOutcome.PASSED, InspectionOutcome.FAILED) and (
                record.status != PermitStatus.INSPECTIONS
            ):
                target = PermitStatus.INSPECTIONS
            if target is not None:
                self._controller.transition(record, target, actor, now=now)
            record.updated_at = now
            stored = self._store.save_permit(record)

        self._log_audit(actor, "inspection_recorded", stored, None, None, {
            "inspection_type": inspection_type,
            "result": result.value,
        })
        return stored

    def inspection_status(self, permit_id: str) -> list[InspectionStatusEntry]:
        """Each required inspection with its most recent result."""
        record = self._load(permit_id)
        latest: dict[str, InspectionResult] = {}
        for inspection in sorted(record.inspections, key=lambda i: i.recorded_at):
            latest[inspection.type] = inspection

        entries = []
        for required in record.permit_type.required_inspections:
            last = latest.get(required.type)
            entries.append(InspectionStatusEntry(
                type=required.type,
                name=required.name,
                result=last.outcome.value if last else "not-scheduled",
                recorded_at=last.recorded_at if last else None,
                notes=last.notes if last else None,
            ))
        return entries

    # -- Expiration --

    def expire_overdue(self, now: datetime | None = None) -> list[PermitRecord]:
        """Expire every issued permit whose expiration date has passed."""
        now = now or self._clock()
        expired: list[PermitRecord] = []
        for candidate in self._store.list_permits():
            if candidate.status not in ISSUED or not candidate.is_overdue(now):
                continue
            with self._store.permit_lock(candidate.id):
                record = self._load(candidate.id)
                if record.status not in ISSUED or not record.is_overdue(now):
                    continue
                previous = record.status
                self._controller.transition(
                    record, PermitStatus.EXPIRED, self._system,
                    notes="Permit expiration date has passed", now=now,
                )
                stored = self._store.save_permit(record)
            self._log_audit(self._system, "permit_expired", stored, previous, PermitStatus.EXPIRED, {
                "expiration_date": stored.expiration_date.isoformat() if stored.expiration_date else None,
            })
            expired.append(stored)
        if expired:
            logger.info("Expired %s overdue permit(s)", len(expired))
        return expired

    # -- Queries --

    def get_permit(self, permit_id: str) -> PermitRecord:
        return self._load(permit_id)

    def get_permit_by_number(self, permit_number: str) -> PermitRecord:
        record = self._store.get_by_number(permit_number)
        if record is None:
            raise PermitNotFoundError(f"Permit {permit_number!r} not found")
        return record

    def list_permits(
        self,
        municipality_id: str | None = None,
        status: PermitStatus | None = None,
        applicant_user_id: str | None = None,
    ) -> list[PermitRecord]:
        records = self._store.list_permits(municipality_id=municipality_id, status=status)
        if applicant_user_id is not None:
            records = [r for r in records if r.applicant.user_id == applicant_user_id]
        return sorted(records, key=lambda r: r.created_at)

    # -- Internals --

    def _load(self, permit_id: str) -> PermitRecord:
        record = self._store.get_permit(permit_id)
        if record is None:
            raise PermitNotFoundError(f"Permit {permit_id!r} not found")
        return record

    def _active_definition(self, permit_type_id: str) -> PermitTypeDefinition:
        definition = self._registry.get(permit_type_id)
        if not definition.is_active:
            raise PermitTypeNotFoundError(
                f"Permit type {permit_type_id!r} is not accepting applications"
            )
        return definition

    def _applicant_actor(self, applicant: ApplicantInfo) -> Actor:
        return Actor(
            user_id=applicant.user_id or applicant.email,
            display_name=applicant.full_name,
            role=ActorRole.APPLICANT,
        )

    def _new_record(
        self,
        definition: PermitTypeDefinition,
        applicant: ApplicantInfo,
        payload: dict[str, Any],
        contractor: ContractorInfo | None,
        now: datetime,
    ) -> PermitRecord:
        municipality = self._registry.get_municipality(definition.municipality_id)
        default_department = Department(self._settings.workflow.default_review_department)
        record = PermitRecord(
            municipality_id=municipality.id,
            municipality=municipality.snapshot(),
            permit_type_id=definition.id,
            permit_type=definition.snapshot(default_departments=(default_department,)),
            applicant=applicant,
            contractor=contractor,
            application_data=dict(payload),
            application_date=now,
            created_at=now,
            updated_at=now,
        )
        self._price(record, definition)
        return record

    def _price(self, record: PermitRecord, definition: PermitTypeDefinition) -> None:
        municipality = self._registry.get_municipality(record.municipality_id)
        estimate = self._fees.compute_for_permit_type(definition, record.application_data)
        estimate = estimate.apply_cap(municipality.max_permit_fee)
        record.set_fees(estimate.to_permit_fees())

    def _log_audit(
        self,
        actor: Actor,
        action: str,
        record: PermitRecord,
        from_status: PermitStatus | None,
        to_status: PermitStatus | None,
        details: dict[str, Any],
    ) -> None:
        if self._audit is None:
            return
        event = AuditEvent(
            actor=actor.user_id,
            action=action,
            permit_id=record.id,
            permit_number=record.permit_number,
            from_status=from_status.value if from_status else None,
            to_status=to_status.value if to_status else None,
            details=details,
        )
        self._audit.log(event)


def create_workflow_service(
    settings: Settings | None = None,
    registry: PermitTypeRegistry | None = None,
    store: PermitStore | None = None,
) -> PermitWorkflowService:
    """Wire a service from settings: YAML permit types and, if enabled, the audit log."""
    settings = settings or Settings()
    registry = registry or PermitTypeRegistry(settings.permit_types.definitions_dir)
    audit_log = WorkflowAuditLog(settings.audit) if settings.audit.enabled else None
    return PermitWorkflowService(
        registry=registry,
        store=store,
        audit_log=audit_log,
        settings=settings,
    )

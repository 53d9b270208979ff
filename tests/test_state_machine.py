"""Tests for the permit status state machine."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from conftest import NOW
from permitflow.core.errors import CompletionBlockedError, TransitionError
from permitflow.core.types import Actor, ActorRole, Department, InspectionOutcome, PermitStatus
from permitflow.permits.models import InspectionResult, NoteKind
from permitflow.permits.state_machine import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATES,
    StatusTransitionController,
    add_months,
    can_transition,
)

S = PermitStatus


@pytest.fixture
def controller() -> StatusTransitionController:
    return StatusTransitionController()


@pytest.fixture
def clerk() -> Actor:
    return Actor(user_id="clerk-1", display_name="Pat Clerk", role=ActorRole.MUNICIPAL_STAFF)


class TestAdjacency:
    def test_terminal_states_have_no_edges(self):
        for status in TERMINAL_STATES:
            assert ALLOWED_TRANSITIONS[status] == frozenset()

    def test_every_open_state_can_cancel(self):
        for status in PermitStatus:
            if status not in TERMINAL_STATES:
                assert can_transition(status, S.CANCELLED)

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (S.DRAFT, S.SUBMITTED),
            (S.SUBMITTED, S.UNDER_REVIEW),
            (S.UNDER_REVIEW, S.PENDING_CORRECTIONS),
            (S.ADDITIONAL_INFO, S.SUBMITTED),
            (S.APPROVED, S.INSPECTIONS),
            (S.INSPECTIONS, S.COMPLETED),
            (S.INSPECTION_REQUESTED, S.ACTIVE),
        ],
    )
    def test_legal_edges(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (S.DRAFT, S.APPROVED),
            (S.SUBMITTED, S.APPROVED),
            (S.PENDING_CORRECTIONS, S.APPROVED),
            (S.APPROVED, S.UNDER_REVIEW),
            (S.COMPLETED, S.ACTIVE),
            (S.DENIED, S.SUBMITTED),
        ],
    )
    def test_illegal_edges(self, current, target):
        assert not can_transition(current, target)


class TestTransition:
    def test_illegal_transition_leaves_record_untouched(self, controller, clerk, make_record):
        record = make_record(status=S.DRAFT)
        with pytest.raises(TransitionError) as exc_info:
            controller.transition(record, S.APPROVED, clerk)
        err = exc_info.value
        assert err.current == S.DRAFT
        assert err.requested == S.APPROVED
        assert err.allowed == ["cancelled", "submitted"]
        assert record.status == S.DRAFT
        assert record.notes == ()

    def test_transition_error_is_value_error(self, controller, clerk, make_record):
        with pytest.raises(ValueError):
            controller.transition(make_record(status=S.CANCELLED), S.DRAFT, clerk)

    def test_submitted_date_stamped_once(self, controller, clerk, make_record):
        record = make_record(status=S.DRAFT)
        controller.transition(record, S.SUBMITTED, clerk, now=NOW)
        assert record.submitted_date == NOW

        later = NOW + timedelta(days=3)
        controller.transition(record, S.ADDITIONAL_INFO, clerk, now=later)
        controller.transition(record, S.SUBMITTED, clerk, now=later)
        assert record.submitted_date == NOW

    def test_approval_sets_expiration(self, controller, clerk, make_record):
        record = make_record(status=S.UNDER_REVIEW)
        controller.transition(record, S.APPROVED, clerk, now=NOW)
        assert record.approved_date == NOW
        assert record.expiration_date == datetime(2024, 9, 15, 12, 0, tzinfo=timezone.utc)

    def test_status_note_appended(self, controller, clerk, make_record):
        record = make_record(status=S.DRAFT)
        controller.transition(record, S.SUBMITTED, clerk, notes="Ready for review", now=NOW)
        note = record.notes[-1]
        assert note.content == "Status changed to submitted: Ready for review"
        assert note.kind == NoteKind.STATUS_CHANGE
        assert note.from_status == S.DRAFT
        assert note.to_status == S.SUBMITTED
        assert note.author_id == "clerk-1"
        assert record.updated_at == NOW

    def test_under_review_opens_pending_reviews(self, controller, clerk, make_record):
        record = make_record(status=S.SUBMITTED)
        controller.transition(record, S.UNDER_REVIEW, clerk, now=NOW)
        assert set(record.department_reviews) == {Department.BUILDING, Department.FIRE}


class TestCompletion:
    def _inspect(self, record, outcome, minutes):
        record.inspections.append(InspectionResult(
            type="final", outcome=outcome, recorded_at=NOW + timedelta(minutes=minutes),
        ))

    def test_blocked_without_inspections(self, controller, clerk, make_record):
        record = make_record(status=S.INSPECTIONS)
        with pytest.raises(CompletionBlockedError) as exc_info:
            controller.transition(record, S.COMPLETED, clerk)
        assert exc_info.value.missing == ["final"]
        assert record.status == S.INSPECTIONS

    def test_latest_result_counts(self, controller, clerk, make_record):
        record = make_record(status=S.INSPECTIONS)
        self._inspect(record, InspectionOutcome.PASSED, 1)
        self._inspect(record, InspectionOutcome.FAILED, 2)
        with pytest.raises(CompletionBlockedError) as exc_info:
            controller.transition(record, S.COMPLETED, clerk)
        assert exc_info.value.failed == ["final"]

        self._inspect(record, InspectionOutcome.PASSED, 3)
        controller.transition(record, S.COMPLETED, clerk, now=NOW)
        assert record.status == S.COMPLETED
        assert record.completion_date == NOW

    def test_no_required_inspections(self, controller, clerk, make_record):
        record = make_record(status=S.INSPECTIONS, inspections=())
        controller.transition(record, S.COMPLETED, clerk)
        assert record.status == S.COMPLETED


class TestRewind:
    def test_rewind_clears_approval(self, controller, clerk, make_record):
        record = make_record(status=S.UNDER_REVIEW)
        controller.transition(record, S.APPROVED, clerk, now=NOW)
        controller.transition(record, S.ACTIVE, clerk, now=NOW)

        controller.rewind_to_review(record, clerk, notes="Plans revised", now=NOW)
        assert record.status == S.UNDER_REVIEW
        assert record.approved_date is None
        assert record.expiration_date is None
        assert record.notes[-1].from_status == S.ACTIVE

    def test_rewind_terminal_rejected(self, controller, clerk, make_record):
        record = make_record(status=S.DENIED)
        with pytest.raises(TransitionError):
            controller.rewind_to_review(record, clerk)

    def test_rewind_under_review_is_noop(self, controller, clerk, make_record):
        record = make_record(status=S.UNDER_REVIEW)
        controller.rewind_to_review(record, clerk)
        assert record.notes == ()


class TestAddMonths:
    def test_clamps_to_month_end(self):
        start = datetime(2024, 8, 31, tzinfo=timezone.utc)
        assert add_months(start, 6) == datetime(2025, 2, 28, tzinfo=timezone.utc)

    def test_crosses_year(self):
        start = datetime(2024, 11, 15, tzinfo=timezone.utc)
        assert add_months(start, 3) == datetime(2025, 2, 15, tzinfo=timezone.utc)

"""Tests for PostgresPermitRepository with SQLite async."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from conftest import NOW
from permitflow.core.errors import (
    ConcurrentModificationError,
    PermitNotFoundError,
    TransitionError,
)
from permitflow.core.types import Department, PermitStatus, ReviewStatus
from permitflow.db.engine import DatabaseManager
from permitflow.fees.models import FeeLineItem
from permitflow.permits.models import DepartmentReview, NoteKind, PermitNote
from permitflow.repositories.postgres.permits import PostgresPermitRepository


@pytest.fixture
async def repo():
    db = DatabaseManager("sqlite+aiosqlite:///:memory:")
    await db.create_all()
    yield PostgresPermitRepository(db)
    await db.close()


async def test_allocate_sequence_per_municipality_and_year(repo):
    assert await repo.allocate_sequence("hanover", 2024) == 1
    assert await repo.allocate_sequence("hanover", 2024) == 2
    assert await repo.allocate_sequence("hanover", 2025) == 1
    assert await repo.allocate_sequence("riverside", 2024) == 1


async def test_save_assigns_number_from_counter(repo, make_record):
    await repo.allocate_sequence("hanover", 2024)
    saved = await repo.save_permit(make_record())
    assert saved.permit_number == "P2024-HANOVE-002"
    assert saved.version == 1


async def test_save_and_get_round_trip(repo, make_record):
    record = make_record(
        status=PermitStatus.SUBMITTED,
        application_data={"project_value": 80000, "work_type": "alteration"},
    )
    record.set_fees([
        FeeLineItem(name="Base permit fee", amount=Decimal("150.00")),
        FeeLineItem(name="Plan review surcharge", amount=Decimal("800.00")),
    ])
    record.add_note(PermitNote(author_id="resident-1", content="Status changed to submitted",
                               kind=NoteKind.STATUS_CHANGE, created_at=NOW))
    saved = await repo.save_permit(record)

    found = await repo.get_permit(saved.id)
    assert found is not None
    assert found.permit_number == saved.permit_number
    assert found.status == PermitStatus.SUBMITTED
    assert found.total_fees == Decimal("950.00")
    assert [f.name for f in found.fees] == ["Base permit fee", "Plan review surcharge"]
    assert found.application_data == {"project_value": 80000, "work_type": "alteration"}
    assert found.notes[0].content == "Status changed to submitted"
    assert found.application_date == NOW
    assert found.permit_type.required_departments == (Department.BUILDING, Department.FIRE)


async def test_department_reviews_persisted(repo, make_record):
    record = make_record(status=PermitStatus.UNDER_REVIEW)
    record.department_reviews = {
        Department.BUILDING: DepartmentReview(
            department=Department.BUILDING,
            status=ReviewStatus.APPROVED,
            reviewer_id="bldg-1",
            conditions=["Engineer letter on file"],
            reviewed_at=NOW,
            updated_at=NOW,
        ),
        Department.FIRE: DepartmentReview(department=Department.FIRE, updated_at=NOW),
    }
    saved = await repo.save_permit(record)

    saved.department_reviews[Department.FIRE] = DepartmentReview(
        department=Department.FIRE, status=ReviewStatus.REJECTED, reviewer_id="fire-1", updated_at=NOW,
    )
    await repo.save_permit(saved)

    found = await repo.get_permit(saved.id)
    assert found.department_reviews[Department.BUILDING].status == ReviewStatus.APPROVED
    assert found.department_reviews[Department.BUILDING].conditions == ["Engineer letter on file"]
    assert found.department_reviews[Department.BUILDING].reviewed_at == NOW
    assert found.department_reviews[Department.FIRE].status == ReviewStatus.REJECTED
    assert len(await repo.list_reviews(saved.id)) == 2


async def test_stale_save_rejected(repo, make_record):
    saved = await repo.save_permit(make_record())
    first = await repo.get_permit(saved.id)
    second = await repo.get_permit(saved.id)

    first.status = PermitStatus.SUBMITTED
    await repo.save_permit(first)
    second.status = PermitStatus.CANCELLED
    with pytest.raises(ConcurrentModificationError):
        await repo.save_permit(second)
    assert (await repo.get_permit(saved.id)).status == PermitStatus.SUBMITTED


async def test_permit_number_cannot_change(repo, make_record):
    saved = await repo.save_permit(make_record())
    saved.permit_number = "P2024-HANOVE-999"
    with pytest.raises(ValueError):
        await repo.save_permit(saved)


async def test_compare_and_set_status_runs_state_machine(repo, make_record, staff):
    saved = await repo.save_permit(make_record(status=PermitStatus.UNDER_REVIEW))
    assert await repo.compare_and_set_status(
        saved.id, PermitStatus.UNDER_REVIEW, PermitStatus.APPROVED, staff,
        notes="Approved at counter", now=NOW,
    )
    assert not await repo.compare_and_set_status(
        saved.id, PermitStatus.UNDER_REVIEW, PermitStatus.APPROVED, staff, now=NOW,
    )

    found = await repo.get_permit(saved.id)
    assert found.status == PermitStatus.APPROVED
    assert found.version == 2
    assert found.approved_date == NOW
    assert found.expiration_date == datetime(2024, 9, 15, 12, 0, tzinfo=timezone.utc)
    note = found.notes[-1]
    assert note.kind == NoteKind.STATUS_CHANGE
    assert note.author_id == "clerk-1"
    assert (note.from_status, note.to_status) == (PermitStatus.UNDER_REVIEW, PermitStatus.APPROVED)
    assert note.content == "Status changed to approved: Approved at counter"


async def test_compare_and_set_status_rejects_illegal_edge(repo, make_record, staff):
    saved = await repo.save_permit(make_record(status=PermitStatus.SUBMITTED))
    with pytest.raises(TransitionError):
        await repo.compare_and_set_status(
            saved.id, PermitStatus.SUBMITTED, PermitStatus.APPROVED, staff,
        )
    found = await repo.get_permit(saved.id)
    assert found.status == PermitStatus.SUBMITTED
    assert found.version == 1
    assert found.notes == ()


async def test_compare_and_set_status_loses_to_stale_version(repo, make_record, staff):
    saved = await repo.save_permit(make_record(status=PermitStatus.UNDER_REVIEW))
    stale = await repo.get_permit(saved.id)
    assert await repo.compare_and_set_status(
        saved.id, PermitStatus.UNDER_REVIEW, PermitStatus.ADDITIONAL_INFO, staff,
    )
    stale.status = PermitStatus.DENIED
    with pytest.raises(ConcurrentModificationError):
        await repo.save_permit(stale)


async def test_compare_and_set_status_unknown_permit(repo, staff):
    with pytest.raises(PermitNotFoundError):
        await repo.compare_and_set_status(
            "missing", PermitStatus.UNDER_REVIEW, PermitStatus.APPROVED, staff,
        )


async def test_queries(repo, make_record):
    a = await repo.save_permit(make_record())
    await repo.save_permit(make_record(status=PermitStatus.SUBMITTED))
    assert (await repo.get_by_number(a.permit_number)).id == a.id
    assert await repo.get_by_number("P1999-NOPE-001") is None
    assert await repo.get_permit("missing") is None
    assert len(await repo.list_permits(municipality_id="hanover")) == 2
    assert len(await repo.list_permits(status=PermitStatus.SUBMITTED)) == 1
    assert len(await repo.list_all_permits()) == 2
    assert await repo.async_permit_count() == 2
    with pytest.raises(NotImplementedError):
        repo.permit_count

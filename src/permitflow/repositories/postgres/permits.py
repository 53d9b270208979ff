"""PostgreSQL permit repository.

Permit numbers come from the ``permit_number_counters`` table, advanced
with a single ``INSERT ... ON CONFLICT DO UPDATE ... RETURNING``. The
counter update runs in the same transaction as the permit insert, so a
failed save does not burn a sequence number.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from permitflow.core.errors import (
    ConcurrentModificationError,
    NumberingAllocationError,
    PermitNotFoundError,
)
from permitflow.core.types import Actor, Department, PermitStatus, ReviewStatus
from permitflow.db.engine import DatabaseManager
from permitflow.db.models import DepartmentReviewRow, PermitNumberCounterRow, PermitRow
from permitflow.permits.models import DepartmentReview, PermitRecord
from permitflow.permits.numbering import format_permit_number
from permitflow.permits.state_machine import StatusTransitionController

logger = logging.getLogger(__name__)


def _aware(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on the way back; everything is stored as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PostgresPermitRepository:
    """Postgres-backed permit storage with atomic permit numbering."""

    def __init__(
        self,
        db: DatabaseManager,
        controller: StatusTransitionController | None = None,
    ) -> None:
        self._db = db
        self._controller = controller or StatusTransitionController()

    # -- Numbering --

    async def allocate_sequence(self, municipality_id: str, year: int) -> int:
        """Advance and return the counter for (municipality, year).

        Raises:
            NumberingAllocationError: If the counter could not be advanced.
        """
        async with self._db.session() as db:
            value = await self._next_sequence(db, municipality_id, year)
            try:
                await db.commit()
            except SQLAlchemyError as exc:
                raise NumberingAllocationError(
                    f"Could not allocate a permit number for {municipality_id} {year}"
                ) from exc
        return value

    async def _next_sequence(self, db: AsyncSession, municipality_id: str, year: int) -> int:
        insert = postgresql.insert if self._db.dialect == "postgresql" else sqlite.insert
        stmt = (
            insert(PermitNumberCounterRow)
            .values(municipality_id=municipality_id, year=year, value=1)
            .on_conflict_do_update(
                index_elements=["municipality_id", "year"],
                set_={"value": PermitNumberCounterRow.value + 1},
            )
            .returning(PermitNumberCounterRow.value)
        )
        try:
            result = await db.execute(stmt)
            return result.scalar_one()
        except SQLAlchemyError as exc:
            raise NumberingAllocationError(
                f"Could not allocate a permit number for {municipality_id} {year}"
            ) from exc

    # -- Permits --

    async def save_permit(self, record: PermitRecord) -> PermitRecord:
        """Insert or update a record, checking its version against the stored row.

        Raises:
            ConcurrentModificationError: If the stored version moved on.
            NumberingAllocationError: If a new permit number could not be allocated.
        """
        record = record.model_copy(deep=True)
        record.refresh_totals()

        async with self._db.session() as db:
            existing = await db.get(PermitRow, record.id)
            if existing is not None:
                if existing.version != record.version:
                    raise ConcurrentModificationError(
                        f"Permit {record.id} was modified concurrently "
                        f"(stored version {existing.version}, saving {record.version})"
                    )
                if existing.permit_number and existing.permit_number != record.permit_number:
                    raise ValueError(f"Permit number of {record.id} cannot change")

            if record.permit_number is None:
                year = record.application_date.year
                sequence = await self._next_sequence(db, record.municipality_id, year)
                record.permit_number = format_permit_number(
                    year, record.municipality.code, sequence
                )
                logger.info("Assigned permit number %s to %s", record.permit_number, record.id)

            expected_version = record.version
            record.version += 1
            values = self._row_values(record)
            if existing is None:
                db.add(PermitRow(id=record.id, created_at=record.created_at, **values))
            else:
                result = await db.execute(
                    update(PermitRow)
                    .where(PermitRow.id == record.id, PermitRow.version == expected_version)
                    .values(**values)
                )
                if result.rowcount != 1:
                    await db.rollback()
                    raise ConcurrentModificationError(
                        f"Permit {record.id} was modified concurrently"
                    )
            await db.flush()
            await self._save_reviews(db, record)
            await db.commit()
        return record

    async def compare_and_set_status(
        self,
        permit_id: str,
        expected: PermitStatus,
        new_status: PermitStatus,
        actor: Actor,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Transition the permit only if its status still equals ``expected``.

        The change goes through the state machine, so dates are stamped and
        a status-change note is appended, and is written with the same
        version-checked UPDATE as ``save_permit``. Of two racing callers
        exactly one succeeds. Returns whether this call won.

        Raises:
            PermitNotFoundError: If no permit has this id.
            TransitionError: If the state machine forbids the edge.
        """
        record = await self.get_permit(permit_id)
        if record is None:
            raise PermitNotFoundError(f"Permit {permit_id!r} not found")
        if record.status != PermitStatus(expected):
            return False
        self._controller.transition(record, new_status, actor, notes=notes, now=now)
        try:
            await self.save_permit(record)
        except ConcurrentModificationError:
            logger.info(
                "Lost status race on permit %s (%s -> %s)", permit_id, expected, new_status
            )
            return False
        return True

    async def get_permit(self, permit_id: str) -> PermitRecord | None:
        async with self._db.session() as db:
            row = await db.get(PermitRow, permit_id)
            if row is None:
                return None
            return self._row_to_record(row)

    async def get_by_number(self, permit_number: str) -> PermitRecord | None:
        async with self._db.session() as db:
            result = await db.execute(
                select(PermitRow).where(PermitRow.permit_number == permit_number)
            )
            row = result.scalar_one_or_none()
            return self._row_to_record(row) if row else None

    async def list_permits(
        self,
        municipality_id: str | None = None,
        status: PermitStatus | None = None,
    ) -> list[PermitRecord]:
        stmt = select(PermitRow).order_by(PermitRow.created_at)
        if municipality_id is not None:
            stmt = stmt.where(PermitRow.municipality_id == municipality_id)
        if status is not None:
            stmt = stmt.where(PermitRow.status == PermitStatus(status).value)
        async with self._db.session() as db:
            result = await db.execute(stmt)
            return [self._row_to_record(r) for r in result.scalars().all()]

    async def list_all_permits(self) -> list[PermitRecord]:
        return await self.list_permits()

    @property
    def permit_count(self) -> int:
        raise NotImplementedError("Use async_permit_count() instead for Postgres")

    async def async_permit_count(self) -> int:
        async with self._db.session() as db:
            result = await db.execute(select(func.count()).select_from(PermitRow))
            return result.scalar_one()

    # -- Department reviews --

    async def _save_reviews(self, db: AsyncSession, record: PermitRecord) -> None:
        result = await db.execute(
            select(DepartmentReviewRow).where(DepartmentReviewRow.permit_id == record.id)
        )
        rows = {r.department: r for r in result.scalars().all()}
        for department, review in record.department_reviews.items():
            row = rows.get(department.value)
            if row is None:
                row = DepartmentReviewRow(permit_id=record.id, department=department.value)
                db.add(row)
            row.status = review.status.value
            row.reviewer_id = review.reviewer_id
            row.reviewer_name = review.reviewer_name
            row.notes = review.notes
            row.conditions = list(review.conditions)
            row.reviewed_at = review.reviewed_at
            row.updated_at = review.updated_at

    async def list_reviews(self, permit_id: str) -> list[DepartmentReview]:
        async with self._db.session() as db:
            result = await db.execute(
                select(DepartmentReviewRow)
                .where(DepartmentReviewRow.permit_id == permit_id)
                .order_by(DepartmentReviewRow.id)
            )
            return [self._row_to_review(r) for r in result.scalars().all()]

    # -- Mapping --

    @staticmethod
    def _row_values(record: PermitRecord) -> dict:
        document = record.model_dump(mode="json", exclude={"department_reviews"})
        return {
            "permit_number": record.permit_number,
            "municipality_id": record.municipality_id,
            "permit_type_id": record.permit_type_id,
            "status": record.status.value,
            "applicant_user_id": record.applicant.user_id,
            "total_fees": record.total_fees,
            "expiration_date": record.expiration_date,
            "document": document,
            "version": record.version,
            "updated_at": record.updated_at,
        }

    @staticmethod
    def _row_to_review(row: DepartmentReviewRow) -> DepartmentReview:
        return DepartmentReview(
            department=Department(row.department),
            status=ReviewStatus(row.status),
            reviewer_id=row.reviewer_id,
            reviewer_name=row.reviewer_name,
            notes=row.notes,
            conditions=list(row.conditions or []),
            reviewed_at=_aware(row.reviewed_at),
            updated_at=_aware(row.updated_at),
        )

    @classmethod
    def _row_to_record(cls, row: PermitRow) -> PermitRecord:
        data = dict(row.document or {})
        # Indexed columns are authoritative over the JSON document.
        data["status"] = row.status
        data["version"] = row.version
        data["permit_number"] = row.permit_number
        record = PermitRecord.model_validate(data)
        record.department_reviews = {
            Department(r.department): cls._row_to_review(r) for r in row.reviews
        }
        return record

"""SQLAlchemy ORM models for all persistent tables."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from permitflow.db.base import Base


def _jsonb() -> type:
    """Return JSONB for Postgres, plain JSON for SQLite."""
    return JSON().with_variant(PG_JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Permits
# ---------------------------------------------------------------------------


class PermitRow(Base):
    __tablename__ = "permits"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    permit_number: Mapped[str | None] = mapped_column(String(32), nullable=True, unique=True)
    municipality_id: Mapped[str] = mapped_column(String(64))
    permit_type_id: Mapped[str] = mapped_column(String(128))
    status: Mapped[str] = mapped_column(String(32), default="draft")
    applicant_user_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    total_fees: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    expiration_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Full record minus department reviews, which live in their own table.
    document: Mapped[dict] = mapped_column(_jsonb(), default=dict)
    version: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    reviews: Mapped[list[DepartmentReviewRow]] = relationship(
        back_populates="permit", cascade="all, delete-orphan", lazy="selectin",
    )

    __table_args__ = (
        Index("ix_permits_municipality_status", "municipality_id", "status"),
        Index("ix_permits_applicant", "applicant_user_id"),
    )


class DepartmentReviewRow(Base):
    __tablename__ = "department_reviews"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    permit_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("permits.id", ondelete="CASCADE")
    )
    department: Mapped[str] = mapped_column(String(32))
    status: Mapped[str] = mapped_column(String(32), default="pending")
    reviewer_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    reviewer_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    conditions: Mapped[list] = mapped_column(_jsonb(), default=list)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    permit: Mapped[PermitRow] = relationship(back_populates="reviews")

    __table_args__ = (
        UniqueConstraint("permit_id", "department", name="uq_department_reviews_permit_department"),
    )


# ---------------------------------------------------------------------------
# Permit numbering
# ---------------------------------------------------------------------------


class PermitNumberCounterRow(Base):
    __tablename__ = "permit_number_counters"

    municipality_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    year: Mapped[int] = mapped_column(Integer, primary_key=True)
    value: Mapped[int] = mapped_column(Integer, default=0)

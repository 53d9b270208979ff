"""Shared test fixtures and helpers."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from permitflow.core.config import AuditConfig, Settings
from permitflow.core.types import Actor, ActorRole, Department, PermitStatus
from permitflow.governance.audit import WorkflowAuditLog
from permitflow.permit_types.models import (
    MunicipalitySnapshot,
    PermitTypeSnapshot,
    RequiredInspection,
)
from permitflow.permit_types.registry import PermitTypeRegistry
from permitflow.permits.models import ApplicantInfo, PermitRecord
from permitflow.permits.service import PermitWorkflowService
from permitflow.permits.store import PermitStore

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)

BUILDING_PAYLOAD = {
    "project_address": "12 Elm Street",
    "contact_email": "dana@example.com",
    "work_type": "alteration",
    "project_value": 80000,
    "description": "Kitchen remodel with a new load-bearing beam",
}


class FakeClock:
    """Settable clock handed to the service."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry() -> PermitTypeRegistry:
    """Registry loaded from the permit types shipped in config/permit_types."""
    return PermitTypeRegistry()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(audit=AuditConfig(log_dir=str(tmp_path / "audit")))


@pytest.fixture
def audit_log(settings) -> WorkflowAuditLog:
    return WorkflowAuditLog(settings.audit)


@pytest.fixture
def store() -> PermitStore:
    return PermitStore()


@pytest.fixture
def service(registry, store, audit_log, settings, clock) -> PermitWorkflowService:
    return PermitWorkflowService(
        registry=registry,
        store=store,
        audit_log=audit_log,
        settings=settings,
        clock=clock,
    )


@pytest.fixture
def applicant() -> ApplicantInfo:
    return ApplicantInfo(
        user_id="resident-1",
        first_name="Dana",
        last_name="Reyes",
        email="dana@example.com",
    )


@pytest.fixture
def applicant_actor() -> Actor:
    return Actor(user_id="resident-1", display_name="Dana Reyes", role=ActorRole.APPLICANT)


@pytest.fixture
def staff() -> Actor:
    return Actor(
        user_id="clerk-1",
        display_name="Pat Clerk",
        role=ActorRole.MUNICIPAL_STAFF,
        municipality_id="hanover",
    )


@pytest.fixture
def building_reviewer() -> Actor:
    return Actor(
        user_id="bldg-1",
        display_name="Building Reviewer",
        role=ActorRole.REVIEWER,
        municipality_id="hanover",
        department=Department.BUILDING,
    )


@pytest.fixture
def fire_reviewer() -> Actor:
    return Actor(
        user_id="fire-1",
        display_name="Fire Reviewer",
        role=ActorRole.REVIEWER,
        municipality_id="hanover",
        department=Department.FIRE,
    )


@pytest.fixture
def make_record():
    """Factory for bare PermitRecords that bypass intake."""

    def _make(
        status: PermitStatus = PermitStatus.DRAFT,
        departments=(Department.BUILDING, Department.FIRE),
        inspections=("final",),
        **overrides,
    ) -> PermitRecord:
        fields = {
            "municipality_id": "hanover",
            "municipality": MunicipalitySnapshot(
                id="hanover", name="Hanover Township", code="HANOVE"
            ),
            "permit_type_id": "hanover-building",
            "permit_type": PermitTypeSnapshot(
                id="hanover-building",
                code="BLD",
                name="Residential Building Permit",
                required_departments=tuple(departments),
                required_inspections=tuple(
                    RequiredInspection(type=t, name=t.title()) for t in inspections
                ),
            ),
            "applicant": ApplicantInfo(
                user_id="resident-1",
                first_name="Dana",
                last_name="Reyes",
                email="dana@example.com",
            ),
            "status": status,
            "application_date": NOW,
            "created_at": NOW,
            "updated_at": NOW,
        }
        fields.update(overrides)
        return PermitRecord(**fields)

    return _make

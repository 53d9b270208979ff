"""Protocol definitions for repository interfaces.

Each protocol mirrors the public methods of the corresponding in-memory
store class, so both sync (in-memory) and async (Postgres) implementations
satisfy the same interface.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from permitflow.core.types import PermitStatus
from permitflow.permits.models import PermitRecord


@runtime_checkable
class PermitRepository(Protocol):
    """Protocol for permit record storage."""

    def save_permit(self, record: PermitRecord) -> PermitRecord: ...

    def get_permit(self, permit_id: str) -> PermitRecord | None: ...

    def get_by_number(self, permit_number: str) -> PermitRecord | None: ...

    def list_permits(
        self,
        municipality_id: str | None = None,
        status: PermitStatus | None = None,
    ) -> list[PermitRecord]: ...

    def list_all_permits(self) -> list[PermitRecord]: ...

    @property
    def permit_count(self) -> int: ...

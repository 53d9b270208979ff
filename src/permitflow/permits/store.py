"""In-memory store for permit records."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from permitflow.core.errors import ConcurrentModificationError
from permitflow.core.types import PermitStatus
from permitflow.permits.models import PermitRecord
from permitflow.permits.numbering import (
    PermitNumberAllocator,
    SequenceAllocator,
    format_permit_number,
)

logger = logging.getLogger(__name__)


class PermitStore:
    """In-memory dict store for permit records.

    Records are copied on the way in and out, so callers never share a
    mutable object with the store. Saves are checked against the stored
    ``version`` and rejected if another writer got there first.
    """

    def __init__(self, allocator: SequenceAllocator | None = None) -> None:
        self._allocator = allocator or PermitNumberAllocator()
        self._permits: dict[str, PermitRecord] = {}
        self._lock = threading.Lock()
        self._permit_locks: dict[str, threading.RLock] = {}

    @contextmanager
    def permit_lock(self, permit_id: str) -> Iterator[None]:
        """Serialize read-modify-write cycles on a single permit."""
        with self._lock:
            lock = self._permit_locks.setdefault(permit_id, threading.RLock())
        with lock:
            yield

    def save_permit(self, record: PermitRecord) -> PermitRecord:
        """Persist a record and return the stored copy.

        The first save of a record without a permit number allocates one.
        ``total_fees`` is recomputed from the line items on every save.
        """
        record = record.model_copy(deep=True)
        record.refresh_totals()

        with self._lock:
            existing = self._permits.get(record.id)
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
                sequence = self._allocator.next_sequence(record.municipality_id, year)
                record.permit_number = format_permit_number(
                    year, record.municipality.code, sequence
                )
                logger.info("Assigned permit number %s to %s", record.permit_number, record.id)
            record.version += 1
            self._permits[record.id] = record
        return record.model_copy(deep=True)

    def get_permit(self, permit_id: str) -> PermitRecord | None:
        with self._lock:
            record = self._permits.get(permit_id)
        return record.model_copy(deep=True) if record else None

    def get_by_number(self, permit_number: str) -> PermitRecord | None:
        with self._lock:
            for record in self._permits.values():
                if record.permit_number == permit_number:
                    return record.model_copy(deep=True)
        return None

    def list_permits(
        self,
        municipality_id: str | None = None,
        status: PermitStatus | None = None,
    ) -> list[PermitRecord]:
        with self._lock:
            records = list(self._permits.values())
        return [
            r.model_copy(deep=True) for r in records
            if (municipality_id is None or r.municipality_id == municipality_id)
            and (status is None or r.status == status)
        ]

    def list_all_permits(self) -> list[PermitRecord]:
        return self.list_permits()

    @property
    def permit_count(self) -> int:
        return len(self._permits)

"""Repository protocol conformance."""

from __future__ import annotations

import inspect

from permitflow.permits.numbering import PermitNumberAllocator, SequenceAllocator
from permitflow.permits.store import PermitStore
from permitflow.repositories.postgres.permits import PostgresPermitRepository
from permitflow.repositories.protocols import PermitRepository


def test_permit_store_satisfies_protocol():
    assert isinstance(PermitStore(), PermitRepository)


def test_allocator_satisfies_protocol():
    assert isinstance(PermitNumberAllocator(), SequenceAllocator)


def test_postgres_repository_mirrors_protocol_methods():
    for name in ("save_permit", "get_permit", "get_by_number", "list_permits", "list_all_permits"):
        assert inspect.iscoroutinefunction(getattr(PostgresPermitRepository, name)), name

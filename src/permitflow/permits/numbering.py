"""Permit number allocation.

Numbers look like ``P2024-HANOVE-001``. The sequence part comes from a
counter keyed by (municipality, year) that is advanced atomically, so two
concurrent submissions can never be handed the same number.
"""

from __future__ import annotations

import threading
from typing import Protocol, runtime_checkable


def format_permit_number(year: int, municipality_code: str, sequence: int) -> str:
    return f"P{year}-{municipality_code}-{sequence:03d}"


@runtime_checkable
class SequenceAllocator(Protocol):
    """Anything that can hand out the next sequence for a (municipality, year)."""

    def next_sequence(self, municipality_id: str, year: int) -> int: ...


class PermitNumberAllocator:
    """Lock-guarded in-memory counters, one per (municipality, year).

    Suitable for single-process deployments and tests. The Postgres
    repository provides the same operation backed by a counter table.
    """

    def __init__(self, initial: dict[tuple[str, int], int] | None = None) -> None:
        self._counters: dict[tuple[str, int], int] = dict(initial or {})
        self._lock = threading.Lock()

    def next_sequence(self, municipality_id: str, year: int) -> int:
        key = (municipality_id, year)
        with self._lock:
            value = self._counters.get(key, 0) + 1
            self._counters[key] = value
        return value

    def current(self, municipality_id: str, year: int) -> int:
        with self._lock:
            return self._counters.get((municipality_id, year), 0)

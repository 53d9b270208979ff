"""Append-only, hash-chained workflow audit log.

Every workflow event is written as one JSONL line. Each line's SHA-256
covers the previous line's hash, so editing or removing any entry breaks
the chain for every entry after it.
"""

from __future__ import annotations

import hashlib
import json
import threading
from pathlib import Path
from typing import Any

from permitflow.core.config import AuditConfig
from permitflow.core.types import AuditEvent

_GENESIS = hashlib.sha256(b"permitflow-genesis").hexdigest()


class AuditEntry:
    """An AuditEvent plus its position in the hash chain."""

    def __init__(self, event: AuditEvent, previous_hash: str, entry_hash: str) -> None:
        self.event = event
        self.previous_hash = previous_hash
        self.entry_hash = entry_hash

    def to_dict(self) -> dict[str, Any]:
        return {
            "previous_hash": self.previous_hash,
            "entry_hash": self.entry_hash,
            "event": json.loads(self.event.model_dump_json()),
        }


def _chain_hash(previous_hash: str, event_json: str) -> str:
    return hashlib.sha256((previous_hash + event_json).encode("utf-8")).hexdigest()


class WorkflowAuditLog:
    """Tamper-evident record of permit workflow events.

    Args:
        config: AuditConfig instance. Defaults to AuditConfig(), which reads
            from environment variables.
    """

    def __init__(self, config: AuditConfig | None = None) -> None:
        self._config = config or AuditConfig()
        log_dir = Path(self._config.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        self._log_path = log_dir / self._config.log_file
        self._lock = threading.Lock()
        self._last_hash = _GENESIS
        if self._log_path.exists():
            for data in self._read():
                self._last_hash = data["entry_hash"]

    def _read(self):
        with open(self._log_path) as fh:
            for line in fh:
                stripped = line.strip()
                if stripped:
                    yield json.loads(stripped)

    def log(self, event: AuditEvent) -> AuditEntry:
        event_json = event.model_dump_json()
        with self._lock:
            entry = AuditEntry(
                event=event,
                previous_hash=self._last_hash,
                entry_hash=_chain_hash(self._last_hash, event_json),
            )
            with open(self._log_path, "a") as fh:
                fh.write(json.dumps(entry.to_dict()) + "\n")
            self._last_hash = entry.entry_hash
        return entry

    def verify_chain(self) -> bool:
        """Recompute every hash. False if any entry was altered, reordered or removed."""
        if not self._log_path.exists():
            return True
        previous_hash = _GENESIS
        for data in self._read():
            if data["previous_hash"] != previous_hash:
                return False
            event_json = AuditEvent(**data["event"]).model_dump_json()
            if data["entry_hash"] != _chain_hash(previous_hash, event_json):
                return False
            previous_hash = data["entry_hash"]
        return True

    def query(self, filters: dict[str, Any] | None = None) -> list[AuditEvent]:
        """Events matching every given filter.

        Supported keys: ``permit_id``, ``permit_number``, ``actor``, ``action``.
        """
        filters = filters or {}
        if not self._log_path.exists():
            return []
        results = []
        for data in self._read():
            event = AuditEvent(**data["event"])
            if all(getattr(event, key) == value for key, value in filters.items()):
                results.append(event)
        return results

    @property
    def log_path(self) -> Path:
        return self._log_path

    @property
    def last_hash(self) -> str:
        return self._last_hash

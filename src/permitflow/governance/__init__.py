"""Governance: authorization checks and the tamper-evident workflow audit log."""

from permitflow.governance.audit import WorkflowAuditLog

__all__ = ["WorkflowAuditLog"]

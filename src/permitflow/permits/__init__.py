"""Permit records, status lifecycle, department reviews and numbering."""

from permitflow.permits.models import (
    ApplicantInfo,
    DepartmentReview,
    DepartmentReviewSummary,
    PermitRecord,
)
from permitflow.permits.reviews import DepartmentReviewAggregator
from permitflow.permits.service import PermitWorkflowService, create_workflow_service
from permitflow.permits.state_machine import StatusTransitionController
from permitflow.permits.store import PermitStore

__all__ = [
    "ApplicantInfo",
    "DepartmentReview",
    "DepartmentReviewAggregator",
    "DepartmentReviewSummary",
    "PermitRecord",
    "PermitStore",
    "PermitWorkflowService",
    "StatusTransitionController",
    "create_workflow_service",
]

# milestone-sync State
"""Milestone data model, status derivation and submission checking."""

from .models import (
    Attachment,
    ChangeEvent,
    DerivedMilestoneStatus,
    Milestone,
    MilestoneStatus,
    MilestoneSummary,
    SubmissionRecord,
)
from .deriver import compute, derive_status, latest_submission, parse_datetime, summarize
from .checker import CheckResult, LoadKind, LoadState, SubmissionChecker

__all__ = [
    "Attachment", "ChangeEvent", "DerivedMilestoneStatus", "Milestone", "MilestoneStatus",
    "MilestoneSummary", "SubmissionRecord", "compute", "derive_status", "latest_submission",
    "parse_datetime", "summarize", "CheckResult", "LoadKind", "LoadState", "SubmissionChecker",
]

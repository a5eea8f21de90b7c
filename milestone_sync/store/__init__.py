# milestone-sync Record Store
"""Record store client and upstream record normalization."""

from .client import RecordStoreClient
from .normalize import normalize_milestone, normalize_submission
from .validators import SubmissionCreateRequest

__all__ = ["RecordStoreClient", "normalize_milestone", "normalize_submission", "SubmissionCreateRequest"]

"""Data models for milestone status reconciliation."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Tuple


class MilestoneStatus:
    """Derived lifecycle states of a milestone."""
    UPCOMING = "upcoming"
    COMPLETED = "completed"
    LATE = "late"

    ALL = (UPCOMING, COMPLETED, LATE)


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat().replace('+00:00', 'Z')


def _from_isoformat(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace('Z', '+00:00'))


@dataclass(frozen=True)
class Attachment:
    """A file attached to a submission."""
    url: str
    filename: Optional[str] = None
    content_type: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Attachment":
        """Create Attachment from dictionary."""
        return cls(
            url=data.get("url", ""),
            filename=data.get("filename"),
            content_type=data.get("contentType")
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert Attachment to dictionary."""
        return {
            "url": self.url,
            "filename": self.filename,
            "contentType": self.content_type
        }


@dataclass
class Milestone:
    """A deliverable with an optional due date, owned by a program."""
    id: str
    name: str = ""
    due_date: Optional[datetime] = None
    sequence: int = 0
    description: str = ""
    status_hint: Optional[str] = None
    invalid_date: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Milestone":
        """Create Milestone from its ``to_dict`` form.

        Upstream record shapes go through ``store.normalize`` instead.
        """
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            due_date=_from_isoformat(data.get("dueDate")),
            sequence=data.get("sequence", 0),
            description=data.get("description", ""),
            status_hint=data.get("statusHint"),
            invalid_date=data.get("invalidDate", False)
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert Milestone to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "dueDate": _isoformat(self.due_date),
            "sequence": self.sequence,
            "description": self.description,
            "statusHint": self.status_hint,
            "invalidDate": self.invalid_date
        }


@dataclass(frozen=True)
class SubmissionRecord:
    """Evidence that a team completed a milestone.

    Records are created once and never mutated. ``created_time`` is always
    populated; when the upstream value could not be parsed it holds the
    time of normalization and ``invalid_date`` is set.
    """
    id: str
    milestone_id: Optional[str]
    team_id: Optional[str]
    created_time: datetime
    submission_timestamp: Optional[float] = None  # epoch milliseconds
    link: Optional[str] = None
    attachments: Tuple[Attachment, ...] = ()
    comments: str = ""
    invalid_date: bool = False

    @property
    def resolved_time(self) -> datetime:
        """Timestamp used to order submissions."""
        if self.submission_timestamp is not None:
            try:
                return datetime.fromtimestamp(self.submission_timestamp / 1000.0, tz=timezone.utc)
            except (OverflowError, OSError, ValueError):
                pass
        return self.created_time

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubmissionRecord":
        """Create SubmissionRecord from its ``to_dict`` form."""
        return cls(
            id=data["id"],
            milestone_id=data.get("milestoneId"),
            team_id=data.get("teamId"),
            created_time=_from_isoformat(data["createdTime"]),
            submission_timestamp=data.get("submissionTimestamp"),
            link=data.get("link"),
            attachments=tuple(Attachment.from_dict(a) for a in data.get("attachments", [])),
            comments=data.get("comments", ""),
            invalid_date=data.get("invalidDate", False)
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert SubmissionRecord to dictionary."""
        return {
            "id": self.id,
            "milestoneId": self.milestone_id,
            "teamId": self.team_id,
            "createdTime": _isoformat(self.created_time),
            "submissionTimestamp": self.submission_timestamp,
            "link": self.link,
            "attachments": [a.to_dict() for a in self.attachments],
            "comments": self.comments,
            "invalidDate": self.invalid_date
        }


@dataclass(frozen=True)
class DerivedMilestoneStatus:
    """Computed lifecycle state of a milestone. Never persisted."""
    milestone_id: Optional[str]
    status: str
    has_submission: bool
    latest_submission: Optional[SubmissionRecord]
    attachment_count: int
    computed_at: datetime

    def __post_init__(self):
        if self.status not in MilestoneStatus.ALL:
            raise ValueError(
                f"Status must be one of: {', '.join(MilestoneStatus.ALL)}"
            )
        if (self.status == MilestoneStatus.COMPLETED) != self.has_submission:
            raise ValueError(
                "Status 'completed' requires has_submission and vice versa"
            )
        if self.has_submission and self.latest_submission is None:
            raise ValueError("has_submission requires latest_submission")

    def to_dict(self) -> Dict[str, Any]:
        """Convert DerivedMilestoneStatus to dictionary."""
        return {
            "milestoneId": self.milestone_id,
            "status": self.status,
            "hasSubmission": self.has_submission,
            "latestSubmission": self.latest_submission.to_dict() if self.latest_submission else None,
            "attachmentCount": self.attachment_count,
            "computedAt": _isoformat(self.computed_at)
        }


@dataclass(frozen=True)
class ChangeEvent:
    """Broadcast notification that a milestone's submissions changed."""
    milestone_id: str
    team_id: Optional[str]
    submissions: Tuple[SubmissionRecord, ...]
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    origin: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], origin: Optional[str] = None) -> "ChangeEvent":
        """Rebuild an event from ``to_payload`` output."""
        return cls(
            milestone_id=payload["milestoneId"],
            team_id=payload.get("teamId"),
            submissions=tuple(SubmissionRecord.from_dict(s) for s in payload.get("submissions", [])),
            origin=origin
        )

    def to_payload(self) -> Dict[str, Any]:
        """Stable payload shared by every consumer."""
        return {
            "milestoneId": self.milestone_id,
            "teamId": self.team_id,
            "submissions": [s.to_dict() for s in self.submissions]
        }


@dataclass(frozen=True)
class MilestoneSummary:
    """Aggregate counts rendered by summary cards."""
    total: int
    completed: int
    late: int
    upcoming: int
    progress_percent: int
    next_milestone: Optional[Milestone] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert MilestoneSummary to dictionary."""
        return {
            "total": self.total,
            "completed": self.completed,
            "late": self.late,
            "upcoming": self.upcoming,
            "progressPercent": self.progress_percent,
            "nextMilestone": self.next_milestone.to_dict() if self.next_milestone else None
        }


def as_submission_tuple(submissions: Optional[List[SubmissionRecord]]) -> Tuple[SubmissionRecord, ...]:
    """Freeze a submission list into a tuple."""
    return tuple(submissions or ())

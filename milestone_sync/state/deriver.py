"""Pure status derivation for milestones.

Every function in this module is synchronous and free of hidden state:
identical inputs always produce identical outputs. Callers pass ``now``
explicitly, so nothing here reads the clock.
"""

import math
from datetime import date, datetime, timezone
from typing import Optional, Dict, Iterable, List, Union

from milestone_sync.errors import InvalidDateError
from milestone_sync.state.models import (
    DerivedMilestoneStatus,
    Milestone,
    MilestoneStatus,
    MilestoneSummary,
    SubmissionRecord,
)


DateInput = Union[datetime, date, str, int, float, None]


def parse_datetime(value: DateInput) -> datetime:
    """Parse a date-time value into an aware UTC datetime.

    Accepts datetimes, dates, ISO-8601 strings (including a ``Z`` suffix
    and date-only forms) and epoch milliseconds.

    Args:
        value: Value to parse

    Returns:
        Timezone-aware datetime

    Raises:
        InvalidDateError: If the value cannot be interpreted as a date
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, bool) or value is None:
        raise InvalidDateError(value)
    if isinstance(value, (int, float)):
        if math.isnan(value) or math.isinf(value):
            raise InvalidDateError(value)
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise InvalidDateError(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise InvalidDateError(value)
        if text.endswith('Z') or text.endswith('z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise InvalidDateError(value)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise InvalidDateError(value)


def _coerce_due_date(due_date: DateInput) -> Optional[datetime]:
    # An unparseable due date is treated as absent, so it can never be late.
    if due_date is None:
        return None
    try:
        return parse_datetime(due_date)
    except InvalidDateError:
        return None


def latest_submission(submissions: Iterable[SubmissionRecord]) -> Optional[SubmissionRecord]:
    """Pick the most recent submission.

    Ties on the resolved timestamp go to the earliest list position.
    """
    latest = None
    for record in submissions:
        if latest is None or record.resolved_time > latest.resolved_time:
            latest = record
    return latest


def derive_status(
    due_date: DateInput,
    now: datetime,
    submissions: Optional[Iterable[SubmissionRecord]],
    milestone_id: Optional[str] = None
) -> DerivedMilestoneStatus:
    """Compute the derived status of a milestone.

    Rules, in priority order:
        1. Any submission makes the milestone ``completed``.
        2. No submission and a due date before ``now`` makes it ``late``.
        3. Otherwise it is ``upcoming``.

    Args:
        due_date: Due date (datetime, ISO string or None)
        now: Reference time
        submissions: Submission records for the milestone
        milestone_id: Milestone identifier carried into the result

    Returns:
        DerivedMilestoneStatus
    """
    now = parse_datetime(now)
    records = tuple(submissions or ())
    latest = latest_submission(records)

    if records:
        status = MilestoneStatus.COMPLETED
    else:
        due = _coerce_due_date(due_date)
        if due is not None and due < now:
            status = MilestoneStatus.LATE
        else:
            status = MilestoneStatus.UPCOMING

    return DerivedMilestoneStatus(
        milestone_id=milestone_id,
        status=status,
        has_submission=bool(records),
        latest_submission=latest,
        attachment_count=len(latest.attachments) if latest else 0,
        computed_at=now
    )


def compute(
    milestone: Milestone,
    submissions: Optional[Iterable[SubmissionRecord]],
    now: datetime
) -> DerivedMilestoneStatus:
    """Derive status for a Milestone object."""
    return derive_status(milestone.due_date, now, submissions, milestone_id=milestone.id)


def days_remaining(due_date: DateInput, now: datetime) -> Optional[int]:
    """Whole days until the due date, rounded up. Negative once past."""
    due = _coerce_due_date(due_date)
    if due is None:
        return None
    seconds = (due - parse_datetime(now)).total_seconds()
    return math.ceil(seconds / 86400)


def summarize(
    milestones: List[Milestone],
    statuses: Dict[str, DerivedMilestoneStatus],
    now: datetime
) -> MilestoneSummary:
    """Aggregate derived statuses for a summary card.

    Milestones without a derived status are treated as having no
    submissions.

    Args:
        milestones: Milestones to summarize
        statuses: Derived statuses keyed by milestone id
        now: Reference time

    Returns:
        MilestoneSummary
    """
    counts = {status: 0 for status in MilestoneStatus.ALL}
    upcoming = []

    for milestone in milestones:
        derived = statuses.get(milestone.id)
        if derived is None:
            derived = compute(milestone, (), now)
        counts[derived.status] += 1
        if derived.status == MilestoneStatus.UPCOMING:
            upcoming.append(milestone)

    total = len(milestones)
    completed = counts[MilestoneStatus.COMPLETED]
    progress = round(completed * 100 / total) if total else 0

    far_future = datetime.max.replace(tzinfo=timezone.utc)
    upcoming.sort(key=lambda m: (
        _coerce_due_date(m.due_date) is None,
        _coerce_due_date(m.due_date) or far_future,
        m.sequence
    ))

    return MilestoneSummary(
        total=total,
        completed=completed,
        late=counts[MilestoneStatus.LATE],
        upcoming=counts[MilestoneStatus.UPCOMING],
        progress_percent=progress,
        next_milestone=upcoming[0] if upcoming else None
    )

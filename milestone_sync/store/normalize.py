"""Normalization of upstream record shapes.

The record store (and older API routes in front of it) return the same
concepts under several field names. These adapters run once at the
data-access boundary; everything past them only sees ``Milestone`` and
``SubmissionRecord``.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Sequence

from milestone_sync.errors import InvalidDateError
from milestone_sync.state.deriver import parse_datetime
from milestone_sync.state.models import Attachment, Milestone, SubmissionRecord
from milestone_sync.utils.logging_config import log_with_fields


logger = logging.getLogger("milestone_sync.store")


MILESTONE_ID_FIELDS = ('milestoneId', 'Milestone Record ID', 'Milestone', 'milestone')
TEAM_ID_FIELDS = ('teamId', 'Team Record ID', 'Team', 'team')
CREATED_TIME_FIELDS = ('createdTime', 'Created Time', 'Created_Time', 'createdAt', 'created', 'timestamp')
LINK_FIELDS = ('link', 'Link', 'Submission Link')
ATTACHMENT_FIELDS = ('attachments', 'Attachment', 'attachment', 'Files', 'files', 'fileUrls')
COMMENT_FIELDS = ('comments', 'Comments', 'Submission Text', 'text')

DUE_DATE_FIELDS = ('dueDate', 'Due Datetime', 'Due Date', 'due_date')
SEQUENCE_FIELDS = ('sequence', 'number', 'Number')
NAME_FIELDS = ('name', 'Name')
DESCRIPTION_FIELDS = ('description', 'Description')
STATUS_FIELDS = ('status', 'Status')


def _flatten(raw: Dict[str, Any]) -> Dict[str, Any]:
    # Airtable-style records nest their data under "fields".
    if isinstance(raw.get('fields'), dict):
        data = dict(raw['fields'])
        data.setdefault('id', raw.get('id'))
        if raw.get('createdTime') is not None:
            data.setdefault('createdTime', raw['createdTime'])
        return data
    return raw


def first_present(data: Dict[str, Any], names: Sequence[str]) -> Any:
    """Return the first non-empty value found under any of ``names``."""
    for name in names:
        value = data.get(name)
        if value is None or value == '' or value == []:
            continue
        return value
    return None


def _linked_id(value: Any) -> Optional[str]:
    # Linked-record fields arrive as a list of ids.
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    if value is None:
        return None
    return str(value)


def _attachment(item: Any) -> Optional[Attachment]:
    if isinstance(item, str):
        if not item:
            return None
        return Attachment(url=item, filename=item.rstrip('/').rsplit('/', 1)[-1] or None)
    if isinstance(item, dict):
        url = item.get('url') or ''
        if not url:
            return None
        return Attachment(
            url=url,
            filename=item.get('filename') or item.get('name'),
            content_type=item.get('contentType') or item.get('type')
        )
    return None


def _attachments(value: Any) -> tuple:
    if value is None:
        return ()
    if not isinstance(value, (list, tuple)):
        value = [value]
    return tuple(a for a in (_attachment(item) for item in value) if a is not None)


def _submission_timestamp(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        raise InvalidDateError(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidDateError(value)
    if number < 0:
        raise InvalidDateError(value)
    # Rejects NaN, infinity and values past the datetime range.
    parse_datetime(number)
    return number


def normalize_submission(raw: Dict[str, Any], now: Optional[datetime] = None) -> SubmissionRecord:
    """Convert an upstream submission payload to a SubmissionRecord.

    Malformed timestamps never fail the record: the creation time falls
    back to ``now`` and ``invalid_date`` is set so the record still sorts.

    Args:
        raw: Upstream record
        now: Substitute time for unparseable timestamps (defaults to utcnow)

    Returns:
        SubmissionRecord
    """
    data = _flatten(raw)
    now = now or datetime.now(timezone.utc)
    invalid = False

    created_raw = first_present(data, CREATED_TIME_FIELDS)
    try:
        created_time = parse_datetime(created_raw)
    except InvalidDateError:
        created_time = now
        invalid = True

    submission_ts = None
    if 'submissionTimestamp' in data and data['submissionTimestamp'] is not None:
        try:
            submission_ts = _submission_timestamp(data['submissionTimestamp'])
        except InvalidDateError:
            invalid = True

    record = SubmissionRecord(
        id=str(data.get('id') or ''),
        milestone_id=_linked_id(first_present(data, MILESTONE_ID_FIELDS)),
        team_id=_linked_id(first_present(data, TEAM_ID_FIELDS)),
        created_time=created_time,
        submission_timestamp=submission_ts,
        link=first_present(data, LINK_FIELDS),
        attachments=_attachments(first_present(data, ATTACHMENT_FIELDS)),
        comments=first_present(data, COMMENT_FIELDS) or '',
        invalid_date=invalid
    )

    if invalid:
        log_with_fields(
            logger, 'warning', 'Submission has an invalid timestamp',
            code='INVALID_DATE', submission_id=record.id,
            created_time=created_raw, submission_timestamp=data.get('submissionTimestamp')
        )

    return record


def normalize_submissions(raw_list: List[Dict[str, Any]], now: Optional[datetime] = None) -> List[SubmissionRecord]:
    """Normalize a batch, preserving upstream order."""
    now = now or datetime.now(timezone.utc)
    return [normalize_submission(raw, now=now) for raw in raw_list if isinstance(raw, dict)]


def normalize_milestone(raw: Dict[str, Any]) -> Milestone:
    """Convert an upstream milestone payload to a Milestone.

    An unparseable due date is dropped and flagged on the milestone.
    """
    data = _flatten(raw)

    due_raw = first_present(data, DUE_DATE_FIELDS)
    due_date = None
    invalid = False
    if due_raw is not None:
        try:
            due_date = parse_datetime(due_raw)
        except InvalidDateError:
            invalid = True
            log_with_fields(
                logger, 'warning', 'Milestone has an invalid due date',
                code='INVALID_DATE', milestone_id=data.get('id'), due_date=due_raw
            )

    sequence = first_present(data, SEQUENCE_FIELDS)
    try:
        sequence = int(sequence) if sequence is not None else 0
    except (TypeError, ValueError):
        sequence = 0

    return Milestone(
        id=str(data.get('id') or ''),
        name=first_present(data, NAME_FIELDS) or '',
        due_date=due_date,
        sequence=sequence,
        description=first_present(data, DESCRIPTION_FIELDS) or '',
        status_hint=first_present(data, STATUS_FIELDS),
        invalid_date=invalid
    )

"""Tests for milestone status derivation."""

import pytest
from datetime import datetime, timedelta, timezone

from milestone_sync.errors import InvalidDateError
from milestone_sync.state.deriver import (
    compute,
    days_remaining,
    derive_status,
    latest_submission,
    parse_datetime,
    summarize,
)
from milestone_sync.state.models import (
    Attachment,
    DerivedMilestoneStatus,
    Milestone,
    MilestoneStatus,
    SubmissionRecord,
)


NOW = datetime(2024, 2, 1, tzinfo=timezone.utc)


def make_submission(sub_id, created, submission_timestamp=None, attachments=0):
    """Build a SubmissionRecord with a parsed creation time."""
    return SubmissionRecord(
        id=sub_id,
        milestone_id='m1',
        team_id='t1',
        created_time=parse_datetime(created),
        submission_timestamp=submission_timestamp,
        attachments=tuple(
            Attachment(url=f'https://files.example.org/{sub_id}/{i}.pdf') for i in range(attachments)
        )
    )


class TestParseDatetime:
    """Test date parsing."""

    def test_date_only(self):
        """Test date-only strings parse to UTC midnight."""
        assert parse_datetime('2024-01-01') == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_zulu_suffix(self):
        """Test trailing Z is read as UTC."""
        parsed = parse_datetime('2024-03-01T10:00:00.000Z')
        assert parsed == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)

    def test_naive_datetime_assumed_utc(self):
        """Test naive datetimes get UTC attached."""
        assert parse_datetime(datetime(2024, 1, 1, 12)).tzinfo == timezone.utc

    def test_epoch_milliseconds(self):
        """Test numbers are read as epoch milliseconds."""
        assert parse_datetime(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize('value', ['not a date', '', None, True, float('nan')])
    def test_invalid_values(self, value):
        """Test unparseable values raise InvalidDateError."""
        with pytest.raises(InvalidDateError):
            parse_datetime(value)


class TestDeriveStatus:
    """Test the status rules."""

    def test_late_without_submission(self):
        """Test a past due date with no submissions is late."""
        result = derive_status(NOW - timedelta(days=1), NOW, [])

        assert result.status == MilestoneStatus.LATE
        assert result.has_submission is False
        assert result.latest_submission is None

    def test_upcoming_without_due_date(self):
        """Test no due date and no submissions is upcoming."""
        result = derive_status(None, NOW, [])

        assert result.status == MilestoneStatus.UPCOMING

    def test_upcoming_with_future_due_date(self):
        """Test a future due date is upcoming."""
        result = derive_status(NOW + timedelta(hours=1), NOW, [])

        assert result.status == MilestoneStatus.UPCOMING

    def test_due_exactly_now_is_not_late(self):
        """Test the late comparison is strict."""
        assert derive_status(NOW, NOW, []).status == MilestoneStatus.UPCOMING

    def test_invalid_due_date_is_never_late(self):
        """Test an unparseable due date is treated as absent."""
        result = derive_status('31/31/2020', NOW, [])

        assert result.status == MilestoneStatus.UPCOMING

    @pytest.mark.parametrize('due_date', [
        None,
        NOW - timedelta(days=365),
        NOW + timedelta(days=365),
        'garbage',
    ])
    def test_submission_dominates(self, due_date):
        """Test any submission makes the milestone completed."""
        submissions = [make_submission('s1', '2030-01-01T00:00:00Z')]

        result = derive_status(due_date, NOW, submissions)

        assert result.status == MilestoneStatus.COMPLETED
        assert result.has_submission is True

    def test_idempotent(self):
        """Test identical inputs give identical outputs."""
        submissions = [
            make_submission('s1', '2024-01-05T00:00:00Z', attachments=2),
            make_submission('s2', '2024-01-06T00:00:00Z', attachments=1),
        ]

        first = derive_status('2024-01-01', NOW, submissions, milestone_id='m1')
        second = derive_status('2024-01-01', NOW, submissions, milestone_id='m1')

        assert first == second
        assert first.to_dict() == second.to_dict()

    def test_attachment_count_from_latest(self):
        """Test attachment count reflects the latest submission."""
        submissions = [
            make_submission('s1', '2024-01-05T00:00:00Z', attachments=3),
            make_submission('s2', '2024-01-06T00:00:00Z', attachments=1),
        ]

        result = derive_status(None, NOW, submissions)

        assert result.latest_submission.id == 's2'
        assert result.attachment_count == 1

    def test_computed_at_is_now(self):
        """Test computed_at is the supplied reference time."""
        assert derive_status(None, NOW, []).computed_at == NOW


class TestScenarios:
    """End-to-end derivation scenarios."""

    def test_late_then_completed(self):
        """Test a late milestone becomes completed once a submission arrives."""
        milestone = Milestone(id='m1', name='Pitch deck', due_date=parse_datetime('2024-01-01'))

        before = compute(milestone, [], NOW)
        assert before.status == MilestoneStatus.LATE

        submission = make_submission('s1', '2024-02-02')
        after = compute(milestone, [submission], NOW)

        assert after.status == MilestoneStatus.COMPLETED
        assert after.has_submission is True
        assert after.milestone_id == 'm1'

    def test_latest_by_created_time(self):
        """Test the 10:00 record beats the 09:00 record."""
        submissions = [
            make_submission('ten', '2024-03-01T10:00:00Z'),
            make_submission('nine', '2024-03-01T09:00:00Z'),
        ]

        assert latest_submission(submissions).id == 'ten'
        assert latest_submission(list(reversed(submissions))).id == 'ten'


class TestLatestSubmission:
    """Test latest submission selection."""

    def test_empty(self):
        """Test no submissions yields None."""
        assert latest_submission([]) is None

    def test_tie_goes_to_earliest_position(self):
        """Test equal timestamps resolve to the earlier list entry."""
        submissions = [
            make_submission('first', '2024-03-01T10:00:00Z'),
            make_submission('second', '2024-03-01T10:00:00Z'),
        ]

        for _ in range(5):
            assert latest_submission(submissions).id == 'first'

    def test_submission_timestamp_preferred(self):
        """Test submissionTimestamp wins over createdTime."""
        late_ts = parse_datetime('2024-03-02T00:00:00Z').timestamp() * 1000
        submissions = [
            make_submission('created-later', '2024-03-01T12:00:00Z'),
            make_submission('stamped', '2024-03-01T08:00:00Z', submission_timestamp=late_ts),
        ]

        assert latest_submission(submissions).id == 'stamped'

    def test_out_of_range_timestamp_falls_back(self):
        """Test an unconvertible submissionTimestamp orders by createdTime."""
        submissions = [
            make_submission('huge', '2024-03-01T08:00:00Z', submission_timestamp=1e20),
            make_submission('plain', '2024-03-01T09:00:00Z'),
        ]

        assert submissions[0].resolved_time == parse_datetime('2024-03-01T08:00:00Z')
        assert latest_submission(submissions).id == 'plain'
        assert derive_status(None, NOW, submissions).status == MilestoneStatus.COMPLETED


class TestDerivedStatusInvariants:
    """Test DerivedMilestoneStatus rejects inconsistent combinations."""

    def test_completed_requires_submission(self):
        """Test completed without a submission is rejected."""
        with pytest.raises(ValueError):
            DerivedMilestoneStatus(
                milestone_id='m1',
                status=MilestoneStatus.COMPLETED,
                has_submission=False,
                latest_submission=None,
                attachment_count=0,
                computed_at=NOW
            )

    def test_submission_requires_completed(self):
        """Test a submission with a late status is rejected."""
        with pytest.raises(ValueError):
            DerivedMilestoneStatus(
                milestone_id='m1',
                status=MilestoneStatus.LATE,
                has_submission=True,
                latest_submission=make_submission('s1', '2024-01-01'),
                attachment_count=0,
                computed_at=NOW
            )

    def test_unknown_status(self):
        """Test statuses outside the three values are rejected."""
        with pytest.raises(ValueError):
            DerivedMilestoneStatus(
                milestone_id='m1',
                status='in_progress',
                has_submission=False,
                latest_submission=None,
                attachment_count=0,
                computed_at=NOW
            )


class TestSummary:
    """Test summary aggregation and day counts."""

    def test_days_remaining(self):
        """Test whole days are rounded up and go negative when past."""
        assert days_remaining(NOW + timedelta(hours=30), NOW) == 2
        assert days_remaining(NOW - timedelta(days=3), NOW) == -3
        assert days_remaining(None, NOW) is None

    def test_summarize(self):
        """Test counts, progress and the next milestone."""
        milestones = [
            Milestone(id='m1', due_date=NOW - timedelta(days=10), sequence=1),
            Milestone(id='m2', due_date=NOW - timedelta(days=2), sequence=2),
            Milestone(id='m3', due_date=NOW + timedelta(days=14), sequence=3),
            Milestone(id='m4', due_date=NOW + timedelta(days=7), sequence=4),
        ]
        statuses = {
            'm1': compute(milestones[0], [make_submission('s1', '2024-01-20')], NOW),
        }

        summary = summarize(milestones, statuses, NOW)

        assert summary.total == 4
        assert summary.completed == 1
        assert summary.late == 1
        assert summary.upcoming == 2
        assert summary.progress_percent == 25
        assert summary.next_milestone.id == 'm4'

    def test_summarize_empty(self):
        """Test an empty milestone list."""
        summary = summarize([], {}, NOW)

        assert summary.total == 0
        assert summary.progress_percent == 0
        assert summary.next_milestone is None


if __name__ == '__main__':
    pytest.main([__file__, '-v'])

"""Tests for ChangeBus delivery semantics."""

import pytest
from datetime import datetime, timezone

from milestone_sync.state.models import Attachment, ChangeEvent, SubmissionRecord
from milestone_sync.sync.bus import ChangeBus, for_milestone


def make_event(milestone_id='m1', team_id='t1'):
    return ChangeEvent(milestone_id=milestone_id, team_id=team_id, submissions=())


class TestChangeBus:
    """Test publish/subscribe behavior."""

    @pytest.fixture
    def bus(self):
        return ChangeBus()

    def test_fan_out(self, bus):
        """Test every subscriber sees the event, removed ones do not."""
        seen = []
        bus.subscribe(None, lambda e: seen.append('a'))
        unsubscribe_b = bus.subscribe(None, lambda e: seen.append('b'))
        bus.subscribe(None, lambda e: seen.append('c'))

        unsubscribe_b()
        delivered = bus.publish(make_event())

        assert seen == ['a', 'c']
        assert delivered == 2

    def test_delivery_in_subscription_order(self, bus):
        """Test handlers run in the order they subscribed."""
        seen = []
        for name in ['first', 'second', 'third']:
            bus.subscribe(None, lambda e, name=name: seen.append(name))

        bus.publish(make_event())

        assert seen == ['first', 'second', 'third']

    def test_predicate_filters_per_subscriber(self, bus):
        """Test predicates are applied by each subscription."""
        seen = []
        bus.subscribe(for_milestone(['m1'], 't1'), lambda e: seen.append(('m1-t1', e.milestone_id)))
        bus.subscribe(for_milestone(['m2']), lambda e: seen.append(('m2-any', e.milestone_id)))

        bus.publish(make_event('m1', 't1'))
        bus.publish(make_event('m1', 't2'))
        bus.publish(make_event('m2', 't9'))

        assert seen == [('m1-t1', 'm1'), ('m2-any', 'm2')]

    def test_subscribe_during_delivery_misses_event(self, bus):
        """Test subscriptions added mid-delivery only see later events."""
        seen = []

        def late_handler(event):
            seen.append(('late', event.milestone_id))

        def first_handler(event):
            seen.append(('first', event.milestone_id))
            if event.milestone_id == 'm1':
                bus.subscribe(None, late_handler)

        bus.subscribe(None, first_handler)
        bus.publish(make_event('m1'))
        bus.publish(make_event('m2'))

        assert seen == [('first', 'm1'), ('first', 'm2'), ('late', 'm2')]

    def test_unsubscribe_during_delivery_applies_to_next_event(self, bus):
        """Test unsubscribing mid-delivery does not skip the current event."""
        seen = []
        handles = {}

        def remover(event):
            seen.append('remover')
            handles['victim']()

        bus.subscribe(None, remover)
        handles['victim'] = bus.subscribe(None, lambda e: seen.append('victim'))

        bus.publish(make_event())
        bus.publish(make_event())

        assert seen == ['remover', 'victim', 'remover']

    def test_unsubscribe_is_idempotent(self, bus):
        """Test calling unsubscribe repeatedly is safe."""
        unsubscribe = bus.subscribe(None, lambda e: None)

        unsubscribe()
        unsubscribe()

        assert bus.subscriber_count == 0

    def test_failing_handler_does_not_stop_delivery(self, bus):
        """Test a raising handler is skipped."""
        seen = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe(None, broken)
        bus.subscribe(None, lambda e: seen.append(e.milestone_id))

        bus.publish(make_event('m7'))

        assert seen == ['m7']

    def test_event_payload_contract(self):
        """Test the stable payload keys."""
        payload = make_event('m1', 't1').to_payload()

        assert payload == {'milestoneId': 'm1', 'teamId': 't1', 'submissions': []}

    def test_event_rebuilt_from_payload(self):
        """Test a payload with submissions turns back into an equal event body."""
        record = SubmissionRecord(
            id='s1',
            milestone_id='m1',
            team_id='t1',
            created_time=datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc),
            submission_timestamp=1709287200000.0,
            attachments=(Attachment(url='https://files.example.org/a.pdf', filename='a.pdf'),),
            comments='Final'
        )
        event = ChangeEvent(milestone_id='m1', team_id='t1', submissions=(record,), origin='dialog-1')

        rebuilt = ChangeEvent.from_payload(event.to_payload(), origin='dialog-1')

        assert rebuilt.submissions == (record,)
        assert rebuilt.origin == 'dialog-1'
        assert rebuilt.to_payload() == event.to_payload()


if __name__ == '__main__':
    pytest.main([__file__, '-v'])

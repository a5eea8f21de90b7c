"""Publish/subscribe channel for submission change notifications.

The bus broadcasts every event to every subscriber; each subscription
applies its own predicate. Delivery is synchronous and walks a snapshot
of the subscriber list taken when ``publish`` is called.
"""

import logging
from typing import Optional, Callable, Iterable, List

from milestone_sync.state.models import ChangeEvent


logger = logging.getLogger("milestone_sync.bus")


Predicate = Callable[[str, Optional[str]], bool]
Handler = Callable[[ChangeEvent], None]


def for_milestone(milestone_ids: Iterable[str], team_id: Optional[str] = None) -> Predicate:
    """Predicate accepting events for the given milestones (and team)."""
    wanted = frozenset(milestone_ids)

    def predicate(milestone_id: str, event_team_id: Optional[str]) -> bool:
        if milestone_id not in wanted:
            return False
        return team_id is None or event_team_id == team_id

    return predicate


class Subscription:
    """A registered (predicate, handler) pair."""

    def __init__(self, bus: "ChangeBus", predicate: Optional[Predicate], handler: Handler):
        self._bus = bus
        self.predicate = predicate
        self.handler = handler
        self.active = True

    def deliver(self, event: ChangeEvent) -> None:
        """Filter and hand the event to the handler."""
        if self.predicate is not None and not self.predicate(event.milestone_id, event.team_id):
            return
        self.handler(event)

    def unsubscribe(self) -> None:
        """Remove this subscription. Safe to call more than once."""
        if not self.active:
            return
        self.active = False
        self._bus._remove(self)


class ChangeBus:
    """Injectable broadcast channel for ChangeEvents."""

    def __init__(self):
        self._subscribers: List[Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, predicate: Optional[Predicate], handler: Handler) -> Callable[[], None]:
        """Register a handler.

        Args:
            predicate: ``(milestone_id, team_id) -> bool`` or None for all events
            handler: Called with each accepted ChangeEvent

        Returns:
            Idempotent unsubscribe function
        """
        subscription = Subscription(self, predicate, handler)
        # Copy-on-write keeps any in-progress delivery snapshot intact.
        self._subscribers = self._subscribers + [subscription]
        return subscription.unsubscribe

    def _remove(self, subscription: Subscription) -> None:
        self._subscribers = [s for s in self._subscribers if s is not subscription]

    def publish(self, event: ChangeEvent) -> int:
        """Deliver an event to every current subscriber, in order.

        Subscribers added during delivery do not see this event;
        unsubscribing during delivery only affects later events.

        Returns:
            Number of subscriptions the event was offered to
        """
        snapshot = self._subscribers
        logger.debug(
            f"Publishing change for milestone {event.milestone_id} "
            f"(team {event.team_id}) to {len(snapshot)} subscribers"
        )
        for subscription in snapshot:
            try:
                subscription.deliver(event)
            except Exception:
                logger.exception(
                    f"Subscriber failed handling change for milestone {event.milestone_id}"
                )
        return len(snapshot)

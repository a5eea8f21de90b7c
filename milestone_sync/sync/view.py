"""Headless per-view milestone state and the multi-view consistency protocol.

Each rendered surface (table, summary card, timeline, submission dialog)
owns one ``MilestoneView``. Views share a ``SubmissionChecker`` and a
``ChangeBus`` but keep their own derived statuses:

    1. A view creates a submission through the record store.
    2. It applies the new status locally right away.
    3. It publishes a ChangeEvent with its submissions snapshot.
    4. It starts a cascade of forced re-fetches to verify against the store.
    5. Sibling views recompute from the event snapshot without a fetch.

Views that were not subscribed at publish time pick up the change on
their next checker call.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Callable, Dict, Hashable, Iterable, Tuple

from milestone_sync.errors import NetworkError
from milestone_sync.state.checker import SubmissionChecker
from milestone_sync.state.deriver import compute, summarize
from milestone_sync.state.models import (
    ChangeEvent,
    DerivedMilestoneStatus,
    Milestone,
    MilestoneSummary,
    SubmissionRecord,
)
from milestone_sync.store.client import RecordStoreClient
from milestone_sync.store.validators import SubmissionCreateRequest
from milestone_sync.sync.bus import ChangeBus
from milestone_sync.sync.scheduler import LivenessToken, ReconciliationScheduler
from milestone_sync.utils.logging_config import log_with_fields


logger = logging.getLogger("milestone_sync.view")


VIEW_MODE_KEY = "view-mode"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MilestoneView:
    """Derived milestone statuses for one view, kept in sync with siblings."""

    def __init__(
        self,
        name: str,
        team_id: Optional[str],
        checker: SubmissionChecker,
        bus: ChangeBus,
        client: Optional[RecordStoreClient] = None,
        delays: Optional[Iterable[float]] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        """Initialize view state.

        Args:
            name: View name used in logs (e.g. "table", "timeline")
            team_id: Team whose submissions this view shows
            checker: Shared submission checker
            bus: Shared change bus
            client: Record store client, required for ``submit``
            delays: Settle-window cascade offsets in seconds
            clock: Source of "now" for status derivation
        """
        self.name = name
        self.view_id = f"{name}-{uuid.uuid4().hex[:8]}"
        self.team_id = team_id
        self.checker = checker
        self.bus = bus
        self.client = client
        self.mode: Optional[str] = None
        self._clock = clock

        self.milestones: Dict[str, Milestone] = {}
        self.submissions: Dict[str, Tuple[SubmissionRecord, ...]] = {}
        self.statuses: Dict[str, DerivedMilestoneStatus] = {}
        self.errors: Dict[str, NetworkError] = {}

        # Own writes not yet confirmed by the store, per milestone.
        self._optimistic: Dict[str, Dict[str, SubmissionRecord]] = {}

        self.token = LivenessToken()
        self.scheduler = ReconciliationScheduler(
            on_fire=self._on_cascade,
            delays=delays,
            token=self.token
        )
        self._unsubscribe = bus.subscribe(self._accepts, self._on_change)

    @property
    def alive(self) -> bool:
        return self.token.alive

    def track(self, milestones: Iterable[Milestone]) -> None:
        """Add milestones to the set this view renders."""
        for milestone in milestones:
            self.milestones[milestone.id] = milestone
            if milestone.id in self.submissions:
                self._recompute(milestone.id)

    def status(self, milestone_id: str) -> Optional[DerivedMilestoneStatus]:
        """Last derived status, or None before the first load."""
        return self.statuses.get(milestone_id)

    def summary(self) -> MilestoneSummary:
        """Counts and next milestone for summary cards."""
        ordered = sorted(self.milestones.values(), key=lambda m: m.sequence)
        return summarize(ordered, self.statuses, self._clock())

    def _recompute(self, milestone_id: str) -> Optional[DerivedMilestoneStatus]:
        milestone = self.milestones.get(milestone_id)
        if milestone is None:
            return None
        derived = compute(milestone, self.submissions.get(milestone_id, ()), self._clock())
        self.statuses[milestone_id] = derived
        return derived

    async def refresh(
        self,
        milestone_id: Optional[str] = None,
        force: bool = False
    ) -> Dict[str, Optional[DerivedMilestoneStatus]]:
        """Resolve submissions and recompute statuses.

        Args:
            milestone_id: Single milestone to refresh (all tracked if None)
            force: Bypass the checker cache

        Returns:
            Derived statuses keyed by milestone id
        """
        ids = [milestone_id] if milestone_id is not None else list(self.milestones)
        results = await asyncio.gather(*(self._refresh_one(mid, force) for mid in ids))
        return dict(zip(ids, results))

    async def _refresh_one(
        self,
        milestone_id: str,
        force: bool,
        final: bool = False
    ) -> Optional[DerivedMilestoneStatus]:
        result = await self.checker.request(milestone_id, self.team_id, force_refresh=force)

        if not self.alive:
            return None

        if result.errored:
            # Keep the last known status; the error is reported separately.
            self.errors[milestone_id] = result.error
            return self.statuses.get(milestone_id)

        self.errors.pop(milestone_id, None)
        self.submissions[milestone_id] = self._merge_optimistic(
            milestone_id, result.submissions, final
        )
        return self._recompute(milestone_id)

    def _merge_optimistic(
        self,
        milestone_id: str,
        fetched: Tuple[SubmissionRecord, ...],
        final: bool
    ) -> Tuple[SubmissionRecord, ...]:
        pending = self._optimistic.get(milestone_id)
        if not pending:
            return fetched

        fetched_ids = {record.id for record in fetched}
        for record_id in list(pending):
            if record_id in fetched_ids:
                del pending[record_id]

        if final or not pending:
            if pending:
                log_with_fields(
                    logger, 'warning', 'Store never confirmed optimistic submission',
                    view=self.name, milestone_id=milestone_id,
                    submission_ids=sorted(pending)
                )
            self._optimistic.pop(milestone_id, None)
            return fetched

        return fetched + tuple(pending.values())

    async def submit(
        self,
        milestone_id: str,
        file_urls: Iterable[str] = (),
        link: Optional[str] = None,
        comments: str = ""
    ) -> SubmissionRecord:
        """Create a submission and propagate it to sibling views.

        Args:
            milestone_id: Milestone being submitted
            file_urls: URLs of already-uploaded files
            link: Optional submission link
            comments: Free-form comments

        Returns:
            The created SubmissionRecord

        Raises:
            pydantic.ValidationError: If the payload is invalid
            NetworkError: If the store rejects the submission
            RuntimeError: If the view has no record store client
        """
        if self.client is None:
            raise RuntimeError(f"View {self.name} has no record store client")

        request = SubmissionCreateRequest(
            teamId=self.team_id or "",
            milestoneId=milestone_id,
            fileUrls=list(file_urls),
            link=link,
            comments=comments
        )
        record = await asyncio.to_thread(self.client.create_submission, request)

        known = await self._known_submissions(milestone_id)
        snapshot = tuple(s for s in known if s.id != record.id) + (record,)

        if self.alive:
            self._optimistic.setdefault(milestone_id, {})[record.id] = record
            self.submissions[milestone_id] = snapshot
            self._recompute(milestone_id)

        self.checker.prime(milestone_id, self.team_id, list(snapshot))
        event = ChangeEvent(
            milestone_id=milestone_id,
            team_id=self.team_id,
            submissions=snapshot,
            emitted_at=self._clock(),
            origin=self.view_id
        )
        delivered = self.bus.publish(event)
        self.scheduler.trigger(milestone_id)

        log_with_fields(
            logger, 'info', 'Submission created',
            view=self.name, milestone_id=milestone_id, team_id=self.team_id,
            submission_id=record.id, subscribers=delivered
        )
        return record

    async def _known_submissions(self, milestone_id: str) -> Tuple[SubmissionRecord, ...]:
        # A view that never loaded this milestone borrows the shared checker's data.
        if milestone_id in self.submissions:
            return self.submissions[milestone_id]
        result = await self.checker.request(milestone_id, self.team_id)
        if result.errored:
            log_with_fields(
                logger, 'warning', 'Publishing snapshot without prior submissions',
                view=self.name, milestone_id=milestone_id, code=result.error.code
            )
            return ()
        return result.submissions

    def switch_mode(self, mode: str) -> int:
        """Change the view mode and re-verify once layout has settled.

        Returns:
            Number of cascade entries scheduled
        """
        self.mode = mode
        return self.scheduler.trigger(VIEW_MODE_KEY)

    def _accepts(self, milestone_id: str, team_id: Optional[str]) -> bool:
        if milestone_id not in self.milestones:
            return False
        return self.team_id is None or team_id == self.team_id

    def _on_change(self, event: ChangeEvent) -> None:
        if event.origin == self.view_id or not self.alive:
            return

        milestone_id = event.milestone_id
        snapshot = tuple(event.submissions)

        pending = self._optimistic.get(milestone_id)
        if pending:
            snapshot_ids = {record.id for record in snapshot}
            missing = sorted(rid for rid in pending if rid not in snapshot_ids)
            if missing:
                # Last publish wins locally; the next fetch settles it.
                log_with_fields(
                    logger, 'warning', 'Concurrent updates for milestone',
                    code='CONCURRENCY_CONFLICT', view=self.name,
                    milestone_id=milestone_id, origin=event.origin,
                    overwritten=missing
                )

        self.checker.apply_event(event)
        self.submissions[milestone_id] = snapshot
        self._recompute(milestone_id)
        logger.debug(f"View {self.name} applied change for milestone {milestone_id} from {event.origin}")

    async def _on_cascade(self, key: Hashable, final: bool) -> None:
        if key == VIEW_MODE_KEY:
            await self.refresh(force=True)
        else:
            await self._refresh_one(key, force=True, final=final)

    def close(self) -> None:
        """Tear the view down. Later events and cascade entries are no-ops."""
        if not self.alive:
            return
        self._unsubscribe()
        self.scheduler.close()
        logger.debug(f"View {self.name} closed")

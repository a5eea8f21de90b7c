"""Per-milestone submission access with request collapsing and a TTL cache.

All bookkeeping happens on the event loop thread. The only suspension
point is the fetch itself, so every check-then-set on ``_cache`` and
``_inflight`` completes within a single cooperative turn.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Optional, Dict, Any, Callable, List, Tuple

from milestone_sync.errors import NetworkError
from milestone_sync.state.models import SubmissionRecord, as_submission_tuple
from milestone_sync.utils.logging_config import log_with_fields


logger = logging.getLogger("milestone_sync.checker")


CacheKey = Tuple[str, Optional[str]]


class LoadKind:
    """Load states of a cache key."""
    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"
    ERROR = "error"


@dataclass(frozen=True)
class LoadState:
    """Explicit load state for one (milestone, team) key."""
    kind: str = LoadKind.UNLOADED
    data: Optional[Tuple[SubmissionRecord, ...]] = None
    error: Optional[NetworkError] = None

    @property
    def is_loading(self) -> bool:
        return self.kind == LoadKind.LOADING


UNLOADED = LoadState()


def begin_loading(state: LoadState) -> LoadState:
    """Unloaded, Loaded or Error -> Loading."""
    if state.kind == LoadKind.LOADING:
        raise ValueError("Already loading")
    return LoadState(kind=LoadKind.LOADING)


def resolve(state: LoadState, data) -> LoadState:
    """Loading -> Loaded(data)."""
    if state.kind != LoadKind.LOADING:
        raise ValueError(f"Cannot resolve from {state.kind}")
    return LoadState(kind=LoadKind.LOADED, data=as_submission_tuple(data))


def fail(state: LoadState, error: NetworkError) -> LoadState:
    """Loading -> Error(err)."""
    if state.kind != LoadKind.LOADING:
        raise ValueError(f"Cannot fail from {state.kind}")
    return LoadState(kind=LoadKind.ERROR, error=error)


@dataclass(frozen=True)
class CheckResult:
    """Outcome of a submission check.

    ``errored`` distinguishes a failed fetch from a confirmed empty list.
    """
    milestone_id: str
    team_id: Optional[str]
    submissions: Tuple[SubmissionRecord, ...] = ()
    error: Optional[NetworkError] = None
    from_cache: bool = False

    @property
    def errored(self) -> bool:
        return self.error is not None

    @property
    def has_submission(self) -> bool:
        return bool(self.submissions)


@dataclass
class _CacheEntry:
    submissions: Tuple[SubmissionRecord, ...]
    fetched_at: float
    last_access: float


class SubmissionChecker:
    """Resolves submissions per milestone from cache or the record store."""

    DEFAULT_TTL_SEC = 300.0

    def __init__(
        self,
        fetch: Callable[[str, Optional[str]], Any],
        ttl_sec: float = DEFAULT_TTL_SEC,
        clock: Callable[[], float] = time.monotonic
    ):
        """Initialize submission checker.

        Args:
            fetch: ``(milestone_id, team_id) -> List[SubmissionRecord]``.
                Blocking callables run in a worker thread; coroutine
                functions are awaited directly.
            ttl_sec: Cache time-to-live in seconds
            clock: Monotonic clock used for TTL bookkeeping
        """
        self._fetch_fn = fetch
        self._fetch_is_async = inspect.iscoroutinefunction(fetch)
        self.ttl_sec = ttl_sec
        self._clock = clock

        self._cache: Dict[CacheKey, _CacheEntry] = {}
        self._inflight: Dict[CacheKey, asyncio.Future] = {}
        self._states: Dict[CacheKey, LoadState] = {}
        self._stats = {
            'hits': 0,
            'misses': 0,
            'collapsed': 0,
            'fetches': 0,
            'errors': 0,
        }

    def state(self, milestone_id: str, team_id: Optional[str] = None) -> LoadState:
        """Current load state for a key."""
        return self._states.get((milestone_id, team_id), UNLOADED)

    async def request(
        self,
        milestone_id: str,
        team_id: Optional[str] = None,
        force_refresh: bool = False
    ) -> CheckResult:
        """Resolve submissions for a milestone.

        Concurrent callers for the same key share one outbound fetch.
        ``force_refresh`` skips the cache but still joins a pending fetch.

        Args:
            milestone_id: Milestone ID
            team_id: Optional team filter
            force_refresh: Bypass a fresh cache entry

        Returns:
            CheckResult; network failures are reported via ``error``
        """
        key = (milestone_id, team_id)
        now = self._clock()
        self.prune(now)

        if not force_refresh:
            entry = self._cache.get(key)
            if entry is not None and now - entry.fetched_at < self.ttl_sec:
                entry.last_access = now
                self._stats['hits'] += 1
                return CheckResult(
                    milestone_id=milestone_id,
                    team_id=team_id,
                    submissions=entry.submissions,
                    from_cache=True
                )

        task = self._inflight.get(key)
        if task is None:
            self._stats['misses'] += 1
            current = self.state(milestone_id, team_id)
            if not current.is_loading:
                # A cancelled fetch can leave the key in Loading.
                self._states[key] = begin_loading(current)
            task = asyncio.ensure_future(self._run_fetch(key))
            self._inflight[key] = task
        else:
            self._stats['collapsed'] += 1
            logger.debug(f"Joining in-flight fetch for {key}")

        # A cancelled caller must not cancel the fetch other callers share.
        return await asyncio.shield(task)

    async def _run_fetch(self, key: CacheKey) -> CheckResult:
        milestone_id, team_id = key
        self._stats['fetches'] += 1
        try:
            if self._fetch_is_async:
                records = await self._fetch_fn(milestone_id, team_id)
            else:
                records = await asyncio.to_thread(self._fetch_fn, milestone_id, team_id)
        except NetworkError as e:
            return self._record_failure(key, e)
        except Exception as e:
            logger.exception(f"Unexpected error fetching submissions for {key}")
            return self._record_failure(key, NetworkError(code='NETWORK_ERROR', message=str(e)))
        finally:
            self._inflight.pop(key, None)

        submissions = as_submission_tuple(records)
        now = self._clock()
        self._cache[key] = _CacheEntry(submissions=submissions, fetched_at=now, last_access=now)
        self._states[key] = self._transition(key, resolve, submissions)

        logger.debug(f"Fetched {len(submissions)} submissions for {key}")
        return CheckResult(milestone_id=milestone_id, team_id=team_id, submissions=submissions)

    def _record_failure(self, key: CacheKey, error: NetworkError) -> CheckResult:
        # The cache is left untouched so the next request retries cleanly.
        self._stats['errors'] += 1
        self._states[key] = self._transition(key, fail, error)
        log_with_fields(
            logger, 'warning', 'Submission fetch failed',
            milestone_id=key[0], team_id=key[1], code=error.code,
            status_code=error.status_code, error=error.message
        )
        return CheckResult(milestone_id=key[0], team_id=key[1], error=error)

    def _transition(self, key: CacheKey, fn, value) -> LoadState:
        current = self._states.get(key, UNLOADED)
        if not current.is_loading:
            # Primed or invalidated while the fetch was in flight.
            current = begin_loading(current)
        return fn(current, value)

    def prime(
        self,
        milestone_id: str,
        team_id: Optional[str],
        submissions: List[SubmissionRecord]
    ) -> None:
        """Refresh an entry from a known snapshot without a fetch."""
        key = (milestone_id, team_id)
        now = self._clock()
        data = as_submission_tuple(submissions)
        self._cache[key] = _CacheEntry(submissions=data, fetched_at=now, last_access=now)
        if not self.state(milestone_id, team_id).is_loading:
            self._states[key] = LoadState(kind=LoadKind.LOADED, data=data)

    def apply_event(self, event) -> None:
        """Refresh the entry a ChangeEvent refers to."""
        self.prime(event.milestone_id, event.team_id, list(event.submissions))

    def invalidate(self, milestone_id: str, team_id: Optional[str] = None) -> int:
        """Drop cached entries for a milestone (all teams if team_id is None).

        Returns:
            Number of entries removed
        """
        keys = [
            k for k in self._cache
            if k[0] == milestone_id and (team_id is None or k[1] == team_id)
        ]
        for key in keys:
            del self._cache[key]
            if not self._states.get(key, UNLOADED).is_loading:
                self._states.pop(key, None)
        return len(keys)

    def prune(self, now: Optional[float] = None) -> int:
        """Discard entries nobody referenced for longer than the TTL."""
        now = self._clock() if now is None else now
        expired = [
            key for key, entry in self._cache.items()
            if now - entry.last_access > self.ttl_sec and key not in self._inflight
        ]
        for key in expired:
            del self._cache[key]
            self._states.pop(key, None)
        if expired:
            logger.debug(f"Pruned {len(expired)} idle cache entries")
        return len(expired)

    def stats(self) -> Dict[str, int]:
        """Counters for observability."""
        result = dict(self._stats)
        result['entries'] = len(self._cache)
        result['inflight'] = len(self._inflight)
        return result

"""Superseding cascades of delayed re-verification.

After a mutating action the record store may not reflect the change yet,
so a single immediate re-check is unreliable. A cascade schedules several
checks at increasing offsets; a new trigger for the same key replaces any
entries of the previous cascade that have not fired yet.

This is a liveness aid only. Correctness rests on the store being the
arbiter and on every reader eventually re-querying it.
"""

import asyncio
import inspect
import logging
from typing import Optional, Any, Callable, Dict, Hashable, Iterable, List, Set

from milestone_sync.config import DEFAULT_SETTLE_DELAYS


logger = logging.getLogger("milestone_sync.scheduler")


FireCallback = Callable[[Hashable, bool], Any]


class LivenessToken:
    """Marks whether the owner of scheduled work still exists."""

    def __init__(self):
        self._alive = True

    @property
    def alive(self) -> bool:
        return self._alive

    def kill(self) -> None:
        self._alive = False


class ReconciliationScheduler:
    """Keyed, cancellable, reschedulable cascades on the running event loop."""

    def __init__(
        self,
        on_fire: Optional[FireCallback] = None,
        delays: Optional[Iterable[float]] = None,
        token: Optional[LivenessToken] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None
    ):
        """Initialize scheduler.

        Args:
            on_fire: ``(key, final) -> None | awaitable`` used by ``trigger``
            delays: Offsets in seconds for each cascade entry
            token: Liveness token of the owning view (created if None)
            loop: Event loop (defaults to the running loop)
        """
        self.delays = tuple(delays) if delays is not None else DEFAULT_SETTLE_DELAYS
        self.token = token or LivenessToken()
        self._on_fire = on_fire
        self._loop = loop

        self._handles: Dict[Hashable, List[asyncio.TimerHandle]] = {}
        self._pending: Dict[Hashable, Set[int]] = {}
        self._generation: Dict[Hashable, int] = {}
        self._tasks: Set[asyncio.Future] = set()

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def debounce(
        self,
        key: Hashable,
        fn: FireCallback,
        delays: Optional[Iterable[float]] = None
    ) -> int:
        """Schedule a cascade for ``key``, superseding any pending one.

        Args:
            key: Subject of the cascade (milestone id, view-mode toggle, ...)
            fn: Called as ``fn(key, final)`` at each offset
            delays: Offsets overriding the scheduler default

        Returns:
            Number of entries scheduled (0 once the owner is gone)
        """
        if not self.token.alive:
            logger.debug(f"Ignoring cascade for {key!r}: owner closed")
            return 0

        self.cancel(key)
        offsets = tuple(delays) if delays is not None else self.delays
        if not offsets:
            return 0

        loop = self._get_loop()
        generation = self._generation.get(key, 0) + 1
        self._generation[key] = generation

        last = len(offsets) - 1
        self._handles[key] = [
            loop.call_later(delay, self._fire, key, generation, index, fn, index == last)
            for index, delay in enumerate(offsets)
        ]
        self._pending[key] = set(range(len(offsets)))

        logger.debug(f"Scheduled {len(offsets)} re-checks for {key!r} at {offsets}")
        return len(offsets)

    def trigger(self, key: Hashable) -> int:
        """Start (or restart) the default cascade for ``key``."""
        if self._on_fire is None:
            raise RuntimeError("Scheduler has no on_fire callback")
        return self.debounce(key, self._on_fire)

    def _fire(self, key: Hashable, generation: int, index: int, fn: FireCallback, final: bool) -> None:
        # Entries from a superseded cascade or a closed owner are no-ops.
        if not self.token.alive or self._generation.get(key) != generation:
            return

        remaining = self._pending.get(key)
        if remaining is not None:
            remaining.discard(index)
            if not remaining:
                self._pending.pop(key, None)
                self._handles.pop(key, None)

        try:
            result = fn(key, final)
        except Exception:
            logger.exception(f"Re-check for {key!r} failed")
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Future) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Re-check task failed", exc_info=exc)

    def pending(self, key: Hashable) -> int:
        """Number of entries of the current cascade not yet fired."""
        return len(self._pending.get(key, ()))

    def cancel(self, key: Hashable) -> int:
        """Cancel the unfired entries of ``key``'s cascade.

        Returns:
            Number of entries cancelled
        """
        handles = self._handles.pop(key, [])
        remaining = self._pending.pop(key, set())
        for handle in handles:
            handle.cancel()
        if key in self._generation:
            self._generation[key] += 1
        return len(remaining)

    def close(self) -> None:
        """Kill the liveness token and cancel all scheduled and running work."""
        self.token.kill()
        for key in list(self._handles):
            self.cancel(key)
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

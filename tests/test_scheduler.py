"""Tests for ReconciliationScheduler cascades."""

import asyncio
import pytest

from milestone_sync.sync.scheduler import LivenessToken, ReconciliationScheduler


DELAYS = (0.0, 0.01, 0.02)


class TestCascade:
    """Test cascade scheduling."""

    def test_entries_fire_in_order_with_final_flag(self):
        """Test each offset fires once and the last one is final."""
        fired = []

        async def scenario():
            scheduler = ReconciliationScheduler(lambda key, final: fired.append((key, final)), delays=DELAYS)
            scheduled = scheduler.trigger('m1')
            assert scheduler.pending('m1') == 3
            await asyncio.sleep(0.1)
            return scheduled, scheduler.pending('m1')

        scheduled, pending = asyncio.run(scenario())

        assert scheduled == 3
        assert pending == 0
        assert fired == [('m1', False), ('m1', False), ('m1', True)]

    def test_new_trigger_supersedes_pending_entries(self):
        """Test a re-trigger cancels the previous cascade instead of adding to it."""
        fired = []

        async def scenario():
            scheduler = ReconciliationScheduler(
                lambda key, final: fired.append((key, final)),
                delays=(0.02, 0.04)
            )
            scheduler.trigger('m1')
            await asyncio.sleep(0.01)
            scheduler.trigger('m1')
            await asyncio.sleep(0.15)

        asyncio.run(scenario())

        assert fired == [('m1', False), ('m1', True)]

    def test_keys_are_independent(self):
        """Test cascades for different keys do not cancel each other."""
        fired = []

        async def scenario():
            scheduler = ReconciliationScheduler(lambda key, final: fired.append(key), delays=(0.0, 0.01))
            scheduler.trigger('m1')
            scheduler.trigger('view-mode')
            await asyncio.sleep(0.05)

        asyncio.run(scenario())

        assert fired.count('m1') == 2
        assert fired.count('view-mode') == 2

    def test_debounce_with_custom_delays(self):
        """Test debounce accepts its own offsets and callback."""
        fired = []

        async def scenario():
            scheduler = ReconciliationScheduler(delays=DELAYS)
            count = scheduler.debounce('layout', lambda key, final: fired.append(final), delays=(0.0,))
            await asyncio.sleep(0.02)
            return count

        assert asyncio.run(scenario()) == 1
        assert fired == [True]

    def test_cancel(self):
        """Test cancel drops unfired entries."""
        fired = []

        async def scenario():
            scheduler = ReconciliationScheduler(lambda key, final: fired.append(key), delays=(0.02, 0.03))
            scheduler.trigger('m1')
            cancelled = scheduler.cancel('m1')
            await asyncio.sleep(0.06)
            return cancelled

        assert asyncio.run(scenario()) == 2
        assert fired == []

    def test_trigger_requires_callback(self):
        """Test trigger without on_fire is an error."""
        scheduler = ReconciliationScheduler()

        with pytest.raises(RuntimeError):
            scheduler.trigger('m1')


class TestLiveness:
    """Test liveness token handling."""

    def test_close_makes_pending_entries_noops(self):
        """Test entries never run after the owner closes."""
        fired = []

        async def scenario():
            scheduler = ReconciliationScheduler(lambda key, final: fired.append(key), delays=(0.01, 0.02))
            scheduler.trigger('m1')
            scheduler.close()
            await asyncio.sleep(0.05)
            return scheduler.trigger('m1')

        assert asyncio.run(scenario()) == 0
        assert fired == []

    def test_killed_token_stops_remaining_entries(self):
        """Test a token killed mid-cascade suppresses later entries."""
        fired = []
        token = LivenessToken()

        def on_fire(key, final):
            fired.append(key)
            token.kill()

        async def scenario():
            scheduler = ReconciliationScheduler(on_fire, delays=DELAYS, token=token)
            scheduler.trigger('m1')
            await asyncio.sleep(0.05)

        asyncio.run(scenario())

        assert fired == ['m1']

    def test_async_callback_runs_as_task(self):
        """Test coroutine callbacks are awaited as tracked tasks."""
        fired = []

        async def on_fire(key, final):
            await asyncio.sleep(0)
            fired.append((key, final))

        async def scenario():
            scheduler = ReconciliationScheduler(on_fire, delays=(0.0,))
            scheduler.trigger('m1')
            await asyncio.sleep(0.02)

        asyncio.run(scenario())

        assert fired == [('m1', True)]

    def test_close_cancels_running_tasks(self):
        """Test close cancels a fire task that is still running."""
        state = {'finished': False, 'started': False}

        async def on_fire(key, final):
            state['started'] = True
            await asyncio.sleep(1)
            state['finished'] = True

        async def scenario():
            scheduler = ReconciliationScheduler(on_fire, delays=(0.0,))
            scheduler.trigger('m1')
            await asyncio.sleep(0.01)
            scheduler.close()
            await asyncio.sleep(0.01)

        asyncio.run(scenario())

        assert state == {'started': True, 'finished': False}

    def test_failing_entry_does_not_stop_cascade(self):
        """Test an exception in one entry is logged and later entries still fire."""
        fired = []

        def on_fire(key, final):
            fired.append(final)
            if not final:
                raise RuntimeError("store hiccup")

        async def scenario():
            scheduler = ReconciliationScheduler(on_fire, delays=(0.0, 0.01))
            scheduler.trigger('m1')
            await asyncio.sleep(0.05)

        asyncio.run(scenario())

        assert fired == [False, True]


if __name__ == '__main__':
    pytest.main([__file__, '-v'])

"""Unit tests for the celebration queue."""

import asyncio
from uuid import uuid4

import pytest

from family_stars.config import CelebrationConfig
from family_stars.core.enums import CelebrationPhase
from family_stars.domain.events import CelebrationEvent
from family_stars.services.celebrations import CelebrationQueue


def _event(total=1000):
    return CelebrationEvent.for_milestone(uuid4(), uuid4(), total)


@pytest.mark.unit
@pytest.mark.asyncio
class TestCelebrationQueue:

    async def test_shows_in_enqueue_order(self, instant_queue):
        events = [_event(i) for i in range(3)]
        for event in events:
            instant_queue.enqueue(event)

        await instant_queue.wait_idle()

        assert instant_queue.shown_event_ids == [e.event_id for e in events]
        assert instant_queue.is_idle

    async def test_one_at_a_time(self):
        gate = asyncio.Event()

        async def blocking_sleep(seconds):
            await gate.wait()

        queue = CelebrationQueue(sleep=blocking_sleep)
        first, second = _event(), _event()
        queue.enqueue(first)
        queue.enqueue(second)

        assert queue.tick() == first
        await asyncio.sleep(0)
        assert queue.current_celebration == first
        # Busy: a second tick must not pop
        assert queue.tick() is None
        assert queue.pending == [second]

        gate.set()
        await queue.wait_idle()
        assert queue.shown_event_ids == [first.event_id, second.event_id]

    async def test_visible_then_fade_timings(self, instant_queue):
        instant_queue.enqueue(_event())
        await instant_queue.wait_idle()
        assert instant_queue.recorded_sleeps == [2.0, 0.3]

    async def test_phases_reported_to_listeners(self, instant_queue):
        seen = []
        instant_queue.add_listener(lambda event, phase: seen.append(phase))
        instant_queue.enqueue(_event())

        await instant_queue.wait_idle()

        assert seen == [CelebrationPhase.SHOWN, CelebrationPhase.HIDING, CelebrationPhase.DISMISSED]

    async def test_dismiss_hook_runs_after_dismissal(self, instant_queue):
        phases_at_hook = []

        def hook(event):
            phases_at_hook.append(instant_queue.phase)

        instant_queue.enqueue(_event(), on_dismissed=hook)
        await instant_queue.wait_idle()

        assert phases_at_hook == [CelebrationPhase.DISMISSED]

    async def test_failing_hook_does_not_block_queue(self, instant_queue):
        def bad_hook(event):
            raise RuntimeError("hook failed")

        first, second = _event(), _event()
        instant_queue.enqueue(first, on_dismissed=bad_hook)
        instant_queue.enqueue(second)

        await instant_queue.wait_idle()

        assert instant_queue.shown_event_ids == [first.event_id, second.event_id]

    async def test_complete_skips_visible_wait(self):
        never = asyncio.Event()
        durations = []

        async def sleep(seconds):
            durations.append(seconds)
            if seconds == 2.0:
                await never.wait()

        queue = CelebrationQueue(sleep=sleep)
        hook_calls = []
        queue.enqueue(_event(), on_dismissed=hook_calls.append)
        queue.tick()
        await asyncio.sleep(0)

        assert queue.complete()
        await queue.wait_idle()

        assert len(hook_calls) == 1
        assert queue.current_celebration is None
        # Cleared immediately: no fade after an explicit completion
        assert durations == [2.0]

    async def test_complete_goes_straight_to_dismissed(self):
        never = asyncio.Event()

        async def sleep(seconds):
            await never.wait()

        queue = CelebrationQueue(sleep=sleep)
        phases = []
        queue.add_listener(lambda event, phase: phases.append(phase))
        queue.enqueue(_event())
        queue.tick()
        await asyncio.sleep(0)

        queue.complete()
        await queue.wait_idle()

        assert phases == [CelebrationPhase.SHOWN, CelebrationPhase.DISMISSED]

    async def test_complete_without_current_is_noop(self, instant_queue):
        assert instant_queue.complete() is False

    async def test_async_listeners_awaited(self, instant_queue):
        seen = []

        async def listener(event, phase):
            seen.append(phase)

        instant_queue.add_listener(listener)
        instant_queue.enqueue(_event())
        await instant_queue.wait_idle()

        assert seen[0] == CelebrationPhase.SHOWN
        assert seen[-1] == CelebrationPhase.DISMISSED

    async def test_stop_runs_hook_of_interrupted_celebration(self):
        never = asyncio.Event()

        async def sleep(seconds):
            await never.wait()

        queue = CelebrationQueue(sleep=sleep)
        hook_calls = []

        async def hook(event):
            await asyncio.sleep(0)
            hook_calls.append(event.event_id)

        event = _event()
        queue.enqueue(event, on_dismissed=hook)
        queue.tick()
        await asyncio.sleep(0)
        assert queue.current_celebration == event

        await queue.stop()

        assert hook_calls == [event.event_id]
        assert queue.current_celebration is None
        assert queue.is_idle

    async def test_stop_runs_pending_hooks_and_keeps_plain_events(self, instant_queue):
        hook_calls = []
        with_hook, plain = _event(), _event()
        instant_queue.enqueue(with_hook, on_dismissed=lambda e: hook_calls.append(e.event_id))
        instant_queue.enqueue(plain)

        await instant_queue.stop()

        assert hook_calls == [with_hook.event_id]
        assert instant_queue.pending == [plain]
        assert instant_queue.shown_event_ids == []

    async def test_stop_after_hook_finished_does_not_rerun_it(self, instant_queue):
        hook_calls = []
        instant_queue.enqueue(_event(), on_dismissed=hook_calls.append)

        await instant_queue.wait_idle()
        await instant_queue.stop()

        assert len(hook_calls) == 1

    async def test_withdraw_pending(self, instant_queue):
        first, second = _event(), _event()
        instant_queue.enqueue(first)
        instant_queue.enqueue(second)

        assert instant_queue.withdraw(second.event_id)
        assert not instant_queue.withdraw(uuid4())

        await instant_queue.wait_idle()
        assert instant_queue.shown_event_ids == [first.event_id]

    async def test_never_deduplicates(self, instant_queue):
        event = _event()
        instant_queue.enqueue(event)
        instant_queue.enqueue(event)
        await instant_queue.wait_idle()
        assert instant_queue.shown_event_ids == [event.event_id, event.event_id]

    async def test_polling_loop_presents(self):
        queue = CelebrationQueue(visible_seconds=0.01, fade_seconds=0.0, poll_interval=0.005)
        hook_done = asyncio.Event()
        queue.enqueue(_event(), on_dismissed=lambda e: hook_done.set())

        queue.start()
        try:
            await asyncio.wait_for(hook_done.wait(), timeout=2.0)
        finally:
            await queue.stop()

        assert queue.is_idle

    async def test_from_config(self):
        queue = CelebrationQueue.from_config(
            CelebrationConfig(visible_seconds=1.5, fade_seconds=0.2, poll_interval_seconds=0.05)
        )
        assert (queue.visible_seconds, queue.fade_seconds, queue.poll_interval) == (1.5, 0.2, 0.05)

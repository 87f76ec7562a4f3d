"""
Single-consumer celebration queue.

One queue per client session. Events are shown strictly one at a time in
enqueue order: visible for ``visible_seconds``, then a ``fade_seconds``
buffer before the next ``tick()`` may pop another. ``complete()`` clears the
current celebration immediately, without the fade. The queue never
deduplicates; producers enqueue only transitions they have just persisted.

Dismissal hooks always run to completion: ``stop()`` runs the hooks of the
interrupted and still-pending events instead of dropping them.
"""

import asyncio
import inspect
from collections import deque
from typing import Awaitable, Callable, Deque, List, Optional, Set, Tuple, Union
from uuid import UUID

from ..core.enums import CelebrationPhase
from ..domain.events import CelebrationEvent
from ..utils.logging_config import get_logger, log_exception

logger = get_logger('celebrations')

DismissHook = Callable[[CelebrationEvent], Union[None, Awaitable[None]]]
Listener = Callable[[CelebrationEvent, CelebrationPhase], Union[None, Awaitable[None]]]
Sleep = Callable[[float], Awaitable[None]]


class CelebrationQueue:
    """Ordered, auto-dismissing presentation queue."""

    def __init__(
        self,
        visible_seconds: float = 2.0,
        fade_seconds: float = 0.3,
        poll_interval: float = 0.1,
        sleep: Sleep = asyncio.sleep,
    ):
        self.visible_seconds = visible_seconds
        self.fade_seconds = fade_seconds
        self.poll_interval = poll_interval
        self._sleep = sleep

        self._pending: Deque[Tuple[CelebrationEvent, Optional[DismissHook]]] = deque()
        self._current: Optional[CelebrationEvent] = None
        self._current_hook: Optional[DismissHook] = None
        self._phase: Optional[CelebrationPhase] = None
        self._presenter: Optional[asyncio.Task] = None
        self._skip_visible = asyncio.Event()
        self._listeners: List[Listener] = []
        self._loop_task: Optional[asyncio.Task] = None
        self._hook_tasks: Set[asyncio.Task] = set()
        self._shown: List[UUID] = []

    @classmethod
    def from_config(cls, config, sleep: Sleep = asyncio.sleep) -> "CelebrationQueue":
        return cls(
            visible_seconds=config.visible_seconds,
            fade_seconds=config.fade_seconds,
            poll_interval=config.poll_interval_seconds,
            sleep=sleep,
        )

    # -- producers ---------------------------------------------------------

    def enqueue(self, event: CelebrationEvent, on_dismissed: Optional[DismissHook] = None) -> None:
        """Append an event. ``on_dismissed`` runs after it has been fully dismissed."""
        self._pending.append((event, on_dismissed))
        logger.debug(f"Enqueued {event.kind.value} celebration {event.event_id} (pending={len(self._pending)})")

    def withdraw(self, event_id: UUID) -> bool:
        """Drop a pending event that has not been shown yet."""
        for entry in list(self._pending):
            if entry[0].event_id == event_id:
                self._pending.remove(entry)
                logger.info(f"Withdrew celebration {event_id}")
                return True
        return False

    # -- consumer ----------------------------------------------------------

    @property
    def current_celebration(self) -> Optional[CelebrationEvent]:
        """The celebration on screen, or None (hidden during the fade buffer)."""
        if self._phase == CelebrationPhase.SHOWN:
            return self._current
        return None

    @property
    def phase(self) -> Optional[CelebrationPhase]:
        return self._phase

    @property
    def pending(self) -> List[CelebrationEvent]:
        return [event for event, _ in self._pending]

    @property
    def shown_event_ids(self) -> List[UUID]:
        """Ids of every celebration displayed so far, in display order."""
        return list(self._shown)

    @property
    def is_busy(self) -> bool:
        return self._presenter is not None and not self._presenter.done()

    @property
    def is_idle(self) -> bool:
        return not self.is_busy and not self._pending

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def tick(self) -> Optional[CelebrationEvent]:
        """Pop and start presenting the next event if nothing is showing."""
        if self.is_busy or not self._pending:
            return None

        event, hook = self._pending.popleft()
        self._current = event
        self._current_hook = hook
        self._skip_visible = asyncio.Event()
        self._presenter = asyncio.get_running_loop().create_task(self._present(event, hook))
        return event

    def complete(self) -> bool:
        """Dismiss the current celebration now, skipping the fade. Its dismissal hook still runs."""
        if self._phase != CelebrationPhase.SHOWN:
            return False
        self._skip_visible.set()
        return True

    async def _present(self, event: CelebrationEvent, hook: Optional[DismissHook]) -> None:
        await self._set_phase(event, CelebrationPhase.SHOWN)
        self._shown.append(event.event_id)
        logger.info(f"Showing {event.kind.value} celebration {event.event_id}")

        visible = asyncio.ensure_future(self._sleep(self.visible_seconds))
        skipped = asyncio.ensure_future(self._skip_visible.wait())
        try:
            await asyncio.wait({visible, skipped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in (visible, skipped):
                if not waiter.done():
                    waiter.cancel()

        if not self._skip_visible.is_set():
            await self._set_phase(event, CelebrationPhase.HIDING)
            await self._sleep(self.fade_seconds)
        await self._set_phase(event, CelebrationPhase.DISMISSED)

        if hook is not None:
            self._current_hook = None
            # Shielded so stop() cannot interrupt a hook halfway
            await asyncio.shield(self._start_hook(event, hook))

        self._current = None
        self._phase = None

    def _start_hook(self, event: CelebrationEvent, hook: DismissHook) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self._call_hook(event, hook))
        self._hook_tasks.add(task)
        task.add_done_callback(self._hook_tasks.discard)
        return task

    async def _call_hook(self, event: CelebrationEvent, hook: DismissHook) -> None:
        try:
            result = hook(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            log_exception('celebrations', e, {"event_id": str(event.event_id), "kind": event.kind.value})

    async def _set_phase(self, event: CelebrationEvent, phase: CelebrationPhase) -> None:
        self._phase = phase
        for listener in list(self._listeners):
            try:
                result = listener(event, phase)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                log_exception('celebrations', e, {"event_id": str(event.event_id), "phase": phase.value})

    # -- polling loop ------------------------------------------------------

    def start(self) -> None:
        """Start polling ``tick()`` every ``poll_interval`` seconds."""
        if self._loop_task is not None and not self._loop_task.done():
            return
        self._loop_task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while True:
            self.tick()
            await asyncio.sleep(self.poll_interval)

    async def stop(self) -> None:
        """
        Stop polling and cancel any in-progress presentation.

        Outstanding dismissal hooks still run: the interrupted event's hook
        and the hooks of pending events. Pending events that carried a hook
        are dropped once it has run; the others stay queued.
        """
        interrupted, interrupted_hook = self._current, self._current_hook
        for task in (self._loop_task, self._presenter):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._loop_task = None
        self._presenter = None
        self._current = None
        self._current_hook = None
        self._phase = None

        if interrupted is not None and interrupted_hook is not None:
            self._start_hook(interrupted, interrupted_hook)

        remaining: Deque[Tuple[CelebrationEvent, Optional[DismissHook]]] = deque()
        for event, hook in self._pending:
            if hook is None:
                remaining.append((event, None))
            else:
                self._start_hook(event, hook)
        self._pending = remaining

        if self._hook_tasks:
            logger.info(f"Queue stopped; finishing {len(self._hook_tasks)} dismissal hook(s)")
            await asyncio.gather(*list(self._hook_tasks))

    async def wait_idle(self) -> None:
        """Drive the queue until nothing is pending or showing."""
        while not self.is_idle:
            self.tick()
            if self._presenter is not None and not self._presenter.done():
                await asyncio.shield(self._presenter)
            else:
                await asyncio.sleep(0)

"""
Per-client progression session.

Wires one member's ledger, badge engine, goal tracker and celebration queue
for the group they are viewing, and keeps the local view fresh by
re-fetching whenever a change signal arrives. Realtime row changes are
turned into bus signals; their payloads are never read as state.
"""

from typing import Callable, List, Optional
from uuid import UUID

from ..config import CelebrationConfig, get_celebration_config
from ..core.catalog import BadgeDefinition
from ..core.enums import CelebrationPhase, ChangeTopic
from ..db.models import Goal, UnlockedBadge
from ..domain.events import CelebrationEvent, TaskCompletion
from ..domain.progression import StageProgress
from ..events.bus import ChangeNotificationBus, change_bus
from ..events.realtime import RealtimeFilter, RealtimeHub
from ..events.schemas import ChangeMessage, RealtimeChange
from ..repositories.interfaces import GoalProgressUpdate, RepositoryContainer
from ..utils.logging_config import get_logger
from .badges import BadgeEngine
from .celebrations import CelebrationQueue
from .directory import GroupDirectory, MemberSnapshot
from .goals import GoalTracker
from .ledger import DeltaOutcome, LedgerService

logger = get_logger('session')


class ProgressSession:
    """Facade the presentation layer talks to."""

    def __init__(
        self,
        user_id: UUID,
        group_id: UUID,
        repositories: RepositoryContainer,
        bus: ChangeNotificationBus = change_bus,
        realtime: Optional[RealtimeHub] = None,
        queue: Optional[CelebrationQueue] = None,
        celebration_config: Optional[CelebrationConfig] = None,
    ):
        self.user_id = user_id
        self.group_id = group_id
        self._repos = repositories
        self._bus = bus
        self._realtime = realtime

        if queue is None:
            queue = CelebrationQueue.from_config(celebration_config or get_celebration_config())
        self.queue = queue
        self.badges = BadgeEngine(repositories.unlocked_badge, queue, bus)
        self.ledger = LedgerService(
            user_id, repositories.membership, self.badges, queue, bus
        )
        self.goals = GoalTracker(user_id, repositories.goal, queue, bus)
        self.directory = GroupDirectory(repositories.membership, bus)

        self._unlocked_rows: List[UnlockedBadge] = []
        self._unsubscribers: List[Callable[[], None]] = []
        self._started = False

    # -- lifecycle ---------------------------------------------------------

    async def start(self, run_queue: bool = True) -> None:
        """Load state, replay interrupted badge celebrations and subscribe."""
        if self._started:
            return
        self._started = True

        await self.ledger.ensure_membership(self.group_id)
        await self._refetch_all()
        if not self.ledger.resume_milestone(self.group_id):
            await self.badges.replay_unseen(self.user_id, self.group_id, self.total_stars)
        else:
            logger.info(f"Resuming milestone reset for user {self.user_id} in group {self.group_id}")

        self.directory.attach()
        self._unsubscribers.append(self.directory.detach)
        self._unsubscribers.append(self.queue.add_listener(self._on_celebration_phase))

        for topic in ChangeTopic:
            self._unsubscribers.append(self._bus.subscribe(topic, self._on_signal))
        if self._realtime is not None:
            self._unsubscribers.append(
                self._realtime.subscribe(RealtimeFilter(group_id=self.group_id), self._on_realtime)
            )

        if run_queue:
            self.queue.start()
        logger.info(f"Progress session started for user {self.user_id} in group {self.group_id}")

    async def close(self) -> None:
        """Unsubscribe and stop the queue. Pending dismissal hooks, such as a milestone reset, still run."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        await self.queue.stop()
        self._started = False

    async def __aenter__(self) -> "ProgressSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # -- reads -------------------------------------------------------------

    @property
    def total_stars(self) -> int:
        return self.ledger.total_stars(self.group_id)

    @property
    def current_stage(self) -> int:
        return self.ledger.current_stage(self.group_id)

    @property
    def stage_progress(self) -> StageProgress:
        return self.ledger.stage_progress(self.group_id)

    @property
    def unlocked_badges(self) -> List[BadgeDefinition]:
        return self.badges.unlocked_badges(self.total_stars)

    @property
    def unlocked_rows(self) -> List[UnlockedBadge]:
        return list(self._unlocked_rows)

    @property
    def active_goal(self) -> Optional[Goal]:
        return self.goals.active_goal(self.group_id)

    @property
    def current_celebration(self) -> Optional[CelebrationEvent]:
        return self.queue.current_celebration

    async def group_members(self) -> List[MemberSnapshot]:
        """Members of the viewed group with their progress, cached until a change signal."""
        return await self.directory.members(self.group_id)

    # -- mutations ---------------------------------------------------------

    async def apply_delta(self, delta: int, operation_id: Optional[str] = None) -> DeltaOutcome:
        return await self.ledger.apply_delta(self.group_id, delta, operation_id)

    async def update_goal_progress(
        self, category_id: Optional[UUID], star_value: int
    ) -> Optional[GoalProgressUpdate]:
        return await self.goals.update_progress(self.group_id, category_id, star_value)

    async def create_goal(self, target_stars: int, target_categories=None, reward: Optional[str] = None) -> Goal:
        return await self.goals.create_goal(self.group_id, target_stars, target_categories, reward)

    async def trigger_reset(self) -> bool:
        return await self.ledger.trigger_reset(self.group_id)

    async def handle_task_completion(self, completion: TaskCompletion) -> Optional[DeltaOutcome]:
        """
        Apply a task's completion transition for this member.

        The signed delta always goes through the ledger; goal progress runs
        only for completions and only when the ledger delta persisted.
        """
        if completion.assignee_id != self.user_id or completion.group_id != self.group_id:
            return None
        delta = completion.star_delta
        if delta == 0:
            return None

        outcome = await self.ledger.apply_delta(completion.group_id, delta)
        if outcome and completion.completed:
            await self.goals.update_progress(completion.group_id, completion.category_id, completion.star_value)
        return outcome

    async def on_focus_regained(self) -> None:
        """Visibility/focus regain: re-fetch everything."""
        await self._refetch_all()

    # -- change handling ---------------------------------------------------

    async def _refetch_all(self) -> None:
        await self.ledger.refresh(self.group_id)
        await self.goals.refresh(self.group_id)
        self._unlocked_rows = await self.badges.list_unlocked(self.user_id, self.group_id)

    async def _on_signal(self, message: ChangeMessage) -> None:
        if message.group_id != self.group_id:
            return
        if message.user_id is not None and message.user_id != self.user_id:
            return

        if message.topic in (ChangeTopic.PROGRESS, ChangeTopic.MEMBERSHIP):
            await self.ledger.refresh(self.group_id)
        elif message.topic == ChangeTopic.GOALS:
            await self.goals.refresh(self.group_id)
        elif message.topic == ChangeTopic.BADGES:
            self._unlocked_rows = await self.badges.list_unlocked(self.user_id, self.group_id)

    async def _on_realtime(self, change: RealtimeChange) -> None:
        await self._bus.publish(change.to_signal())

    async def _on_celebration_phase(self, event: CelebrationEvent, phase: CelebrationPhase) -> None:
        if phase != CelebrationPhase.SHOWN:
            return
        if event.user_id != self.user_id or event.group_id != self.group_id:
            return
        await self.ledger.mark_celebration_seen(self.group_id, str(event.event_id))

    async def drain_celebrations(self) -> None:
        """Show every queued celebration to completion."""
        await self.queue.wait_idle()

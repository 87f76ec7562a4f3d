"""Goal Tracker: accumulates stars toward a member's single active goal."""

from typing import Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from ..db.models import Goal
from ..domain.events import CelebrationEvent
from ..events.bus import ChangeNotificationBus, change_bus
from ..events.schemas import GoalsChanged
from ..repositories.interfaces import GoalProgressUpdate, GoalRepository
from ..utils.logging_config import get_logger, log_exception
from .celebrations import CelebrationQueue
from .mutation import mutate

logger = get_logger('goals')


class GoalTracker:
    """Goal progress for one signed-in member."""

    def __init__(
        self,
        user_id: UUID,
        repository: GoalRepository,
        queue: CelebrationQueue,
        bus: ChangeNotificationBus = change_bus,
    ):
        self.user_id = user_id
        self._repo = repository
        self._queue = queue
        self._bus = bus
        self._active: Dict[UUID, Optional[Goal]] = {}
        # group_id -> (current_stars, completed) of the active goal
        self._progress: Dict[UUID, Tuple[int, bool]] = {}

    def active_goal(self, group_id: UUID) -> Optional[Goal]:
        return self._active.get(group_id)

    def goal_progress(self, group_id: UUID) -> Optional[Tuple[int, bool]]:
        """Cached (current_stars, completed) of the active goal."""
        return self._progress.get(group_id)

    async def refresh(self, group_id: UUID) -> Optional[Goal]:
        goal = await self._repo.get_active(self.user_id, group_id)
        self._cache(group_id, goal)
        return goal

    def _cache(self, group_id: UUID, goal: Optional[Goal]) -> None:
        self._active[group_id] = goal
        if goal is None:
            self._progress.pop(group_id, None)
        else:
            self._progress[group_id] = (goal.current_stars, goal.completed)

    async def create_goal(
        self,
        group_id: UUID,
        target_stars: int,
        target_categories: Optional[Iterable[UUID]] = None,
        reward: Optional[str] = None,
    ) -> Goal:
        """
        Create the member's active goal.

        Raises:
            ValueError: If ``target_stars`` is not a positive integer
            ActiveGoalExistsError: If an incomplete goal already exists
        """
        if isinstance(target_stars, bool) or not isinstance(target_stars, int) or target_stars <= 0:
            raise ValueError(f"target_stars must be a positive integer, got {target_stars!r}")

        goal = await self._repo.create(self.user_id, group_id, target_stars, target_categories, reward)
        self._cache(group_id, goal)
        logger.info(f"User {self.user_id} set goal {goal.id} ({target_stars} stars) in group {group_id}")
        await self._bus.publish(GoalsChanged(group_id=group_id, user_id=self.user_id, entity_id=str(goal.id)))
        return goal

    async def goal_history(self, group_id: UUID) -> List[Goal]:
        """Every goal of the member in the group, newest first."""
        return await self._repo.list_for_member(self.user_id, group_id)

    async def update_progress(
        self, group_id: UUID, category_id: Optional[UUID], star_value: int
    ) -> Optional[GoalProgressUpdate]:
        """
        Add ``star_value`` to the active goal if its category filter matches.

        Returns the stored update, or None when nothing applied (no active
        goal, category excluded, or the update failed and was abandoned).
        """
        if star_value <= 0:
            return None

        try:
            goal = await self._repo.get_active(self.user_id, group_id)
        except Exception as e:
            log_exception('goals', e, {"user_id": str(self.user_id), "group_id": str(group_id), "operation": "load_active_goal"})
            return None
        self._cache(group_id, goal)
        if goal is None:
            return None

        if not goal.counts_category(category_id):
            logger.debug(f"Category {category_id} does not count toward goal {goal.id}")
            return None

        goal_id = goal.id
        context = {"user_id": str(self.user_id), "group_id": str(group_id), "goal_id": str(goal_id)}

        def apply_optimistic() -> Optional[Tuple[int, bool]]:
            snapshot = self._progress.get(group_id)
            current, _ = snapshot or (0, False)
            self._progress[group_id] = (current + star_value, False)
            return snapshot

        async def persist() -> Optional[GoalProgressUpdate]:
            return await self._repo.add_progress(goal_id, star_value)

        def adopt(update: Optional[GoalProgressUpdate]) -> None:
            if update is None:
                # Completed elsewhere in the meantime
                self._active[group_id] = None
                self._progress.pop(group_id, None)
                return
            if update.goal.completed:
                self._active[group_id] = None
                self._progress.pop(group_id, None)
            else:
                self._cache(group_id, update.goal)

        def rollback(snapshot: Optional[Tuple[int, bool]]) -> None:
            if snapshot is None:
                self._progress.pop(group_id, None)
            else:
                self._progress[group_id] = snapshot

        result = await mutate(apply_optimistic, persist, adopt, rollback, component='goals', context=context)
        if not result or result.value is None:
            return None

        update: GoalProgressUpdate = result.value
        if update.just_completed:
            logger.info(f"Goal {goal_id} completed by user {self.user_id} ({update.goal.current_stars}/{update.goal.target_stars})")
            self._queue.enqueue(
                CelebrationEvent.for_goal(
                    self.user_id,
                    group_id,
                    goal_id,
                    target_stars=update.goal.target_stars,
                    current_stars=update.goal.current_stars,
                    reward=update.goal.reward,
                )
            )

        await self._bus.publish(GoalsChanged(group_id=group_id, user_id=self.user_id, entity_id=str(goal_id)))
        return update

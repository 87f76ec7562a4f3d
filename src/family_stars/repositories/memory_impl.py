"""In-memory implementations of repository interfaces for testing."""

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Set, Tuple
from uuid import UUID, uuid4

from .interfaces import (
    ActiveGoalExistsError,
    GoalProgressUpdate,
    GoalRepository,
    MembershipRepository,
    StarUpdate,
    UnlockedBadgeRepository,
)
from ..db.models import Goal, Membership, UnlockedBadge
from ..domain.progression import apply_delta, stage_number


def _now() -> datetime:
    return datetime.now(timezone.utc)


class BaseMemoryRepository:
    """Base in-memory repository implementation."""

    async def save(self, entity) -> None:
        # In memory - entities are stored on create
        pass

    async def delete(self, entity) -> None:
        # Handled by specific implementations
        pass

    async def commit(self) -> None:
        # In memory - changes are immediate
        pass

    async def rollback(self) -> None:
        # In memory - no rollback needed for simple case
        pass


class MemoryMembershipRepository(BaseMemoryRepository, MembershipRepository):
    """In-memory implementation of MembershipRepository."""

    def __init__(self, badges: Optional["MemoryUnlockedBadgeRepository"] = None):
        self._memberships: Dict[Tuple[UUID, UUID], Membership] = {}
        self._badges = badges

    async def get(self, user_id: UUID, group_id: UUID) -> Optional[Membership]:
        return self._memberships.get((user_id, group_id))

    async def create(self, user_id: UUID, group_id: UUID) -> Tuple[Membership, bool]:
        existing = self._memberships.get((user_id, group_id))
        if existing is not None:
            return existing, False

        now = _now()
        membership = Membership(
            id=uuid4(),
            user_id=user_id,
            group_id=group_id,
            total_stars=0,
            current_stage=stage_number(0),
            last_read_at=None,
            seen_celebrations=[],
            joined_at=now,
            updated_at=now,
        )
        self._memberships[(user_id, group_id)] = membership
        return membership, True

    async def list_by_group(self, group_id: UUID) -> List[Membership]:
        members = [m for (_, gid), m in self._memberships.items() if gid == group_id]
        return sorted(members, key=lambda m: (-m.total_stars, m.joined_at))

    async def increment_stars(
        self, user_id: UUID, group_id: UUID, delta: int
    ) -> Optional[StarUpdate]:
        membership = self._memberships.get((user_id, group_id))
        if membership is None:
            return None

        previous = membership.total_stars
        membership.total_stars = apply_delta(previous, delta)
        membership.current_stage = stage_number(membership.total_stars)
        membership.updated_at = _now()
        return StarUpdate(
            membership=membership,
            previous_total=previous,
            total_stars=membership.total_stars,
            current_stage=membership.current_stage,
        )

    async def reset(self, user_id: UUID, group_id: UUID) -> Optional[Membership]:
        membership = self._memberships.get((user_id, group_id))
        if membership is None:
            return None
        membership.total_stars = 0
        membership.current_stage = stage_number(0)
        membership.seen_celebrations = []
        membership.updated_at = _now()
        if self._badges is not None:
            for badge in self._badges.for_member(user_id, group_id):
                badge.seen = False
        return membership

    async def remove(self, user_id: UUID, group_id: UUID) -> bool:
        return self._memberships.pop((user_id, group_id), None) is not None

    async def mark_celebration_seen(
        self, user_id: UUID, group_id: UUID, celebration_id: str
    ) -> Optional[Membership]:
        membership = self._memberships.get((user_id, group_id))
        if membership is None:
            return None
        if celebration_id not in membership.seen_celebrations:
            membership.seen_celebrations = list(membership.seen_celebrations) + [celebration_id]
            membership.last_read_at = _now()
        return membership


class MemoryUnlockedBadgeRepository(BaseMemoryRepository, UnlockedBadgeRepository):
    """In-memory implementation of UnlockedBadgeRepository."""

    def __init__(self):
        self._badges: Dict[Tuple[UUID, UUID, str], UnlockedBadge] = {}

    def for_member(self, user_id: UUID, group_id: UUID) -> List[UnlockedBadge]:
        return [
            badge
            for (uid, gid, _), badge in self._badges.items()
            if uid == user_id and gid == group_id
        ]

    async def get(self, user_id: UUID, group_id: UUID, badge_id: str) -> Optional[UnlockedBadge]:
        return self._badges.get((user_id, group_id, badge_id))

    async def list_for_member(self, user_id: UUID, group_id: UUID) -> List[UnlockedBadge]:
        return self.for_member(user_id, group_id)

    async def list_unseen(self, user_id: UUID, group_id: UUID) -> List[UnlockedBadge]:
        return [badge for badge in self.for_member(user_id, group_id) if not badge.seen]

    async def insert_or_get(
        self, user_id: UUID, group_id: UUID, badge_id: str
    ) -> Tuple[UnlockedBadge, bool]:
        key = (user_id, group_id, badge_id)
        existing = self._badges.get(key)
        if existing is not None:
            return existing, False

        unlocked = UnlockedBadge(
            id=uuid4(),
            user_id=user_id,
            group_id=group_id,
            badge_id=badge_id,
            unlocked_at=_now(),
            seen=False,
        )
        self._badges[key] = unlocked
        return unlocked, True

    async def mark_seen(
        self, user_id: UUID, group_id: UUID, badge_ids: Iterable[str]
    ) -> Set[str]:
        flipped = set()
        for badge_id in badge_ids:
            badge = self._badges.get((user_id, group_id, badge_id))
            if badge is not None and not badge.seen:
                badge.seen = True
                flipped.add(badge_id)
        return flipped


class MemoryGoalRepository(BaseMemoryRepository, GoalRepository):
    """In-memory implementation of GoalRepository."""

    def __init__(self):
        self._goals: Dict[UUID, Goal] = {}

    async def get_by_id(self, goal_id: UUID) -> Optional[Goal]:
        return self._goals.get(goal_id)

    async def get_active(self, user_id: UUID, group_id: UUID) -> Optional[Goal]:
        for goal in self._goals.values():
            if goal.user_id == user_id and goal.group_id == group_id and not goal.completed:
                return goal
        return None

    async def list_for_member(self, user_id: UUID, group_id: UUID) -> List[Goal]:
        goals = [
            goal
            for goal in self._goals.values()
            if goal.user_id == user_id and goal.group_id == group_id
        ]
        # Insertion order is creation order
        return list(reversed(goals))

    async def create(
        self,
        user_id: UUID,
        group_id: UUID,
        target_stars: int,
        target_categories: Optional[Iterable[UUID]] = None,
        reward: Optional[str] = None,
    ) -> Goal:
        if await self.get_active(user_id, group_id) is not None:
            raise ActiveGoalExistsError(user_id, group_id)

        goal = Goal(
            id=uuid4(),
            user_id=user_id,
            group_id=group_id,
            target_stars=target_stars,
            target_categories=[str(c) for c in (target_categories or [])],
            current_stars=0,
            completed=False,
            completed_at=None,
            reward=reward,
            created_at=_now(),
        )
        self._goals[goal.id] = goal
        return goal

    async def add_progress(self, goal_id: UUID, stars: int) -> Optional[GoalProgressUpdate]:
        goal = self._goals.get(goal_id)
        if goal is None or goal.completed:
            return None

        goal.current_stars += stars
        just_completed = goal.current_stars >= goal.target_stars
        if just_completed:
            goal.completed = True
            goal.completed_at = _now()
        return GoalProgressUpdate(goal=goal, just_completed=just_completed)

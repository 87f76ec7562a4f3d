"""Abstract repository interfaces for the persistence collaborator."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, List, Optional, Set, Tuple
from uuid import UUID

from ..db.models import Membership, UnlockedBadge, Goal


class RepositoryError(Exception):
    """A persistence operation failed."""


class MembershipNotFoundError(RepositoryError):
    """No membership exists for the (user, group) pair."""

    def __init__(self, user_id: UUID, group_id: UUID):
        super().__init__(f"No membership for user {user_id} in group {group_id}")
        self.user_id = user_id
        self.group_id = group_id


class ActiveGoalExistsError(RepositoryError):
    """The member already has an incomplete goal in this group."""

    def __init__(self, user_id: UUID, group_id: UUID):
        super().__init__(f"User {user_id} already has an active goal in group {group_id}")
        self.user_id = user_id
        self.group_id = group_id


@dataclass(frozen=True)
class StarUpdate:
    """Authoritative result of an atomic star increment."""

    membership: Membership
    previous_total: int
    total_stars: int
    current_stage: int


@dataclass(frozen=True)
class GoalProgressUpdate:
    """Result of adding stars to an active goal."""

    goal: Goal
    just_completed: bool


class BaseRepository(ABC):
    """Base repository interface with common operations."""

    @abstractmethod
    async def save(self, entity) -> None:
        """Save an entity to the repository."""
        pass

    @abstractmethod
    async def delete(self, entity) -> None:
        """Delete an entity from the repository."""
        pass

    @abstractmethod
    async def commit(self) -> None:
        """Commit the current transaction."""
        pass

    @abstractmethod
    async def rollback(self) -> None:
        """Rollback the current transaction."""
        pass


class MembershipRepository(BaseRepository):
    """Repository interface for Membership records."""

    @abstractmethod
    async def get(self, user_id: UUID, group_id: UUID) -> Optional[Membership]:
        """Get the membership for a user in a group."""
        pass

    @abstractmethod
    async def create(self, user_id: UUID, group_id: UUID) -> Tuple[Membership, bool]:
        """Insert a fresh membership, or fetch the existing one. Returns (row, created)."""
        pass

    @abstractmethod
    async def list_by_group(self, group_id: UUID) -> List[Membership]:
        """Get all memberships of a group."""
        pass

    @abstractmethod
    async def increment_stars(
        self, user_id: UUID, group_id: UUID, delta: int
    ) -> Optional[StarUpdate]:
        """
        Atomically add ``delta`` to the stored total, clamped at zero, and
        recompute the stage. Returns None when no membership exists.
        """
        pass

    @abstractmethod
    async def reset(self, user_id: UUID, group_id: UUID) -> Optional[Membership]:
        """
        Milestone reset in one transaction: zero stars, first stage, no seen
        celebrations, and every unlocked badge of the member marked unseen.
        Unlocked rows are kept. Returns None when no membership exists.
        """
        pass

    @abstractmethod
    async def remove(self, user_id: UUID, group_id: UUID) -> bool:
        """Delete the membership. Returns False when nothing was deleted."""
        pass

    @abstractmethod
    async def mark_celebration_seen(
        self, user_id: UUID, group_id: UUID, celebration_id: str
    ) -> Optional[Membership]:
        """Record a celebration id as seen on the membership."""
        pass


class UnlockedBadgeRepository(BaseRepository):
    """Repository interface for UnlockedBadge rows."""

    @abstractmethod
    async def get(self, user_id: UUID, group_id: UUID, badge_id: str) -> Optional[UnlockedBadge]:
        """Get one unlocked badge row."""
        pass

    @abstractmethod
    async def list_for_member(self, user_id: UUID, group_id: UUID) -> List[UnlockedBadge]:
        """All unlocked badges of a member, oldest first."""
        pass

    @abstractmethod
    async def list_unseen(self, user_id: UUID, group_id: UUID) -> List[UnlockedBadge]:
        """Unlocked badges whose celebration has not been marked seen."""
        pass

    @abstractmethod
    async def insert_or_get(
        self, user_id: UUID, group_id: UUID, badge_id: str
    ) -> Tuple[UnlockedBadge, bool]:
        """Insert as unseen unless the row exists. Returns (row, created)."""
        pass

    @abstractmethod
    async def mark_seen(
        self, user_id: UUID, group_id: UUID, badge_ids: Iterable[str]
    ) -> Set[str]:
        """Flip unseen rows to seen. Returns the ids this call flipped."""
        pass


class GoalRepository(BaseRepository):
    """Repository interface for Goal records."""

    @abstractmethod
    async def get_by_id(self, goal_id: UUID) -> Optional[Goal]:
        """Get a goal by ID."""
        pass

    @abstractmethod
    async def get_active(self, user_id: UUID, group_id: UUID) -> Optional[Goal]:
        """Get the single incomplete goal of a member, if any."""
        pass

    @abstractmethod
    async def list_for_member(self, user_id: UUID, group_id: UUID) -> List[Goal]:
        """All goals of a member, newest first."""
        pass

    @abstractmethod
    async def create(
        self,
        user_id: UUID,
        group_id: UUID,
        target_stars: int,
        target_categories: Optional[Iterable[UUID]] = None,
        reward: Optional[str] = None,
    ) -> Goal:
        """Create a goal. Raises ActiveGoalExistsError if one is active."""
        pass

    @abstractmethod
    async def add_progress(self, goal_id: UUID, stars: int) -> Optional[GoalProgressUpdate]:
        """
        Atomically add stars to an incomplete goal and flip it to completed
        once the target is reached. Returns None if the goal is missing or
        already completed.
        """
        pass


class RepositoryContainer:
    """Container for all repository interfaces to support dependency injection."""

    def __init__(
        self,
        membership_repo: MembershipRepository,
        unlocked_badge_repo: UnlockedBadgeRepository,
        goal_repo: GoalRepository,
    ):
        self.membership = membership_repo
        self.unlocked_badge = unlocked_badge_repo
        self.goal = goal_repo

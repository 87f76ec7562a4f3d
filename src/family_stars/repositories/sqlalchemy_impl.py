"""SQLAlchemy concrete implementations of repository interfaces."""

from datetime import datetime, timezone
from typing import Iterable, List, Optional, Set, Tuple
from uuid import UUID

from sqlalchemy import case, desc, false, literal, true, update
from sqlalchemy.orm import Session

from .interfaces import (
    ActiveGoalExistsError,
    GoalProgressUpdate,
    GoalRepository,
    MembershipRepository,
    StarUpdate,
    UnlockedBadgeRepository,
)
from ..core.catalog import STAGES
from ..db.models import Goal, Membership, UnlockedBadge
from ..store.integrity_policy import ExpectedIntegrityTag
from ..store.savepoints import expected_conflict_savepoint


def _stage_case(total_expr):
    """SQL expression for the stage ordinal reached at ``total_expr``."""
    whens = [
        (total_expr >= stage.required_stars, stage.number)
        for stage in reversed(STAGES)
        if stage.required_stars > 0
    ]
    return case(*whens, else_=STAGES[0].number)


class BaseSQLAlchemyRepository:
    """Base SQLAlchemy repository implementation."""

    def __init__(self, session: Session):
        self._session = session

    async def save(self, entity) -> None:
        """Save an entity to the repository."""
        self._session.add(entity)

    async def delete(self, entity) -> None:
        """Delete an entity from the repository."""
        self._session.delete(entity)

    async def commit(self) -> None:
        """Commit the current transaction."""
        self._session.commit()

    async def rollback(self) -> None:
        """Rollback the current transaction."""
        self._session.rollback()


class SQLAlchemyMembershipRepository(BaseSQLAlchemyRepository, MembershipRepository):
    """SQLAlchemy implementation of MembershipRepository."""

    async def get(self, user_id: UUID, group_id: UUID) -> Optional[Membership]:
        return (
            self._session.query(Membership)
            .filter(Membership.user_id == user_id, Membership.group_id == group_id)
            .first()
        )

    async def create(self, user_id: UUID, group_id: UUID) -> Tuple[Membership, bool]:
        existing = await self.get(user_id, group_id)
        if existing is not None:
            return existing, False

        membership = Membership(
            user_id=user_id,
            group_id=group_id,
            total_stars=0,
            current_stage=STAGES[0].number,
            seen_celebrations=[],
        )
        context = {
            "operation": "join_group",
            "entity_type": "membership",
            "entity_id": f"{user_id}:{group_id}",
        }
        with expected_conflict_savepoint(
            self._session, {ExpectedIntegrityTag.MEMBERSHIP_EXISTS}, context
        ):
            self._session.add(membership)
            self._session.flush()

        await self.commit()
        if "integrity_tag" in context:
            return await self.get(user_id, group_id), False

        self._session.refresh(membership)
        return membership, True

    async def list_by_group(self, group_id: UUID) -> List[Membership]:
        return (
            self._session.query(Membership)
            .filter(Membership.group_id == group_id)
            .order_by(desc(Membership.total_stars), Membership.joined_at)
            .all()
        )

    async def increment_stars(
        self, user_id: UUID, group_id: UUID, delta: int
    ) -> Optional[StarUpdate]:
        table = Membership.__table__
        raw_total = table.c.total_stars + delta
        new_total = case((raw_total < 0, 0), else_=raw_total)

        # Single UPDATE so concurrent deltas from other devices both land
        stmt = (
            update(table)
            .where(table.c.user_id == user_id, table.c.group_id == group_id)
            .values(total_stars=new_total, current_stage=_stage_case(new_total))
            .returning(table.c.id, table.c.total_stars, table.c.current_stage)
        )
        row = self._session.execute(stmt).first()
        if row is None:
            await self.rollback()
            return None
        await self.commit()

        membership = self._session.get(Membership, row.id, populate_existing=True)
        return StarUpdate(
            membership=membership,
            # Exact unless a negative delta was clamped at zero
            previous_total=max(0, row.total_stars - delta),
            total_stars=row.total_stars,
            current_stage=row.current_stage,
        )

    async def reset(self, user_id: UUID, group_id: UUID) -> Optional[Membership]:
        table = Membership.__table__
        result = self._session.execute(
            update(table)
            .where(table.c.user_id == user_id, table.c.group_id == group_id)
            .values(total_stars=0, current_stage=STAGES[0].number, seen_celebrations=[])
        )
        if result.rowcount == 0:
            await self.rollback()
            return None

        badges = UnlockedBadge.__table__
        self._session.execute(
            update(badges)
            .where(badges.c.user_id == user_id, badges.c.group_id == group_id)
            .values(seen=False)
        )
        # Both statements commit together or not at all
        try:
            await self.commit()
        except Exception:
            await self.rollback()
            raise
        return await self.get(user_id, group_id)

    async def remove(self, user_id: UUID, group_id: UUID) -> bool:
        deleted = (
            self._session.query(Membership)
            .filter(Membership.user_id == user_id, Membership.group_id == group_id)
            .delete(synchronize_session=False)
        )
        await self.commit()
        return deleted > 0

    async def mark_celebration_seen(
        self, user_id: UUID, group_id: UUID, celebration_id: str
    ) -> Optional[Membership]:
        membership = await self.get(user_id, group_id)
        if membership is None:
            return None
        seen = list(membership.seen_celebrations or [])
        if celebration_id not in seen:
            seen.append(celebration_id)
            membership.seen_celebrations = seen
            membership.last_read_at = datetime.now(timezone.utc)
            await self.commit()
            self._session.refresh(membership)
        return membership


class SQLAlchemyUnlockedBadgeRepository(BaseSQLAlchemyRepository, UnlockedBadgeRepository):
    """SQLAlchemy implementation of UnlockedBadgeRepository."""

    def _member_query(self, user_id: UUID, group_id: UUID):
        return self._session.query(UnlockedBadge).filter(
            UnlockedBadge.user_id == user_id, UnlockedBadge.group_id == group_id
        )

    async def get(self, user_id: UUID, group_id: UUID, badge_id: str) -> Optional[UnlockedBadge]:
        return (
            self._member_query(user_id, group_id)
            .filter(UnlockedBadge.badge_id == badge_id)
            .first()
        )

    async def list_for_member(self, user_id: UUID, group_id: UUID) -> List[UnlockedBadge]:
        return self._member_query(user_id, group_id).order_by(UnlockedBadge.unlocked_at).all()

    async def list_unseen(self, user_id: UUID, group_id: UUID) -> List[UnlockedBadge]:
        return (
            self._member_query(user_id, group_id)
            .filter(UnlockedBadge.seen.is_(False))
            .order_by(UnlockedBadge.unlocked_at)
            .all()
        )

    async def insert_or_get(
        self, user_id: UUID, group_id: UUID, badge_id: str
    ) -> Tuple[UnlockedBadge, bool]:
        existing = await self.get(user_id, group_id, badge_id)
        if existing is not None:
            return existing, False

        unlocked = UnlockedBadge(user_id=user_id, group_id=group_id, badge_id=badge_id, seen=False)
        context = {
            "operation": "unlock_badge",
            "entity_type": "unlocked_badge",
            "entity_id": f"{user_id}:{group_id}:{badge_id}",
        }
        with expected_conflict_savepoint(
            self._session, {ExpectedIntegrityTag.BADGE_ALREADY_UNLOCKED}, context
        ):
            self._session.add(unlocked)
            self._session.flush()

        await self.commit()
        if "integrity_tag" in context:
            # Another writer unlocked it first
            return await self.get(user_id, group_id, badge_id), False

        self._session.refresh(unlocked)
        return unlocked, True

    async def mark_seen(
        self, user_id: UUID, group_id: UUID, badge_ids: Iterable[str]
    ) -> Set[str]:
        ids = list(badge_ids)
        if not ids:
            return set()

        table = UnlockedBadge.__table__
        rows = self._session.execute(
            update(table)
            .where(
                table.c.user_id == user_id,
                table.c.group_id == group_id,
                table.c.badge_id.in_(ids),
                table.c.seen.is_(False),
            )
            .values(seen=True)
            .returning(table.c.badge_id)
        ).all()
        await self.commit()
        return {row.badge_id for row in rows}


class SQLAlchemyGoalRepository(BaseSQLAlchemyRepository, GoalRepository):
    """SQLAlchemy implementation of GoalRepository."""

    async def get_by_id(self, goal_id: UUID) -> Optional[Goal]:
        return self._session.query(Goal).filter(Goal.id == goal_id).first()

    async def get_active(self, user_id: UUID, group_id: UUID) -> Optional[Goal]:
        return (
            self._session.query(Goal)
            .filter(
                Goal.user_id == user_id,
                Goal.group_id == group_id,
                Goal.completed.is_(False),
            )
            .first()
        )

    async def list_for_member(self, user_id: UUID, group_id: UUID) -> List[Goal]:
        return (
            self._session.query(Goal)
            .filter(Goal.user_id == user_id, Goal.group_id == group_id)
            .order_by(desc(Goal.created_at))
            .all()
        )

    async def create(
        self,
        user_id: UUID,
        group_id: UUID,
        target_stars: int,
        target_categories: Optional[Iterable[UUID]] = None,
        reward: Optional[str] = None,
    ) -> Goal:
        goal = Goal(
            user_id=user_id,
            group_id=group_id,
            target_stars=target_stars,
            target_categories=[str(c) for c in (target_categories or [])],
            current_stars=0,
            completed=False,
            reward=reward,
        )
        context = {
            "operation": "create_goal",
            "entity_type": "goal",
            "entity_id": f"{user_id}:{group_id}",
        }
        with expected_conflict_savepoint(
            self._session, {ExpectedIntegrityTag.ACTIVE_GOAL_EXISTS}, context
        ):
            self._session.add(goal)
            self._session.flush()

        if "integrity_tag" in context:
            await self.rollback()
            raise ActiveGoalExistsError(user_id, group_id)

        await self.commit()
        self._session.refresh(goal)
        return goal

    async def add_progress(self, goal_id: UUID, stars: int) -> Optional[GoalProgressUpdate]:
        table = Goal.__table__
        new_total = table.c.current_stars + stars
        reached = new_total >= table.c.target_stars
        now = datetime.now(timezone.utc)

        # Only the writer that flips completed false -> true sees completed=True here
        stmt = (
            update(table)
            .where(table.c.id == goal_id, table.c.completed.is_(False))
            .values(
                current_stars=new_total,
                completed=case((reached, true()), else_=false()),
                completed_at=case(
                    (reached, literal(now, type_=table.c.completed_at.type)),
                    else_=table.c.completed_at,
                ),
            )
            .returning(table.c.completed)
        )
        row = self._session.execute(stmt).first()
        if row is None:
            await self.rollback()
            return None
        await self.commit()

        goal = self._session.get(Goal, goal_id, populate_existing=True)
        return GoalProgressUpdate(goal=goal, just_completed=bool(row.completed))

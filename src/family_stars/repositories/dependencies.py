"""Dependency injection for repository layer."""

from fastapi import Depends
from sqlalchemy.orm import Session

from ..db.database import get_db
from .interfaces import RepositoryContainer
from .sqlalchemy_impl import (
    SQLAlchemyGoalRepository,
    SQLAlchemyMembershipRepository,
    SQLAlchemyUnlockedBadgeRepository,
)
from .memory_impl import (
    MemoryGoalRepository,
    MemoryMembershipRepository,
    MemoryUnlockedBadgeRepository,
)


def build_sqlalchemy_container(db: Session) -> RepositoryContainer:
    """Repository container bound to one SQLAlchemy session."""
    return RepositoryContainer(
        membership_repo=SQLAlchemyMembershipRepository(db),
        unlocked_badge_repo=SQLAlchemyUnlockedBadgeRepository(db),
        goal_repo=SQLAlchemyGoalRepository(db),
    )


def build_memory_container() -> RepositoryContainer:
    """Repository container backed by in-memory stores."""
    unlocked_badges = MemoryUnlockedBadgeRepository()
    return RepositoryContainer(
        membership_repo=MemoryMembershipRepository(unlocked_badges),
        unlocked_badge_repo=unlocked_badges,
        goal_repo=MemoryGoalRepository(),
    )


def get_repository_container(
    db: Session = Depends(get_db),
) -> RepositoryContainer:
    """Main dependency injection point for repositories."""
    return build_sqlalchemy_container(db)

"""SQLAlchemy models for Family Stars."""

from datetime import datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Boolean,
    JSON,
    CheckConstraint,
    UniqueConstraint,
    Index,
    text,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.types import TypeDecorator, CHAR

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GUID(TypeDecorator):
    """Platform-independent GUID type using String for SQLite."""

    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID())
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if not isinstance(value, UUID):
            return UUID(str(value))
        return value


class Membership(Base):
    """Per-(user, group) progress record."""

    __tablename__ = "memberships"

    id = Column(GUID(), primary_key=True, default=uuid4)
    user_id = Column(GUID(), nullable=False)
    group_id = Column(GUID(), nullable=False)
    total_stars = Column(Integer, nullable=False, default=0)
    current_stage = Column(Integer, nullable=False, default=1)  # 1-based stage ordinal
    last_read_at = Column(DateTime(timezone=True), nullable=True)
    seen_celebrations = Column(JSON, nullable=False, default=list)
    joined_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        UniqueConstraint("user_id", "group_id", name="uq_membership_user_group"),
        CheckConstraint("total_stars >= 0", name="ck_membership_total_stars_nonnegative"),
        Index("ix_membership_group", "group_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Membership(user_id={self.user_id}, group_id={self.group_id}, "
            f"total_stars={self.total_stars}, stage={self.current_stage})>"
        )


class UnlockedBadge(Base):
    """A badge a member has unlocked; created at most once per badge."""

    __tablename__ = "unlocked_badges"

    id = Column(GUID(), primary_key=True, default=uuid4)
    user_id = Column(GUID(), nullable=False)
    group_id = Column(GUID(), nullable=False)
    badge_id = Column(String(64), nullable=False)
    unlocked_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    seen = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("user_id", "group_id", "badge_id", name="uq_unlocked_badge"),
        Index("ix_unlocked_badge_member_seen", "user_id", "group_id", "seen"),
    )

    def __repr__(self) -> str:
        return f"<UnlockedBadge(badge_id={self.badge_id}, user_id={self.user_id}, seen={self.seen})>"


class Goal(Base):
    """A star target, optionally restricted to task categories."""

    __tablename__ = "goals"

    id = Column(GUID(), primary_key=True, default=uuid4)
    group_id = Column(GUID(), nullable=False)
    user_id = Column(GUID(), nullable=False)
    target_stars = Column(Integer, nullable=False)
    # Category ids as strings; empty means every category counts
    target_categories = Column(JSON, nullable=False, default=list)
    current_stars = Column(Integer, nullable=False, default=0)
    completed = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    reward = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        CheckConstraint("target_stars > 0", name="ck_goal_target_positive"),
        # One active goal per member
        Index(
            "uq_goal_active_per_member",
            "user_id",
            "group_id",
            unique=True,
            sqlite_where=text("completed = 0"),
            postgresql_where=text("completed = false"),
        ),
        Index("ix_goal_member_created", "user_id", "group_id", "created_at"),
    )

    @property
    def category_ids(self) -> set:
        return {str(c) for c in (self.target_categories or [])}

    def counts_category(self, category_id) -> bool:
        """Empty target categories means every category counts."""
        categories = self.category_ids
        if not categories:
            return True
        return category_id is not None and str(category_id) in categories

    def __repr__(self) -> str:
        return (
            f"<Goal(id={self.id}, current={self.current_stars}/{self.target_stars}, "
            f"completed={self.completed})>"
        )

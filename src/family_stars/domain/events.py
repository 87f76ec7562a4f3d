"""Event contracts consumed and produced by the progression pipeline.

Celebration events are transient and live only inside one client session's
queue. Task completions are produced by the external task collaborator.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator  # type: ignore

from ..core.catalog import BadgeDefinition, StageDefinition
from ..core.enums import CelebrationKind


class CelebrationEvent(BaseModel):
    """A queued, auto-dismissing celebration."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    event_id: UUID = Field(default_factory=uuid4)
    kind: CelebrationKind
    user_id: UUID
    group_id: UUID
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def for_badge(cls, user_id: UUID, group_id: UUID, badge: BadgeDefinition) -> "CelebrationEvent":
        return cls(
            kind=CelebrationKind.BADGE,
            user_id=user_id,
            group_id=group_id,
            payload={
                "badge_id": badge.id,
                "name": badge.name,
                "description": badge.description,
                "unlock_stars": badge.unlock_stars,
            },
        )

    @classmethod
    def for_goal(
        cls,
        user_id: UUID,
        group_id: UUID,
        goal_id: UUID,
        target_stars: int,
        current_stars: int,
        reward: Optional[str] = None,
    ) -> "CelebrationEvent":
        return cls(
            kind=CelebrationKind.GOAL,
            user_id=user_id,
            group_id=group_id,
            payload={
                "goal_id": str(goal_id),
                "target_stars": target_stars,
                "current_stars": current_stars,
                "reward": reward,
            },
        )

    @classmethod
    def for_stage(cls, user_id: UUID, group_id: UUID, stage: StageDefinition) -> "CelebrationEvent":
        return cls(
            kind=CelebrationKind.STAGE,
            user_id=user_id,
            group_id=group_id,
            payload={
                "stage": stage.number,
                "name": stage.name,
                "required_stars": stage.required_stars,
            },
        )

    @classmethod
    def for_milestone(cls, user_id: UUID, group_id: UUID, total_stars: int) -> "CelebrationEvent":
        return cls(
            kind=CelebrationKind.MILESTONE,
            user_id=user_id,
            group_id=group_id,
            payload={"total_stars": total_stars},
        )


class TaskCompletion(BaseModel):
    """A task's completion state changed."""

    model_config = ConfigDict(frozen=True)

    task_id: UUID
    group_id: UUID
    category_id: Optional[UUID] = None
    star_value: int = Field(..., ge=0)
    assignee_id: Optional[UUID] = None
    was_completed: bool
    is_completed: bool

    @field_validator("star_value", mode="before")
    @classmethod
    def _reject_bool(cls, value: int) -> int:
        if isinstance(value, bool):
            raise ValueError("star_value must be an integer")
        return value

    @property
    def completed(self) -> bool:
        """The task went from open to done."""
        return not self.was_completed and self.is_completed

    @property
    def uncompleted(self) -> bool:
        """The task went from done back to open."""
        return self.was_completed and not self.is_completed

    @property
    def star_delta(self) -> int:
        """Signed ledger delta for this transition (0 when nothing changed)."""
        if self.completed:
            return self.star_value
        if self.uncompleted:
            return -self.star_value
        return 0

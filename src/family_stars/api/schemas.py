"""Pydantic models for API request/response validation."""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, ConfigDict, field_validator  # type: ignore


# Base response models
class BaseResponse(BaseModel):
    """Base response model with common fields."""

    model_config = ConfigDict(from_attributes=True)


class ProblemDetails(BaseModel):
    """RFC 9457 Problem Details for HTTP APIs."""

    type: str = Field(description="A URI reference that identifies the problem type")
    title: str = Field(
        description="A short, human-readable summary of the problem type"
    )
    status: int = Field(description="The HTTP status code")
    detail: Optional[str] = Field(
        None, description="A human-readable explanation specific to this occurrence"
    )
    instance: Optional[str] = Field(
        None, description="A URI reference that identifies the specific occurrence"
    )


# Membership schemas
class MembershipResponse(BaseResponse):
    """Schema for membership response."""

    id: UUID
    user_id: UUID
    group_id: UUID
    total_stars: int
    current_stage: int
    last_read_at: Optional[datetime] = None
    seen_celebrations: List[str] = Field(default_factory=list)
    joined_at: datetime


class StarDeltaRequest(BaseModel):
    """Schema for a signed star delta."""

    delta: int = Field(description="Signed, non-zero number of stars to add")

    @field_validator("delta", mode="before")
    @classmethod
    def _validate_delta(cls, value):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError("delta must be an integer")
        if value == 0:
            raise ValueError("delta must be non-zero")
        return value


class StarUpdateResponse(BaseModel):
    """Authoritative totals after a delta."""

    user_id: UUID
    group_id: UUID
    previous_total: int
    total_stars: int
    current_stage: int
    stage_threshold: int
    milestone_crossed: bool


# Badge schemas
class UnlockedBadgeResponse(BaseResponse):
    """Schema for an unlocked badge row."""

    id: UUID
    badge_id: str
    unlocked_at: datetime
    seen: bool
    name: Optional[str] = None
    unlock_stars: Optional[int] = None


class BadgeListResponse(BaseModel):
    badges: List[UnlockedBadgeResponse]
    total_stars: int
    show_badges: bool


class MarkSeenRequest(BaseModel):
    badge_ids: List[str] = Field(min_length=1)


class MarkSeenResponse(BaseModel):
    flipped: List[str] = Field(description="Badge ids this request flipped to seen")


class CelebrationSeenRequest(BaseModel):
    celebration_id: str = Field(min_length=1, max_length=64, description="Id of the celebration that was shown")


# Goal schemas
class GoalCreate(BaseModel):
    """Schema for creating a goal."""

    target_stars: int = Field(gt=0, description="Stars needed to complete the goal")
    target_categories: List[UUID] = Field(
        default_factory=list, description="Categories that count; empty means all"
    )
    reward: Optional[str] = Field(None, max_length=255)


class GoalProgressRequest(BaseModel):
    star_value: int = Field(gt=0)


class GoalResponse(BaseResponse):
    """Schema for goal response."""

    id: UUID
    user_id: UUID
    group_id: UUID
    target_stars: int
    target_categories: List[str]
    current_stars: int
    completed: bool
    completed_at: Optional[datetime] = None
    reward: Optional[str] = None
    created_at: datetime


class GoalProgressResponse(BaseModel):
    goal: GoalResponse
    just_completed: bool


class GoalListResponse(BaseModel):
    goals: List[GoalResponse]

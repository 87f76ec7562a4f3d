"""Goal endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, status

from ..core.enums import RealtimeTable
from ..events.realtime import realtime_hub
from ..events.schemas import RealtimeChange
from ..repositories.dependencies import get_repository_container
from ..repositories.interfaces import ActiveGoalExistsError, RepositoryContainer
from ..utils.logging_config import get_logger
from .middleware import ProblemDetailsException
from .schemas import (
    GoalCreate,
    GoalListResponse,
    GoalProgressRequest,
    GoalProgressResponse,
    GoalResponse,
    ProblemDetails,
)

logger = get_logger('api')

router = APIRouter(prefix="/v1/groups/{group_id}/members/{user_id}/goals", tags=["goals"])


async def _notify(group_id: UUID, user_id: UUID, goal_id: UUID, operation: str) -> None:
    await realtime_hub.publish(
        RealtimeChange(
            table=RealtimeTable.GOALS,
            operation=operation,
            group_id=group_id,
            user_id=user_id,
            row_id=str(goal_id),
        )
    )


@router.get("", response_model=GoalListResponse)
async def goal_history(
    group_id: UUID,
    user_id: UUID,
    repos: RepositoryContainer = Depends(get_repository_container),
) -> GoalListResponse:
    """All goals of a member, newest first."""
    goals = await repos.goal.list_for_member(user_id, group_id)
    return GoalListResponse(goals=[GoalResponse.model_validate(goal) for goal in goals])


@router.post(
    "",
    response_model=GoalResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        409: {"model": ProblemDetails, "description": "An active goal already exists"},
        422: {"model": ProblemDetails, "description": "Validation error"},
    },
)
async def create_goal(
    group_id: UUID,
    user_id: UUID,
    goal_data: GoalCreate,
    repos: RepositoryContainer = Depends(get_repository_container),
) -> GoalResponse:
    """Create the member's active goal (at most one incomplete goal per member)."""
    try:
        goal = await repos.goal.create(
            user_id,
            group_id,
            goal_data.target_stars,
            goal_data.target_categories,
            goal_data.reward,
        )
    except ActiveGoalExistsError as e:
        raise ProblemDetailsException(
            status_code=status.HTTP_409_CONFLICT,
            title="Active Goal Exists",
            detail=str(e),
        )

    logger.info(f"Goal {goal.id} created for user {user_id} in group {group_id}")
    await _notify(group_id, user_id, goal.id, "insert")
    return GoalResponse.model_validate(goal)


@router.post(
    "/{goal_id}/progress",
    response_model=GoalProgressResponse,
    responses={
        404: {"model": ProblemDetails, "description": "Goal not found"},
        409: {"model": ProblemDetails, "description": "Goal already completed"},
    },
)
async def add_goal_progress(
    group_id: UUID,
    user_id: UUID,
    goal_id: UUID,
    request: GoalProgressRequest,
    repos: RepositoryContainer = Depends(get_repository_container),
) -> GoalProgressResponse:
    """Atomically add stars to an incomplete goal."""
    goal = await repos.goal.get_by_id(goal_id)
    if goal is None or goal.user_id != user_id or goal.group_id != group_id:
        raise ProblemDetailsException(
            status_code=status.HTTP_404_NOT_FOUND,
            title="Goal Not Found",
            detail=f"Goal {goal_id} does not exist for this member",
        )

    update = await repos.goal.add_progress(goal_id, request.star_value)
    if update is None:
        raise ProblemDetailsException(
            status_code=status.HTTP_409_CONFLICT,
            title="Goal Completed",
            detail=f"Goal {goal_id} is already completed",
        )

    await _notify(group_id, user_id, goal_id, "update")
    return GoalProgressResponse(goal=GoalResponse.model_validate(update.goal), just_completed=update.just_completed)

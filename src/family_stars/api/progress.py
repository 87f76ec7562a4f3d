"""Membership, star ledger and badge endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, Response, status

from ..core.catalog import BADGES_BY_ID
from ..core.enums import RealtimeTable
from ..domain.badges import should_show_badges
from ..domain.progression import crosses_milestone, stage_from_threshold
from ..events.realtime import realtime_hub
from ..events.schemas import RealtimeChange
from ..repositories.dependencies import get_repository_container
from ..repositories.interfaces import RepositoryContainer
from ..utils.logging_config import get_logger
from .middleware import ProblemDetailsException
from .schemas import (
    BadgeListResponse,
    CelebrationSeenRequest,
    MarkSeenRequest,
    MarkSeenResponse,
    MembershipResponse,
    ProblemDetails,
    StarDeltaRequest,
    StarUpdateResponse,
    UnlockedBadgeResponse,
)

logger = get_logger('api')

router = APIRouter(prefix="/v1/groups/{group_id}/members/{user_id}", tags=["progress"])


def _membership_not_found(user_id: UUID, group_id: UUID) -> ProblemDetailsException:
    return ProblemDetailsException(
        status_code=status.HTTP_404_NOT_FOUND,
        title="Membership Not Found",
        detail=f"User {user_id} is not a member of group {group_id}",
    )


async def _notify(table: RealtimeTable, operation: str, group_id: UUID, user_id: UUID, row_id=None) -> None:
    await realtime_hub.publish(
        RealtimeChange(
            table=table,
            operation=operation,
            group_id=group_id,
            user_id=user_id,
            row_id=str(row_id) if row_id is not None else None,
        )
    )


@router.get(
    "",
    response_model=MembershipResponse,
    responses={404: {"model": ProblemDetails, "description": "Membership not found"}},
)
async def get_membership(
    group_id: UUID,
    user_id: UUID,
    repos: RepositoryContainer = Depends(get_repository_container),
) -> MembershipResponse:
    """Get a member's stored progress."""
    membership = await repos.membership.get(user_id, group_id)
    if membership is None:
        raise _membership_not_found(user_id, group_id)
    return MembershipResponse.model_validate(membership)


@router.put(
    "",
    response_model=MembershipResponse,
    responses={
        200: {"description": "Membership already existed"},
        201: {"description": "Membership created"},
    },
)
async def join_group(
    group_id: UUID,
    user_id: UUID,
    response: Response,
    repos: RepositoryContainer = Depends(get_repository_container),
) -> MembershipResponse:
    """Join a group: insert a fresh membership or return the existing one."""
    membership, created = await repos.membership.create(user_id, group_id)
    if created:
        response.status_code = status.HTTP_201_CREATED
        logger.info(f"User {user_id} joined group {group_id}")
        await _notify(RealtimeTable.MEMBERSHIPS, "insert", group_id, user_id, membership.id)
    return MembershipResponse.model_validate(membership)


@router.delete(
    "",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ProblemDetails, "description": "Membership not found"}},
)
async def leave_group(
    group_id: UUID,
    user_id: UUID,
    repos: RepositoryContainer = Depends(get_repository_container),
) -> Response:
    """Leave a group, removing the membership."""
    if not await repos.membership.remove(user_id, group_id):
        raise _membership_not_found(user_id, group_id)
    logger.info(f"User {user_id} left group {group_id}")
    await _notify(RealtimeTable.MEMBERSHIPS, "delete", group_id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/stars",
    response_model=StarUpdateResponse,
    responses={
        404: {"model": ProblemDetails, "description": "Membership not found"},
        422: {"model": ProblemDetails, "description": "Invalid delta"},
    },
)
async def apply_star_delta(
    group_id: UUID,
    user_id: UUID,
    request: StarDeltaRequest,
    repos: RepositoryContainer = Depends(get_repository_container),
) -> StarUpdateResponse:
    """
    Atomically add a signed delta to the stored total.

    The total is clamped at zero and the stage recomputed in the same
    statement. The response carries the authoritative result.
    """
    update = await repos.membership.increment_stars(user_id, group_id, request.delta)
    if update is None:
        raise _membership_not_found(user_id, group_id)

    await _notify(RealtimeTable.MEMBERSHIPS, "update", group_id, user_id, update.membership.id)
    return StarUpdateResponse(
        user_id=user_id,
        group_id=group_id,
        previous_total=update.previous_total,
        total_stars=update.total_stars,
        current_stage=update.current_stage,
        stage_threshold=stage_from_threshold(update.total_stars),
        milestone_crossed=crosses_milestone(update.previous_total, update.total_stars),
    )


@router.post(
    "/reset",
    response_model=MembershipResponse,
    responses={404: {"model": ProblemDetails, "description": "Membership not found"}},
)
async def reset_progress(
    group_id: UUID,
    user_id: UUID,
    repos: RepositoryContainer = Depends(get_repository_container),
) -> MembershipResponse:
    """Milestone reset: zero stars, first stage, badge seen markers cleared."""
    membership = await repos.membership.reset(user_id, group_id)
    if membership is None:
        raise _membership_not_found(user_id, group_id)

    logger.info(f"Progress reset for user {user_id} in group {group_id}")
    await _notify(RealtimeTable.MEMBERSHIPS, "update", group_id, user_id, membership.id)
    await _notify(RealtimeTable.UNLOCKED_BADGES, "update", group_id, user_id)
    return MembershipResponse.model_validate(membership)


@router.get("/badges", response_model=BadgeListResponse)
async def list_badges(
    group_id: UUID,
    user_id: UUID,
    repos: RepositoryContainer = Depends(get_repository_container),
) -> BadgeListResponse:
    """Unlocked badge rows of a member."""
    membership = await repos.membership.get(user_id, group_id)
    total = membership.total_stars if membership else 0

    rows = await repos.unlocked_badge.list_for_member(user_id, group_id)
    badges = []
    for row in rows:
        item = UnlockedBadgeResponse.model_validate(row)
        definition = BADGES_BY_ID.get(row.badge_id)
        if definition is not None:
            item = item.model_copy(update={"name": definition.name, "unlock_stars": definition.unlock_stars})
        badges.append(item)

    return BadgeListResponse(badges=badges, total_stars=total, show_badges=should_show_badges(total))


@router.post("/badges/seen", response_model=MarkSeenResponse)
async def mark_badges_seen(
    group_id: UUID,
    user_id: UUID,
    request: MarkSeenRequest,
    repos: RepositoryContainer = Depends(get_repository_container),
) -> MarkSeenResponse:
    """Flip unseen rows to seen; only rows this request flipped are returned."""
    flipped = await repos.unlocked_badge.mark_seen(user_id, group_id, request.badge_ids)
    if flipped:
        await _notify(RealtimeTable.UNLOCKED_BADGES, "update", group_id, user_id)
    return MarkSeenResponse(flipped=sorted(flipped))


@router.post(
    "/celebrations/seen",
    response_model=MembershipResponse,
    responses={404: {"model": ProblemDetails, "description": "Membership not found"}},
)
async def mark_celebration_seen(
    group_id: UUID,
    user_id: UUID,
    request: CelebrationSeenRequest,
    repos: RepositoryContainer = Depends(get_repository_container),
) -> MembershipResponse:
    """Record a shown celebration and bump the member's last-read timestamp."""
    membership = await repos.membership.mark_celebration_seen(user_id, group_id, request.celebration_id)
    if membership is None:
        raise _membership_not_found(user_id, group_id)
    return MembershipResponse.model_validate(membership)

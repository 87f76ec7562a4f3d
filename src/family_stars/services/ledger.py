"""
Ledger Service: applies signed star deltas to one member's memberships.

Each delta is applied optimistically to the local cache, persisted as an
atomic increment, and then the stored total and stage are adopted as
truth. Badge and stage side effects only run after persistence succeeded.
Crossing the milestone ceiling suppresses badge celebrations for that delta
and schedules a full reset that runs once the milestone celebration has
been dismissed.
"""

import asyncio
from collections import OrderedDict
from dataclasses import dataclass, replace
from typing import Dict, Optional, Sequence, Set
from uuid import UUID

from ..core.catalog import STAGES, StageDefinition
from ..db.models import Membership
from ..domain.events import CelebrationEvent
from ..domain.progression import (
    StageProgress,
    apply_delta,
    crosses_milestone,
    stage_for,
    stage_number,
    stage_progress,
    validate_delta,
)
from ..events.bus import ChangeNotificationBus, change_bus
from ..events.schemas import BadgesChanged, MembershipChanged, ProgressChanged
from ..repositories.interfaces import MembershipNotFoundError, MembershipRepository, StarUpdate
from ..utils.logging_config import get_logger, log_exception
from .badges import BadgeEngine
from .celebrations import CelebrationQueue
from .mutation import mutate

logger = get_logger('ledger')


@dataclass(frozen=True)
class LocalProgress:
    """Cached view of one membership."""

    total_stars: int
    current_stage: int


@dataclass(frozen=True)
class DeltaOutcome:
    """Result of ``LedgerService.apply_delta``."""

    success: bool
    group_id: UUID
    delta: int
    previous_total: Optional[int] = None
    new_total: Optional[int] = None
    previous_stage: Optional[int] = None
    new_stage: Optional[int] = None
    milestone_crossed: bool = False
    replayed: bool = False

    def __bool__(self) -> bool:
        return self.success

    @property
    def stage_changed(self) -> bool:
        return (
            self.success
            and self.previous_stage is not None
            and self.new_stage is not None
            and self.new_stage != self.previous_stage
        )


class LedgerService:
    """Star ledger for one signed-in member across their groups."""

    def __init__(
        self,
        user_id: UUID,
        memberships: MembershipRepository,
        badges: BadgeEngine,
        queue: CelebrationQueue,
        bus: ChangeNotificationBus = change_bus,
        stages: Sequence[StageDefinition] = STAGES,
        max_tracked_operations: int = 512,
    ):
        self.user_id = user_id
        self._memberships = memberships
        self._badges = badges
        self._queue = queue
        self._bus = bus
        self._stages = tuple(stages)
        self._ceiling = self._stages[-1].required_stars
        self._cache: Dict[UUID, LocalProgress] = {}
        self._applied: "OrderedDict[str, DeltaOutcome]" = OrderedDict()
        self._max_tracked_operations = max_tracked_operations
        self._pending_operations: Dict[str, "asyncio.Future[DeltaOutcome]"] = {}
        self._milestones_due: Set[UUID] = set()

    # -- reads -------------------------------------------------------------

    def cached(self, group_id: UUID) -> Optional[LocalProgress]:
        return self._cache.get(group_id)

    def total_stars(self, group_id: UUID) -> int:
        progress = self._cache.get(group_id)
        return progress.total_stars if progress else 0

    def current_stage(self, group_id: UUID) -> int:
        progress = self._cache.get(group_id)
        return progress.current_stage if progress else self._stages[0].number

    def stage_from_threshold(self, total_stars: int) -> int:
        return stage_for(total_stars, self._stages).required_stars

    def stage_progress(self, group_id: UUID) -> StageProgress:
        return stage_progress(self.total_stars(group_id), self._stages)

    async def refresh(self, group_id: UUID) -> Optional[LocalProgress]:
        """Re-fetch the stored membership into the cache. Safe to repeat."""
        membership = await self._memberships.get(self.user_id, group_id)
        if membership is None:
            self._cache.pop(group_id, None)
            return None
        progress = LocalProgress(membership.total_stars, membership.current_stage)
        self._cache[group_id] = progress
        return progress

    # -- membership lifecycle ---------------------------------------------

    async def ensure_membership(self, group_id: UUID) -> Membership:
        """Create the membership on join, or fetch the existing one."""
        membership, created = await self._memberships.create(self.user_id, group_id)
        self._cache[group_id] = LocalProgress(membership.total_stars, membership.current_stage)
        if created:
            logger.info(f"User {self.user_id} joined group {group_id}")
            await self._bus.publish(MembershipChanged(group_id=group_id, user_id=self.user_id))
        return membership

    async def remove_membership(self, group_id: UUID) -> bool:
        removed = await self._memberships.remove(self.user_id, group_id)
        self._cache.pop(group_id, None)
        self._badges.forget_group(self.user_id, group_id)
        if removed:
            logger.info(f"User {self.user_id} left group {group_id}")
            await self._bus.publish(MembershipChanged(group_id=group_id, user_id=self.user_id))
        return removed

    async def mark_celebration_seen(self, group_id: UUID, celebration_id: str) -> bool:
        """Record a shown celebration on the membership. Failures are logged, not raised."""
        try:
            membership = await self._memberships.mark_celebration_seen(self.user_id, group_id, celebration_id)
        except Exception as e:
            log_exception('ledger', e, {"group_id": str(group_id), "celebration_id": celebration_id})
            return False
        return membership is not None

    # -- deltas ------------------------------------------------------------

    async def apply_delta(
        self, group_id: UUID, delta: int, operation_id: Optional[str] = None
    ) -> DeltaOutcome:
        """
        Apply a signed, non-zero star delta.

        Raises:
            ValueError: If ``delta`` is zero or not an integer

        Returns:
            DeltaOutcome; falsy when persistence failed and local state was
            rolled back. No badge or stage side effects run in that case.
        """
        validate_delta(delta)

        if operation_id is None:
            return await self._apply_once(group_id, delta, None)

        if operation_id in self._applied:
            logger.info(f"Operation {operation_id} already applied; returning recorded outcome")
            return replace(self._applied[operation_id], replayed=True)

        pending = self._pending_operations.get(operation_id)
        if pending is not None:
            # Same operation retried while the first attempt is in flight
            return replace(await asyncio.shield(pending), replayed=True)

        future = asyncio.get_running_loop().create_future()
        self._pending_operations[operation_id] = future
        try:
            outcome = await self._apply_once(group_id, delta, operation_id)
            future.set_result(outcome)
            return outcome
        finally:
            if not future.done():
                future.set_result(DeltaOutcome(success=False, group_id=group_id, delta=delta))
            del self._pending_operations[operation_id]

    async def _apply_once(
        self, group_id: UUID, delta: int, operation_id: Optional[str]
    ) -> DeltaOutcome:
        context = {"user_id": str(self.user_id), "group_id": str(group_id), "delta": delta}
        if group_id not in self._cache:
            try:
                await self.refresh(group_id)
            except Exception as e:
                log_exception('ledger', e, context)
                return DeltaOutcome(success=False, group_id=group_id, delta=delta)
            if group_id not in self._cache:
                logger.warning(f"No membership for user {self.user_id} in group {group_id}; delta {delta} rejected")
                return DeltaOutcome(success=False, group_id=group_id, delta=delta)

        def apply_optimistic() -> LocalProgress:
            snapshot = self._cache[group_id]
            guess = apply_delta(snapshot.total_stars, delta)
            self._cache[group_id] = LocalProgress(guess, stage_number(guess, self._stages))
            return snapshot

        async def persist() -> StarUpdate:
            update = await self._memberships.increment_stars(self.user_id, group_id, delta)
            if update is None:
                raise MembershipNotFoundError(self.user_id, group_id)
            return update

        def adopt(update: StarUpdate) -> None:
            self._cache[group_id] = LocalProgress(update.total_stars, update.current_stage)

        def rollback(snapshot: LocalProgress) -> None:
            self._cache[group_id] = snapshot

        result = await mutate(apply_optimistic, persist, adopt, rollback, component='ledger', context=context)
        if not result:
            return DeltaOutcome(success=False, group_id=group_id, delta=delta)

        update: StarUpdate = result.value
        previous_stage = stage_number(update.previous_total, self._stages)
        outcome = DeltaOutcome(
            success=True,
            group_id=group_id,
            delta=delta,
            previous_total=update.previous_total,
            new_total=update.total_stars,
            previous_stage=previous_stage,
            new_stage=update.current_stage,
            milestone_crossed=crosses_milestone(update.previous_total, update.total_stars, self._ceiling),
        )
        self._remember(operation_id, outcome)

        logger.info(
            f"User {self.user_id} group {group_id}: {update.previous_total} -> {update.total_stars} stars "
            f"(delta {delta:+d}, stage {update.current_stage})"
        )
        await self._bus.publish(ProgressChanged(group_id=group_id, user_id=self.user_id))

        if outcome.milestone_crossed or update.total_stars >= self._ceiling:
            # A total already at the ceiling means an earlier reset never ran
            self._schedule_milestone(group_id, update.total_stars)
            return outcome

        if outcome.new_stage > previous_stage:
            stage = stage_for(update.total_stars, self._stages)
            self._queue.enqueue(CelebrationEvent.for_stage(self.user_id, group_id, stage))

        if delta > 0:
            await self._badges.check_and_award(
                self.user_id, group_id, update.previous_total, update.total_stars
            )

        return outcome

    def _remember(self, operation_id: Optional[str], outcome: DeltaOutcome) -> None:
        if operation_id is None:
            return
        self._applied[operation_id] = outcome
        while len(self._applied) > self._max_tracked_operations:
            self._applied.popitem(last=False)

    # -- milestone reset ---------------------------------------------------

    def milestone_pending(self, group_id: UUID) -> bool:
        return group_id in self._milestones_due

    def resume_milestone(self, group_id: UUID) -> bool:
        """
        Schedule the milestone celebration and reset if the cached total is
        still at the ceiling, e.g. after a session closed before the reset ran.
        """
        total = self.total_stars(group_id)
        if total < self._ceiling:
            return False
        self._schedule_milestone(group_id, total)
        return True

    def _schedule_milestone(self, group_id: UUID, total_stars: int) -> None:
        if group_id in self._milestones_due:
            return
        self._milestones_due.add(group_id)
        logger.info(f"User {self.user_id} reached the milestone in group {group_id}; reset after celebration")
        event = CelebrationEvent.for_milestone(self.user_id, group_id, total_stars)

        async def reset_after_dismiss(_event: CelebrationEvent) -> None:
            try:
                await self.trigger_reset(group_id)
            finally:
                # A failed reset is scheduled again by the next delta or session start
                self._milestones_due.discard(group_id)

        self._queue.enqueue(event, on_dismissed=reset_after_dismiss)

    async def trigger_reset(self, group_id: UUID) -> bool:
        """
        Reset stars and stage and clear badge seen markers for the group.

        The repository applies both in one transaction. When persistence
        fails the stored state is re-fetched, so the cache never keeps a
        snapshot the store no longer holds.
        """
        context = {"user_id": str(self.user_id), "group_id": str(group_id), "operation": "reset"}

        def apply_optimistic() -> Optional[LocalProgress]:
            snapshot = self._cache.get(group_id)
            self._cache[group_id] = LocalProgress(0, self._stages[0].number)
            return snapshot

        async def persist() -> Membership:
            membership = await self._memberships.reset(self.user_id, group_id)
            if membership is None:
                raise MembershipNotFoundError(self.user_id, group_id)
            return membership

        def adopt(membership: Membership) -> None:
            self._cache[group_id] = LocalProgress(membership.total_stars, membership.current_stage)

        def rollback(snapshot: Optional[LocalProgress]) -> None:
            if snapshot is None:
                self._cache.pop(group_id, None)
            else:
                self._cache[group_id] = snapshot

        result = await mutate(apply_optimistic, persist, adopt, rollback, component='ledger', context=context)
        if not result:
            try:
                await self.refresh(group_id)
            except Exception as e:
                log_exception('ledger', e, context)
            return False

        self._badges.forget_group(self.user_id, group_id)
        logger.info(f"Progress reset for user {self.user_id} in group {group_id}")
        await self._bus.publish(ProgressChanged(group_id=group_id, user_id=self.user_id))
        await self._bus.publish(BadgesChanged(group_id=group_id, user_id=self.user_id))
        return True

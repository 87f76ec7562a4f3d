"""Badge Engine: idempotent unlock bookkeeping feeding the celebration queue."""

from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from ..core.catalog import BADGE_BUCKETS, BADGES, BadgeBucket, BadgeDefinition
from ..db.models import UnlockedBadge
from ..domain.badges import current_bucket_badges, newly_unlocked_badges, should_show_badges
from ..domain.events import CelebrationEvent
from ..events.bus import ChangeNotificationBus, change_bus
from ..events.schemas import BadgesChanged
from ..repositories.interfaces import UnlockedBadgeRepository
from ..utils.logging_config import get_logger, log_exception
from .celebrations import CelebrationQueue

logger = get_logger('badges')

BadgeKey = Tuple[UUID, UUID, str]


class BadgeEngine:
    """
    Diffs star totals into crossed badges and awards them.

    A badge row is inserted at most once (insert-or-fetch against the
    uniqueness constraint). Celebrations for a batch are enqueued before the
    rows are marked seen; a celebration whose row another device flipped
    first is withdrawn if it has not been shown yet.
    """

    def __init__(
        self,
        repository: UnlockedBadgeRepository,
        queue: CelebrationQueue,
        bus: ChangeNotificationBus = change_bus,
        badges: Sequence[BadgeDefinition] = BADGES,
        buckets: Sequence[BadgeBucket] = BADGE_BUCKETS,
    ):
        self._repo = repository
        self._queue = queue
        self._bus = bus
        self._badges = tuple(badges)
        self._buckets = tuple(buckets)
        self._by_id = {badge.id: badge for badge in self._badges}
        # Badges queued in this session whose celebration has not finished
        self._in_flight: Dict[BadgeKey, UUID] = {}

    def unlocked_badges(self, total_stars: int) -> List[BadgeDefinition]:
        """Display set for the bucket containing ``total_stars``."""
        return current_bucket_badges(total_stars, self._badges, self._buckets)

    def shows_badges(self, total_stars: int) -> bool:
        return should_show_badges(total_stars, self._buckets)

    async def check_and_award(
        self, user_id: UUID, group_id: UUID, old_stars: int, new_stars: int
    ) -> List[BadgeDefinition]:
        """
        Award every badge crossed between ``old_stars`` and ``new_stars``.

        Returns the badges whose celebrations remain queued after the
        seen-marking step.
        """
        crossed = newly_unlocked_badges(old_stars, new_stars, self._badges)
        if not crossed:
            return []

        logger.info(
            f"User {user_id} crossed {len(crossed)} badge(s) in group {group_id} ({old_stars} -> {new_stars})"
        )

        candidates = []
        for badge in crossed:
            try:
                row, created = await self._repo.insert_or_get(user_id, group_id, badge.id)
            except Exception as e:
                # Stays eligible; the next crossing check retries it
                log_exception('badges', e, {"user_id": str(user_id), "group_id": str(group_id), "badge_id": badge.id})
                continue

            if row.seen:
                continue
            if (user_id, group_id, badge.id) in self._in_flight:
                continue
            candidates.append(badge)

        awarded = await self._celebrate(user_id, group_id, candidates)
        await self._bus.publish(BadgesChanged(group_id=group_id, user_id=user_id))
        return awarded

    async def replay_unseen(
        self, user_id: UUID, group_id: UUID, total_stars: Optional[int] = None
    ) -> List[BadgeDefinition]:
        """
        Enqueue celebrations for unlocked rows never marked seen.

        When ``total_stars`` is given only badges at or below it are replayed,
        so markers cleared by a milestone reset wait for the badge to be
        crossed again.
        """
        try:
            rows: List[UnlockedBadge] = await self._repo.list_unseen(user_id, group_id)
        except Exception as e:
            log_exception('badges', e, {"user_id": str(user_id), "group_id": str(group_id), "operation": "replay_unseen"})
            return []

        candidates = []
        for row in rows:
            badge = self._by_id.get(row.badge_id)
            if badge is None:
                logger.warning(f"Unknown badge id {row.badge_id} for user {user_id}")
                continue
            if total_stars is not None and badge.unlock_stars > total_stars:
                continue
            if (user_id, group_id, badge.id) in self._in_flight:
                continue
            candidates.append(badge)

        candidates.sort(key=lambda b: b.unlock_stars)
        return await self._celebrate(user_id, group_id, candidates)

    async def list_unlocked(self, user_id: UUID, group_id: UUID) -> List[UnlockedBadge]:
        return await self._repo.list_for_member(user_id, group_id)

    def forget_group(self, user_id: UUID, group_id: UUID) -> None:
        """Drop in-flight bookkeeping after a reset."""
        for key in [k for k in self._in_flight if k[0] == user_id and k[1] == group_id]:
            del self._in_flight[key]

    async def _celebrate(
        self, user_id: UUID, group_id: UUID, badges: List[BadgeDefinition]
    ) -> List[BadgeDefinition]:
        if not badges:
            return []

        queued: Dict[str, CelebrationEvent] = {}
        for badge in badges:
            key = (user_id, group_id, badge.id)
            event = CelebrationEvent.for_badge(user_id, group_id, badge)
            self._in_flight[key] = event.event_id
            self._queue.enqueue(event, on_dismissed=self._release_hook(key))
            queued[badge.id] = event

        try:
            flipped = await self._repo.mark_seen(user_id, group_id, list(queued))
        except Exception as e:
            # Rows stay unseen; the queued celebrations still show
            log_exception('badges', e, {"user_id": str(user_id), "group_id": str(group_id), "operation": "mark_seen"})
            return badges

        awarded = []
        for badge in badges:
            if badge.id in flipped:
                awarded.append(badge)
                continue
            event = queued[badge.id]
            if self._queue.withdraw(event.event_id):
                self._in_flight.pop((user_id, group_id, badge.id), None)
                logger.info(f"Badge {badge.id} was marked seen by another client; celebration withdrawn")
            else:
                awarded.append(badge)

        return awarded

    def _release_hook(self, key: BadgeKey):
        def release(event: CelebrationEvent) -> None:
            if self._in_flight.get(key) == event.event_id:
                del self._in_flight[key]

        return release

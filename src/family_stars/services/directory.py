"""Process-wide read-through cache of group members and their progress."""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional
from uuid import UUID

from ..core.enums import ChangeTopic
from ..events.bus import ChangeNotificationBus, change_bus
from ..events.schemas import ChangeMessage
from ..repositories.interfaces import MembershipRepository
from ..utils.logging_config import get_logger

logger = get_logger('events')


@dataclass(frozen=True)
class MemberSnapshot:
    user_id: UUID
    group_id: UUID
    total_stars: int
    current_stage: int


class GroupDirectory:
    """
    Group -> members cache.

    Entries are loaded on first read and dropped only when a
    "membership changed" or "progress changed" signal for the group arrives
    on the bus. Nothing else writes to the cache.
    """

    def __init__(self, memberships: MembershipRepository, bus: ChangeNotificationBus = change_bus):
        self._memberships = memberships
        self._bus = bus
        self._groups: Dict[UUID, List[MemberSnapshot]] = {}
        self._unsubscribers: List[Callable[[], None]] = []
        self.loads = 0

    def attach(self) -> None:
        if self._unsubscribers:
            return
        for topic in (ChangeTopic.MEMBERSHIP, ChangeTopic.PROGRESS):
            self._unsubscribers.append(self._bus.subscribe(topic, self._invalidate))

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def _invalidate(self, message: ChangeMessage) -> None:
        if self._groups.pop(message.group_id, None) is not None:
            logger.debug(f"Directory entry for group {message.group_id} invalidated by {message.topic.value}")

    def is_cached(self, group_id: UUID) -> bool:
        return group_id in self._groups

    async def members(self, group_id: UUID) -> List[MemberSnapshot]:
        cached = self._groups.get(group_id)
        if cached is not None:
            return cached

        rows = await self._memberships.list_by_group(group_id)
        self.loads += 1
        snapshots = [
            MemberSnapshot(
                user_id=row.user_id,
                group_id=row.group_id,
                total_stars=row.total_stars,
                current_stage=row.current_stage,
            )
            for row in rows
        ]
        self._groups[group_id] = snapshots
        return snapshots

    async def member(self, group_id: UUID, user_id: UUID) -> Optional[MemberSnapshot]:
        for snapshot in await self.members(group_id):
            if snapshot.user_id == user_id:
                return snapshot
        return None

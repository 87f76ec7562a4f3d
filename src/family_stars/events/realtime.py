"""Realtime collaborator: row-change subscriptions filtered by table and group."""

import inspect
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Tuple, Union
from uuid import UUID

from ..core.enums import RealtimeTable
from ..utils.logging_config import get_logger, log_exception
from .schemas import RealtimeChange

logger = get_logger('events')

RealtimeCallback = Callable[[RealtimeChange], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class RealtimeFilter:
    """Which row changes a subscriber wants. ``None`` matches anything."""

    table: Optional[RealtimeTable] = None
    group_id: Optional[UUID] = None
    user_id: Optional[UUID] = None

    def matches(self, change: RealtimeChange) -> bool:
        if self.table is not None and change.table != self.table:
            return False
        if self.group_id is not None and change.group_id != self.group_id:
            return False
        if self.user_id is not None and change.user_id != self.user_id:
            return False
        return True


class RealtimeHub:
    """Fan-out of row changes to filtered subscribers."""

    def __init__(self):
        self._subscriptions: List[Tuple[RealtimeFilter, RealtimeCallback]] = []

    def subscribe(self, table_filter: RealtimeFilter, on_change: RealtimeCallback) -> Callable[[], None]:
        entry = (table_filter, on_change)
        self._subscriptions.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscriptions:
                self._subscriptions.remove(entry)

        return unsubscribe

    async def publish(self, change: RealtimeChange) -> int:
        delivered = 0
        for table_filter, on_change in list(self._subscriptions):
            if not table_filter.matches(change):
                continue
            try:
                result = on_change(change)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as e:
                log_exception(
                    'events',
                    e,
                    {"table": change.table.value, "group_id": str(change.group_id), "operation": change.operation},
                )
        return delivered

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)


# Process-wide hub fed by the API after each committed mutation
realtime_hub = RealtimeHub()

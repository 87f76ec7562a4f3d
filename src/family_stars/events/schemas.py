"""Typed change messages and realtime row-change notices.

Every message carries entity keys only. Receivers re-fetch their own view
of truth instead of trusting a pushed payload.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ..core.enums import ChangeTopic, RealtimeTable


class ChangeMessage(BaseModel):
    """Base in-process change signal."""

    model_config = ConfigDict(frozen=True)

    topic: ChangeTopic
    group_id: UUID
    user_id: Optional[UUID] = None
    entity_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ProgressChanged(ChangeMessage):
    """A membership's star total or stage changed."""

    topic: Literal[ChangeTopic.PROGRESS] = ChangeTopic.PROGRESS


class BadgesChanged(ChangeMessage):
    """Unlocked badge rows were inserted or flipped."""

    topic: Literal[ChangeTopic.BADGES] = ChangeTopic.BADGES


class MembershipChanged(ChangeMessage):
    """Someone joined or left a group."""

    topic: Literal[ChangeTopic.MEMBERSHIP] = ChangeTopic.MEMBERSHIP


class GoalsChanged(ChangeMessage):
    """A goal was created, progressed or completed."""

    topic: Literal[ChangeTopic.GOALS] = ChangeTopic.GOALS


# Which in-process signal a realtime row change turns into
TABLE_TOPICS: Dict[RealtimeTable, type] = {
    RealtimeTable.MEMBERSHIPS: ProgressChanged,
    RealtimeTable.UNLOCKED_BADGES: BadgesChanged,
    RealtimeTable.GOALS: GoalsChanged,
}


class RealtimeChange(BaseModel):
    """A row change reported by the realtime collaborator."""

    model_config = ConfigDict(frozen=True)

    table: RealtimeTable
    operation: Literal["insert", "update", "delete"] = "update"
    group_id: UUID
    user_id: Optional[UUID] = None
    row_id: Optional[str] = None
    # Delivered for debugging only; never used as state
    payload: Dict[str, Any] = Field(default_factory=dict)

    def to_signal(self) -> ChangeMessage:
        """Convert into the matching in-process signal (keys only)."""
        if self.table == RealtimeTable.MEMBERSHIPS and self.operation in ("insert", "delete"):
            message_cls = MembershipChanged
        else:
            message_cls = TABLE_TOPICS[self.table]
        return message_cls(group_id=self.group_id, user_id=self.user_id, entity_id=self.row_id)


class WebSocketMessage(BaseModel):
    """Base WebSocket message format."""

    type: str
    data: Dict[str, Any]
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RealtimeChangeMessage(WebSocketMessage):
    """WebSocket envelope for a realtime row change."""

    def __init__(self, change: RealtimeChange, **kwargs):
        data = {
            "table": change.table.value,
            "operation": change.operation,
            "group_id": str(change.group_id),
            "user_id": str(change.user_id) if change.user_id else None,
            "row_id": change.row_id,
        }
        super().__init__(type="realtime_change", data=data, **kwargs)

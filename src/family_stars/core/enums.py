"""Enums for the Family Stars progression service."""

from enum import Enum


class CelebrationKind(str, Enum):
    """Kinds of celebrations shown to a member."""

    BADGE = "badge"
    GOAL = "goal"
    MILESTONE = "milestone"
    STAGE = "stage"


class ChangeTopic(str, Enum):
    """Domains a change notification can refer to."""

    PROGRESS = "progress_changed"
    BADGES = "badges_changed"
    MEMBERSHIP = "membership_changed"
    GOALS = "goals_changed"


class RealtimeTable(str, Enum):
    """Tables the realtime collaborator reports row changes for."""

    MEMBERSHIPS = "memberships"
    UNLOCKED_BADGES = "unlocked_badges"
    GOALS = "goals"


class CelebrationPhase(str, Enum):
    """Presentation phase of the celebration currently on screen."""

    SHOWN = "shown"
    HIDING = "hiding"
    DISMISSED = "dismissed"

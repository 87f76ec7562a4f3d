"""
Pure functions for stage and star-total arithmetic.

No persistence or presentation concerns live here; the ledger service and
the persistence layer both derive stages from these functions so that the
client's optimistic guess and the stored value agree.
"""

from bisect import bisect_right
from dataclasses import dataclass
from typing import Optional, Sequence

from ..core.catalog import MILESTONE_STARS, STAGES, StageDefinition


@dataclass(frozen=True)
class StageProgress:
    """Progress within the current stage bracket."""

    current: int
    target: int
    percentage: float


def _thresholds(stages: Sequence[StageDefinition]) -> list:
    return [stage.required_stars for stage in stages]


def stage_for(total_stars: int, stages: Sequence[StageDefinition] = STAGES) -> StageDefinition:
    """Return the highest stage whose threshold is <= ``total_stars``."""
    index = bisect_right(_thresholds(stages), max(0, total_stars)) - 1
    return stages[max(index, 0)]


def stage_from_threshold(total_stars: int, stages: Sequence[StageDefinition] = STAGES) -> int:
    """Return the highest configured threshold <= ``total_stars`` (e.g. 199 -> 50, 200 -> 200)."""
    return stage_for(total_stars, stages).required_stars


def stage_number(total_stars: int, stages: Sequence[StageDefinition] = STAGES) -> int:
    """Return the 1-based ordinal of the stage reached at ``total_stars``."""
    return stage_for(total_stars, stages).number


def next_stage(total_stars: int, stages: Sequence[StageDefinition] = STAGES) -> Optional[StageDefinition]:
    """Return the next stage to reach, or None at the top bracket."""
    for stage in stages:
        if total_stars < stage.required_stars:
            return stage
    return None


def stage_progress(total_stars: int, stages: Sequence[StageDefinition] = STAGES) -> StageProgress:
    """
    Compute progress inside the current stage bracket.

    ``current`` is the number of stars earned since the bracket started and
    ``target`` the width of the bracket. At the top bracket there is no next
    stage, so the total is reported against the top threshold and the
    percentage is pinned to 100.
    """
    upcoming = next_stage(total_stars, stages)
    if upcoming is None:
        top = stages[-1]
        return StageProgress(current=total_stars, target=top.required_stars, percentage=100.0)

    base = stage_from_threshold(total_stars, stages)
    earned = total_stars - base
    width = upcoming.required_stars - base
    percentage = (earned / width) * 100 if width > 0 else 0.0
    return StageProgress(current=earned, target=width, percentage=min(percentage, 100.0))


def apply_delta(total_stars: int, delta: int) -> int:
    """Apply a signed delta, clamping the result at zero."""
    return max(0, total_stars + delta)


def crosses_milestone(previous_total: int, new_total: int, ceiling: int = MILESTONE_STARS) -> bool:
    """True when a delta moves the total from below the ceiling to at or above it."""
    return previous_total < ceiling <= new_total


def validate_delta(delta: int) -> int:
    """Reject zero and non-integer deltas."""
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise ValueError(f"Star delta must be an integer, got {delta!r}")
    if delta == 0:
        raise ValueError("Star delta must be non-zero")
    return delta

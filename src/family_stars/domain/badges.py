"""
Pure functions for badge bucket math.

``newly_unlocked_badges`` is cumulative: it returns every badge whose
threshold lies in ``(old_stars, new_stars]`` no matter how many buckets a
single delta skips.
"""

from typing import List, Optional, Sequence

from ..core.catalog import BADGE_BUCKETS, BADGES, BadgeBucket, BadgeDefinition


def bucket_for(
    total_stars: int, buckets: Sequence[BadgeBucket] = BADGE_BUCKETS
) -> Optional[BadgeBucket]:
    """Return the bucket containing ``total_stars``, or None past the last bucket."""
    for bucket in buckets:
        if bucket.contains(total_stars):
            return bucket
    return None


def current_bucket_badges(
    total_stars: int,
    badges: Sequence[BadgeDefinition] = BADGES,
    buckets: Sequence[BadgeBucket] = BADGE_BUCKETS,
) -> List[BadgeDefinition]:
    """Badges of the bucket containing ``total_stars`` that are already unlocked."""
    bucket = bucket_for(total_stars, buckets)
    if bucket is None:
        return []
    return [
        badge
        for badge in badges
        if badge.bucket == bucket.name and badge.unlock_stars <= total_stars
    ]


def newly_unlocked_badges(
    old_stars: int, new_stars: int, badges: Sequence[BadgeDefinition] = BADGES
) -> List[BadgeDefinition]:
    """Every badge with ``old_stars < unlock_stars <= new_stars``, in threshold order."""
    if new_stars <= old_stars:
        return []
    crossed = [badge for badge in badges if old_stars < badge.unlock_stars <= new_stars]
    return sorted(crossed, key=lambda badge: badge.unlock_stars)


def should_show_badges(
    total_stars: int, buckets: Sequence[BadgeBucket] = BADGE_BUCKETS
) -> bool:
    """Badges are displayed only while the total is inside a badge bucket."""
    return bucket_for(total_stars, buckets) is not None

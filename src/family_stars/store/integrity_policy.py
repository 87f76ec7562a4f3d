"""
Integrity policy for classifying expected IntegrityError exceptions.

Uniqueness conflicts on unlocked badges, memberships and active goals are
how concurrent writers learn that another device got there first. They are
distinguished here from genuine integrity failures.
"""

from enum import Enum
from typing import Optional, Dict, Any
from sqlalchemy.exc import IntegrityError  # type: ignore
from ..utils.logging_config import get_logger


logger = get_logger('database')


class ExpectedIntegrityTag(Enum):
    """Tags for expected integrity constraint violations."""

    BADGE_ALREADY_UNLOCKED = "badge_already_unlocked"
    MEMBERSHIP_EXISTS = "membership_exists"
    ACTIVE_GOAL_EXISTS = "active_goal_exists"


class IntegrityViolationResult(Enum):
    """Result of handling an integrity violation."""

    ALREADY_EXISTS = "already_exists"
    RACE_CONDITION_LOST = "race_condition_lost"
    REJECTED = "rejected"


# SQLite reports the column list, PostgreSQL the constraint name
CONSTRAINT_TAG_MAP: Dict[str, ExpectedIntegrityTag] = {
    "unlocked_badges.user_id, unlocked_badges.group_id, unlocked_badges.badge_id": ExpectedIntegrityTag.BADGE_ALREADY_UNLOCKED,
    "uq_unlocked_badge": ExpectedIntegrityTag.BADGE_ALREADY_UNLOCKED,
    "memberships.user_id, memberships.group_id": ExpectedIntegrityTag.MEMBERSHIP_EXISTS,
    "uq_membership_user_group": ExpectedIntegrityTag.MEMBERSHIP_EXISTS,
    "goals.user_id, goals.group_id": ExpectedIntegrityTag.ACTIVE_GOAL_EXISTS,
    "uq_goal_active_per_member": ExpectedIntegrityTag.ACTIVE_GOAL_EXISTS,
}


def _error_message(exc: IntegrityError) -> str:
    return str(exc.orig) if exc.orig is not None else str(exc)


def is_unique_violation(exc: IntegrityError) -> bool:
    """Check if the IntegrityError is a unique constraint violation."""
    error_msg = _error_message(exc)
    return (
        "UNIQUE constraint failed" in error_msg
        or "duplicate key value violates unique constraint" in error_msg
    )


def extract_constraint_name(exc: IntegrityError) -> Optional[str]:
    """Extract the constraint identifier from an IntegrityError."""
    error_msg = _error_message(exc)

    # SQLite: "UNIQUE constraint failed: table.col1, table.col2"
    if "UNIQUE constraint failed:" in error_msg:
        return error_msg.split("UNIQUE constraint failed:", 1)[1].strip()

    # PostgreSQL: 'duplicate key value violates unique constraint "name"'
    if "violates unique constraint" in error_msg:
        parts = error_msg.split('"')
        if len(parts) >= 2:
            return parts[1]

    return None


def classify_integrity_error(exc: IntegrityError) -> Optional[ExpectedIntegrityTag]:
    """
    Classify an IntegrityError to determine if it's an expected constraint violation.

    Args:
        exc: The IntegrityError exception to classify

    Returns:
        ExpectedIntegrityTag if this is an expected violation, None otherwise
    """
    if not is_unique_violation(exc):
        return None

    constraint_name = extract_constraint_name(exc)
    if constraint_name is None:
        return None

    return CONSTRAINT_TAG_MAP.get(constraint_name)


def get_violation_result(tag: ExpectedIntegrityTag) -> IntegrityViolationResult:
    """Map an expected tag to how the caller should treat it."""
    result_map = {
        ExpectedIntegrityTag.BADGE_ALREADY_UNLOCKED: IntegrityViolationResult.RACE_CONDITION_LOST,
        ExpectedIntegrityTag.MEMBERSHIP_EXISTS: IntegrityViolationResult.ALREADY_EXISTS,
        ExpectedIntegrityTag.ACTIVE_GOAL_EXISTS: IntegrityViolationResult.REJECTED,
    }

    return result_map.get(tag, IntegrityViolationResult.ALREADY_EXISTS)


def log_expected_violation(
    tag: ExpectedIntegrityTag, exc: IntegrityError, context: Dict[str, Any]
) -> None:
    """Log an expected integrity violation at INFO level with structured context."""
    logger.info(
        f"Expected integrity violation ({tag.value}) during {context.get('operation', 'unknown')}",
        extra={
            "integrity_tag": tag.value,
            "constraint_name": extract_constraint_name(exc),
            "entity_type": context.get("entity_type", "unknown"),
            "entity_id": context.get("entity_id"),
        },
    )


def log_unexpected_violation(exc: IntegrityError, context: Dict[str, Any]) -> None:
    """Log an unexpected integrity violation at ERROR level."""
    logger.error(
        f"Unexpected integrity violation during {context.get('operation', 'unknown')}",
        extra={
            "constraint_name": extract_constraint_name(exc),
            "entity_type": context.get("entity_type", "unknown"),
            "entity_id": context.get("entity_id"),
            "error_message": str(exc),
        },
        exc_info=exc,
    )

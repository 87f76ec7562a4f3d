"""
Savepoint utilities for expected uniqueness conflicts.

Isolates inserts that may lose a race against another writer so the
conflict does not poison the outer transaction.
"""

from contextlib import contextmanager
from typing import Set, Dict, Any
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from .integrity_policy import (
    ExpectedIntegrityTag,
    classify_integrity_error,
    log_expected_violation,
    log_unexpected_violation,
    get_violation_result,
)


@contextmanager
def expected_conflict_savepoint(
    session: Session,
    expected_tags: Set[ExpectedIntegrityTag],
    operation_context: Dict[str, Any],
):
    """
    Run the block inside a savepoint and absorb expected IntegrityErrors.

    Usage:
        context = {"operation": "unlock_badge", "entity_id": badge_id}
        with expected_conflict_savepoint(session, {ExpectedIntegrityTag.BADGE_ALREADY_UNLOCKED}, context):
            session.add(UnlockedBadge(...))
            session.flush()

        if "integrity_tag" in context:
            # another writer inserted the row first; fetch it
            ...
    """
    nested_transaction = session.begin_nested()

    try:
        yield
        nested_transaction.commit()

    except IntegrityError as exc:
        nested_transaction.rollback()

        tag = classify_integrity_error(exc)

        if tag and tag in expected_tags:
            operation_context["integrity_tag"] = tag
            operation_context["violation_result"] = get_violation_result(tag)
            log_expected_violation(tag, exc, operation_context)
        else:
            log_unexpected_violation(exc, operation_context)
            raise

    except Exception:
        nested_transaction.rollback()
        raise

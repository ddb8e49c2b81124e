"""ActivityLink helper functions.

This module provides the only way to create, replace, or delete links between
completed activities and planned sessions. All pairing logic must use these
functions.

Invariant: at most one link per completed activity. Replacing a link deletes
the previous one and inserts the new one inside the caller's transaction;
the UNIQUE constraint on completed_activity_id rejects a concurrent second
insert.
"""

from __future__ import annotations

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.db.models import LINK_TYPES, ActivityLink


def get_link_for_activity(session: Session, activity_id: str) -> ActivityLink | None:
    """Get the link for a completed activity.

    Args:
        session: Database session
        activity_id: Completed activity ID

    Returns:
        ActivityLink if found, None otherwise
    """
    return session.execute(
        select(ActivityLink).where(ActivityLink.completed_activity_id == activity_id)
    ).scalar_one_or_none()


def unlink_by_activity(session: Session, activity_id: str, reason: str | None = None) -> bool:
    """Remove the link of an activity, if any.

    Args:
        session: Database session
        activity_id: Completed activity ID
        reason: Optional reason for unlinking (for logging)

    Returns:
        True if a link was deleted, False otherwise
    """
    result = session.execute(delete(ActivityLink).where(ActivityLink.completed_activity_id == activity_id))
    session.flush()
    deleted = bool(result.rowcount)
    if deleted:
        logger.debug(f"Unlinked activity {activity_id} (reason={reason})")
    return deleted


def replace_link(
    session: Session,
    *,
    user_id: str,
    activity_id: str,
    planned_session_id: str,
    link_type: str,
    confidence: float,
    match_reason: dict | None = None,
) -> ActivityLink:
    """Make (activity -> planned session) the only link of the activity.

    Deletes any existing link for the activity, flushes, then inserts the new
    one. Last decision wins. Ownership of both rows must be checked by the
    caller.

    Args:
        session: Database session
        user_id: Owner of both rows
        activity_id: Completed activity ID
        planned_session_id: Planned session ID
        link_type: 'auto' or 'manual'
        confidence: Confidence in [0, 1]
        match_reason: Structured score breakdown or manual marker

    Returns:
        The new ActivityLink

    Raises:
        ValueError: If link_type or confidence is invalid
    """
    if link_type not in LINK_TYPES:
        raise ValueError(f"Invalid link_type: {link_type}. Must be one of {LINK_TYPES}")
    if not 0.0 <= confidence <= 1.0:
        raise ValueError(f"Invalid confidence: {confidence}. Must be within [0, 1]")

    replaced = unlink_by_activity(session, activity_id, reason=f"replaced by {link_type} link")

    link = ActivityLink(
        user_id=user_id,
        completed_activity_id=activity_id,
        planned_session_id=planned_session_id,
        link_type=link_type,
        confidence=round(confidence, 2),
        match_reason=match_reason,
    )
    session.add(link)
    session.flush()

    logger.debug(
        f"Linked activity {activity_id} -> planned session {planned_session_id} "
        f"(type={link_type}, confidence={link.confidence}, replaced={replaced})"
    )
    return link

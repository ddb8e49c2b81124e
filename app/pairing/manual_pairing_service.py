"""Manual attach: user-forced link between an upload's activity and a planned session.

Manual actions override auto-pairing regardless of score. Re-invoking with
the same target is safe (delete-then-insert).
"""

from __future__ import annotations

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import ActivityNotFoundError, PersistenceError, PlannedSessionNotFoundError
from app.db.models import ActivityLink, CompletedActivity, PlannedSession, UploadedFile
from app.pairing.session_links import replace_link

MANUAL_REASON = {"source": "manual_attach"}


def _get_owned_activity(session: Session, upload_id: str, user_id: str) -> CompletedActivity:
    activity = session.execute(
        select(CompletedActivity).where(
            CompletedActivity.upload_id == upload_id,
            CompletedActivity.user_id == user_id,
        )
    ).scalar_one_or_none()
    if activity is None:
        raise ActivityNotFoundError()
    return activity


def _get_owned_planned_session(session: Session, planned_session_id: str, user_id: str) -> PlannedSession:
    planned = session.execute(
        select(PlannedSession).where(
            PlannedSession.id == planned_session_id,
            PlannedSession.user_id == user_id,
        )
    ).scalar_one_or_none()
    if planned is None:
        raise PlannedSessionNotFoundError()
    return planned


def manual_attach(
    *,
    upload_id: str,
    planned_session_id: str,
    user_id: str,
    session: Session,
) -> ActivityLink:
    """Force-link the activity of an upload to a planned session.

    Deletes any existing link for the activity, inserts a manual link with
    confidence 1.0, and marks the upload as matched. Rows owned by another
    user are reported as not found.

    Args:
        upload_id: Upload whose completed activity is attached
        planned_session_id: Target planned session
        user_id: Requesting user
        session: Database session

    Returns:
        The new manual ActivityLink

    Raises:
        ActivityNotFoundError: No completed activity for the upload and user
        PlannedSessionNotFoundError: Planned session missing or not owned
        PersistenceError: Storage write failed
    """
    activity = _get_owned_activity(session, upload_id, user_id)
    planned = _get_owned_planned_session(session, planned_session_id, user_id)

    try:
        link = replace_link(
            session,
            user_id=user_id,
            activity_id=activity.id,
            planned_session_id=planned.id,
            link_type="manual",
            confidence=1.0,
            match_reason=dict(MANUAL_REASON),
        )
        upload = session.get(UploadedFile, upload_id)
        if upload is not None:
            upload.status = "matched"
            upload.error_message = None
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception(f"[ATTACH] Failed to attach upload {upload_id} to planned session {planned_session_id}")
        raise PersistenceError("Could not save manual link") from e

    logger.info(
        f"[ATTACH] Manually attached activity {activity.id} (upload {upload_id}) "
        f"to planned session {planned_session_id}",
        user_id=user_id,
    )
    return link

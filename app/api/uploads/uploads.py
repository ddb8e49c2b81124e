"""Activity file upload endpoints.

- POST /uploads/activities: upload a .fit or .tcx file
- GET /uploads/activities: recent uploads of the current user
- GET /uploads/activities/{upload_id}: one upload with its activity and link
- POST /uploads/activities/{upload_id}/attach: manual attach to a planned session

Domain errors (app.core.errors) propagate to the handlers registered in
app.main, which map them to status codes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, File, UploadFile, status
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.api.dependencies.auth import get_current_user_id
from app.config.settings import settings
from app.core.errors import UploadNotFoundError, ValidationError
from app.db.models import CompletedActivity, UploadedFile
from app.db.session import get_db
from app.pairing.manual_pairing_service import manual_attach
from app.upload.activity_handler import upload_activity_file

router = APIRouter(prefix="/uploads/activities", tags=["uploads"])

RECENT_UPLOADS_LIMIT = 15


class AttachRequest(BaseModel):
    planned_session_id: str = Field(..., min_length=1, description="Planned session to attach to")


class ActivitySummary(BaseModel):
    id: str
    sport: str
    start_time: datetime
    duration_seconds: int
    distance_meters: float


class LinkSummary(BaseModel):
    planned_session_id: str
    link_type: str
    confidence: float
    match_reason: dict[str, Any] | None = None


class UploadSummary(BaseModel):
    id: str
    filename: str
    file_type: str
    file_size: int
    status: str
    error_message: str | None
    created_at: datetime
    completed_activity: ActivitySummary | None = None
    link: LinkSummary | None = None


def _summarize(upload: UploadedFile, *, with_reason: bool) -> UploadSummary:
    activity = upload.completed_activity
    activity_summary = None
    link_summary = None
    if activity is not None:
        activity_summary = ActivitySummary(
            id=activity.id,
            sport=activity.sport,
            start_time=activity.start_time,
            duration_seconds=activity.duration_seconds,
            distance_meters=activity.distance_meters,
        )
        if activity.link is not None:
            link_summary = LinkSummary(
                planned_session_id=activity.link.planned_session_id,
                link_type=activity.link.link_type,
                confidence=activity.link.confidence,
                match_reason=activity.link.match_reason if with_reason else None,
            )
    return UploadSummary(
        id=upload.id,
        filename=upload.filename,
        file_type=upload.file_type,
        file_size=upload.file_size,
        status=upload.status,
        error_message=upload.error_message,
        created_at=upload.created_at,
        completed_activity=activity_summary,
        link=link_summary,
    )


def _read_limited(file: UploadFile) -> bytes:
    """Read at most one byte past the limit so oversize files are never fully buffered."""
    try:
        return file.file.read(settings.max_upload_bytes + 1)
    except OSError as e:
        logger.error(f"[UPLOAD] Failed to read file: {e}")
        raise ValidationError(f"Failed to read file: {e!s}") from e


@router.post("")
def upload_activity(
    file: UploadFile = File(...),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Upload and ingest a single activity file (FIT or TCX).

    Returns:
        201 with created ids and whether auto-matching linked the activity,
        200 with the existing upload id for a duplicate, or 422 with the
        recorded reason when the file could not be parsed.
    """
    result = upload_activity_file(
        db,
        user_id=user_id,
        filename=file.filename,
        file_bytes=_read_limited(file),
    )

    if result.duplicate:
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"duplicate": True, "upload_id": result.upload_id, "status": result.status},
        )
    if result.failed:
        return JSONResponse(
            status_code=422,
            content={"error": result.error, "upload_id": result.upload_id},
        )
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content={
            "duplicate": False,
            "upload_id": result.upload_id,
            "completed_activity_id": result.completed_activity_id,
            "matched": result.matched,
            "status": result.status,
        },
    )


def _uploads_query(user_id: str):
    return (
        select(UploadedFile)
        .where(UploadedFile.user_id == user_id)
        .options(selectinload(UploadedFile.completed_activity).selectinload(CompletedActivity.link))
    )


@router.get("", response_model=list[UploadSummary])
def list_uploads(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> list[UploadSummary]:
    """Most recent uploads of the current user, newest first."""
    uploads = db.scalars(
        _uploads_query(user_id)
        .order_by(UploadedFile.created_at.desc(), UploadedFile.id)
        .limit(RECENT_UPLOADS_LIMIT)
    ).all()
    return [_summarize(upload, with_reason=False) for upload in uploads]


@router.get("/{upload_id}", response_model=UploadSummary)
def get_upload(
    upload_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> UploadSummary:
    upload = db.scalars(_uploads_query(user_id).where(UploadedFile.id == upload_id)).one_or_none()
    if upload is None:
        raise UploadNotFoundError()
    return _summarize(upload, with_reason=True)


@router.post("/{upload_id}/attach")
def attach_upload(
    upload_id: str,
    request: AttachRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """Force-link the upload's activity to a planned session (last decision wins)."""
    manual_attach(
        upload_id=upload_id,
        planned_session_id=request.planned_session_id,
        user_id=user_id,
        session=db,
    )
    return {"ok": True, "upload_id": upload_id, "planned_session_id": request.planned_session_id}

"""Handler for activity file uploads.

One upload is one linear, synchronous unit of work:

    validate -> hash -> dedup check -> persist upload -> parse
        -> persist activity (or record error) -> fetch candidates
        -> score -> decide -> link or leave unassigned

Every durable step is committed before the next starts, so an aborted
request leaves the upload at its last committed status.
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import ParseError, PersistenceError
from app.db.models import CompletedActivity, UploadedFile
from app.ingestion.file_parser import ParsedActivity, parse_activity_file
from app.pairing.auto_pairing_service import try_auto_pair
from app.upload.dedup import content_hash, find_existing_upload, validate_upload


@dataclass
class UploadResult:
    upload_id: str
    status: str
    duplicate: bool = False
    completed_activity_id: str | None = None
    matched: bool = False
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.status == "error" and not self.duplicate


def _duplicate_result(existing: UploadedFile, digest: str) -> UploadResult:
    logger.info(f"[UPLOAD] Duplicate detected by hash: {digest[:16]}... upload_id={existing.id}")
    return UploadResult(upload_id=existing.id, status=existing.status, duplicate=True)


def _store_upload(
    session: Session,
    *,
    user_id: str,
    filename: str,
    file_type: str,
    file_bytes: bytes,
    digest: str,
) -> UploadedFile | UploadResult:
    """Insert the upload row, or return the duplicate result if another request won the race."""
    upload = UploadedFile(
        user_id=user_id,
        filename=filename,
        file_type=file_type,
        file_size=len(file_bytes),
        sha256=digest,
        status="uploaded",
        raw_bytes=file_bytes,
        storage_key=None,
    )
    try:
        session.add(upload)
        session.commit()
    except IntegrityError as e:
        session.rollback()
        existing = find_existing_upload(session, user_id, digest)
        if existing is not None:
            logger.info(f"[UPLOAD] Duplicate detected by constraint: {digest[:16]}...")
            return _duplicate_result(existing, digest)
        raise PersistenceError("Could not store upload") from e
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception(f"[UPLOAD] Failed to store upload for user_id={user_id}")
        raise PersistenceError("Could not store upload") from e
    return upload


def _mark_error(session: Session, upload: UploadedFile, message: str) -> UploadResult:
    upload.status = "error"
    upload.error_message = message
    try:
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception(f"[UPLOAD] Failed to record parse error on upload {upload.id}")
        raise PersistenceError("Could not record upload error") from e
    return UploadResult(upload_id=upload.id, status="error", error=message)


def _store_activity(session: Session, upload: UploadedFile, parsed: ParsedActivity) -> CompletedActivity:
    activity = CompletedActivity(
        user_id=upload.user_id,
        upload_id=upload.id,
        sport=parsed.sport.value,
        start_time=parsed.start_time,
        end_time=parsed.end_time,
        duration_seconds=parsed.duration_seconds,
        distance_meters=parsed.distance_meters,
        avg_hr=parsed.avg_hr,
        avg_power=parsed.avg_power,
        calories=parsed.calories,
        parse_summary=parsed.parse_summary,
        source="upload",
    )
    session.add(activity)
    upload.status = "parsed"
    session.commit()
    return activity


def upload_activity_file(
    session: Session,
    *,
    user_id: str,
    filename: str | None,
    file_bytes: bytes,
) -> UploadResult:
    """Ingest one uploaded activity file.

    Args:
        session: Database session
        user_id: Owner of the upload
        filename: Original filename (extension selects the decoder)
        file_bytes: Raw upload

    Returns:
        UploadResult: duplicate, error (parse failure recorded on the upload)
        or success with the completed activity and whether it was auto-matched

    Raises:
        ValidationError: Upload rejected before parsing
        PersistenceError: Storage write failed
    """
    activity_format = validate_upload(filename, file_bytes)
    digest = content_hash(file_bytes)
    logger.info(
        f"[UPLOAD] Upload request for user_id={user_id}, filename={filename}, "
        f"size={len(file_bytes)}, hash={digest[:16]}..."
    )

    existing = find_existing_upload(session, user_id, digest)
    if existing is not None:
        return _duplicate_result(existing, digest)

    stored = _store_upload(
        session,
        user_id=user_id,
        filename=filename,
        file_type=activity_format.value,
        file_bytes=file_bytes,
        digest=digest,
    )
    if isinstance(stored, UploadResult):
        return stored
    upload = stored

    try:
        parsed = parse_activity_file(file_bytes, activity_format)
    except ParseError as e:
        logger.warning(f"[UPLOAD] Parse failed for upload {upload.id}: {e.message}")
        return _mark_error(session, upload, e.message)

    logger.info(
        f"[UPLOAD] Parsed activity: sport={parsed.sport.value}, start_time={parsed.start_time.isoformat()}, "
        f"duration={parsed.duration_seconds}s, distance={parsed.distance_meters}m"
    )

    try:
        activity = _store_activity(session, upload, parsed)
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception(f"[UPLOAD] Failed to save parsed activity for upload {upload.id}")
        return _mark_error(session, upload, f"Could not save parsed activity: {type(e).__name__}")

    try:
        link = try_auto_pair(activity, session)
        if link is not None:
            upload.status = "matched"
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception(f"[UPLOAD] Failed to store auto-match for activity {activity.id}")
        raise PersistenceError("Could not save activity link") from e

    logger.info(
        f"[UPLOAD] Upload complete: upload_id={upload.id}, activity_id={activity.id}, "
        f"status={upload.status}, matched={link is not None}"
    )
    return UploadResult(
        upload_id=upload.id,
        status=upload.status,
        completed_activity_id=activity.id,
        matched=link is not None,
    )

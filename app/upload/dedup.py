"""Intake gate for activity file uploads.

Validates the upload before anything is parsed and detects byte-identical
re-uploads through a SHA-256 content hash scoped to the owner.
"""

from __future__ import annotations

from hashlib import sha256

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config.settings import settings
from app.core.errors import FileTooLargeError, ValidationError
from app.db.models import UploadedFile
from app.ingestion.file_parser import ActivityFormat, detect_format


def content_hash(file_bytes: bytes) -> str:
    """SHA-256 hex digest over the exact uploaded bytes."""
    return sha256(file_bytes).hexdigest()


def validate_upload(filename: str | None, file_bytes: bytes, max_bytes: int | None = None) -> ActivityFormat:
    """Reject uploads that can never be parsed.

    Args:
        filename: Original filename
        file_bytes: Raw upload
        max_bytes: Size limit (defaults to settings.max_upload_bytes)

    Returns:
        ActivityFormat derived from the extension

    Raises:
        ValidationError: Missing filename, unsupported extension or empty file
        FileTooLargeError: Upload exceeds the size limit
    """
    if not filename:
        raise ValidationError("Missing file")

    activity_format = detect_format(filename)

    limit = settings.max_upload_bytes if max_bytes is None else max_bytes
    if len(file_bytes) > limit:
        raise FileTooLargeError(f"File is too large. Max size is {limit // (1024 * 1024)}MB.")
    if not file_bytes:
        raise ValidationError("File is empty")

    return activity_format


def find_existing_upload(session: Session, user_id: str, digest: str) -> UploadedFile | None:
    """Upload of the same user with the same content hash, if any."""
    return session.execute(
        select(UploadedFile).where(
            UploadedFile.user_id == user_id,
            UploadedFile.sha256 == digest,
        )
    ).scalar_one_or_none()

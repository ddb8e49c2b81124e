from __future__ import annotations

import uuid
from datetime import date as date_type
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid.uuid4())


UPLOAD_STATUSES = ("uploaded", "parsed", "matched", "error")
FILE_TYPES = ("fit", "tcx")
SPORTS = ("swim", "bike", "run", "strength", "other")
LINK_TYPES = ("auto", "manual")


def _in_check(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


class Base(DeclarativeBase):
    """Base class for all database models."""


class UploadedFile(Base):
    """Raw activity file as uploaded by the athlete.

    One row per distinct file content per user. Re-uploading identical bytes
    never creates a second row: (user_id, sha256) is unique.

    Status lifecycle:
    - uploaded -> parsed -> matched (auto-match or manual attach)
    - uploaded -> error (terminal; a fresh upload is required)
    """

    __tablename__ = "uploaded_files"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid, index=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    filename: Mapped[str] = mapped_column(String, nullable=False)
    file_type: Mapped[str] = mapped_column(String, nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    sha256: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="uploaded")
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    raw_bytes: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    storage_key: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    completed_activity: Mapped[CompletedActivity | None] = relationship(
        back_populates="upload",
        uselist=False,
    )

    __table_args__ = (
        UniqueConstraint("user_id", "sha256", name="uq_uploaded_files_user_sha256"),
        CheckConstraint(_in_check("file_type", FILE_TYPES), name="ck_uploaded_files_file_type"),
        CheckConstraint(_in_check("status", UPLOAD_STATUSES), name="ck_uploaded_files_status"),
        Index("idx_uploaded_files_user_created", "user_id", "created_at"),
    )


class CompletedActivity(Base):
    """Canonical completed activity decoded from an uploaded file.

    Created at most once per successful parse, tied 1:1 to its upload.
    """

    __tablename__ = "completed_activities"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid, index=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    upload_id: Mapped[str] = mapped_column(String, ForeignKey("uploaded_files.id"), nullable=False, unique=True)
    sport: Mapped[str] = mapped_column(String, nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    distance_meters: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    avg_hr: Mapped[float | None] = mapped_column(Float, nullable=True)
    avg_power: Mapped[float | None] = mapped_column(Float, nullable=True)
    calories: Mapped[float | None] = mapped_column(Float, nullable=True)
    parse_summary: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    source: Mapped[str] = mapped_column(String, nullable=False, default="upload")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    upload: Mapped[UploadedFile] = relationship(back_populates="completed_activity")
    link: Mapped[ActivityLink | None] = relationship(back_populates="activity", uselist=False)

    __table_args__ = (
        CheckConstraint(_in_check("sport", SPORTS), name="ck_completed_activities_sport"),
        CheckConstraint("duration_seconds >= 0", name="ck_completed_activities_duration"),
        CheckConstraint("distance_meters >= 0", name="ck_completed_activities_distance"),
        Index("idx_completed_activities_user_start", "user_id", "start_time"),
    )


class PlannedSession(Base):
    """Planned training session owned by the plan/calendar subsystem.

    Read-only from the point of view of intake and matching. Only the
    columns the matcher consumes are mapped here.
    """

    __tablename__ = "planned_sessions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid, index=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    date: Mapped[date_type] = mapped_column(Date, nullable=False, index=True)
    starts_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sport: Mapped[str] = mapped_column(String, nullable=False)
    title: Mapped[str | None] = mapped_column(String, nullable=True)
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    distance_m: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_planned_sessions_user_date", "user_id", "date"),
    )


class ActivityLink(Base):
    """Link between a completed activity and the planned session it fulfils.

    At most one link per activity (unique completed_activity_id). A planned
    session may be referenced by several links.
    """

    __tablename__ = "activity_links"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid, index=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    completed_activity_id: Mapped[str] = mapped_column(
        String,
        ForeignKey("completed_activities.id"),
        nullable=False,
        unique=True,
    )
    planned_session_id: Mapped[str] = mapped_column(
        String,
        ForeignKey("planned_sessions.id"),
        nullable=False,
        index=True,
    )
    link_type: Mapped[str] = mapped_column(String, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    match_reason: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    activity: Mapped[CompletedActivity] = relationship(back_populates="link")

    __table_args__ = (
        CheckConstraint(_in_check("link_type", LINK_TYPES), name="ck_activity_links_link_type"),
        CheckConstraint("confidence >= 0 AND confidence <= 1", name="ck_activity_links_confidence"),
    )

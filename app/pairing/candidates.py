"""Candidate retrieval for activity matching.

The only I/O boundary of the matcher: reads planned sessions for one user
around an activity's start and converts them into MatchCandidate values.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config.settings import settings
from app.db.models import PlannedSession
from app.pairing.scoring import MatchCandidate


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps (SQLite drops tzinfo) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def effective_start(planned: PlannedSession, default_hour: int | None = None) -> datetime:
    """Start time used for scoring a planned session.

    Sessions planned for a calendar day without a time are assumed to
    start at ``default_hour`` UTC.
    """
    if planned.starts_at is not None:
        return as_utc(planned.starts_at)
    hour = settings.planned_session_default_hour if default_hour is None else default_hour
    return datetime.combine(planned.date, time(hour=hour), tzinfo=timezone.utc)


def to_candidate(planned: PlannedSession, default_hour: int | None = None) -> MatchCandidate:
    return MatchCandidate(
        id=planned.id,
        sport=planned.sport,
        start_time=effective_start(planned, default_hour),
        target_duration_seconds=planned.duration_minutes * 60 if planned.duration_minutes else None,
        target_distance_meters=planned.distance_m or None,
    )


def fetch_candidates(
    session: Session,
    *,
    user_id: str,
    start_time: datetime,
    window_hours: int | None = None,
) -> list[MatchCandidate]:
    """Planned sessions of one user whose start lies within the window.

    Args:
        session: Database session
        user_id: Owner of the activity; other users' sessions are never returned
        start_time: Activity start (UTC)
        window_hours: Half-width of the window (defaults to settings)

    Returns:
        Candidates ordered by planned start
    """
    hours = settings.match_window_hours if window_hours is None else window_hours
    start_time = as_utc(start_time)
    window = timedelta(hours=hours)
    window_start = start_time - window
    window_end = start_time + window

    first_day: date = window_start.date()
    last_day: date = window_end.date()

    rows = session.scalars(
        select(PlannedSession)
        .where(
            PlannedSession.user_id == user_id,
            PlannedSession.date >= first_day,
            PlannedSession.date <= last_day,
        )
        .order_by(PlannedSession.date, PlannedSession.created_at, PlannedSession.id)
    ).all()

    candidates = [
        candidate
        for candidate in (to_candidate(row) for row in rows)
        if window_start <= candidate.start_time <= window_end
    ]
    candidates.sort(key=lambda c: (c.start_time, c.id))

    logger.debug(
        "[PAIRING] Candidate window user_id={} {}..{} on_days={} in_window={}",
        user_id,
        window_start.isoformat(),
        window_end.isoformat(),
        len(rows),
        len(candidates),
    )
    return candidates

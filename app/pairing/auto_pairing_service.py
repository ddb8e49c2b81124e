"""Auto-pairing service for newly completed activities.

Glue between the I/O boundaries and the pure scorer:
- fetch planned sessions of the same user within ±window hours
- score every candidate (app.pairing.scoring)
- accept only a confident and unambiguous best candidate
- link it, or leave the activity unassigned for manual attach

Runs once per successful parse. Scoring errors propagate: they indicate a
logic defect, not bad input.
"""

from __future__ import annotations

from loguru import logger
from sqlalchemy.orm import Session

from app.config.settings import settings
from app.db.models import ActivityLink, CompletedActivity
from app.pairing.candidates import as_utc, fetch_candidates
from app.pairing.scoring import MatchDecision, MatchInput, decide, score_candidate
from app.pairing.session_links import replace_link


def to_match_input(activity: CompletedActivity) -> MatchInput:
    return MatchInput(
        sport=activity.sport,
        start_time=as_utc(activity.start_time),
        duration_seconds=activity.duration_seconds,
        distance_meters=float(activity.distance_meters or 0),
    )


def evaluate_activity(activity: CompletedActivity, session: Session) -> MatchDecision:
    """Fetch candidates for an activity and run the accept/defer policy.

    Args:
        activity: Persisted completed activity
        session: Database session

    Returns:
        MatchDecision (accepted candidate or the reason for deferring)
    """
    match_input = to_match_input(activity)
    candidates = fetch_candidates(
        session,
        user_id=activity.user_id,
        start_time=match_input.start_time,
    )
    scores = [score_candidate(match_input, candidate) for candidate in candidates]
    return decide(
        scores,
        min_confidence=settings.auto_match_min_confidence,
        min_margin=settings.auto_match_min_margin,
    )


def try_auto_pair(activity: CompletedActivity, session: Session) -> ActivityLink | None:
    """Attempt automatic pairing of a completed activity.

    Args:
        activity: Completed activity to pair
        session: Database session (caller commits)

    Returns:
        The created ActivityLink, or None if the activity stays unassigned
    """
    decision = evaluate_activity(activity, session)

    if not decision.matched:
        logger.info(
            "[PAIRING] Left unassigned: activity_id={} user_id={} sport={} reason={} best={} second={}",
            activity.id,
            activity.user_id,
            activity.sport,
            decision.reason,
            decision.best_confidence,
            decision.second_confidence,
        )
        return None

    best = decision.accepted
    link = replace_link(
        session,
        user_id=activity.user_id,
        activity_id=activity.id,
        planned_session_id=best.candidate_id,
        link_type="auto",
        confidence=best.confidence,
        match_reason=dict(best.reason),
    )

    logger.info(
        "[PAIRING] Auto-paired activity {} with planned session {} (confidence={:.2f}, second={})",
        activity.id,
        best.candidate_id,
        best.confidence,
        decision.second_confidence,
    )
    return link

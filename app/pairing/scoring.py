"""Confidence scoring for matching a completed activity to planned sessions.

Pure module: no database access, no clock, no logging side effects. The
same inputs always produce the same confidences and sub-scores.

Per-candidate confidence is a weighted sum of four sub-scores:
- time proximity (0.4): step function on |minutes between starts|
- sport match (0.3): exact sport equality
- duration similarity (0.2): 1 - relative error against target, clamped
- distance similarity (0.1): same, against target distance

Missing or zero targets score a neutral 0.5.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

TIME_WEIGHT = 0.4
SPORT_WEIGHT = 0.3
DURATION_WEIGHT = 0.2
DISTANCE_WEIGHT = 0.1

NEUTRAL_SCORE = 0.5

# (max minutes apart, score); anything further apart scores 0.
TIME_STEPS: tuple[tuple[float, float], ...] = (
    (30, 1.0),
    (90, 0.6),
    (360, 0.2),
)

DEFAULT_MIN_CONFIDENCE = 0.85
DEFAULT_MIN_MARGIN = 0.15


@dataclass(frozen=True)
class MatchInput:
    """The parts of a completed activity the scorer looks at."""

    sport: str
    start_time: datetime
    duration_seconds: int
    distance_meters: float


@dataclass(frozen=True)
class MatchCandidate:
    """A planned session considered as a possible match."""

    id: str
    sport: str
    start_time: datetime
    target_duration_seconds: int | None = None
    target_distance_meters: float | None = None


@dataclass(frozen=True)
class ScoredCandidate:
    candidate_id: str
    confidence: float
    reason: dict[str, float] = field(default_factory=dict)


def clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def time_score(minutes_diff: float) -> float:
    """Score how close two start times are, in minutes apart."""
    for limit, score in TIME_STEPS:
        if minutes_diff <= limit:
            return score
    return 0.0


def _similarity(actual: float, target: float | None) -> float:
    if not target or target <= 0:
        return NEUTRAL_SCORE
    return clamp(1 - abs(actual - target) / target)


def score_candidate(activity: MatchInput, candidate: MatchCandidate) -> ScoredCandidate:
    """Compute the confidence that a candidate is the planned session for an activity.

    Args:
        activity: Completed activity summary
        candidate: Planned session candidate

    Returns:
        ScoredCandidate with confidence in [0, 1] and the sub-score breakdown
    """
    minutes_diff = abs((activity.start_time - candidate.start_time).total_seconds()) / 60

    sub_time = time_score(minutes_diff)
    sub_sport = 1.0 if activity.sport == candidate.sport else 0.0
    sub_duration = _similarity(activity.duration_seconds, candidate.target_duration_seconds)
    sub_distance = _similarity(activity.distance_meters, candidate.target_distance_meters)

    confidence = clamp(
        sub_time * TIME_WEIGHT
        + sub_sport * SPORT_WEIGHT
        + sub_duration * DURATION_WEIGHT
        + sub_distance * DISTANCE_WEIGHT
    )

    return ScoredCandidate(
        candidate_id=candidate.id,
        confidence=confidence,
        reason={
            "time_score": sub_time,
            "sport_score": sub_sport,
            "duration_score": sub_duration,
            "distance_score": sub_distance,
            "minutes_diff": minutes_diff,
        },
    )


@dataclass(frozen=True)
class MatchDecision:
    """Outcome of the accept/defer policy over a set of scored candidates."""

    accepted: ScoredCandidate | None
    reason: str
    best_confidence: float | None = None
    second_confidence: float | None = None

    @property
    def matched(self) -> bool:
        return self.accepted is not None


def decide(
    scores: list[ScoredCandidate],
    *,
    min_confidence: float = DEFAULT_MIN_CONFIDENCE,
    min_margin: float = DEFAULT_MIN_MARGIN,
) -> MatchDecision:
    """Accept the best candidate only if it is confident and clearly ahead.

    A bare threshold is not enough when two similar sessions sit close
    together (e.g. a brick workout), so the runner-up must trail by at
    least ``min_margin``.

    Reasons: ``no_candidates``, ``low_confidence``, ``ambiguous``, ``accepted``.
    """
    ranked = sorted(scores, key=lambda s: s.confidence, reverse=True)
    if not ranked:
        return MatchDecision(accepted=None, reason="no_candidates")

    best = ranked[0]
    second = ranked[1] if len(ranked) > 1 else None
    second_confidence = second.confidence if second else None

    if best.confidence < min_confidence:
        return MatchDecision(None, "low_confidence", best.confidence, second_confidence)
    if second is not None and best.confidence - second.confidence < min_margin:
        return MatchDecision(None, "ambiguous", best.confidence, second_confidence)
    return MatchDecision(best, "accepted", best.confidence, second_confidence)

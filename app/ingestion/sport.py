"""Sport normalization for uploaded activities.

Device exports name sports freely ("Running", "cycling", "Biking",
"lap_swimming", ...). Everything is folded into a closed set of sports the
planner understands.
"""

from __future__ import annotations

from enum import Enum


class Sport(str, Enum):
    SWIM = "swim"
    BIKE = "bike"
    RUN = "run"
    STRENGTH = "strength"
    OTHER = "other"


# Evaluated top to bottom; first substring hit wins. Order matters for
# strings that match several rules.
SPORT_RULES: tuple[tuple[tuple[str, ...], Sport], ...] = (
    (("run",), Sport.RUN),
    (("bike", "cycl"), Sport.BIKE),
    (("swim",), Sport.SWIM),
    (("strength",), Sport.STRENGTH),
)


def normalize_sport(raw: str | None) -> Sport:
    """Map a free-text sport name to a Sport.

    Args:
        raw: Sport string from the file (may be None)

    Returns:
        Matching Sport, or Sport.OTHER if no rule applies
    """
    value = (raw or "").lower()
    for needles, sport in SPORT_RULES:
        if any(needle in value for needle in needles):
            return sport
    return Sport.OTHER

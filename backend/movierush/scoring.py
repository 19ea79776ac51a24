"""Obscurity-weighted scoring.

Quality score = vote_count * vote_average / 10. Higher means better known.
Both the point curve and the time-bonus table read the same quality score so
a movie always lands in the same tier for both.
"""
from __future__ import annotations

from pydantic import BaseModel

from .models import Tier

# Point curve
SCALE = 100
CAP = 20000
EXPONENT = 0.4
MIN_POINTS = 5

# Tier thresholds (lower bound, inclusive)
VERY_WELL_KNOWN_MIN = 3000
WELL_KNOWN_MIN = 1000
MODERATE_MIN = 200

TIME_BONUS_SECONDS: dict[str, int] = {
    "very-well-known": 3,
    "well-known": 5,
    "moderate": 7,
    "obscure": 10,
}


class ScoringResult(BaseModel):
    quality_score: float
    tier: Tier
    total_points: int


class TimeBonusResult(BaseModel):
    quality_score: float
    tier: Tier
    bonus: int


def quality_score(vote_count: int, vote_average: float) -> float:
    return vote_count * vote_average / 10


def classify_tier(score: float) -> Tier:
    if score >= VERY_WELL_KNOWN_MIN:
        return "very-well-known"
    if score >= WELL_KNOWN_MIN:
        return "well-known"
    if score >= MODERATE_MIN:
        return "moderate"
    return "obscure"


def curve_points(
    score: float,
    *,
    scale: int = SCALE,
    cap: float = CAP,
    exponent: float = EXPONENT,
    min_points: int = MIN_POINTS,
) -> int:
    """Map a quality score onto [min_points, scale].

    An exponent below 1 spreads the awards evenly across the range instead of
    bunching every popular movie at the floor. Scores at or above ``cap`` earn
    ``min_points``.
    """
    ratio = min(max(score, 0.0), cap) / cap
    return max(min_points, round(scale * (1 - ratio ** exponent)))


def calculate_points(vote_count: int, vote_average: float) -> ScoringResult:
    score = quality_score(vote_count, vote_average)
    return ScoringResult(
        quality_score=score,
        tier=classify_tier(score),
        total_points=curve_points(score),
    )


def calculate_time_bonus(vote_count: int, vote_average: float) -> TimeBonusResult:
    score = quality_score(vote_count, vote_average)
    tier = classify_tier(score)
    return TimeBonusResult(quality_score=score, tier=tier, bonus=TIME_BONUS_SECONDS[tier])


def points(vote_count: int, vote_average: float) -> int:
    return calculate_points(vote_count, vote_average).total_points


def time_bonus(vote_count: int, vote_average: float) -> int:
    return calculate_time_bonus(vote_count, vote_average).bonus

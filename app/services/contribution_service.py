"""
Panel Health — Experience-score contribution functions.

Each of the five survey metrics maps to a bounded number of points; the
points are summed and the total clamped to [0, 100].  Two independently
defined formula sets exist and must never be mixed:

  SERVER  (authoritative, stored as the survey's score)  35 / 25 / 20 / 15 / 5
      rating      (r - min) / (max - min) x 35          scale 1-10 by default
      sentiment   (s + 1) / 2 x 25
      drop-off    (100 - pct) / 100 x 20
      screen-out  (100 - pct) / 100 x 15
      screener    n <= 12:  (12 - n) / 12 x 5
                  n >  12:  -min(5, (n - 12) / 18 x 5)   n capped at 50

  DISPLAY (dashboard card view)                          40 / 35 / 15 / 15 / 5
      rating      r x 4                                  scale 0-10
      sentiment   (s + 1) / 2 x 35
      drop-off    15 x (1 - pct / 100)
      screen-out  15 x (1 - pct / 100)
      screener    (12 - q) / 9 x 5, held at q=7 below 7 and at
                  (12 - 18) / 18 x 5 from 18 upward
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable

from app.schemas.experience import (
    ContributionBreakdown,
    DisplayScore,
    MetricContribution,
)


class FormulaSet(str, Enum):
    SERVER = "server"
    DISPLAY = "display"


SCORE_MIN: float = 0.0
SCORE_MAX: float = 100.0

SERVER_WEIGHTS: dict[str, float] = {
    "user_rating": 35.0,
    "user_sentiment": 25.0,
    "dropoff_rate": 20.0,
    "screenout_rate": 15.0,
    "screener_question_count": 5.0,
}

DISPLAY_WEIGHTS: dict[str, float] = {
    "user_rating": 40.0,
    "user_sentiment": 35.0,
    "dropoff_rate": 15.0,
    "screenout_rate": 15.0,
    "screener_question_count": 5.0,
}

SCREENER_KNEE: int = 12
SCREENER_FLOOR_SPAN: int = 18  # questions past the knee to reach -weight
SCREENER_COUNT_CAP: int = 50


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


# ──────────────────────────────────────────────────────────────────────────────
# Server formula set
# ──────────────────────────────────────────────────────────────────────────────

def rating_contribution(
    rating: float,
    scale_min: float = 1.0,
    scale_max: float = 10.0,
    weight: float = SERVER_WEIGHTS["user_rating"],
) -> float:
    clamped = _clamp(rating, scale_min, scale_max)
    return ((clamped - scale_min) / (scale_max - scale_min)) * weight


def sentiment_contribution(
    sentiment: float,
    weight: float = SERVER_WEIGHTS["user_sentiment"],
) -> float:
    clamped = _clamp(sentiment, -1.0, 1.0)
    return ((clamped + 1.0) / 2.0) * weight


def dropoff_contribution(
    dropoff_pct: float,
    weight: float = SERVER_WEIGHTS["dropoff_rate"],
) -> float:
    clamped = _clamp(dropoff_pct, 0.0, 100.0)
    return ((100.0 - clamped) / 100.0) * weight


def screenout_contribution(
    screenout_pct: float,
    weight: float = SERVER_WEIGHTS["screenout_rate"],
) -> float:
    clamped = _clamp(screenout_pct, 0.0, 100.0)
    return ((100.0 - clamped) / 100.0) * weight


def screener_question_contribution(
    question_count: float,
    weight: float = SERVER_WEIGHTS["screener_question_count"],
) -> float:
    """Positive below the 12-question knee, negative above it, floored at
    ``-weight`` from 30 questions on."""
    capped = _clamp(question_count, 0, SCREENER_COUNT_CAP)

    if capped <= SCREENER_KNEE:
        return ((SCREENER_KNEE - capped) / SCREENER_KNEE) * weight

    excess = capped - SCREENER_KNEE
    return -min(weight, (excess / SCREENER_FLOOR_SPAN) * weight)


# ──────────────────────────────────────────────────────────────────────────────
# Display formula set
# ──────────────────────────────────────────────────────────────────────────────

def display_rating_contribution(rating: float) -> float:
    """0-10 rating -> 0-40 points."""
    return _clamp(rating, 0.0, 10.0) * 4.0


def display_sentiment_contribution(sentiment: float) -> float:
    """-1..1 sentiment -> 0-35 points (0 -> 17.5)."""
    clamped = _clamp(sentiment, -1.0, 1.0)
    return ((clamped + 1.0) / 2.0) * DISPLAY_WEIGHTS["user_sentiment"]


def display_dropoff_contribution(dropoff_pct: float) -> float:
    clamped = _clamp(dropoff_pct, 0.0, 100.0)
    return DISPLAY_WEIGHTS["dropoff_rate"] * (1.0 - clamped / 100.0)


def display_screenout_contribution(screenout_pct: float) -> float:
    clamped = _clamp(screenout_pct, 0.0, 100.0)
    return DISPLAY_WEIGHTS["screenout_rate"] * (1.0 - clamped / 100.0)


def display_screener_question_contribution(question_count: float) -> float:
    """7 -> ~2.78, 12 -> 0, 18 and above -> ~-1.67."""
    weight = DISPLAY_WEIGHTS["screener_question_count"]
    if question_count <= 7:
        return (12 - 7) / 9 * weight
    if question_count >= 18:
        return (12 - 18) / 18 * weight
    return ((12 - question_count) / 9) * weight


# ──────────────────────────────────────────────────────────────────────────────
# Formula-set strategy objects
# ──────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ContributionFormulas:
    """One named, self-consistent set of contribution functions."""

    name: FormulaSet
    weights: dict[str, float]
    rating: Callable[[float], float]
    sentiment: Callable[[float], float]
    dropoff: Callable[[float], float]
    screenout: Callable[[float], float]
    screener: Callable[[float], float]

    def breakdown(
        self,
        rating: float,
        sentiment: float,
        dropoff_rate: float,
        screenout_rate: float,
        screener_question_count: float,
    ) -> ContributionBreakdown:
        return ContributionBreakdown(
            user_rating=MetricContribution(
                value=rating,
                contribution=self.rating(rating),
                weight=self.weights["user_rating"],
            ),
            user_sentiment=MetricContribution(
                value=sentiment,
                contribution=self.sentiment(sentiment),
                weight=self.weights["user_sentiment"],
            ),
            dropoff_rate=MetricContribution(
                value=dropoff_rate,
                contribution=self.dropoff(dropoff_rate),
                weight=self.weights["dropoff_rate"],
            ),
            screenout_rate=MetricContribution(
                value=screenout_rate,
                contribution=self.screenout(screenout_rate),
                weight=self.weights["screenout_rate"],
            ),
            screener_question_count=MetricContribution(
                value=screener_question_count,
                contribution=self.screener(screener_question_count),
                weight=self.weights["screener_question_count"],
            ),
        )


def server_formulas(
    scale_min: float = 1.0, scale_max: float = 10.0
) -> ContributionFormulas:
    """The authoritative 35/25/20/15/5 set for a given rating scale."""
    if scale_max <= scale_min:
        raise ValueError(
            f"Rating scale max must exceed min, got {scale_min}..{scale_max}"
        )

    return ContributionFormulas(
        name=FormulaSet.SERVER,
        weights=dict(SERVER_WEIGHTS),
        rating=lambda r: rating_contribution(r, scale_min, scale_max),
        sentiment=sentiment_contribution,
        dropoff=dropoff_contribution,
        screenout=screenout_contribution,
        screener=screener_question_contribution,
    )


DISPLAY_FORMULAS = ContributionFormulas(
    name=FormulaSet.DISPLAY,
    weights=dict(DISPLAY_WEIGHTS),
    rating=display_rating_contribution,
    sentiment=display_sentiment_contribution,
    dropoff=display_dropoff_contribution,
    screenout=display_screenout_contribution,
    screener=display_screener_question_contribution,
)


def clamp_score(total: float) -> float:
    """Clamp a summed contribution total into [0, 100], 2 dp."""
    return round(_clamp(total, SCORE_MIN, SCORE_MAX), 2)


def calculate_display_score(
    user_rating: float,
    user_sentiment: float,
    dropoff_pct: float,
    screenout_pct: float,
    screener_question_count: float,
) -> DisplayScore:
    """Dashboard composite for a survey's observed inputs."""
    breakdown = DISPLAY_FORMULAS.breakdown(
        user_rating,
        user_sentiment,
        dropoff_pct,
        screenout_pct,
        screener_question_count,
    )
    total = breakdown.total()
    return DisplayScore(
        formula_set=FormulaSet.DISPLAY.value,
        score=clamp_score(total),
        breakdown=breakdown,
        total_contribution=total,
    )

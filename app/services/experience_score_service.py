"""
Panel Health — Experience Score (XScore) composers.

Two composers are run for every survey and both results are kept:

  Bayesian (primary, "XScore")
    The survey's own rating and sentiment averages are shrunk toward the
    population averages in proportion to sample size:

        weight_own    = n / (n + K)
        weight_global = K / (n + K)
        adjusted      = weight_own * own_avg + weight_global * global_avg

    With n = 0 the adjusted value is exactly the global average.  Drop-off,
    screen-out and screener length are survey-design properties and are
    used as observed, without shrinkage.

  Legacy (comparison baseline)
    The same server contribution functions fed with the survey's own raw
    averages; rating is floored at the scale minimum and sentiment is the
    coarse ternary list score.

Both composers always return a score.  If the computation fails the neutral
fallback (score 50, "fair") is returned with ``fallback_reason`` set so the
caller can log it; no survey is ever dropped from a ranking.
"""

from __future__ import annotations

from typing import Any, Optional

import structlog

from app.config import get_settings
from app.schemas.experience import (
    AdjustedMetrics,
    BayesianExperienceScore,
    ContributionBreakdown,
    ExperienceScore,
    MetricContribution,
    RawData,
    SmoothingInfo,
)
from app.schemas.survey import GlobalAverages, RawSurveySignals
from app.services.contribution_service import (
    ContributionFormulas,
    clamp_score,
    server_formulas,
)
from app.services.sentiment_service import SentimentService

logger = structlog.get_logger("panel_health.experience_score_service")

# ── Neutral fallback ─────────────────────────────────────────────────────────

FALLBACK_SCORE: float = 50.0
FALLBACK_CATEGORY: str = "fair"

# Midpoint value per metric; contributions sum to FALLBACK_SCORE
_FALLBACK_BREAKDOWN: dict[str, tuple[float, float, float]] = {
    "user_rating": (5.0, 17.5, 35.0),
    "user_sentiment": (0.0, 12.5, 25.0),
    "dropoff_rate": (50.0, 10.0, 20.0),
    "screenout_rate": (50.0, 7.5, 15.0),
    "screener_question_count": (5.0, 2.5, 5.0),
}

# ── Category / colour thresholds (lower bound inclusive) ────────────────────

_CATEGORY_THRESHOLDS: list[tuple[float, str, str]] = [
    (80.0, "excellent", "text-green-600"),
    (60.0, "good", "text-blue-600"),
    (40.0, "fair", "text-yellow-600"),
    (20.0, "poor", "text-orange-600"),
]
_LOWEST_CATEGORY: tuple[str, str] = ("very_poor", "text-red-600")


class ExperienceScoreService:
    """Bayesian and legacy XScore composers over ``RawSurveySignals``.

    Dependencies are injected at construction so the service can be tested
    with a stub sentiment scorer.
    """

    def __init__(
        self,
        sentiment_service: Optional[SentimentService] = None,
        rating_scale_min: Optional[float] = None,
        rating_scale_max: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.sentiment_service = sentiment_service or SentimentService()
        self.rating_scale_min: float = (
            settings.RATING_SCALE_MIN
            if rating_scale_min is None
            else rating_scale_min
        )
        self.rating_scale_max: float = (
            settings.RATING_SCALE_MAX
            if rating_scale_max is None
            else rating_scale_max
        )
        self.formulas: ContributionFormulas = server_formulas(
            self.rating_scale_min, self.rating_scale_max
        )

    # ── Public API ────────────────────────────────────────────────────────

    def compute_bayesian_score(
        self,
        signals: RawSurveySignals,
        global_averages: GlobalAverages,
        k: float,
    ) -> BayesianExperienceScore:
        """Shrink rating and sentiment toward the population, then compose.

        Parameters
        ----------
        signals:
            The survey's raw per-respondent inputs.
        global_averages:
            Population statistics for the batch.
        k:
            Batch-wide smoothing constant (pseudo-count), must be >= 0.

        Returns
        -------
        BayesianExperienceScore
            Score, category, colour, breakdown, and the shrinkage
            diagnostics (``smoothing_info``, ``raw_data``,
            ``adjusted_metrics``).  On failure, the neutral fallback.
        """
        try:
            return self._compute_bayesian(signals, global_averages, k)
        except Exception as exc:
            return self.bayesian_fallback(k, reason=_describe(exc))

    def compute_legacy_score(self, signals: RawSurveySignals) -> ExperienceScore:
        """Compose the score from the survey's own unsmoothed averages."""
        try:
            ratings = [float(r) for r in signals.ratings]
            avg_rating = sum(ratings) / len(ratings) if ratings else 0.0
            sentiment = self.sentiment_service.score_comments_ternary(
                signals.comments
            )
            dropoff_rate = _percentage(signals.dropoffs, signals.total_attempts)
            screenout_rate = _percentage(
                signals.screenouts, signals.total_attempts
            )
            return self.compute_legacy_from_metrics(
                user_rating=avg_rating,
                user_sentiment=sentiment,
                dropoff_rate=dropoff_rate,
                screenout_rate=screenout_rate,
                screener_question_count=signals.screener_question_count,
            )
        except Exception as exc:
            return self.legacy_fallback(reason=_describe(exc))

    def compute_legacy_from_metrics(
        self,
        user_rating: Optional[float],
        user_sentiment: Optional[float],
        dropoff_rate: Optional[float],
        screenout_rate: Optional[float],
        screener_question_count: Optional[float],
    ) -> ExperienceScore:
        """Legacy composition from already-aggregated metrics.

        ``None`` inputs become 0; the rating is floored at the scale minimum.
        """
        try:
            rating = max(self.rating_scale_min, user_rating or 0.0)
            breakdown = self.formulas.breakdown(
                rating,
                user_sentiment or 0.0,
                dropoff_rate or 0.0,
                screenout_rate or 0.0,
                screener_question_count or 0,
            )
            total = breakdown.total()
            score = clamp_score(total)
            category, color = self.categorize(score)
            return ExperienceScore(
                score=score,
                category=category,
                color=color,
                breakdown=breakdown,
                total_contribution=total,
            )
        except Exception as exc:
            return self.legacy_fallback(reason=_describe(exc))

    # ── Category helpers ─────────────────────────────────────────────────

    @staticmethod
    def categorize(score: float) -> tuple[str, str]:
        """Return ``(category, color)`` for a 0-100 score."""
        for threshold, category, color in _CATEGORY_THRESHOLDS:
            if score >= threshold:
                return category, color
        return _LOWEST_CATEGORY

    @classmethod
    def get_score_category(cls, score: float) -> str:
        return cls.categorize(score)[0]

    @classmethod
    def get_score_color(cls, score: float) -> str:
        return cls.categorize(score)[1]

    # ── Fallbacks ────────────────────────────────────────────────────────

    @classmethod
    def legacy_fallback(cls, reason: str) -> ExperienceScore:
        _, color = cls.categorize(FALLBACK_SCORE)
        breakdown = _fallback_breakdown()
        return ExperienceScore(
            score=FALLBACK_SCORE,
            category=FALLBACK_CATEGORY,
            color=color,
            breakdown=breakdown,
            total_contribution=breakdown.total(),
            fallback_reason=reason,
        )

    @classmethod
    def bayesian_fallback(cls, k: Any, reason: str) -> BayesianExperienceScore:
        _, color = cls.categorize(FALLBACK_SCORE)
        breakdown = _fallback_breakdown()
        try:
            k_value = float(k)
        except (TypeError, ValueError):
            k_value = 0.0
        return BayesianExperienceScore(
            score=FALLBACK_SCORE,
            category=FALLBACK_CATEGORY,
            color=color,
            breakdown=breakdown,
            total_contribution=breakdown.total(),
            fallback_reason=reason,
            smoothing_info=SmoothingInfo(
                k=k_value,
                rating_weight_own=0.0,
                rating_weight_global=1.0,
                sentiment_weight_own=0.0,
                sentiment_weight_global=1.0,
            ),
            raw_data=RawData(
                rating_count=0,
                sentiment_count=0,
                avg_rating=_FALLBACK_BREAKDOWN["user_rating"][0],
                avg_sentiment=_FALLBACK_BREAKDOWN["user_sentiment"][0],
            ),
            adjusted_metrics=AdjustedMetrics(
                adjusted_rating=_FALLBACK_BREAKDOWN["user_rating"][0],
                adjusted_sentiment=_FALLBACK_BREAKDOWN["user_sentiment"][0],
                dropoff_rate=_FALLBACK_BREAKDOWN["dropoff_rate"][0],
                screenout_rate=_FALLBACK_BREAKDOWN["screenout_rate"][0],
            ),
        )

    # ── Internals ────────────────────────────────────────────────────────

    def _compute_bayesian(
        self,
        signals: RawSurveySignals,
        global_averages: GlobalAverages,
        k: float,
    ) -> BayesianExperienceScore:
        k = float(k)
        if k < 0:
            raise ValueError(f"Smoothing constant K must be >= 0, got {k}")

        # Step 1: own averages (fallback to the population when empty)
        ratings = [float(r) for r in signals.ratings]
        if signals.comment_sentiments is not None:
            sentiments = [float(s) for s in signals.comment_sentiments]
        else:
            sentiments = self.sentiment_service.score_each(signals.comments)

        global_rating = float(global_averages.global_avg_rating)
        global_sentiment = float(global_averages.global_avg_sentiment)

        rating_count = len(ratings)
        sentiment_count = len(sentiments)
        avg_rating = (
            sum(ratings) / rating_count if rating_count else global_rating
        )
        avg_sentiment = (
            sum(sentiments) / sentiment_count
            if sentiment_count
            else global_sentiment
        )

        # Step 2: shrinkage
        rating_own, rating_global = _shrinkage_weights(rating_count, k)
        sentiment_own, sentiment_global = _shrinkage_weights(sentiment_count, k)

        if rating_count == 0:
            adjusted_rating = global_rating
        else:
            adjusted_rating = rating_own * avg_rating + rating_global * global_rating

        if sentiment_count == 0:
            adjusted_sentiment = global_sentiment
        else:
            adjusted_sentiment = (
                sentiment_own * avg_sentiment
                + sentiment_global * global_sentiment
            )

        # Step 3: structural rates, used as observed
        dropoff_rate = _percentage(signals.dropoffs, signals.total_attempts)
        screenout_rate = _percentage(signals.screenouts, signals.total_attempts)

        # Step 4: compose with the server formula set
        breakdown = self.formulas.breakdown(
            adjusted_rating,
            adjusted_sentiment,
            dropoff_rate,
            screenout_rate,
            signals.screener_question_count,
        )
        total = breakdown.total()
        score = clamp_score(total)
        category, color = self.categorize(score)

        logger.debug(
            "bayesian_score_computed",
            survey_id=signals.survey_id,
            k=k,
            rating_count=rating_count,
            sentiment_count=sentiment_count,
            adjusted_rating=round(adjusted_rating, 3),
            score=score,
        )

        return BayesianExperienceScore(
            score=score,
            category=category,
            color=color,
            breakdown=breakdown,
            total_contribution=total,
            smoothing_info=SmoothingInfo(
                k=k,
                rating_weight_own=rating_own,
                rating_weight_global=rating_global,
                sentiment_weight_own=sentiment_own,
                sentiment_weight_global=sentiment_global,
            ),
            raw_data=RawData(
                rating_count=rating_count,
                sentiment_count=sentiment_count,
                avg_rating=avg_rating,
                avg_sentiment=avg_sentiment,
                dropoffs=signals.dropoffs,
                total_attempts=signals.total_attempts,
                screenouts=signals.screenouts,
                screener_question_count=signals.screener_question_count,
            ),
            adjusted_metrics=AdjustedMetrics(
                adjusted_rating=adjusted_rating,
                adjusted_sentiment=adjusted_sentiment,
                dropoff_rate=dropoff_rate,
                screenout_rate=screenout_rate,
            ),
        )


# ──────────────────────────────────────────────────────────────────────────────
# Module helpers
# ──────────────────────────────────────────────────────────────────────────────

def _shrinkage_weights(n: int, k: float) -> tuple[float, float]:
    """Return ``(weight_own, weight_global)``; n + K == 0 trusts the
    population entirely."""
    denominator = n + k
    if denominator <= 0:
        return 0.0, 1.0
    return n / denominator, k / denominator


def _percentage(part: Optional[int], whole: Optional[int]) -> float:
    if not whole or whole <= 0:
        return 0.0
    return ((part or 0) / whole) * 100.0


def _fallback_breakdown() -> ContributionBreakdown:
    return ContributionBreakdown(
        **{
            name: MetricContribution(
                value=value, contribution=contribution, weight=weight
            )
            for name, (value, contribution, weight) in _FALLBACK_BREAKDOWN.items()
        }
    )


def _describe(exc: Exception) -> str:
    return f"{type(exc).__name__}: {exc}"

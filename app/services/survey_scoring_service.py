"""
Panel Health — survey scoring aggregation.

Pipeline for one batch (``get_all_scored``):

  1. Cache lookup; a hit returns the stored list unchanged.
  2. Five data fetches run concurrently (``asyncio.gather``), each on its own
     database session.
  3. Per survey, raw signals are assembled and every comment is scored once.
  4. Population averages and a single smoothing constant K are derived from
     the whole batch.
  5. Both composers (Bayesian XScore and legacy) run for every survey; a
     composer fallback is logged and the batch continues.
  6. The complete list is written to the cache and returned.

A data-store failure propagates as ``SurveyDataUnavailableError`` and nothing
is cached.  Cancelling the task (e.g. a request timeout) likewise leaves the
cache untouched because the write is the last step.
"""

from __future__ import annotations

import asyncio
import statistics
import time
from typing import Any, Optional, Protocol

import structlog

from app.config import get_settings
from app.schemas.experience import EnrichedSurveyRecord
from app.schemas.survey import (
    CalculationDetails,
    CommentSentiment,
    DropoffDetails,
    ExperienceTrendPoint,
    FunnelCounts,
    GlobalAverages,
    ObservedInputs,
    RawSurveySignals,
    ScreenoutDetails,
    SurveyMetadata,
)
from app.services.experience_score_service import ExperienceScoreService
from app.services.sentiment_service import SentimentService
from app.services.smoothing_service import SmoothingService
from app.services.survey_data_service import SurveyDataService
from app.utils.score_cache import ScoreCache, get_score_cache

logger = structlog.get_logger("panel_health.survey_scoring_service")


class SurveyDataSource(Protocol):
    """What the aggregator needs from the data-access layer."""

    async def fetch_eligible_surveys(self) -> list[SurveyMetadata]: ...

    async def fetch_rating_observations(self) -> dict[int, list[float]]: ...

    async def fetch_comment_observations(self) -> dict[int, list[str]]: ...

    async def fetch_funnel_counts(self) -> dict[int, FunnelCounts]: ...

    async def fetch_screener_question_counts(self) -> dict[int, int]: ...

    async def fetch_recent_comments(
        self, survey_id: int, limit: int = 5
    ) -> list[dict[str, Any]]: ...

    async def fetch_experience_trend(
        self,
        date_range: Optional[str] = None,
        survey_id: Optional[int] = None,
    ) -> list[dict[str, Any]]: ...


class SurveyScoringService:
    """Scores every eligible survey and caches the batch."""

    def __init__(
        self,
        data_source: Optional[SurveyDataSource] = None,
        sentiment_service: Optional[SentimentService] = None,
        score_service: Optional[ExperienceScoreService] = None,
        smoothing_service: Optional[SmoothingService] = None,
        cache: Optional[ScoreCache] = None,
    ) -> None:
        settings = get_settings()
        self.data_source: SurveyDataSource = data_source or SurveyDataService()
        self.sentiment_service = sentiment_service or SentimentService()
        self.score_service = score_service or ExperienceScoreService(
            sentiment_service=self.sentiment_service
        )
        self.smoothing_service = smoothing_service or SmoothingService(
            default_k=settings.DEFAULT_SMOOTHING_K
        )
        self.cache: ScoreCache = cache if cache is not None else get_score_cache()
        self.admin_portal_base_url: str = settings.ADMIN_PORTAL_BASE_URL
        self.comment_preview_limit: int = settings.COMMENT_PREVIEW_LIMIT

    # ── Batch scoring ─────────────────────────────────────────────────────

    async def get_all_scored(self) -> list[EnrichedSurveyRecord]:
        """Every eligible survey with both experience scores attached.

        Raises
        ------
        SurveyDataUnavailableError
            If any fetch fails; the cache is left as it was.
        """
        cached = self.cache.get()
        if cached is not None:
            logger.info("scored_surveys_cache_hit", surveys=len(cached))
            return cached

        started = time.perf_counter()
        log = logger.bind(operation="get_all_scored")
        log.info("scored_surveys_cache_miss")

        (
            surveys,
            ratings,
            comments,
            funnels,
            screener_counts,
        ) = await asyncio.gather(
            self.data_source.fetch_eligible_surveys(),
            self.data_source.fetch_rating_observations(),
            self.data_source.fetch_comment_observations(),
            self.data_source.fetch_funnel_counts(),
            self.data_source.fetch_screener_question_counts(),
        )

        batch: list[tuple[SurveyMetadata, RawSurveySignals, FunnelCounts]] = []
        for survey in surveys:
            funnel = funnels.get(survey.id) or FunnelCounts()
            survey_comments = comments.get(survey.id) or []
            signals = RawSurveySignals(
                survey_id=survey.id,
                ratings=ratings.get(survey.id),
                comments=survey_comments,
                dropoffs=funnel.partial_users,
                total_attempts=funnel.total_users,
                screenouts=funnel.screened_out,
                screener_question_count=screener_counts.get(survey.id),
                comment_sentiments=self.sentiment_service.score_each(
                    survey_comments
                ),
            )
            batch.append((survey, signals, funnel))

        all_signals = [signals for _, signals, _ in batch]
        global_averages = self.compute_global_averages(all_signals)
        k = self.smoothing_service.select_k([len(s.ratings) for s in all_signals])

        records = [
            self._score_survey(survey, signals, funnel, global_averages, k)
            for survey, signals, funnel in batch
        ]

        self.cache.set(records)

        log.info(
            "scored_surveys_computed",
            surveys=len(records),
            k=k,
            global_avg_rating=round(global_averages.global_avg_rating, 3),
            global_avg_sentiment=round(global_averages.global_avg_sentiment, 3),
            bayesian_fallbacks=sum(1 for r in records if r.bayesian.is_fallback),
            legacy_fallbacks=sum(1 for r in records if r.legacy.is_fallback),
            elapsed_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return records

    def compute_global_averages(
        self, signals_list: list[RawSurveySignals]
    ) -> GlobalAverages:
        """Population statistics over surveys that have the observation.

        Each average is the mean of per-survey means, so a survey with many
        respondents does not dominate.  With no observation anywhere the
        neutral defaults of ``GlobalAverages`` are kept.
        """
        defaults = GlobalAverages()

        rating_means = [
            sum(s.ratings) / len(s.ratings) for s in signals_list if s.ratings
        ]

        sentiment_means: list[float] = []
        for s in signals_list:
            scores = (
                s.comment_sentiments
                if s.comment_sentiments is not None
                else self.sentiment_service.score_each(s.comments)
            )
            if scores:
                sentiment_means.append(sum(scores) / len(scores))

        with_attempts = [s for s in signals_list if s.total_attempts > 0]
        dropoff_rates = [s.dropoffs / s.total_attempts * 100 for s in with_attempts]
        screenout_rates = [
            s.screenouts / s.total_attempts * 100 for s in with_attempts
        ]

        screener_counts = [
            s.screener_question_count
            for s in signals_list
            if s.screener_question_count > 0
        ]

        return GlobalAverages(
            global_avg_rating=(
                statistics.fmean(rating_means)
                if rating_means
                else defaults.global_avg_rating
            ),
            global_avg_sentiment=(
                statistics.fmean(sentiment_means)
                if sentiment_means
                else defaults.global_avg_sentiment
            ),
            global_avg_dropoff_rate=(
                statistics.fmean(dropoff_rates)
                if dropoff_rates
                else defaults.global_avg_dropoff_rate
            ),
            global_avg_screenout_rate=(
                statistics.fmean(screenout_rates)
                if screenout_rates
                else defaults.global_avg_screenout_rate
            ),
            max_screener_question_count=(
                max(screener_counts)
                if screener_counts
                else defaults.max_screener_question_count
            ),
            min_screener_question_count=(
                min(screener_counts)
                if screener_counts
                else defaults.min_screener_question_count
            ),
            surveys_with_ratings=len(rating_means),
            surveys_with_comments=len(sentiment_means),
        )

    def invalidate_cache(self) -> None:
        self.cache.invalidate()

    # ── Per-survey views ──────────────────────────────────────────────────

    async def get_scored_survey(self, survey_id: int) -> EnrichedSurveyRecord:
        """One survey from the (possibly cached) batch.

        Raises
        ------
        LookupError
            If the survey is not active or does not exist.
        """
        for record in await self.get_all_scored():
            if record.id == survey_id:
                return record
        raise LookupError(f"Survey {survey_id} not found")

    async def get_comments_with_sentiment(
        self, survey_id: int, limit: Optional[int] = None
    ) -> list[CommentSentiment]:
        rows = await self.data_source.fetch_recent_comments(
            survey_id, limit or self.comment_preview_limit
        )
        return [
            CommentSentiment(
                text=row["text"],
                rating=row.get("rating"),
                completed_date=row.get("completed_date"),
                sentiment=self.sentiment_service.get_detailed_sentiment(
                    row["text"]
                ),
                rating_sentiment=self.sentiment_service.categorize_rating_sentiment(
                    row.get("rating")
                ),
            )
            for row in rows
        ]

    async def get_experience_trend(
        self,
        date_range: Optional[str] = None,
        survey_id: Optional[int] = None,
    ) -> list[ExperienceTrendPoint]:
        """Monthly trend with rating-based sentiment and satisfaction."""
        rows = await self.data_source.fetch_experience_trend(date_range, survey_id)

        points: list[ExperienceTrendPoint] = []
        for row in rows:
            total = row["total_responses"]
            avg_rating = row.get("avg_rating")
            sentiment = (
                (row["positive_responses"] - row["negative_responses"]) / total
                if total
                else 0.0
            )
            points.append(
                ExperienceTrendPoint(
                    survey_id=row["survey_id"],
                    survey_title=row.get("survey_title"),
                    date=row["date"],
                    total_responses=total,
                    avg_rating=avg_rating,
                    positive_responses=row["positive_responses"],
                    negative_responses=row["negative_responses"],
                    user_sentiment=round(sentiment, 4),
                    satisfaction_score=(
                        round(avg_rating / 10 * 100, 2)
                        if avg_rating is not None
                        else None
                    ),
                )
            )
        return points

    @staticmethod
    def rank_surveys(
        records: list[EnrichedSurveyRecord], limit: int = 5
    ) -> dict[str, list[EnrichedSurveyRecord]]:
        """Best and worst ``limit`` surveys by XScore (ties by survey id)."""
        if limit < 0:
            raise ValueError(f"limit must be >= 0, got {limit}")
        ordered = sorted(records, key=lambda r: (-r.xscore, r.id))
        lowest = sorted(records, key=lambda r: (r.xscore, r.id))
        return {"top": ordered[:limit], "bottom": lowest[:limit]}

    # ── Internals ─────────────────────────────────────────────────────────

    def _score_survey(
        self,
        survey: SurveyMetadata,
        signals: RawSurveySignals,
        funnel: FunnelCounts,
        global_averages: GlobalAverages,
        k: float,
    ) -> EnrichedSurveyRecord:
        bayesian = self.score_service.compute_bayesian_score(
            signals, global_averages, k
        )
        if bayesian.is_fallback:
            logger.warning(
                "bayesian_score_fallback",
                survey_id=survey.id,
                reason=bayesian.fallback_reason,
            )

        legacy = self.score_service.compute_legacy_score(signals)
        if legacy.is_fallback:
            logger.warning(
                "legacy_score_fallback",
                survey_id=survey.id,
                reason=legacy.fallback_reason,
            )

        return EnrichedSurveyRecord(
            survey=survey,
            observed=self._observed_inputs(signals),
            bayesian=bayesian,
            legacy=legacy,
            calculation_details=CalculationDetails(
                dropoff=DropoffDetails(
                    total_users=funnel.total_users,
                    partial_users=funnel.partial_users,
                    completed_users=funnel.completed_users,
                ),
                screenout=ScreenoutDetails(
                    total_users=funnel.total_users,
                    wave_screened_out=funnel.wave_screened_out,
                    panel_screened_out=funnel.panel_screened_out,
                    quota_screened_out=funnel.quota_screened_out,
                    total_screened_out=funnel.screened_out,
                ),
            ),
            admin_portal_link=self._admin_portal_link(survey),
        )

    def _observed_inputs(self, signals: RawSurveySignals) -> ObservedInputs:
        total = signals.total_attempts
        return ObservedInputs(
            user_rating=(
                round(sum(signals.ratings) / len(signals.ratings), 2)
                if signals.ratings
                else 0.0
            ),
            user_sentiment=self.sentiment_service.score_comments_ternary(
                signals.comments
            ),
            drop_off_percent=round(signals.dropoffs / total * 100, 2) if total else 0.0,
            screen_out_percent=(
                round(signals.screenouts / total * 100, 2) if total else 0.0
            ),
            questions_in_screener=signals.screener_question_count,
            qualitative_comments=len(signals.comments),
        )

    def _admin_portal_link(self, survey: SurveyMetadata) -> Optional[str]:
        if survey.project_id is None:
            return None
        return (
            f"{self.admin_portal_base_url}/{survey.project_id}"
            f"?pw-id={survey.recent_project_wave_id or ''}"
            f"&s-id={survey.id}"
            f"&wave-id={survey.last_wave_id or ''}"
        )

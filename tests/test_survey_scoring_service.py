"""Tests for SurveyScoringService — batch aggregation, caching, and views."""
import asyncio

import pytest

from app.schemas.survey import GlobalAverages, RawSurveySignals
from app.services.experience_score_service import ExperienceScoreService
from app.services.smoothing_service import SmoothingService
from app.services.survey_data_service import SurveyDataUnavailableError
from app.services.survey_scoring_service import SurveyScoringService
from app.utils.score_cache import ScoreCache


def _by_id(records):
    return {r.id: r for r in records}


class TestBatchScoring:
    """End-to-end batch over the fake data source."""

    @pytest.mark.asyncio
    async def test_one_record_per_survey_in_order(self, scoring_service):
        records = await scoring_service.get_all_scored()
        assert [r.id for r in records] == [301, 302, 303]

    @pytest.mark.asyncio
    async def test_single_k_for_whole_batch(self, scoring_service):
        """Rating counts 4, 1, 0 are all '<5' -> K = 8."""
        records = await scoring_service.get_all_scored()
        assert {r.smoothing_info.k for r in records} == {8.0}

    @pytest.mark.asyncio
    async def test_survey_without_data_gets_global_rating(self, scoring_service):
        """Global rating is the mean of per-survey means: (9 + 3) / 2."""
        records = _by_id(await scoring_service.get_all_scored())
        empty = records[303]
        assert empty.raw_data.rating_count == 0
        assert empty.raw_data.avg_rating == 6.0
        assert empty.bayesian.adjusted_metrics.adjusted_rating == 6.0

    @pytest.mark.asyncio
    async def test_shrinkage_applied(self, scoring_service):
        """n = 4, K = 8: 4/12 * 9 + 8/12 * 6 = 7."""
        records = _by_id(await scoring_service.get_all_scored())
        adjusted = records[301].bayesian.adjusted_metrics.adjusted_rating
        assert adjusted == pytest.approx(7.0)
        assert records[301].smoothing_info.rating_weight_own == pytest.approx(1 / 3)

    @pytest.mark.asyncio
    async def test_both_scores_kept(self, scoring_service):
        records = _by_id(await scoring_service.get_all_scored())
        record = records[302]
        assert record.xscore == record.bayesian.score
        assert record.legacy_score == record.legacy.score
        assert record.legacy_breakdown.user_rating.value == 3.0
        assert record.breakdown.user_rating.value > 3.0

    @pytest.mark.asyncio
    async def test_observed_inputs_and_details(self, scoring_service):
        records = _by_id(await scoring_service.get_all_scored())
        record = records[301]
        assert record.observed.user_rating == 9.0
        assert record.observed.drop_off_percent == 10.0
        assert record.observed.screen_out_percent == 15.0
        assert record.observed.questions_in_screener == 6
        assert record.observed.qualitative_comments == 3
        assert record.calculation_details.screenout.total_screened_out == 30
        assert record.calculation_details.dropoff.completed_users == 150

    @pytest.mark.asyncio
    async def test_admin_portal_link(self, scoring_service):
        records = _by_id(await scoring_service.get_all_scored())
        assert records[301].admin_portal_link == (
            "https://ap.zoomrx.com/#/projects/view/77"
            "?pw-id=905&s-id=301&wave-id=1201"
        )
        assert records[303].admin_portal_link is None

    @pytest.mark.asyncio
    async def test_fetches_run_once_each(self, scoring_service, data_source):
        await scoring_service.get_all_scored()
        assert data_source.calls == {
            "fetch_eligible_surveys": 1,
            "fetch_rating_observations": 1,
            "fetch_comment_observations": 1,
            "fetch_funnel_counts": 1,
            "fetch_screener_question_counts": 1,
        }

    @pytest.mark.asyncio
    async def test_composer_fallback_does_not_stop_batch(
        self, data_source, sentiment_service, score_cache
    ):
        class FlakyScoreService(ExperienceScoreService):
            def _compute_bayesian(self, signals, global_averages, k):
                if signals.survey_id == 302:
                    raise ZeroDivisionError("bad survey")
                return super()._compute_bayesian(signals, global_averages, k)

        service = SurveyScoringService(
            data_source=data_source,
            sentiment_service=sentiment_service,
            score_service=FlakyScoreService(sentiment_service=sentiment_service),
            cache=score_cache,
        )
        records = _by_id(await service.get_all_scored())
        assert len(records) == 3
        assert records[302].bayesian.is_fallback
        assert records[302].xscore == 50.0
        assert not records[301].bayesian.is_fallback

    @pytest.mark.asyncio
    async def test_empty_batch(self, make_data_source, sentiment_service, score_cache):
        service = SurveyScoringService(
            data_source=make_data_source(),
            sentiment_service=sentiment_service,
            cache=score_cache,
        )
        assert await service.get_all_scored() == []


class TestCaching:
    """Single-entry cache around the batch."""

    @pytest.mark.asyncio
    async def test_second_call_is_cache_hit(self, scoring_service, data_source):
        first = await scoring_service.get_all_scored()
        second = await scoring_service.get_all_scored()
        assert second is first
        assert data_source.calls["fetch_eligible_surveys"] == 1

    @pytest.mark.asyncio
    async def test_expired_entry_recomputed(
        self, scoring_service, data_source, fake_clock
    ):
        first = await scoring_service.get_all_scored()
        fake_clock.advance(301)
        second = await scoring_service.get_all_scored()
        assert second is not first
        assert [r.xscore for r in second] == [r.xscore for r in first]
        assert data_source.calls["fetch_eligible_surveys"] == 2

    @pytest.mark.asyncio
    async def test_invalidate_forces_recompute(self, scoring_service, data_source):
        await scoring_service.get_all_scored()
        scoring_service.invalidate_cache()
        await scoring_service.get_all_scored()
        assert data_source.calls["fetch_eligible_surveys"] == 2

    @pytest.mark.asyncio
    async def test_upstream_failure_propagates_and_caches_nothing(
        self, make_data_source, sample_surveys, sentiment_service, score_cache
    ):
        source = make_data_source(
            surveys=sample_surveys, fail_on="fetch_funnel_counts"
        )
        service = SurveyScoringService(
            data_source=source, sentiment_service=sentiment_service, cache=score_cache
        )
        with pytest.raises(SurveyDataUnavailableError) as exc_info:
            await service.get_all_scored()
        assert exc_info.value.operation == "fetch_funnel_counts"
        assert score_cache.entry is None

    @pytest.mark.asyncio
    async def test_recovers_after_failure(
        self, scoring_service, data_source, score_cache
    ):
        first = await scoring_service.get_all_scored()
        data_source.fail_on = "fetch_rating_observations"
        scoring_service.invalidate_cache()
        with pytest.raises(SurveyDataUnavailableError):
            await scoring_service.get_all_scored()
        assert score_cache.get() is None
        data_source.fail_on = None
        assert [r.id for r in await scoring_service.get_all_scored()] == [
            r.id for r in first
        ]

    @pytest.mark.asyncio
    async def test_timeout_leaves_cache_empty(
        self, make_data_source, sample_surveys, sentiment_service, score_cache
    ):
        source = make_data_source(surveys=sample_surveys, delay=0.5)
        service = SurveyScoringService(
            data_source=source, sentiment_service=sentiment_service, cache=score_cache
        )
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(service.get_all_scored(), timeout=0.01)
        assert score_cache.entry is None


class TestGlobalAverages:
    """Population statistics over surveys that have data."""

    def test_mean_of_survey_means(self, scoring_service):
        averages = scoring_service.compute_global_averages([
            RawSurveySignals(survey_id=1, ratings=[10, 10, 10, 10]),
            RawSurveySignals(survey_id=2, ratings=[4]),
            RawSurveySignals(survey_id=3),
        ])
        assert averages.global_avg_rating == pytest.approx(7.0)
        assert averages.surveys_with_ratings == 2

    def test_defaults_without_data(self, scoring_service):
        averages = scoring_service.compute_global_averages(
            [RawSurveySignals(survey_id=1)]
        )
        assert averages == GlobalAverages()

    def test_defaults_for_empty_batch(self, scoring_service):
        assert scoring_service.compute_global_averages([]) == GlobalAverages()

    def test_sentiment_from_comments(self, scoring_service):
        averages = scoring_service.compute_global_averages([
            RawSurveySignals(survey_id=1, comments=["good"]),
            RawSurveySignals(survey_id=2, comment_sentiments=[-0.2, -0.4]),
        ])
        assert averages.global_avg_sentiment == pytest.approx((0.38 - 0.3) / 2)
        assert averages.surveys_with_comments == 2

    def test_rates_and_screener_range(self, scoring_service):
        averages = scoring_service.compute_global_averages([
            RawSurveySignals(survey_id=1, dropoffs=10, screenouts=20,
                             total_attempts=100, screener_question_count=4),
            RawSurveySignals(survey_id=2, dropoffs=30, screenouts=0,
                             total_attempts=100, screener_question_count=22),
            RawSurveySignals(survey_id=3),
        ])
        assert averages.global_avg_dropoff_rate == pytest.approx(20.0)
        assert averages.global_avg_screenout_rate == pytest.approx(10.0)
        assert averages.max_screener_question_count == 22
        assert averages.min_screener_question_count == 4

    @pytest.mark.asyncio
    async def test_batch_sentiment_average(self, scoring_service):
        """301 mean (1.0 + 0.38 + 0.64) / 3, 302 mean (-0.62 - 0.5) / 2."""
        records = _by_id(await scoring_service.get_all_scored())
        expected_global = ((1.0 + 0.38 + 0.64) / 3 + (-0.62 - 0.5) / 2) / 2
        empty = records[303]
        assert empty.raw_data.avg_sentiment == pytest.approx(expected_global)


class TestPerSurveyViews:

    @pytest.mark.asyncio
    async def test_get_scored_survey(self, scoring_service):
        record = await scoring_service.get_scored_survey(302)
        assert record.survey.survey_title == "Cardiology pulse"

    @pytest.mark.asyncio
    async def test_unknown_survey(self, scoring_service):
        with pytest.raises(LookupError):
            await scoring_service.get_scored_survey(999)

    @pytest.mark.asyncio
    async def test_comments_with_sentiment(self, scoring_service, data_source):
        data_source.recent_comments = {
            301: [
                {"text": "good and easy", "rating": 8, "completed_date": "2026-10-01T10:00:00"},
                {"text": "terrible", "rating": 2, "completed_date": None},
            ]
        }
        comments = await scoring_service.get_comments_with_sentiment(301)
        assert [c.rating_sentiment for c in comments] == ["positive", "negative"]
        assert comments[0].sentiment["category"] == "positive"
        assert comments[1].sentiment["score"] == -1
        assert data_source.last_args["fetch_recent_comments"] == (301, 5)

    @pytest.mark.asyncio
    async def test_comments_limit_passed_through(self, scoring_service, data_source):
        await scoring_service.get_comments_with_sentiment(301, limit=2)
        assert data_source.last_args["fetch_recent_comments"] == (301, 2)

    @pytest.mark.asyncio
    async def test_experience_trend(self, scoring_service, data_source):
        data_source.trend = [
            {"survey_id": 301, "survey_title": "Oncology", "date": "2026-09",
             "total_responses": 10, "avg_rating": 7.5,
             "positive_responses": 6, "negative_responses": 2},
            {"survey_id": 301, "survey_title": "Oncology", "date": "2026-08",
             "total_responses": 0, "avg_rating": None,
             "positive_responses": 0, "negative_responses": 0},
        ]
        points = await scoring_service.get_experience_trend("last_90_days", 301)
        assert points[0].user_sentiment == pytest.approx(0.4)
        assert points[0].satisfaction_score == pytest.approx(75.0)
        assert points[1].user_sentiment == 0.0
        assert points[1].satisfaction_score is None
        assert data_source.last_args["fetch_experience_trend"] == ("last_90_days", 301)


class TestRanking:

    @pytest.mark.asyncio
    async def test_top_and_bottom(self, scoring_service):
        records = await scoring_service.get_all_scored()
        ranking = SurveyScoringService.rank_surveys(records, limit=2)
        top_scores = [r.xscore for r in ranking["top"]]
        bottom_scores = [r.xscore for r in ranking["bottom"]]
        assert top_scores == sorted(top_scores, reverse=True)
        assert bottom_scores == sorted(bottom_scores)
        assert ranking["top"][0].xscore == max(r.xscore for r in records)
        assert ranking["bottom"][0].xscore == min(r.xscore for r in records)
        assert len(ranking["top"]) == 2

    def test_negative_limit_rejected(self):
        with pytest.raises(ValueError):
            SurveyScoringService.rank_surveys([], limit=-1)


class TestDefaultWiring:

    def test_uses_configured_default_k(self, data_source, score_cache):
        service = SurveyScoringService(data_source=data_source, cache=score_cache)
        assert isinstance(service.smoothing_service, SmoothingService)
        assert service.smoothing_service.default_k == 10.0
        assert isinstance(service.cache, ScoreCache)

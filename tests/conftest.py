"""Shared pytest fixtures for Panel Health tests."""
import asyncio

import pytest

from app.schemas.survey import FunnelCounts, GlobalAverages, SurveyMetadata
from app.services.experience_score_service import ExperienceScoreService
from app.services.sentiment_service import SentimentService
from app.services.smoothing_service import SmoothingService
from app.services.survey_data_service import SurveyDataUnavailableError
from app.services.survey_scoring_service import SurveyScoringService
from app.utils.score_cache import NPS_DATA_KEY, ScoreCache


# Small fixed lexicon so sentiment arithmetic in tests is exact
TEST_LEXICON = {
    "good": 1.9,
    "great": 3.1,
    "love": 3.2,
    "easy": 1.9,
    "bad": -2.5,
    "terrible": -2.1,
    "hate": -2.7,
    "slow": -1.0,
}


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSurveyDataSource:
    """In-memory stand-in for SurveyDataService."""

    def __init__(
        self,
        surveys=None,
        ratings=None,
        comments=None,
        funnels=None,
        screener_counts=None,
        recent_comments=None,
        trend=None,
        nps_observations=None,
        fail_on=None,
        delay=0.0,
    ):
        self.surveys = surveys or []
        self.ratings = ratings or {}
        self.comments = comments or {}
        self.funnels = funnels or {}
        self.screener_counts = screener_counts or {}
        self.recent_comments = recent_comments or {}
        self.trend = trend or []
        self.nps_observations = nps_observations or []
        self.fail_on = fail_on
        self.delay = delay
        self.calls: dict[str, int] = {}
        self.last_args: dict[str, tuple] = {}

    async def _enter(self, operation, *args):
        self.calls[operation] = self.calls.get(operation, 0) + 1
        self.last_args[operation] = args
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_on == operation:
            raise SurveyDataUnavailableError(operation, "connection refused")

    async def fetch_eligible_surveys(self):
        await self._enter("fetch_eligible_surveys")
        return list(self.surveys)

    async def fetch_rating_observations(self):
        await self._enter("fetch_rating_observations")
        return {k: list(v) for k, v in self.ratings.items()}

    async def fetch_comment_observations(self):
        await self._enter("fetch_comment_observations")
        return {k: list(v) for k, v in self.comments.items()}

    async def fetch_funnel_counts(self):
        await self._enter("fetch_funnel_counts")
        return dict(self.funnels)

    async def fetch_screener_question_counts(self):
        await self._enter("fetch_screener_question_counts")
        return dict(self.screener_counts)

    async def fetch_recent_comments(self, survey_id, limit=5):
        await self._enter("fetch_recent_comments", survey_id, limit)
        return list(self.recent_comments.get(survey_id, []))[:limit]

    async def fetch_experience_trend(self, date_range=None, survey_id=None):
        await self._enter("fetch_experience_trend", date_range, survey_id)
        return list(self.trend)

    async def fetch_nps_observations(self):
        await self._enter("fetch_nps_observations")
        return list(self.nps_observations)


@pytest.fixture
def sentiment_service():
    return SentimentService(lexicon=dict(TEST_LEXICON))


@pytest.fixture
def score_service(sentiment_service):
    return ExperienceScoreService(
        sentiment_service=sentiment_service,
        rating_scale_min=1.0,
        rating_scale_max=10.0,
    )


@pytest.fixture
def global_averages():
    return GlobalAverages(
        global_avg_rating=6.37,
        global_avg_sentiment=0.12,
        global_avg_dropoff_rate=18.0,
        global_avg_screenout_rate=22.0,
    )


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def score_cache(fake_clock):
    return ScoreCache(ttl_seconds=300.0, clock=fake_clock)


@pytest.fixture
def nps_cache(fake_clock):
    return ScoreCache(ttl_seconds=600.0, clock=fake_clock, key=NPS_DATA_KEY)


@pytest.fixture
def sample_surveys():
    return [
        SurveyMetadata(
            id=301,
            survey_title="Oncology ATU Wave 3",
            crm_id="CRM-301",
            status="live",
            survey_type="standard",
            project_id=77,
            recent_project_wave_id=905,
            last_wave_id=1201,
        ),
        SurveyMetadata(id=302, survey_title="Cardiology pulse", project_id=78),
        SurveyMetadata(id=303, survey_title="New survey, no responses yet"),
    ]


@pytest.fixture
def data_source(sample_surveys):
    return FakeSurveyDataSource(
        surveys=sample_surveys,
        ratings={301: [9, 8, 10, 9], 302: [3]},
        comments={
            301: ["Great survey, easy to follow", "good", "love it"],
            302: ["terrible and slow", "bad"],
        },
        funnels={
            301: FunnelCounts(
                total_users=200,
                partial_users=20,
                completed_users=150,
                wave_screened_out=10,
                panel_screened_out=15,
                quota_screened_out=5,
            ),
            302: FunnelCounts(total_users=40, partial_users=20, completed_users=10,
                              quota_screened_out=10),
        },
        screener_counts={301: 6, 302: 24},
    )


@pytest.fixture
def scoring_service(data_source, sentiment_service, score_service, score_cache):
    return SurveyScoringService(
        data_source=data_source,
        sentiment_service=sentiment_service,
        score_service=score_service,
        smoothing_service=SmoothingService(default_k=10.0),
        cache=score_cache,
    )


@pytest.fixture
def make_data_source():
    return FakeSurveyDataSource

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, computed_field

from app.schemas.survey import CalculationDetails, ObservedInputs, SurveyMetadata


class MetricContribution(BaseModel):
    value: float
    contribution: float
    weight: float


class ContributionBreakdown(BaseModel):
    user_rating: MetricContribution
    user_sentiment: MetricContribution
    dropoff_rate: MetricContribution
    screenout_rate: MetricContribution
    screener_question_count: MetricContribution

    def items(self) -> list[tuple[str, MetricContribution]]:
        return [
            ("user_rating", self.user_rating),
            ("user_sentiment", self.user_sentiment),
            ("dropoff_rate", self.dropoff_rate),
            ("screenout_rate", self.screenout_rate),
            ("screener_question_count", self.screener_question_count),
        ]

    def total(self) -> float:
        """Sum of contributions before clamping."""
        return sum(metric.contribution for _, metric in self.items())

    def weights(self) -> dict[str, float]:
        return {name: metric.weight for name, metric in self.items()}


class ExperienceScore(BaseModel):
    score: float  # clamped to [0, 100]
    category: str
    color: str
    breakdown: ContributionBreakdown
    total_contribution: float
    fallback_reason: Optional[str] = None

    @property
    def is_fallback(self) -> bool:
        return self.fallback_reason is not None


class SmoothingInfo(BaseModel):
    k: float
    rating_weight_own: float
    rating_weight_global: float
    sentiment_weight_own: float
    sentiment_weight_global: float


class RawData(BaseModel):
    rating_count: int
    sentiment_count: int
    avg_rating: float
    avg_sentiment: float
    dropoffs: int = 0
    total_attempts: int = 0
    screenouts: int = 0
    screener_question_count: int = 0


class AdjustedMetrics(BaseModel):
    adjusted_rating: float
    adjusted_sentiment: float
    dropoff_rate: float
    screenout_rate: float


class BayesianExperienceScore(ExperienceScore):
    smoothing_info: SmoothingInfo
    raw_data: RawData
    adjusted_metrics: AdjustedMetrics


class DisplayScore(BaseModel):
    """Dashboard-view composite; never stored as the survey's XScore."""

    formula_set: str
    score: float
    breakdown: ContributionBreakdown
    total_contribution: float


class EnrichedSurveyRecord(BaseModel):
    """One survey's metadata, observed inputs and both experience scores."""

    survey: SurveyMetadata
    observed: ObservedInputs
    bayesian: BayesianExperienceScore
    legacy: ExperienceScore
    calculation_details: CalculationDetails
    admin_portal_link: Optional[str] = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def id(self) -> int:
        return self.survey.id

    @computed_field  # type: ignore[prop-decorator]
    @property
    def xscore(self) -> float:
        return self.bayesian.score

    @computed_field  # type: ignore[prop-decorator]
    @property
    def legacy_score(self) -> float:
        return self.legacy.score

    @property
    def breakdown(self) -> ContributionBreakdown:
        return self.bayesian.breakdown

    @property
    def legacy_breakdown(self) -> ContributionBreakdown:
        return self.legacy.breakdown

    @property
    def smoothing_info(self) -> SmoothingInfo:
        return self.bayesian.smoothing_info

    @property
    def raw_data(self) -> RawData:
        return self.bayesian.raw_data

    @property
    def score_delta(self) -> float:
        """XScore minus legacy score."""
        return round(self.bayesian.score - self.legacy.score, 2)


# ── API response shapes ──────────────────────────────────────────────────────

class SurveyScoreResponse(BaseModel):
    """Dashboard view of one scored survey."""

    id: int
    survey_title: Optional[str] = None
    crm_id: Optional[str] = None
    status: Optional[str] = None
    survey_type: Optional[str] = None
    project_id: Optional[int] = None
    recent_project_wave_id: Optional[int] = None
    last_wave_id: Optional[int] = None

    user_rating: float
    user_sentiment: float
    drop_off_percent: float
    screen_out_percent: float
    questions_in_screener: int
    qualitative_comments: int

    xscore: float
    legacy_score: float
    score_delta: float
    experience_category: str
    experience_color: str
    breakdown: ContributionBreakdown
    legacy_breakdown: ContributionBreakdown
    smoothing_info: SmoothingInfo
    raw_data: RawData
    admin_portal_link: Optional[str] = None
    calculation_details: CalculationDetails

    @classmethod
    def from_record(cls, record: EnrichedSurveyRecord) -> "SurveyScoreResponse":
        survey = record.survey
        observed = record.observed
        return cls(
            id=record.id,
            survey_title=survey.survey_title,
            crm_id=survey.crm_id,
            status=survey.status,
            survey_type=survey.survey_type,
            project_id=survey.project_id,
            recent_project_wave_id=survey.recent_project_wave_id,
            last_wave_id=survey.last_wave_id,
            user_rating=observed.user_rating,
            user_sentiment=observed.user_sentiment,
            drop_off_percent=observed.drop_off_percent,
            screen_out_percent=observed.screen_out_percent,
            questions_in_screener=observed.questions_in_screener,
            qualitative_comments=observed.qualitative_comments,
            xscore=record.xscore,
            legacy_score=record.legacy_score,
            score_delta=record.score_delta,
            experience_category=record.bayesian.category,
            experience_color=record.bayesian.color,
            breakdown=record.breakdown,
            legacy_breakdown=record.legacy_breakdown,
            smoothing_info=record.smoothing_info,
            raw_data=record.raw_data,
            admin_portal_link=record.admin_portal_link,
            calculation_details=record.calculation_details,
        )


class ExperienceScoreResponse(BaseModel):
    id: int
    bayesian: BayesianExperienceScore
    legacy: ExperienceScore
    observed: ObservedInputs
    calculation_details: CalculationDetails


class RankedSurvey(BaseModel):
    id: int
    survey_title: Optional[str] = None
    xscore: float
    legacy_score: float
    score_delta: float
    rating_count: int

    @classmethod
    def from_record(cls, record: EnrichedSurveyRecord) -> "RankedSurvey":
        return cls(
            id=record.id,
            survey_title=record.survey.survey_title,
            xscore=record.xscore,
            legacy_score=record.legacy_score,
            score_delta=record.score_delta,
            rating_count=record.raw_data.rating_count,
        )


class SurveyRankings(BaseModel):
    top: list[RankedSurvey]
    bottom: list[RankedSurvey]

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


class SurveyMetadata(BaseModel):
    id: int
    survey_title: Optional[str] = None
    crm_id: Optional[str] = None
    status: Optional[str] = None
    survey_type: Optional[str] = None
    project_id: Optional[int] = None
    recent_project_wave_id: Optional[int] = None
    last_wave_id: Optional[int] = None


class FunnelCounts(BaseModel):
    """Respondent funnel for one survey inside the feedback window."""

    total_users: int = 0
    partial_users: int = 0
    completed_users: int = 0
    wave_screened_out: int = 0
    panel_screened_out: int = 0
    quota_screened_out: int = 0

    @property
    def screened_out(self) -> int:
        return (
            self.wave_screened_out
            + self.panel_screened_out
            + self.quota_screened_out
        )


class RawSurveySignals(BaseModel):
    """Per-survey raw inputs to the experience score composers.

    Missing values coming from the data store are coerced to their neutral
    defaults instead of rejecting the survey.
    """

    survey_id: int
    ratings: list[float] = Field(default_factory=list)
    comments: list[str] = Field(default_factory=list)
    dropoffs: int = 0
    total_attempts: int = 0
    screenouts: int = 0
    screener_question_count: int = 0
    # Per-comment fine sentiment, filled in once per batch by the aggregator
    comment_sentiments: Optional[list[float]] = None

    @field_validator("ratings", "comments", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        if v is None:
            return []
        return [item for item in v if item is not None]

    @field_validator(
        "dropoffs",
        "total_attempts",
        "screenouts",
        "screener_question_count",
        mode="before",
    )
    @classmethod
    def _none_to_zero(cls, v: Any) -> Any:
        return 0 if v is None else v


class GlobalAverages(BaseModel):
    """Population-wide reference statistics for one scoring batch."""

    global_avg_rating: float = 5.5
    global_avg_sentiment: float = 0.0
    global_avg_dropoff_rate: float = 0.0
    global_avg_screenout_rate: float = 0.0
    max_screener_question_count: int = 30
    min_screener_question_count: int = 0
    surveys_with_ratings: int = 0
    surveys_with_comments: int = 0


class DropoffDetails(BaseModel):
    total_users: int = 0
    partial_users: int = 0
    completed_users: int = 0


class ScreenoutDetails(BaseModel):
    total_users: int = 0
    wave_screened_out: int = 0
    panel_screened_out: int = 0
    quota_screened_out: int = 0
    total_screened_out: int = 0


class CalculationDetails(BaseModel):
    dropoff: DropoffDetails
    screenout: ScreenoutDetails


class ObservedInputs(BaseModel):
    """The survey's own unsmoothed inputs, as shown next to its scores."""

    user_rating: float = 0.0
    user_sentiment: float = 0.0
    drop_off_percent: float = 0.0
    screen_out_percent: float = 0.0
    questions_in_screener: int = 0
    qualitative_comments: int = 0


class CommentSentiment(BaseModel):
    text: str
    rating: Optional[int] = None
    completed_date: Optional[str] = None
    sentiment: dict
    rating_sentiment: Optional[str] = None


class ExperienceTrendPoint(BaseModel):
    survey_id: int
    survey_title: Optional[str] = None
    date: str  # YYYY-MM
    total_responses: int
    avg_rating: Optional[float] = None
    positive_responses: int
    negative_responses: int
    user_sentiment: float
    satisfaction_score: Optional[float] = None

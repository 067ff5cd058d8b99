from __future__ import annotations

from datetime import date, datetime
from enum import IntEnum
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class NpsSource(IntEnum):
    """``users_wave_details.source``: where the respondent entered from."""

    DASHBOARD = 1
    SURVEY_SUGGESTER = 2
    LOOP = 3
    EMAIL = 4
    FAX = 5
    SNAILMAIL = 6
    WEB_PUSH = 7
    PUSH = 8
    NOTIFICATION_PAGE = 9
    DASHBOARD_EMAIL = 10
    INTERSURVEY_TRANSITION = 11
    POST_SURVEY_MODULE = 12
    NON_LITE_INTERSURVEY_TRANSITION = 13
    SMS = 14


class NpsObservation(BaseModel):
    """One NPS answer joined to the respondent's previous user wave.

    ``status`` and ``survey_type`` describe that previous wave, which decides
    whether the answer counts as a post-complete or a post-screen-out rating.
    """

    previous_user_wave_id: int
    user_id: int
    status: int
    completed_date: Optional[datetime] = None
    nps_user_wave_id: int
    nps_start_date: Optional[datetime] = None
    nps_completed_date: Optional[datetime] = None
    rating: int
    source: Optional[int] = None
    survey_type: Optional[str] = None


class NpsMonthBucket(BaseModel):
    month: str  # YYYY-MM
    average_nps: float = 0.0
    response_count: int = 0
    promoter_count: int = 0
    detractor_count: int = 0
    passive_count: int = 0
    nps_score: Optional[int] = None


class NpsStatusBreakdown(BaseModel):
    """Monthly buckets for answers after a complete and after a screen-out."""

    complete: list[NpsMonthBucket] = Field(default_factory=list)
    screenout: list[NpsMonthBucket] = Field(default_factory=list)


class NpsMonthlySummary(BaseModel):
    year: int
    month: int
    total_response_count: int = 0
    promoter_count: int = 0
    detractor_count: int = 0
    passive_count: int = 0
    nps_score: Optional[int] = None

    @property
    def first_day(self) -> date:
        return date(self.year, self.month, 1)


class NpsTimeSeries(BaseModel):
    overall: list[NpsMonthlySummary] = Field(default_factory=list)
    dashboard: list[NpsMonthlySummary] = Field(default_factory=list)
    post_survey: list[NpsMonthlySummary] = Field(default_factory=list)
    completes: list[NpsMonthBucket] = Field(default_factory=list)
    screenouts: list[NpsMonthBucket] = Field(default_factory=list)


class NpsSummary(BaseModel):
    month: Optional[str] = None
    current_nps: int = 0
    total_responses: int = 0
    promoters: int = 0
    detractors: int = 0
    passives: int = 0


class CalendarMonth(BaseModel):
    month: int = Field(ge=1, le=12)
    year: int = Field(ge=1970)


class NpsDateRange(BaseModel):
    """Window for the time series.

    ``custom`` takes ``from``/``to`` either as ISO dates or as
    ``{"month": m, "year": y}`` pairs; the month form covers both months
    completely.
    """

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["all", "custom", "last12months"] = "last12months"
    from_: Optional[Union[date, CalendarMonth]] = Field(default=None, alias="from")
    to: Optional[Union[date, CalendarMonth]] = None

"""
Panel Health — Surveys API

Read-only views over the scored survey batch:
  - GET  /                               all surveys with XScore and legacy score
  - GET  /rankings                       best / worst surveys by XScore
  - GET  /metrics/experience             monthly rating trend
  - POST /display-score                  dashboard composite for given inputs
  - POST /cache/invalidate               drop the cached batch
  - GET  /{survey_id}                    one scored survey
  - GET  /{survey_id}/experience-score   both scores with full diagnostics
  - GET  /{survey_id}/comments/sentiment latest comments with sentiment
"""

from __future__ import annotations

from typing import Literal, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.schemas.experience import (
    DisplayScore,
    EnrichedSurveyRecord,
    ExperienceScoreResponse,
    RankedSurvey,
    SurveyRankings,
    SurveyScoreResponse,
)
from app.schemas.survey import CommentSentiment, ExperienceTrendPoint, ObservedInputs
from app.services.contribution_service import calculate_display_score
from app.services.survey_data_service import SurveyDataUnavailableError
from app.services.survey_scoring_service import SurveyScoringService

logger = structlog.get_logger("panel_health.api.surveys")

router = APIRouter()

DateRange = Literal["last_30_days", "last_90_days", "last_6_months", "last_12_months"]

# ── Service singleton ─────────────────────────────────────────────────────────

_scoring_service: SurveyScoringService | None = None


def get_scoring_service() -> SurveyScoringService:
    global _scoring_service
    if _scoring_service is None:
        _scoring_service = SurveyScoringService()
    return _scoring_service


# ── Helpers ──────────────────────────────────────────────────────────────────

def _unavailable(exc: SurveyDataUnavailableError) -> HTTPException:
    logger.error("survey_data_unavailable", operation=exc.operation, error=str(exc))
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Survey data is temporarily unavailable.",
    )


# ──────────────────────────────────────────────────────────────────────────────
# Collection endpoints
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "",
    response_model=list[SurveyScoreResponse],
    summary="All active surveys with experience scores",
)
async def list_surveys(
    service: SurveyScoringService = Depends(get_scoring_service),
) -> list[SurveyScoreResponse]:
    try:
        records = await service.get_all_scored()
    except SurveyDataUnavailableError as exc:
        raise _unavailable(exc) from exc

    return [SurveyScoreResponse.from_record(r) for r in records]


@router.get(
    "/rankings",
    response_model=SurveyRankings,
    summary="Highest and lowest XScore surveys",
)
async def survey_rankings(
    limit: int = Query(5, ge=1, le=100),
    service: SurveyScoringService = Depends(get_scoring_service),
) -> SurveyRankings:
    try:
        records = await service.get_all_scored()
    except SurveyDataUnavailableError as exc:
        raise _unavailable(exc) from exc

    ranking = service.rank_surveys(records, limit=limit)
    return SurveyRankings(
        top=[RankedSurvey.from_record(r) for r in ranking["top"]],
        bottom=[RankedSurvey.from_record(r) for r in ranking["bottom"]],
    )


@router.get(
    "/metrics/experience",
    response_model=list[ExperienceTrendPoint],
    summary="Monthly survey experience trend",
)
async def experience_metrics(
    date_range: Optional[DateRange] = Query(None, alias="dateRange"),
    survey_id: Optional[int] = Query(None, alias="surveyId"),
    service: SurveyScoringService = Depends(get_scoring_service),
) -> list[ExperienceTrendPoint]:
    try:
        return await service.get_experience_trend(date_range, survey_id)
    except SurveyDataUnavailableError as exc:
        raise _unavailable(exc) from exc


@router.post(
    "/display-score",
    response_model=DisplayScore,
    summary="Dashboard composite score for observed inputs",
)
async def display_score(inputs: ObservedInputs) -> DisplayScore:
    return calculate_display_score(
        user_rating=inputs.user_rating,
        user_sentiment=inputs.user_sentiment,
        dropoff_pct=inputs.drop_off_percent,
        screenout_pct=inputs.screen_out_percent,
        screener_question_count=inputs.questions_in_screener,
    )


@router.post(
    "/cache/invalidate",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Discard the cached scored batch",
)
async def invalidate_cache(
    service: SurveyScoringService = Depends(get_scoring_service),
) -> None:
    service.invalidate_cache()


# ──────────────────────────────────────────────────────────────────────────────
# Per-survey endpoints
# ──────────────────────────────────────────────────────────────────────────────

async def _load_record(
    survey_id: int, service: SurveyScoringService
) -> EnrichedSurveyRecord:
    try:
        return await service.get_scored_survey(survey_id)
    except SurveyDataUnavailableError as exc:
        raise _unavailable(exc) from exc
    except LookupError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Survey {survey_id} not found.",
        )


@router.get(
    "/{survey_id}",
    response_model=SurveyScoreResponse,
    summary="One survey with experience scores",
)
async def get_survey(
    survey_id: int,
    service: SurveyScoringService = Depends(get_scoring_service),
) -> SurveyScoreResponse:
    record = await _load_record(survey_id, service)
    return SurveyScoreResponse.from_record(record)


@router.get(
    "/{survey_id}/experience-score",
    response_model=ExperienceScoreResponse,
    summary="Bayesian and legacy scores with diagnostics",
)
async def get_experience_score(
    survey_id: int,
    service: SurveyScoringService = Depends(get_scoring_service),
) -> ExperienceScoreResponse:
    log = logger.bind(survey_id=survey_id)
    record = await _load_record(survey_id, service)
    log.info("experience_score_served", xscore=record.xscore)

    return ExperienceScoreResponse(
        id=record.id,
        bayesian=record.bayesian,
        legacy=record.legacy,
        observed=record.observed,
        calculation_details=record.calculation_details,
    )


@router.get(
    "/{survey_id}/comments/sentiment",
    response_model=list[CommentSentiment],
    summary="Latest comments with sentiment",
)
async def get_comment_sentiment(
    survey_id: int,
    limit: Optional[int] = Query(None, ge=1, le=50),
    service: SurveyScoringService = Depends(get_scoring_service),
) -> list[CommentSentiment]:
    try:
        return await service.get_comments_with_sentiment(survey_id, limit)
    except SurveyDataUnavailableError as exc:
        raise _unavailable(exc) from exc

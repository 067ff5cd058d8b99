"""
Panel Health — NPS API

  - GET  /time-series       monthly NPS per source, complete / screen-out split
  - GET  /summary           current month's NPS
  - GET  /detailed          normalised complete / screen-out buckets
  - POST /cache/invalidate  drop the cached NPS answers

``dateRange`` is a JSON object, e.g. ``{"type": "all"}`` or
``{"type": "custom", "from": {"month": 1, "year": 2026},
"to": {"month": 6, "year": 2026}}``.  Anything unparseable means the last
twelve months.
"""

from __future__ import annotations

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import ValidationError

from app.schemas.nps import NpsDateRange, NpsStatusBreakdown, NpsSummary, NpsTimeSeries
from app.services.nps_service import NpsService
from app.services.survey_data_service import SurveyDataUnavailableError

logger = structlog.get_logger("panel_health.api.nps")

router = APIRouter()

# ── Service singleton ─────────────────────────────────────────────────────────

_nps_service: NpsService | None = None


def get_nps_service() -> NpsService:
    global _nps_service
    if _nps_service is None:
        _nps_service = NpsService()
    return _nps_service


# ── Helpers ──────────────────────────────────────────────────────────────────

def _unavailable(exc: SurveyDataUnavailableError) -> HTTPException:
    logger.error("nps_data_unavailable", operation=exc.operation, error=str(exc))
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="NPS data is temporarily unavailable.",
    )


def parse_date_range(raw: Optional[str]) -> NpsDateRange:
    if not raw:
        return NpsDateRange()
    try:
        return NpsDateRange.model_validate_json(raw)
    except ValidationError:
        logger.warning("nps_date_range_unparseable", date_range=raw)
        return NpsDateRange()


# ──────────────────────────────────────────────────────────────────────────────
# Endpoints
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/time-series",
    response_model=NpsTimeSeries,
    summary="Monthly NPS by source",
)
async def nps_time_series(
    date_range: Optional[str] = Query(None, alias="dateRange"),
    service: NpsService = Depends(get_nps_service),
) -> NpsTimeSeries:
    try:
        return await service.get_time_series(parse_date_range(date_range))
    except SurveyDataUnavailableError as exc:
        raise _unavailable(exc) from exc


@router.get("/summary", response_model=NpsSummary, summary="Current month NPS")
async def nps_summary(
    service: NpsService = Depends(get_nps_service),
) -> NpsSummary:
    try:
        return await service.get_summary()
    except SurveyDataUnavailableError as exc:
        raise _unavailable(exc) from exc


@router.get(
    "/detailed",
    response_model=NpsStatusBreakdown,
    summary="Complete and screen-out NPS buckets",
)
async def nps_detailed(
    source: Optional[str] = Query(None, description="dashboard, loop or post-survey"),
    service: NpsService = Depends(get_nps_service),
) -> NpsStatusBreakdown:
    try:
        return await service.get_detailed(source)
    except SurveyDataUnavailableError as exc:
        raise _unavailable(exc) from exc


@router.post(
    "/cache/invalidate",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Discard the cached NPS answers",
)
async def invalidate_nps_cache(
    service: NpsService = Depends(get_nps_service),
) -> None:
    service.invalidate_cache()

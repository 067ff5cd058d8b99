"""
Panel Health — Main API Router

Aggregates all sub-routers under a single prefix so that ``app.main``
can mount the entire API surface with one ``include_router`` call.
"""

from fastapi import APIRouter

from app.api import nps, surveys

router = APIRouter()

router.include_router(surveys.router, prefix="/surveys", tags=["Surveys"])
router.include_router(nps.router, prefix="/nps", tags=["NPS"])

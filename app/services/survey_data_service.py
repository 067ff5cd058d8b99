"""
Panel Health — read-only data access for the scoring engine.

Every fetch opens its own ``AsyncSession`` so the aggregation layer can run
them concurrently with ``asyncio.gather``.  Database and connection failures
are re-raised as ``SurveyDataUnavailableError``; callers never see raw
SQLAlchemy or driver exceptions.

Respondent activity only counts when the respondent started inside the
feedback window (``FEEDBACK_WINDOW_DAYS``, 30 by default).  NPS answers are
read from the configured NPS wave regardless of that window.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Any, Callable, Optional

import structlog
from sqlalchemy import and_, case, func, literal_column, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import async_session_factory
from app.models import (
    LimeQuestion,
    LimeQuestionAttribute,
    PanelUser,
    ProjectWave,
    ProjectWaveWave,
    Survey,
    SurveyLanguageSetting,
    SurveyResponse,
    UserWave,
    UserWaveDetail,
    Wave,
)
from app.models.survey import (
    PANEL_MEMBER,
    USER_WAVE_COMPLETED,
    USER_WAVE_COMPLETED_SECONDARY,
    USER_WAVE_PANEL_SCREENED_OUT,
    USER_WAVE_PARTIAL,
    USER_WAVE_QUOTA_SCREENED_OUT,
    USER_WAVE_WAVE_SCREENED_OUT,
    WAVE_ACTIVE,
)
from app.schemas.nps import NpsObservation
from app.schemas.survey import FunnelCounts, SurveyMetadata

logger = structlog.get_logger("panel_health.survey_data_service")

SCREENER_ATTRIBUTES: tuple[str, ...] = (
    "screener_failure",
    "panel_screener_failure",
    "wave_prescreener",
)

# Look-back per trend range, in days
TREND_DATE_RANGES: dict[str, int] = {
    "last_30_days": 30,
    "last_90_days": 90,
    "last_6_months": 182,
    "last_12_months": 365,
}

# Feedback ratings at or above / at or below these count as positive / negative
POSITIVE_RATING_MIN = 5
NEGATIVE_RATING_MAX = 3

# Earlier waves an NPS answer can follow: completes and screen-outs
NPS_PRIOR_WAVE_STATUSES: tuple[int, ...] = (
    USER_WAVE_COMPLETED,
    USER_WAVE_WAVE_SCREENED_OUT,
    USER_WAVE_PANEL_SCREENED_OUT,
    USER_WAVE_QUOTA_SCREENED_OUT,
    USER_WAVE_COMPLETED_SECONDARY,
)


class SurveyDataUnavailableError(Exception):
    """The panel database could not be read."""

    def __init__(self, operation: str, detail: str = "") -> None:
        self.operation = operation
        self.detail = detail
        message = f"Survey data unavailable during {operation}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


def _count_status(status: int) -> Any:
    return func.sum(case((UserWave.status == status, 1), else_=0))


class SurveyDataService:
    """Fetches raw survey inputs from the panel database."""

    def __init__(
        self,
        session_factory: Optional[Callable[[], AsyncSession]] = None,
        feedback_window_days: Optional[int] = None,
        nps_wave_id: Optional[int] = None,
        nps_question_id: Optional[str] = None,
    ) -> None:
        settings = get_settings()
        self._session_factory = session_factory or async_session_factory
        self.feedback_window_days: int = (
            feedback_window_days
            if feedback_window_days is not None
            else settings.FEEDBACK_WINDOW_DAYS
        )
        self.nps_wave_id: int = (
            nps_wave_id if nps_wave_id is not None else settings.NPS_WAVE_ID
        )
        self.nps_question_id: str = nps_question_id or settings.NPS_QUESTION_ID

    # ── Batch fetches ─────────────────────────────────────────────────────

    async def fetch_eligible_surveys(self) -> list[SurveyMetadata]:
        """Active surveys, newest first, with their latest live wave and
        most recent project wave."""
        surveys_stmt = (
            select(
                Survey.id,
                Survey.status,
                Survey.type,
                SurveyLanguageSetting.surveyls_title,
            )
            .outerjoin(
                SurveyLanguageSetting,
                SurveyLanguageSetting.surveyls_survey_id == Survey.id,
            )
            .where(Survey.active == 1)
            .order_by(Survey.id.desc())
        )
        last_wave_stmt = (
            select(Wave.survey_id, func.max(Wave.id))
            .where(Wave.status == WAVE_ACTIVE)
            .group_by(Wave.survey_id)
        )
        project_wave_stmt = (
            select(
                Wave.survey_id,
                ProjectWave.id,
                ProjectWave.project_id,
                ProjectWave.crm_element_id,
            )
            .join(ProjectWaveWave, ProjectWaveWave.wave_id == Wave.id)
            .join(ProjectWave, ProjectWave.id == ProjectWaveWave.project_wave_id)
            .where(Wave.status == WAVE_ACTIVE)
            .order_by(Wave.survey_id, ProjectWave.id.desc())
        )

        survey_rows, last_wave_rows, project_wave_rows = await self._execute(
            "fetch_eligible_surveys",
            surveys_stmt,
            last_wave_stmt,
            project_wave_stmt,
        )

        last_wave = {survey_id: wave_id for survey_id, wave_id in last_wave_rows}

        # First row per survey is its highest project wave id
        recent_project_wave: dict[int, tuple[int, int, Optional[str]]] = {}
        for survey_id, pw_id, project_id, crm_id in project_wave_rows:
            recent_project_wave.setdefault(survey_id, (pw_id, project_id, crm_id))

        surveys: list[SurveyMetadata] = []
        seen: set[int] = set()
        for survey_id, status, survey_type, title in survey_rows:
            # One row per language setting; keep the first
            if survey_id in seen:
                continue
            seen.add(survey_id)

            pw_id, project_id, crm_id = recent_project_wave.get(
                survey_id, (None, None, None)
            )
            surveys.append(
                SurveyMetadata(
                    id=survey_id,
                    survey_title=title,
                    crm_id=crm_id,
                    status=status,
                    survey_type=survey_type,
                    project_id=project_id,
                    recent_project_wave_id=pw_id,
                    last_wave_id=last_wave.get(survey_id),
                )
            )

        logger.info("eligible_surveys_fetched", surveys=len(surveys))
        return surveys

    async def fetch_rating_observations(self) -> dict[int, list[float]]:
        """Valid (> 0) feedback ratings per survey inside the window."""
        stmt = (
            select(Wave.survey_id, UserWaveDetail.feedback_rating)
            .select_from(Survey)
            .join(Wave, Wave.survey_id == Survey.id)
            .join(UserWave, UserWave.wave_id == Wave.id)
            .join(UserWaveDetail, UserWaveDetail.id == UserWave.id)
            .where(
                Survey.active == 1,
                UserWave.start_date.is_not(None),
                UserWave.start_date >= self._window_start(),
                UserWaveDetail.feedback_rating > 0,
            )
        )
        (rows,) = await self._execute("fetch_rating_observations", stmt)

        ratings: dict[int, list[float]] = defaultdict(list)
        for survey_id, rating in rows:
            ratings[survey_id].append(float(rating))

        logger.info(
            "rating_observations_fetched",
            surveys=len(ratings),
            ratings=sum(len(v) for v in ratings.values()),
        )
        return dict(ratings)

    async def fetch_comment_observations(self) -> dict[int, list[str]]:
        """Non-empty feedback comments on live waves of feedback-enabled
        surveys inside the window."""
        stmt = (
            select(Wave.survey_id, UserWaveDetail.feedback_comment)
            .select_from(Survey)
            .join(
                Wave,
                and_(Wave.survey_id == Survey.id, Wave.status == WAVE_ACTIVE),
            )
            .join(UserWave, UserWave.wave_id == Wave.id)
            .join(UserWaveDetail, UserWaveDetail.id == UserWave.id)
            .where(
                Survey.active == 1,
                Survey.enable_feedback == 1,
                UserWave.start_date.is_not(None),
                UserWave.start_date >= self._window_start(),
                UserWaveDetail.feedback_comment.is_not(None),
                UserWaveDetail.feedback_comment != "",
            )
            .order_by(Wave.survey_id)
        )
        (rows,) = await self._execute("fetch_comment_observations", stmt)

        comments: dict[int, list[str]] = defaultdict(list)
        for survey_id, comment in rows:
            comments[survey_id].append(comment)

        logger.info(
            "comment_observations_fetched",
            surveys=len(comments),
            comments=sum(len(v) for v in comments.values()),
        )
        return dict(comments)

    async def fetch_funnel_counts(self) -> dict[int, FunnelCounts]:
        """Respondent status counts per survey inside the window."""
        stmt = (
            select(
                Wave.survey_id,
                func.count(UserWave.id),
                _count_status(USER_WAVE_PARTIAL),
                _count_status(USER_WAVE_COMPLETED),
                _count_status(USER_WAVE_WAVE_SCREENED_OUT),
                _count_status(USER_WAVE_PANEL_SCREENED_OUT),
                _count_status(USER_WAVE_QUOTA_SCREENED_OUT),
            )
            .select_from(Survey)
            .join(Wave, Wave.survey_id == Survey.id)
            .join(UserWave, UserWave.wave_id == Wave.id)
            .where(
                Survey.active == 1,
                UserWave.start_date.is_not(None),
                UserWave.start_date >= self._window_start(),
            )
            .group_by(Wave.survey_id)
        )
        (rows,) = await self._execute("fetch_funnel_counts", stmt)

        funnels: dict[int, FunnelCounts] = {}
        for survey_id, total, partial, completed, wave_so, panel_so, quota_so in rows:
            funnels[survey_id] = FunnelCounts(
                total_users=total or 0,
                partial_users=partial or 0,
                completed_users=completed or 0,
                wave_screened_out=wave_so or 0,
                panel_screened_out=panel_so or 0,
                quota_screened_out=quota_so or 0,
            )

        logger.info("funnel_counts_fetched", surveys=len(funnels))
        return funnels

    async def fetch_screener_question_counts(self) -> dict[int, int]:
        """Top-level questions in every group that holds a screener question."""
        screener_groups = (
            select(LimeQuestion.sid, LimeQuestion.gid)
            .join(
                LimeQuestionAttribute,
                LimeQuestionAttribute.qid == LimeQuestion.qid,
            )
            .where(
                LimeQuestionAttribute.attribute.in_(SCREENER_ATTRIBUTES),
                LimeQuestion.parent_qid == 0,
            )
            .distinct()
            .subquery()
        )
        stmt = (
            select(LimeQuestion.sid, func.count(func.distinct(LimeQuestion.qid)))
            .join(
                screener_groups,
                and_(
                    LimeQuestion.sid == screener_groups.c.sid,
                    LimeQuestion.gid == screener_groups.c.gid,
                ),
            )
            .join(Survey, Survey.id == LimeQuestion.sid)
            .where(Survey.active == 1, LimeQuestion.parent_qid == 0)
            .group_by(LimeQuestion.sid)
        )
        (rows,) = await self._execute("fetch_screener_question_counts", stmt)

        counts = {survey_id: int(count or 0) for survey_id, count in rows}
        logger.info("screener_question_counts_fetched", surveys=len(counts))
        return counts

    # ── Per-survey fetches ────────────────────────────────────────────────

    async def fetch_recent_comments(
        self, survey_id: int, limit: int = 5
    ) -> list[dict[str, Any]]:
        """Latest rated comments for one survey, newest first."""
        stmt = (
            select(
                UserWaveDetail.feedback_comment,
                UserWaveDetail.feedback_rating,
                UserWave.completed_date,
            )
            .select_from(Survey)
            .join(
                Wave,
                and_(Wave.survey_id == Survey.id, Wave.status == WAVE_ACTIVE),
            )
            .join(UserWave, UserWave.wave_id == Wave.id)
            .join(UserWaveDetail, UserWaveDetail.id == UserWave.id)
            .where(
                Survey.id == survey_id,
                Survey.enable_feedback == 1,
                UserWave.start_date.is_not(None),
                UserWave.start_date >= self._window_start(),
                UserWaveDetail.feedback_rating > 0,
                UserWaveDetail.feedback_comment.is_not(None),
                UserWaveDetail.feedback_comment != "",
            )
            .order_by(UserWave.completed_date.desc())
            .limit(limit)
        )
        (rows,) = await self._execute("fetch_recent_comments", stmt)

        return [
            {
                "text": comment,
                "rating": rating,
                "completed_date": completed.isoformat() if completed else None,
            }
            for comment, rating, completed in rows
            if comment
        ]

    async def fetch_experience_trend(
        self,
        date_range: Optional[str] = None,
        survey_id: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """Monthly rating roll-up per survey, newest month first.

        Raises
        ------
        ValueError
            If ``date_range`` is not one of ``TREND_DATE_RANGES``.
        """
        if date_range is not None and date_range not in TREND_DATE_RANGES:
            raise ValueError(
                f"Unknown date range {date_range!r}; expected one of "
                f"{sorted(TREND_DATE_RANGES)}"
            )

        # Format stays inline; GROUP BY must repeat the SELECT expression exactly
        month = func.to_char(UserWave.completed_date, literal_column("'YYYY-MM'"))
        stmt = (
            select(
                Survey.id,
                func.max(SurveyLanguageSetting.surveyls_title),
                month.label("month"),
                func.count(UserWaveDetail.id),
                func.avg(UserWaveDetail.feedback_rating),
                func.sum(
                    case(
                        (UserWaveDetail.feedback_rating >= POSITIVE_RATING_MIN, 1),
                        else_=0,
                    )
                ),
                func.sum(
                    case(
                        (UserWaveDetail.feedback_rating <= NEGATIVE_RATING_MAX, 1),
                        else_=0,
                    )
                ),
            )
            .outerjoin(
                SurveyLanguageSetting,
                SurveyLanguageSetting.surveyls_survey_id == Survey.id,
            )
            .join(Wave, Wave.survey_id == Survey.id)
            .join(UserWave, UserWave.wave_id == Wave.id)
            .join(UserWaveDetail, UserWaveDetail.id == UserWave.id)
            .where(
                Survey.enable_feedback == 1,
                UserWaveDetail.feedback_rating > 0,
            )
        )
        if survey_id is not None:
            stmt = stmt.where(Survey.id == survey_id)
        if date_range is not None:
            since = datetime.now() - timedelta(days=TREND_DATE_RANGES[date_range])
            stmt = stmt.where(UserWave.completed_date >= since)

        stmt = stmt.group_by(Survey.id, month).order_by(month.desc())

        (rows,) = await self._execute("fetch_experience_trend", stmt)

        return [
            {
                "survey_id": sid,
                "survey_title": title,
                "date": month_label,
                "total_responses": int(total or 0),
                "avg_rating": float(avg) if avg is not None else None,
                "positive_responses": int(positive or 0),
                "negative_responses": int(negative or 0),
            }
            for sid, title, month_label, total, avg, positive, negative in rows
        ]

    # ── NPS ───────────────────────────────────────────────────────────────

    async def fetch_nps_observations(self) -> list[NpsObservation]:
        """Every NPS answer with the respondent's latest earlier user wave,
        newest answer first.

        An answer only counts when the respondent is a panel member and the
        NPS wave was completed; the earlier wave must have ended in a
        complete or a screen-out before the NPS wave started.
        """
        nps = (
            select(
                UserWave.id.label("id"),
                UserWave.user_id.label("user_id"),
                UserWave.start_date.label("start_date"),
                UserWave.completed_date.label("completed_date"),
                UserWaveDetail.source.label("source"),
                SurveyResponse.responses[self.nps_question_id]
                .as_integer()
                .label("rating"),
            )
            .join(UserWaveDetail, UserWaveDetail.id == UserWave.id)
            .join(SurveyResponse, SurveyResponse.id == UserWave.id)
            .join(PanelUser, PanelUser.id == UserWave.user_id)
            .where(
                UserWave.wave_id == self.nps_wave_id,
                UserWave.status == USER_WAVE_COMPLETED,
                PanelUser.type == PANEL_MEMBER,
            )
            .subquery("nps")
        )
        ranked = (
            select(
                UserWave.id.label("previous_user_wave_id"),
                UserWave.user_id.label("user_id"),
                UserWave.status.label("status"),
                UserWave.completed_date.label("completed_date"),
                nps.c.id.label("nps_user_wave_id"),
                nps.c.start_date.label("nps_start_date"),
                nps.c.completed_date.label("nps_completed_date"),
                nps.c.rating.label("rating"),
                nps.c.source.label("source"),
                Survey.type.label("survey_type"),
                func.row_number()
                .over(
                    partition_by=(UserWave.user_id, nps.c.id),
                    order_by=UserWave.completed_date.desc(),
                )
                .label("rank_value"),
            )
            .join(Wave, Wave.id == UserWave.wave_id)
            .join(Survey, Survey.id == Wave.survey_id)
            .join(
                nps,
                and_(
                    nps.c.user_id == UserWave.user_id,
                    UserWave.completed_date < nps.c.start_date,
                ),
            )
            .where(UserWave.status.in_(NPS_PRIOR_WAVE_STATUSES))
            .subquery("ranked")
        )
        stmt = (
            select(
                ranked.c.previous_user_wave_id,
                ranked.c.user_id,
                ranked.c.status,
                ranked.c.completed_date,
                ranked.c.nps_user_wave_id,
                ranked.c.nps_start_date,
                ranked.c.nps_completed_date,
                ranked.c.rating,
                ranked.c.source,
                ranked.c.survey_type,
            )
            .where(ranked.c.rank_value == 1, ranked.c.rating.is_not(None))
            .order_by(ranked.c.nps_completed_date.desc())
        )
        (rows,) = await self._execute("fetch_nps_observations", stmt)

        observations = [
            NpsObservation(
                previous_user_wave_id=prev_id,
                user_id=user_id,
                status=wave_status,
                completed_date=completed,
                nps_user_wave_id=nps_id,
                nps_start_date=nps_start,
                nps_completed_date=nps_completed,
                rating=int(rating),
                source=source,
                survey_type=None if survey_type is None else str(survey_type),
            )
            for (
                prev_id,
                user_id,
                wave_status,
                completed,
                nps_id,
                nps_start,
                nps_completed,
                rating,
                source,
                survey_type,
            ) in rows
        ]
        logger.info("nps_observations_fetched", observations=len(observations))
        return observations

    # ── Internals ─────────────────────────────────────────────────────────

    def _window_start(self) -> datetime:
        today = datetime.combine(date.today(), time.min)
        return today - timedelta(days=self.feedback_window_days)

    async def _execute(self, operation: str, *statements: Any) -> list[list[Any]]:
        """Run ``statements`` on one fresh session; return each one's rows."""
        log = logger.bind(operation=operation)
        try:
            async with self._session_factory() as session:
                results = []
                for stmt in statements:
                    result = await session.execute(stmt)
                    results.append(list(result.all()))
                return results
        except (SQLAlchemyError, OSError) as exc:
            log.error("survey_data_fetch_failed", error=str(exc))
            raise SurveyDataUnavailableError(operation, str(exc)) from exc

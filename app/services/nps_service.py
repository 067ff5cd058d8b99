"""
Panel Health — Net Promoter Score tracking.

Answers to the panel NPS question are grouped by the month they were given
and by how the respondent's previous survey ended: a complete or a
screen-out.  Ratings 9-10 are promoters, 7-8 passives, 0-6 detractors, and

    NPS = round((promoters - detractors) / total * 100)

Lite surveys inflate the completion rate, so each month is rescaled by the
incidence rate (completes / (completes + screen-outs)) measured on non-lite
surveys only:

  complete    count * incidence_without_lite / 100
              when incidence_without_lite <= incidence_with_lite
  screen-out  count * (100 - incidence_without_lite) / 100
              when incidence_without_lite >  incidence_with_lite

Promoter, passive and detractor counts are rescaled in proportion.  All
rounding is half-up.  Raw answers are cached for ``NPS_CACHE_TTL_SECONDS``.
"""

from __future__ import annotations

import calendar
import math
from datetime import date
from typing import Iterable, Optional, Protocol, Sequence

import structlog

from app.models.survey import (
    USER_WAVE_COMPLETED,
    USER_WAVE_COMPLETED_SECONDARY,
    USER_WAVE_PANEL_SCREENED_OUT,
    USER_WAVE_QUOTA_SCREENED_OUT,
    USER_WAVE_WAVE_SCREENED_OUT,
)
from app.schemas.nps import (
    CalendarMonth,
    NpsDateRange,
    NpsMonthBucket,
    NpsMonthlySummary,
    NpsObservation,
    NpsSource,
    NpsStatusBreakdown,
    NpsSummary,
    NpsTimeSeries,
)
from app.services.survey_data_service import SurveyDataService
from app.utils.score_cache import ScoreCache, get_nps_cache

logger = structlog.get_logger("panel_health.nps_service")

Window = Optional[tuple[date, date]]


class NpsDataSource(Protocol):
    async def fetch_nps_observations(self) -> list[NpsObservation]: ...


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def nps_score(promoters: int, detractors: int, total: int) -> int:
    """Whole-number NPS in [-100, 100]; 0 when there are no answers."""
    if total <= 0:
        return 0
    return _round_half_up((promoters - detractors) / total * 100)


def _first_day(month_label: str) -> date:
    year, month = month_label.split("-")
    return date(int(year), int(month), 1)


def _months_before(day: date, months: int) -> date:
    index = day.year * 12 + (day.month - 1) - months
    return date(index // 12, index % 12 + 1, 1)


def _in_window(day: date, window: Window) -> bool:
    return window is None or window[0] <= day <= window[1]


class NpsService:
    """Monthly NPS by source, split by the outcome of the previous survey."""

    PROMOTER_MIN: int = 9
    PASSIVE_MIN: int = 7

    COMPLETE_STATUSES = frozenset({USER_WAVE_COMPLETED, USER_WAVE_COMPLETED_SECONDARY})
    SCREENOUT_STATUSES = frozenset(
        {
            USER_WAVE_WAVE_SCREENED_OUT,
            USER_WAVE_PANEL_SCREENED_OUT,
            USER_WAVE_QUOTA_SCREENED_OUT,
        }
    )

    # surveys.type codes of full-length surveys
    NON_LITE_SURVEY_TYPES = frozenset({"0", "1", "2", "6", "8"})

    ALL_SOURCES: tuple[NpsSource, ...] = (
        NpsSource.DASHBOARD,
        NpsSource.LOOP,
        NpsSource.POST_SURVEY_MODULE,
    )
    SOURCE_FILTERS: dict[str, tuple[NpsSource, ...]] = {
        "dashboard": (NpsSource.DASHBOARD,),
        "loop": (NpsSource.LOOP,),
        "post-survey": (NpsSource.POST_SURVEY_MODULE,),
    }

    DEFAULT_WINDOW_MONTHS: int = 12

    def __init__(
        self,
        data_source: Optional[NpsDataSource] = None,
        cache: Optional[ScoreCache] = None,
    ) -> None:
        self.data_source: NpsDataSource = data_source or SurveyDataService()
        self.cache: ScoreCache = cache if cache is not None else get_nps_cache()

    # ── Raw answers ───────────────────────────────────────────────────────

    async def get_observations(self) -> list[NpsObservation]:
        """All NPS answers, served from the cache while it is fresh.

        Raises
        ------
        SurveyDataUnavailableError
            If the answers cannot be read; the cache is left as it was.
        """
        cached = self.cache.get()
        if cached is not None:
            logger.info("nps_cache_hit", observations=len(cached))
            return cached

        observations = await self.data_source.fetch_nps_observations()
        self.cache.set(observations)
        return observations

    def invalidate_cache(self) -> None:
        self.cache.invalidate()

    # ── Views ─────────────────────────────────────────────────────────────

    async def get_time_series(
        self,
        date_range: Optional[NpsDateRange] = None,
        today: Optional[date] = None,
    ) -> NpsTimeSeries:
        """Monthly NPS for all sources, dashboard and post-survey, plus the
        post-survey complete / screen-out buckets, newest month first."""
        date_range = date_range or NpsDateRange()
        today = today or date.today()

        observations = await self.get_observations()
        if not observations:
            logger.info("nps_time_series_empty")
            return NpsTimeSeries()

        window = self.resolve_window(date_range, today)
        post_survey = self.build_breakdown(
            observations, (NpsSource.POST_SURVEY_MODULE,)
        )

        series = NpsTimeSeries(
            overall=self._scored_months(
                self.build_breakdown(observations, self.ALL_SOURCES), window
            ),
            dashboard=self._scored_months(
                self.build_breakdown(observations, (NpsSource.DASHBOARD,)), window
            ),
            post_survey=self._scored_months(post_survey, window),
            completes=self._scored_buckets(post_survey.complete, window),
            screenouts=self._scored_buckets(post_survey.screenout, window),
        )
        logger.info(
            "nps_time_series_built",
            range_type=date_range.type,
            months=len(series.overall),
        )
        return series

    async def get_summary(self, today: Optional[date] = None) -> NpsSummary:
        """NPS for the current month, or the latest month with answers."""
        today = today or date.today()
        summaries = self.summarize(
            self.build_breakdown(await self.get_observations(), self.ALL_SOURCES)
        )
        if not summaries:
            return NpsSummary()

        current = next(
            (s for s in summaries if (s.year, s.month) == (today.year, today.month)),
            summaries[0],
        )
        total = current.promoter_count + current.detractor_count + current.passive_count
        return NpsSummary(
            month=f"{current.year:04d}-{current.month:02d}",
            current_nps=nps_score(current.promoter_count, current.detractor_count, total),
            total_responses=current.total_response_count,
            promoters=current.promoter_count,
            detractors=current.detractor_count,
            passives=current.passive_count,
        )

    async def get_detailed(self, source: Optional[str] = None) -> NpsStatusBreakdown:
        """Normalised complete / screen-out buckets for one source filter."""
        return self.build_breakdown(
            await self.get_observations(), self.sources_for(source)
        )

    # ── Computation ───────────────────────────────────────────────────────

    @classmethod
    def sources_for(cls, source: Optional[str]) -> tuple[NpsSource, ...]:
        """Map ``dashboard`` / ``loop`` / ``post-survey`` to source codes.

        Anything else (including ``None``) selects all three.
        """
        if source is None:
            return cls.ALL_SOURCES
        sources = cls.SOURCE_FILTERS.get(source)
        if sources is None:
            logger.warning("nps_unknown_source", source=source)
            return cls.ALL_SOURCES
        return sources

    @classmethod
    def categorize_rating(cls, rating: int) -> str:
        if rating >= cls.PROMOTER_MIN:
            return "promoter"
        if rating >= cls.PASSIVE_MIN:
            return "passive"
        return "detractor"

    @classmethod
    def group_by_month(
        cls, observations: Iterable[NpsObservation]
    ) -> list[NpsMonthBucket]:
        """Bucket answers by the month the NPS wave was completed."""
        groups: dict[str, dict[str, int]] = {}
        for obs in observations:
            if obs.nps_completed_date is None:
                continue
            month = obs.nps_completed_date.strftime("%Y-%m")
            group = groups.setdefault(
                month,
                {
                    "total_rating": 0,
                    "response_count": 0,
                    "promoter": 0,
                    "passive": 0,
                    "detractor": 0,
                },
            )
            group["total_rating"] += obs.rating
            group["response_count"] += 1
            group[cls.categorize_rating(obs.rating)] += 1

        buckets = [
            NpsMonthBucket(
                month=month,
                average_nps=_round_half_up(g["total_rating"] / g["response_count"] * 10)
                / 10,
                response_count=g["response_count"],
                promoter_count=g["promoter"],
                detractor_count=g["detractor"],
                passive_count=g["passive"],
            )
            for month, g in groups.items()
        ]
        buckets.sort(key=lambda b: b.month, reverse=True)
        return buckets

    @classmethod
    def split_by_status(
        cls,
        observations: Iterable[NpsObservation],
        sources: Sequence[int],
    ) -> NpsStatusBreakdown:
        selected = [o for o in observations if o.source in sources]
        return NpsStatusBreakdown(
            complete=cls.group_by_month(
                o for o in selected if o.status in cls.COMPLETE_STATUSES
            ),
            screenout=cls.group_by_month(
                o for o in selected if o.status in cls.SCREENOUT_STATUSES
            ),
        )

    @staticmethod
    def incidence_rates(breakdown: NpsStatusBreakdown) -> dict[str, float]:
        """Completion percentage (2 dp) per month that has completes."""
        screenouts = {b.month: b.response_count for b in breakdown.screenout}
        rates: dict[str, float] = {}
        for bucket in breakdown.complete:
            total = bucket.response_count + screenouts.get(bucket.month, 0)
            rates[bucket.month] = (
                _round_half_up(bucket.response_count / total * 10000) / 100
                if total > 0
                else 0.0
            )
        return rates

    @classmethod
    def normalize(
        cls,
        breakdown: NpsStatusBreakdown,
        rates_with_lite: dict[str, float],
        rates_without_lite: dict[str, float],
    ) -> NpsStatusBreakdown:
        complete = []
        for bucket in breakdown.complete:
            with_lite = rates_with_lite.get(bucket.month, 0.0)
            without_lite = rates_without_lite.get(bucket.month, 0.0)
            count = bucket.response_count
            if without_lite <= with_lite:
                count = _round_half_up(count * without_lite / 100)
            complete.append(cls._rescale(bucket, count))

        screenout = []
        for bucket in breakdown.screenout:
            with_lite = rates_with_lite.get(bucket.month, 0.0)
            without_lite = rates_without_lite.get(bucket.month, 0.0)
            count = bucket.response_count
            if without_lite > with_lite:
                count = _round_half_up(count * (100 - without_lite) / 100)
            screenout.append(cls._rescale(bucket, count))

        return NpsStatusBreakdown(complete=complete, screenout=screenout)

    @classmethod
    def build_breakdown(
        cls,
        observations: Sequence[NpsObservation],
        sources: Sequence[int],
    ) -> NpsStatusBreakdown:
        """Lite-normalised monthly buckets for the given sources."""
        with_lite = cls.split_by_status(observations, sources)
        without_lite = cls.split_by_status(
            (o for o in observations if o.survey_type in cls.NON_LITE_SURVEY_TYPES),
            sources,
        )
        return cls.normalize(
            with_lite,
            cls.incidence_rates(with_lite),
            cls.incidence_rates(without_lite),
        )

    @staticmethod
    def summarize(breakdown: NpsStatusBreakdown) -> list[NpsMonthlySummary]:
        """Complete and screen-out buckets added up per month, newest first."""
        totals: dict[tuple[int, int], NpsMonthlySummary] = {}
        for bucket in [*breakdown.complete, *breakdown.screenout]:
            first = _first_day(bucket.month)
            key = (first.year, first.month)
            summary = totals.setdefault(
                key, NpsMonthlySummary(year=first.year, month=first.month)
            )
            summary.total_response_count += bucket.response_count
            summary.promoter_count += bucket.promoter_count
            summary.detractor_count += bucket.detractor_count
            summary.passive_count += bucket.passive_count

        return [totals[key] for key in sorted(totals, reverse=True)]

    @classmethod
    def resolve_window(cls, date_range: NpsDateRange, today: date) -> Window:
        """Inclusive ``(start, end)`` dates, or ``None`` for no filtering.

        A ``custom`` range with missing or mismatched bounds falls back to
        the last twelve months.
        """
        if date_range.type == "all":
            return None

        start, end = date_range.from_, date_range.to
        if date_range.type == "custom":
            if isinstance(start, CalendarMonth) and isinstance(end, CalendarMonth):
                last_day = calendar.monthrange(end.year, end.month)[1]
                return (
                    date(start.year, start.month, 1),
                    date(end.year, end.month, last_day),
                )
            if isinstance(start, date) and isinstance(end, date):
                return start, end
            logger.warning(
                "nps_custom_range_invalid",
                start=str(start),
                end=str(end),
            )

        return _months_before(today, cls.DEFAULT_WINDOW_MONTHS - 1), today

    # ── Internals ─────────────────────────────────────────────────────────

    @staticmethod
    def _rescale(bucket: NpsMonthBucket, count: int) -> NpsMonthBucket:
        old_total = bucket.promoter_count + bucket.detractor_count + bucket.passive_count
        update: dict[str, int] = {"response_count": count}
        if old_total > 0:
            update.update(
                promoter_count=_round_half_up(bucket.promoter_count * count / old_total),
                detractor_count=_round_half_up(bucket.detractor_count * count / old_total),
                passive_count=_round_half_up(bucket.passive_count * count / old_total),
            )
        return bucket.model_copy(update=update)

    def _scored_months(
        self, breakdown: NpsStatusBreakdown, window: Window
    ) -> list[NpsMonthlySummary]:
        scored = []
        for summary in self.summarize(breakdown):
            if not _in_window(summary.first_day, window):
                continue
            total = summary.promoter_count + summary.detractor_count + summary.passive_count
            scored.append(
                summary.model_copy(
                    update={
                        "nps_score": nps_score(
                            summary.promoter_count, summary.detractor_count, total
                        )
                    }
                )
            )
        return scored

    @staticmethod
    def _scored_buckets(
        buckets: Iterable[NpsMonthBucket], window: Window
    ) -> list[NpsMonthBucket]:
        # Complete / screen-out NPS divides by the normalised response count
        return [
            bucket.model_copy(
                update={
                    "nps_score": nps_score(
                        bucket.promoter_count,
                        bucket.detractor_count,
                        bucket.response_count,
                    )
                }
            )
            for bucket in buckets
            if _in_window(_first_day(bucket.month), window)
        ]

#!/usr/bin/env python3
"""
Panel Health — Experience Score and NPS Report CLI

Subcommands:

  rank      — Highest and lowest XScore surveys with their legacy scores.
  survey    — Full breakdown of one survey (Bayesian vs legacy).
  display   — Dashboard composite for hand-entered inputs (no database).
  nps       — Monthly NPS (all sources, dashboard, post-survey).

Usage examples
--------------
  # Best and worst 10 surveys
  python scripts/score_report.py rank --limit 10

  # One survey as JSON
  python scripts/score_report.py survey 4512 --json

  # Dashboard score for rating 8, neutral sentiment, 10% drop-off
  python scripts/score_report.py display --rating 8 --dropoff 10

  # Full NPS history
  python scripts/score_report.py nps --all
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

# Ensure the project root is importable
sys.path.insert(0, ".")

from app.database import engine
from app.schemas.experience import ContributionBreakdown, EnrichedSurveyRecord
from app.schemas.nps import NpsDateRange, NpsMonthlySummary
from app.services.contribution_service import calculate_display_score
from app.services.nps_service import NpsService
from app.services.survey_data_service import SurveyDataUnavailableError
from app.services.survey_scoring_service import SurveyScoringService


def _print_breakdown(title: str, breakdown: ContributionBreakdown) -> None:
    print(f"  {title}")
    print(f"    {'Metric':<26} {'Value':>9} {'Points':>9} {'Weight':>7}")
    for name, metric in breakdown.items():
        print(
            f"    {name:<26} {metric.value:>9.2f} "
            f"{metric.contribution:>9.2f} {metric.weight:>7.0f}"
        )
    print(f"    {'total (pre-clamp)':<26} {'':>9} {breakdown.total():>9.2f}")


def _print_rank_table(title: str, records: list[EnrichedSurveyRecord]) -> None:
    print(f"\n  {title}")
    print(f"  {'-' * 74}")
    print(
        f"  {'ID':>7}  {'XScore':>7}  {'Legacy':>7}  {'Delta':>7}  "
        f"{'Ratings':>7}  Title"
    )
    for r in records:
        title_text = (r.survey.survey_title or "")[:30]
        print(
            f"  {r.id:>7}  {r.xscore:>7.2f}  {r.legacy_score:>7.2f}  "
            f"{r.score_delta:>+7.2f}  {r.raw_data.rating_count:>7}  {title_text}"
        )


# ──────────────────────────────────────────────────────────────────────────────
# Subcommand: rank
# ──────────────────────────────────────────────────────────────────────────────

async def cmd_rank(args: argparse.Namespace) -> None:
    """Print the best and worst surveys by XScore."""
    service = SurveyScoringService()
    try:
        records = await service.get_all_scored()
    finally:
        await engine.dispose()

    ranking = service.rank_surveys(records, limit=args.limit)

    if args.json:
        print(json.dumps(
            {
                group: [r.model_dump(mode="json") for r in members]
                for group, members in ranking.items()
            },
            indent=2,
        ))
        return

    k_values = {r.smoothing_info.k for r in records}
    print(f"\n{'=' * 78}")
    print(f"  Survey Experience Scores")
    print(f"{'=' * 78}")
    print(f"  Surveys scored:    {len(records)}")
    print(f"  Smoothing K:       {', '.join(f'{k:g}' for k in sorted(k_values)) or '-'}")
    print(
        f"  Fallbacks:         "
        f"{sum(1 for r in records if r.bayesian.is_fallback)} bayesian, "
        f"{sum(1 for r in records if r.legacy.is_fallback)} legacy"
    )

    _print_rank_table(f"Top {args.limit}", ranking["top"])
    _print_rank_table(f"Lowest {args.limit}", ranking["bottom"])
    print()


# ──────────────────────────────────────────────────────────────────────────────
# Subcommand: survey
# ──────────────────────────────────────────────────────────────────────────────

async def cmd_survey(args: argparse.Namespace) -> None:
    """Print one survey's full score breakdown."""
    service = SurveyScoringService()
    try:
        record = await service.get_scored_survey(args.survey_id)
    finally:
        await engine.dispose()

    if args.json:
        print(json.dumps(record.model_dump(mode="json"), indent=2))
        return

    smoothing = record.smoothing_info
    raw = record.raw_data
    print(f"\n{'=' * 60}")
    print(f"  Survey {record.id}: {record.survey.survey_title or '(untitled)'}")
    print(f"{'=' * 60}")
    print(f"  XScore:            {record.xscore:.2f} ({record.bayesian.category})")
    print(f"  Legacy score:      {record.legacy_score:.2f} ({record.legacy.category})")
    print(f"  Ratings / comments {raw.rating_count} / {raw.sentiment_count}")
    print(
        f"  K = {smoothing.k:g}   rating own/global "
        f"{smoothing.rating_weight_own:.3f}/{smoothing.rating_weight_global:.3f}"
    )
    print()
    _print_breakdown("Bayesian", record.breakdown)
    print()
    _print_breakdown("Legacy", record.legacy_breakdown)
    if record.admin_portal_link:
        print(f"\n  {record.admin_portal_link}")
    print()


# ──────────────────────────────────────────────────────────────────────────────
# Subcommand: display
# ──────────────────────────────────────────────────────────────────────────────

def cmd_display(args: argparse.Namespace) -> None:
    """Dashboard composite for the given inputs."""
    result = calculate_display_score(
        user_rating=args.rating,
        user_sentiment=args.sentiment,
        dropoff_pct=args.dropoff,
        screenout_pct=args.screenout,
        screener_question_count=args.questions,
    )
    if args.json:
        print(json.dumps(result.model_dump(mode="json"), indent=2))
        return

    print(f"\n  Display score: {result.score:.2f}\n")
    _print_breakdown("Display formula set", result.breakdown)
    print()


# ──────────────────────────────────────────────────────────────────────────────
# Subcommand: nps
# ──────────────────────────────────────────────────────────────────────────────

def _print_nps_table(title: str, months: list[NpsMonthlySummary]) -> None:
    print(f"\n  {title}")
    print(f"  {'-' * 60}")
    print(
        f"  {'Month':<8}  {'NPS':>5}  {'Resp':>6}  {'Prom':>6}  "
        f"{'Pass':>6}  {'Detr':>6}"
    )
    for m in months:
        print(
            f"  {m.year:04d}-{m.month:02d}  {m.nps_score or 0:>5}  "
            f"{m.total_response_count:>6}  {m.promoter_count:>6}  "
            f"{m.passive_count:>6}  {m.detractor_count:>6}"
        )


async def cmd_nps(args: argparse.Namespace) -> None:
    """Print the monthly NPS time series."""
    service = NpsService()
    date_range = NpsDateRange(type="all" if args.all else "last12months")
    try:
        series = await service.get_time_series(date_range)
    finally:
        await engine.dispose()

    if args.json:
        print(json.dumps(series.model_dump(mode="json"), indent=2))
        return

    _print_nps_table("All sources", series.overall)
    _print_nps_table("Dashboard", series.dashboard)
    _print_nps_table("Post-survey", series.post_survey)
    print()


# ──────────────────────────────────────────────────────────────────────────────
# CLI entry point
# ──────────────────────────────────────────────────────────────────────────────

def main() -> None:
    parser = argparse.ArgumentParser(
        description="Panel Health experience score and NPS report.",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        help="Available subcommands",
    )

    # ── rank ──────────────────────────────────────────────────────────
    rank_parser = subparsers.add_parser(
        "rank",
        help="Highest and lowest XScore surveys.",
    )
    rank_parser.add_argument(
        "--limit", "-n",
        type=int,
        default=5,
        help="Surveys per group (default: 5).",
    )
    rank_parser.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Output raw JSON instead of tables.",
    )

    # ── survey ────────────────────────────────────────────────────────
    survey_parser = subparsers.add_parser(
        "survey",
        help="Full score breakdown for one survey.",
    )
    survey_parser.add_argument("survey_id", type=int)
    survey_parser.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Output raw JSON instead of tables.",
    )

    # ── display ───────────────────────────────────────────────────────
    display_parser = subparsers.add_parser(
        "display",
        help="Dashboard composite for hand-entered inputs.",
    )
    display_parser.add_argument("--rating", type=float, default=0.0)
    display_parser.add_argument("--sentiment", type=float, default=0.0)
    display_parser.add_argument("--dropoff", type=float, default=0.0)
    display_parser.add_argument("--screenout", type=float, default=0.0)
    display_parser.add_argument("--questions", type=float, default=12.0)
    display_parser.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Output raw JSON.",
    )

    # ── nps ───────────────────────────────────────────────────────────
    nps_parser = subparsers.add_parser(
        "nps",
        help="Monthly NPS time series.",
    )
    nps_parser.add_argument(
        "--all",
        action="store_true",
        default=False,
        help="Every month instead of the last twelve.",
    )
    nps_parser.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Output raw JSON instead of tables.",
    )

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    try:
        if args.command == "rank":
            asyncio.run(cmd_rank(args))
        elif args.command == "survey":
            asyncio.run(cmd_survey(args))
        elif args.command == "display":
            cmd_display(args)
        elif args.command == "nps":
            asyncio.run(cmd_nps(args))
        else:
            parser.print_help()
            sys.exit(1)
    except SurveyDataUnavailableError as exc:
        print(f"Survey data unavailable: {exc}", file=sys.stderr)
        sys.exit(2)
    except LookupError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()

"""
Command-line report over an exported data snapshot.

The export is a JSON object with optional ``glucose``, ``food``, ``insulin``
and ``sensors`` arrays of storage rows.

Run with: python -m cgm_insights export.json --now 2024-05-01T12:00:00Z
"""

import argparse
import json
import sys
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from cgm_insights.config import configure_logging, get_config, print_config_summary
from cgm_insights.domain.models import NoData, Severity
from cgm_insights.services.engine import AnalysisReport, analyze_rows

console = Console()

_SEVERITY_STYLE = {
    Severity.INFO: "cyan",
    Severity.WARNING: "yellow",
    Severity.CRITICAL: "red",
}


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="cgm-insights", description="Analyze a glucose, meal, insulin and sensor export"
    )
    parser.add_argument("export", nargs="?", type=Path, help="JSON export file")
    parser.add_argument("--now", type=datetime.fromisoformat, help="Reference instant (ISO 8601)")
    parser.add_argument("--timezone", help="IANA zone for local hours, overrides CGM_TIMEZONE")
    parser.add_argument("--json", action="store_true", help="Print the raw report as JSON")
    parser.add_argument(
        "--show-config", action="store_true", help="Print the effective configuration and exit"
    )
    return parser.parse_args(argv)


def _print_summary(report: AnalysisReport) -> None:
    table = Table(title="Glucose Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")

    summary = report.summary
    if isinstance(summary, NoData):
        table.add_row("Readings", f"none ({summary.reason})")
    else:
        table.add_row("Readings", str(summary.count))
        table.add_row("Mean", f"{summary.mean:.1f} mg/dL")
        table.add_row("Std dev", f"{summary.std_dev:.1f}")
        if summary.coefficient_of_variation is not None:
            table.add_row("CV", f"{summary.coefficient_of_variation:.1f}%")
        table.add_row("Time in range", f"{summary.time_in_range_percentage:.1f}%")
        table.add_row("Min / Max", f"{summary.minimum.value} / {summary.maximum.value}")

    if not isinstance(report.dose_summary, NoData):
        table.add_row("Est. daily insulin", f"{report.dose_summary.estimated_daily_total:.1f} U")
    if report.insulin_on_board is not None:
        table.add_row("Insulin on board", f"{report.insulin_on_board.active_units:.2f} U")
    skipped = sum(report.skipped_rows.values())
    if skipped:
        table.add_row("Skipped rows", str(skipped))

    console.print(table)


def _print_foods(report: AnalysisReport) -> None:
    if not report.food_profiles:
        return
    table = Table(title="Top Spiking Foods")
    table.add_column("Food", style="cyan")
    table.add_column("Avg rise", style="magenta")
    table.add_column("Max rise", style="magenta")
    table.add_column("Meals", style="green")

    for profile in report.food_profiles[:5]:
        table.add_row(
            profile.food_name,
            f"{profile.avg_rise:+.0f}",
            f"{profile.max_rise:+.0f}",
            str(profile.sample_count),
        )
    console.print(table)


def _print_insights(report: AnalysisReport) -> None:
    if not report.insights:
        console.print("No findings", style="green")
        return

    table = Table(title="Insights")
    table.add_column("Severity")
    table.add_column("Category", style="cyan")
    table.add_column("Subject", style="white")
    table.add_column("Metrics", style="yellow")

    for insight in report.insights:
        table.add_row(
            insight.severity.value.upper(),
            insight.category.value,
            insight.subject or "",
            ", ".join(f"{k}={v:g}" for k, v in insight.metrics.items()),
            style=_SEVERITY_STYLE[insight.severity],
        )
    console.print(table)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    try:
        app_config = get_config()
        analysis_config = app_config.analysis
        if args.timezone:
            analysis_config = analysis_config.with_overrides({"timezone": args.timezone})
    except ValidationError as e:
        console.print(f"Invalid configuration: {e}", style="red")
        return 2

    configure_logging(app_config.logging)

    if args.show_config:
        print_config_summary(analysis_config)
        return 0

    if args.export is None:
        console.print("An export file is required", style="red")
        return 2

    try:
        export = json.loads(args.export.read_text())
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"Could not read {args.export}: {e}", style="red")
        return 1
    if not isinstance(export, dict):
        console.print(f"{args.export} must hold a JSON object", style="red")
        return 1

    report = analyze_rows(
        glucose_rows=export.get("glucose", []),
        meal_rows=export.get("food", []),
        insulin_rows=export.get("insulin", []),
        sensor_rows=export.get("sensors", []),
        config=analysis_config,
        now=args.now,
    )

    if args.json:
        print(report.model_dump_json(indent=2))
        return 0

    severity = report.overall_severity
    console.print(
        Panel(
            f"Overall: {severity.value.upper() if severity else 'NO FINDINGS'}",
            style=_SEVERITY_STYLE[severity] if severity else "green",
        )
    )
    _print_summary(report)
    _print_foods(report)
    _print_insights(report)
    return 0


if __name__ == "__main__":
    sys.exit(main())

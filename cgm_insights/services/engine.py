"""
Single entry point that runs every analyzer over one input snapshot.

Pipeline:
1. Glucose summary, meal correlation, dose and sensor analysis run
   independently over the same immutable inputs
2. Food profiles are aggregated from the meal impacts
3. The insight composer consumes everything above

The engine is synchronous and does no I/O; fetching and bounding the event
streams is the caller's job. Identical inputs produce identical reports.
"""

import time
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, computed_field

from cgm_insights.config import AnalysisConfig
from cgm_insights.domain.models import (
    FoodProfile,
    GlucoseReading,
    Insight,
    InsulinDose,
    MealEvent,
    MealImpact,
    NoData,
    SensorRecord,
    Severity,
    assume_utc,
)
from cgm_insights.services.correlation import correlate_with
from cgm_insights.services.food_impact import MealPatternSummary, aggregate, summarize_meals
from cgm_insights.services.ingest import (
    parse_glucose_rows,
    parse_insulin_rows,
    parse_meal_rows,
    parse_sensor_rows,
)
from cgm_insights.services.insights import compose, highest_severity
from cgm_insights.services.insulin import (
    DoseSummary,
    InsulinOnBoard,
    analyze_doses,
    insulin_on_board,
)
from cgm_insights.services.sensors import LifecycleSummary, analyze_sensors
from cgm_insights.services.statistics import GlucoseSummary, summarize

logger = structlog.get_logger(__name__)


class AnalysisReport(BaseModel):
    """Composite result handed to the presentation layer."""

    model_config = ConfigDict(frozen=True)

    summary: GlucoseSummary | NoData
    meal_impacts: list[MealImpact]
    food_profiles: list[FoodProfile]
    meal_patterns: MealPatternSummary | NoData
    dose_summary: DoseSummary | NoData
    insulin_on_board: InsulinOnBoard | None = None
    lifecycle_summary: LifecycleSummary | NoData
    insights: list[Insight]
    skipped_rows: dict[str, int] = Field(
        default_factory=dict, description="Raw rows dropped at parse time, per stream"
    )

    @computed_field(return_type=Severity | None)
    def overall_severity(self) -> Severity | None:
        return highest_severity(self.insights)


def analyze(
    readings: Sequence[GlucoseReading] = (),
    meals: Sequence[MealEvent] = (),
    doses: Sequence[InsulinDose] = (),
    sensors: Sequence[SensorRecord] = (),
    config: AnalysisConfig | None = None,
    now: datetime | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> AnalysisReport:
    """
    Run the full analysis over already-fetched event collections.

    Args:
        readings: Glucose readings, any order
        meals: Logged meals, any order
        doses: Insulin doses, any order; invalid units are skipped and counted
        sensors: Sensor insertion/removal records
        config: Thresholds and windows; defaults when omitted
        now: Reference instant for insulin on board and sensor expiration.
            Both are omitted when it is None; the engine never reads the clock.
        overrides: Per-call config overrides merged over ``config``

    Raises:
        ValueError: Invalid configuration or overrides.
    """
    config = config or AnalysisConfig()
    if overrides:
        config = config.with_overrides(overrides)
    if now is not None:
        now = assume_utc(now)

    log = logger.bind(component="analysis_engine")
    started = time.perf_counter()
    log.info(
        "analysis_started",
        readings=len(readings),
        meals=len(meals),
        doses=len(doses),
        sensors=len(sensors),
    )

    summary = summarize(readings, config)
    meal_impacts = correlate_with(meals, readings, config.meal_windows)
    food_profiles = aggregate(meal_impacts, min_occurrences=config.food.min_occurrences)
    meal_patterns = summarize_meals(meals, config)
    dose_summary = analyze_doses(doses, config)
    lifecycle = analyze_sensors(sensors, config, now=now)
    iob = insulin_on_board(doses, now, config) if now is not None and doses else None

    insights = compose(
        summary,
        food_profiles,
        dose_summary,
        lifecycle,
        config=config,
        meal_patterns=meal_patterns,
    )

    report = AnalysisReport(
        summary=summary,
        meal_impacts=meal_impacts,
        food_profiles=food_profiles,
        meal_patterns=meal_patterns,
        dose_summary=dose_summary,
        insulin_on_board=iob,
        lifecycle_summary=lifecycle,
        insights=insights,
    )

    log.info(
        "analysis_completed",
        meal_impacts=len(meal_impacts),
        foods=len(food_profiles),
        insights=len(insights),
        overall_severity=report.overall_severity,
        duration_seconds=round(time.perf_counter() - started, 3),
    )
    return report


def analyze_rows(
    glucose_rows: Iterable[Mapping[str, Any]] = (),
    meal_rows: Iterable[Mapping[str, Any]] = (),
    insulin_rows: Iterable[Mapping[str, Any]] = (),
    sensor_rows: Iterable[Mapping[str, Any]] = (),
    config: AnalysisConfig | None = None,
    now: datetime | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> AnalysisReport:
    """Parse raw storage rows, skipping malformed ones, then analyze()."""
    glucose = parse_glucose_rows(glucose_rows)
    meals = parse_meal_rows(meal_rows)
    insulin = parse_insulin_rows(insulin_rows)
    sensors = parse_sensor_rows(sensor_rows)

    report = analyze(
        glucose.items,
        meals.items,
        insulin.items,
        sensors.items,
        config=config,
        now=now,
        overrides=overrides,
    )
    skipped = {
        "glucose": glucose.skipped,
        "meals": meals.skipped,
        "insulin": insulin.skipped,
        "sensors": sensors.skipped,
    }
    return report.model_copy(update={"skipped_rows": skipped})

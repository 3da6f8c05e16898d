"""
Rule-based insight composition over the outputs of every analyzer.

Rules run in a fixed order and every applicable rule fires; a match never
suppresses a later rule. Analyzer outputs that are NoData simply disable the
rules that need them. Turning insights into user-facing language is the
presentation layer's job.
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TypeVar

import structlog

from cgm_insights.config import AnalysisConfig
from cgm_insights.domain.models import (
    ExpirationStatus,
    FoodProfile,
    Insight,
    InsightCategory,
    NoData,
    Severity,
    SpikeLevel,
)
from cgm_insights.services.food_impact import MealPatternSummary, classify_spike, top_spikers
from cgm_insights.services.insulin import DoseSummary
from cgm_insights.services.sensors import LifecycleSummary
from cgm_insights.services.statistics import GlucoseSummary

logger = structlog.get_logger(__name__)

_SEVERITY_RANK = {Severity.INFO: 0, Severity.WARNING: 1, Severity.CRITICAL: 2}

AnalyzerOutputT = TypeVar("AnalyzerOutputT")


@dataclass(frozen=True)
class InsightContext:
    """Everything a rule may look at."""

    summary: GlucoseSummary | None
    top_food: FoodProfile | None
    doses: DoseSummary | None
    sensors: LifecycleSummary | None
    meal_patterns: MealPatternSummary | None
    config: AnalysisConfig


Rule = Callable[[InsightContext], list[Insight]]


def _time_in_range(ctx: InsightContext) -> list[Insight]:
    target = ctx.config.insights.time_in_range_target
    if ctx.summary is None or ctx.summary.time_in_range_percentage >= target:
        return []
    return [
        Insight(
            category=InsightCategory.GLYCEMIC_CONTROL,
            severity=Severity.WARNING,
            metrics={
                "time_in_range_percentage": ctx.summary.time_in_range_percentage,
                "target_percentage": target,
            },
        )
    ]


def _variability(ctx: InsightContext) -> list[Insight]:
    threshold = ctx.config.insights.variability_cv_threshold
    cv = ctx.summary.coefficient_of_variation if ctx.summary else None
    if cv is None or cv <= threshold:
        return []
    return [
        Insight(
            category=InsightCategory.VARIABILITY,
            severity=Severity.WARNING,
            metrics={"coefficient_of_variation": cv, "threshold": threshold},
        )
    ]


def _time_of_day_highs(ctx: InsightContext) -> list[Insight]:
    if ctx.summary is None:
        return []
    threshold = ctx.config.insights.time_of_day_high
    return [
        Insight(
            category=InsightCategory.TIME_OF_DAY_PATTERN,
            severity=Severity.WARNING,
            subject=name,
            metrics={"mean": stat.mean, "count": stat.count, "threshold": threshold},
        )
        for name, stat in ctx.summary.time_of_day.items()
        if stat.mean > threshold
    ]


def _nocturnal_lows(ctx: InsightContext) -> list[Insight]:
    if ctx.summary is None:
        return []
    thresholds = ctx.config.insights
    night = ctx.summary.time_of_day.get(thresholds.night_bucket)
    if night is None or night.mean >= thresholds.nocturnal_low:
        return []
    return [
        Insight(
            category=InsightCategory.NOCTURNAL_HYPOGLYCEMIA_RISK,
            severity=Severity.CRITICAL,
            subject=thresholds.night_bucket,
            metrics={
                "mean": night.mean,
                "count": night.count,
                "threshold": thresholds.nocturnal_low,
            },
        )
    ]


def _food_spike(level: SpikeLevel, severity: Severity) -> Rule:
    def rule(ctx: InsightContext) -> list[Insight]:
        food = ctx.top_food
        if food is None or classify_spike(food.avg_rise, ctx.config.food) is not level:
            return []
        return [
            Insight(
                category=InsightCategory.FOOD_IMPACT,
                severity=severity,
                subject=food.food_name,
                metrics={
                    "avg_rise": food.avg_rise,
                    "max_rise": food.max_rise,
                    "avg_carbs": food.avg_carbs,
                    "sample_count": food.sample_count,
                },
            )
        ]

    return rule


def _stacking(ctx: InsightContext) -> list[Insight]:
    if ctx.doses is None or not ctx.doses.stacking_events:
        return []
    events = ctx.doses.stacking_events
    return [
        Insight(
            category=InsightCategory.INSULIN_STACKING,
            severity=Severity.CRITICAL,
            metrics={
                "events": len(events),
                "min_hours_apart": min(e.hours_apart for e in events),
            },
        )
    ]


def _high_daily_total(ctx: InsightContext) -> list[Insight]:
    threshold = ctx.config.insulin.high_daily_total_units
    if ctx.doses is None or ctx.doses.estimated_daily_total <= threshold:
        return []
    return [
        Insight(
            category=InsightCategory.HIGH_INSULIN_USE,
            severity=Severity.WARNING,
            metrics={
                "estimated_daily_total": ctx.doses.estimated_daily_total,
                "threshold": threshold,
            },
        )
    ]


def _large_dose(ctx: InsightContext) -> list[Insight]:
    threshold = ctx.config.insulin.large_dose_units
    if ctx.doses is None or ctx.doses.largest_dose.units <= threshold:
        return []
    return [
        Insight(
            category=InsightCategory.LARGE_DOSE,
            severity=Severity.WARNING,
            metrics={"units": ctx.doses.largest_dose.units, "threshold": threshold},
        )
    ]


def _low_daily_total(ctx: InsightContext) -> list[Insight]:
    threshold = ctx.config.insulin.low_daily_total_units
    if ctx.doses is None or ctx.doses.estimated_daily_total >= threshold:
        return []
    return [
        Insight(
            category=InsightCategory.LOW_INSULIN_USE,
            severity=Severity.INFO,
            metrics={
                "estimated_daily_total": ctx.doses.estimated_daily_total,
                "threshold": threshold,
            },
        )
    ]


def _high_carb_meal(ctx: InsightContext) -> list[Insight]:
    threshold = ctx.config.food.high_carb_meal_grams
    if ctx.meal_patterns is None:
        return []
    meal = ctx.meal_patterns.highest_carb_meal
    if meal.carb_grams <= threshold:
        return []
    return [
        Insight(
            category=InsightCategory.HIGH_CARB_MEAL,
            severity=Severity.INFO,
            subject=meal.food_key,
            metrics={"carb_grams": meal.carb_grams, "threshold": threshold},
        )
    ]


def _sensor_expiration(ctx: InsightContext) -> list[Insight]:
    if ctx.sensors is None:
        return []
    severities = {
        ExpirationStatus.WARNING: Severity.WARNING,
        ExpirationStatus.CRITICAL: Severity.CRITICAL,
    }
    return [
        Insight(
            category=InsightCategory.SENSOR_EXPIRATION,
            severity=severities[expiration.status],
            subject=expiration.model,
            metrics={"days_left": expiration.days_left},
        )
        for expiration in ctx.sensors.expirations
        if expiration.status in severities
    ]


RULES: tuple[Rule, ...] = (
    _time_in_range,
    _variability,
    _time_of_day_highs,
    _nocturnal_lows,
    _food_spike(SpikeLevel.SEVERE, Severity.WARNING),
    _stacking,
    _high_daily_total,
    _food_spike(SpikeLevel.MODERATE, Severity.INFO),
    _large_dose,
    _low_daily_total,
    _high_carb_meal,
    _sensor_expiration,
)


def _present(value: AnalyzerOutputT | NoData | None) -> AnalyzerOutputT | None:
    return None if isinstance(value, NoData) else value


def compose(
    summary: GlucoseSummary | NoData,
    food_profiles: Sequence[FoodProfile],
    doses: DoseSummary | NoData,
    sensors: LifecycleSummary | NoData,
    config: AnalysisConfig | None = None,
    meal_patterns: MealPatternSummary | NoData | None = None,
) -> list[Insight]:
    """Apply every rule in order and collect what fires."""
    config = config or AnalysisConfig()
    leaders = top_spikers(food_profiles, limit=1)

    ctx = InsightContext(
        summary=_present(summary),
        top_food=leaders[0] if leaders else None,
        doses=_present(doses),
        sensors=_present(sensors),
        meal_patterns=_present(meal_patterns),
        config=config,
    )

    insights: list[Insight] = []
    for rule in RULES:
        insights.extend(rule(ctx))

    logger.debug("insights_composed", count=len(insights))
    return insights


def highest_severity(insights: Sequence[Insight]) -> Severity | None:
    """Most severe finding, None when nothing fired."""
    if not insights:
        return None
    return max((i.severity for i in insights), key=_SEVERITY_RANK.__getitem__)

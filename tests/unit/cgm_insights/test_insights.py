"""
Tests for insight composition.

Analyzer outputs are built with the real analyzers so the rules are
exercised against the same shapes the engine hands them.
"""

from datetime import UTC, datetime, timedelta

import pytest

from cgm_insights.config import AnalysisConfig
from cgm_insights.domain.models import (
    FoodProfile,
    GlucoseReading,
    Insight,
    InsightCategory,
    InsulinDose,
    MealEvent,
    NoData,
    SensorRecord,
    Severity,
)
from cgm_insights.services.food_impact import summarize_meals
from cgm_insights.services.insights import RULES, compose, highest_severity
from cgm_insights.services.insulin import analyze_doses
from cgm_insights.services.sensors import analyze_sensors
from cgm_insights.services.statistics import summarize

DAY1 = datetime(2024, 1, 1, tzinfo=UTC)
NOW = DAY1 + timedelta(days=1)
EMPTY = NoData(reason="empty")


def _readings(*points: tuple[float, int]) -> list[GlucoseReading]:
    return [GlucoseReading(timestamp=DAY1 + timedelta(hours=h), value=v) for h, v in points]


def _doses(*points: tuple[float, float]) -> list[InsulinDose]:
    return [InsulinDose(timestamp=DAY1 + timedelta(hours=h), units=u) for h, u in points]


def _food(avg_rise: float, name: str = "pizza") -> FoodProfile:
    return FoodProfile(
        food_name=name,
        avg_rise=avg_rise,
        max_rise=avg_rise + 10,
        min_rise=avg_rise - 10,
        avg_baseline=110,
        avg_peak=110 + avg_rise,
        avg_carbs=60,
        sample_count=3,
    )


def _categories(insights: list[Insight]) -> list[InsightCategory]:
    return [i.category for i in insights]


class TestCompose:
    def test_no_data_everywhere_means_no_insights(self) -> None:
        assert compose(EMPTY, [], EMPTY, EMPTY) == []

    def test_steady_in_range_readings_are_quiet(self) -> None:
        summary = summarize(_readings((8, 120), (9, 125), (10, 118)))
        assert compose(summary, [], EMPTY, EMPTY) == []

    def test_all_applicable_rules_fire_in_order(self) -> None:
        config = AnalysisConfig()
        summary = summarize(_readings((2, 50), (3, 55), (13, 300), (14, 320)), config)
        doses = analyze_doses(_doses((10, 60), (11.5, 50)), config)
        meals = summarize_meals(
            [MealEvent(timestamp=DAY1 + timedelta(hours=12), food_name="Burrito", carb_grams=100)],
            config,
        )
        sensors = analyze_sensors(
            [SensorRecord(inserted_at=NOW - timedelta(days=9.5), model="dexcom-g7")],
            config,
            now=NOW,
        )

        insights = compose(summary, [_food(70)], doses, sensors, config, meals)

        assert _categories(insights) == [
            InsightCategory.GLYCEMIC_CONTROL,
            InsightCategory.VARIABILITY,
            InsightCategory.TIME_OF_DAY_PATTERN,
            InsightCategory.NOCTURNAL_HYPOGLYCEMIA_RISK,
            InsightCategory.FOOD_IMPACT,
            InsightCategory.INSULIN_STACKING,
            InsightCategory.HIGH_INSULIN_USE,
            InsightCategory.LARGE_DOSE,
            InsightCategory.HIGH_CARB_MEAL,
            InsightCategory.SENSOR_EXPIRATION,
        ]
        assert highest_severity(insights) is Severity.CRITICAL

    def test_rule_table_is_ordered(self) -> None:
        assert len(RULES) == 12


class TestGlucoseRules:
    def test_low_time_in_range(self) -> None:
        summary = summarize(_readings((8, 200), (9, 210), (10, 120)))

        [insight] = compose(summary, [], EMPTY, EMPTY)

        assert insight.category is InsightCategory.GLYCEMIC_CONTROL
        assert insight.severity is Severity.WARNING
        assert insight.metrics["time_in_range_percentage"] == pytest.approx(100 / 3)
        assert insight.metrics["target_percentage"] == 70

    def test_custom_time_in_range_target(self) -> None:
        summary = summarize(_readings((8, 200), (9, 150), (10, 150)))
        config = AnalysisConfig().with_overrides({"insights": {"time_in_range_target": 60}})
        assert compose(summary, [], EMPTY, EMPTY, config) == []

    def test_time_of_day_high_names_the_bucket(self) -> None:
        summary = summarize(_readings((19, 240), (20, 230), (8, 100), (9, 110), (10, 105)))

        insights = compose(summary, [], EMPTY, EMPTY)

        [pattern] = [i for i in insights if i.category is InsightCategory.TIME_OF_DAY_PATTERN]
        assert pattern.subject == "evening"
        assert pattern.metrics["mean"] == 235

    def test_nocturnal_lows_are_critical(self) -> None:
        summary = summarize(_readings((2, 60), (3, 65), (8, 120), (9, 130), (10, 125)))

        insights = compose(summary, [], EMPTY, EMPTY)

        [risk] = [
            i for i in insights if i.category is InsightCategory.NOCTURNAL_HYPOGLYCEMIA_RISK
        ]
        assert risk.severity is Severity.CRITICAL
        assert risk.subject == "night"
        assert risk.metrics["mean"] == 62.5


class TestFoodRules:
    @pytest.mark.parametrize(
        ("avg_rise", "severity"),
        [(70, Severity.WARNING), (50, Severity.INFO), (30, None)],
    )
    def test_top_food_spike(self, avg_rise: float, severity: Severity | None) -> None:
        insights = compose(EMPTY, [_food(avg_rise)], EMPTY, EMPTY)

        if severity is None:
            assert insights == []
        else:
            [insight] = insights
            assert insight.category is InsightCategory.FOOD_IMPACT
            assert insight.severity is severity
            assert insight.subject == "pizza"

    def test_only_the_top_food_is_considered(self) -> None:
        foods = [_food(45, "bagel"), _food(80, "donut")]

        [insight] = compose(EMPTY, foods, EMPTY, EMPTY)

        assert insight.subject == "donut"
        assert insight.severity is Severity.WARNING


class TestInsulinRules:
    def test_stacking_is_critical(self) -> None:
        doses = analyze_doses(_doses((10, 5), (11.5, 4), (20, 12)))

        insights = compose(EMPTY, [], doses, EMPTY)

        [stacking] = [i for i in insights if i.category is InsightCategory.INSULIN_STACKING]
        assert stacking.severity is Severity.CRITICAL
        assert stacking.metrics == {"events": 1, "min_hours_apart": 1.5}

    def test_high_daily_total_and_large_dose(self) -> None:
        doses = analyze_doses(_doses((8, 40), (13, 40), (19, 30)))

        insights = compose(EMPTY, [], doses, EMPTY)

        assert _categories(insights) == [
            InsightCategory.HIGH_INSULIN_USE,
            InsightCategory.LARGE_DOSE,
        ]
        assert insights[0].metrics["estimated_daily_total"] == 110

    def test_low_daily_total_is_informational(self) -> None:
        doses = analyze_doses(_doses((8, 4), (13, 5)))

        [insight] = compose(EMPTY, [], doses, EMPTY)

        assert insight.category is InsightCategory.LOW_INSULIN_USE
        assert insight.severity is Severity.INFO

    def test_typical_dosing_is_quiet(self) -> None:
        doses = analyze_doses(_doses((8, 8), (13, 8), (19, 10), (22, 14)))
        assert compose(EMPTY, [], doses, EMPTY) == []


class TestOtherRules:
    def test_high_carb_meal(self) -> None:
        meals = summarize_meals(
            [
                MealEvent(timestamp=DAY1 + timedelta(hours=8), food_name="Toast", carb_grams=30),
                MealEvent(timestamp=DAY1 + timedelta(hours=13), food_name="Ramen", carb_grams=95),
            ]
        )

        [insight] = compose(EMPTY, [], EMPTY, EMPTY, meal_patterns=meals)

        assert insight.category is InsightCategory.HIGH_CARB_MEAL
        assert insight.subject == "ramen"
        assert insight.metrics["carb_grams"] == 95

    def test_sensor_expiration_severity_follows_status(self) -> None:
        sensors = analyze_sensors(
            [
                SensorRecord(inserted_at=NOW - timedelta(days=7.5), model="dexcom-g6"),
                SensorRecord(inserted_at=NOW - timedelta(days=2), model="freestyle-libre"),
                SensorRecord(inserted_at=NOW - timedelta(days=9.5), model="dexcom-g7"),
            ],
            now=NOW,
        )

        insights = compose(EMPTY, [], EMPTY, sensors)

        assert [(i.subject, i.severity) for i in insights] == [
            ("dexcom-g7", Severity.CRITICAL),
            ("dexcom-g6", Severity.WARNING),
        ]


class TestHighestSeverity:
    def test_nothing_fired(self) -> None:
        assert highest_severity([]) is None

    def test_picks_most_severe(self) -> None:
        insights = [
            Insight(category=InsightCategory.LOW_INSULIN_USE, severity=Severity.INFO),
            Insight(category=InsightCategory.VARIABILITY, severity=Severity.WARNING),
        ]
        assert highest_severity(insights) is Severity.WARNING

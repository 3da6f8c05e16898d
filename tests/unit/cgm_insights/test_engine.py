"""
End-to-end tests for the analysis engine and its raw-row entry point.
"""

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from cgm_insights.__main__ import main
from cgm_insights.config import AnalysisConfig, get_config
from cgm_insights.domain.models import (
    GlucoseReading,
    InsightCategory,
    InsulinDose,
    MealEvent,
    NoData,
    RangeBucket,
    SensorRecord,
    Severity,
)
from cgm_insights.services.engine import AnalysisReport, analyze, analyze_rows
from cgm_insights.services.food_impact import MealPatternSummary
from cgm_insights.services.insulin import DoseSummary
from cgm_insights.services.sensors import LifecycleSummary
from cgm_insights.services.statistics import GlucoseSummary

DAY1 = datetime(2024, 3, 4, tzinfo=UTC)
NOW = DAY1 + timedelta(hours=14)


def _at(hours: float) -> datetime:
    return DAY1 + timedelta(hours=hours)


@pytest.fixture
def readings() -> list[GlucoseReading]:
    # Five-minute CGM trace from 06:00 to 14:00 with a post-lunch excursion
    trace = []
    for i in range(97):
        minutes = i * 5
        value = 110
        if 6 * 60 + 60 <= minutes <= 6 * 60 + 150:
            value = 215
        trace.append(GlucoseReading(timestamp=_at(6) + timedelta(minutes=minutes), value=value))
    return trace


@pytest.fixture
def meals() -> list[MealEvent]:
    return [
        MealEvent(timestamp=_at(7), food_name="Oatmeal", carb_grams=45),
        MealEvent(timestamp=_at(12), food_name="Pad Thai", carb_grams=85),
    ]


@pytest.fixture
def doses() -> list[InsulinDose]:
    return [
        InsulinDose(timestamp=_at(7), units=5),
        InsulinDose(timestamp=_at(12), units=9),
        InsulinDose(timestamp=_at(13), units=2),
        InsulinDose(timestamp=_at(13.5), units=float("nan")),
    ]


@pytest.fixture
def sensors() -> list[SensorRecord]:
    return [
        SensorRecord(inserted_at=DAY1 - timedelta(days=20), removed_at=DAY1 - timedelta(days=10)),
        SensorRecord(inserted_at=DAY1 - timedelta(days=8), model="dexcom-g7"),
    ]


class TestAnalyze:
    def test_empty_snapshot(self) -> None:
        report = analyze()

        assert isinstance(report.summary, NoData)
        assert isinstance(report.meal_patterns, NoData)
        assert isinstance(report.dose_summary, NoData)
        assert isinstance(report.lifecycle_summary, NoData)
        assert report.meal_impacts == []
        assert report.food_profiles == []
        assert report.insulin_on_board is None
        assert report.insights == []
        assert report.overall_severity is None

    def test_full_snapshot(
        self,
        readings: list[GlucoseReading],
        meals: list[MealEvent],
        doses: list[InsulinDose],
        sensors: list[SensorRecord],
    ) -> None:
        report = analyze(readings, meals, doses, sensors, now=NOW)

        assert isinstance(report.summary, GlucoseSummary)
        assert report.summary.count == 97
        assert isinstance(report.meal_patterns, MealPatternSummary)
        assert isinstance(report.dose_summary, DoseSummary)
        assert report.dose_summary.skipped == 1
        assert isinstance(report.lifecycle_summary, LifecycleSummary)
        assert report.lifecycle_summary.mean_duration_days == 10.0

        assert [i.meal.food_name for i in report.meal_impacts] == ["Oatmeal", "Pad Thai"]
        lunch = report.meal_impacts[1]
        assert lunch.baseline == 110
        assert lunch.peak == 215
        assert lunch.rise == 105
        assert [p.food_name for p in report.food_profiles] == ["pad thai", "oatmeal"]

        categories = [i.category for i in report.insights]
        assert InsightCategory.FOOD_IMPACT in categories
        assert InsightCategory.HIGH_CARB_MEAL in categories
        assert InsightCategory.LOW_INSULIN_USE in categories
        assert InsightCategory.SENSOR_EXPIRATION in categories
        assert report.overall_severity is Severity.WARNING

        assert report.insulin_on_board is not None
        assert report.insulin_on_board.active_doses == 2

    def test_identical_inputs_give_identical_reports(
        self,
        readings: list[GlucoseReading],
        meals: list[MealEvent],
        doses: list[InsulinDose],
        sensors: list[SensorRecord],
    ) -> None:
        first = analyze(readings, meals, doses, sensors, now=NOW)
        second = analyze(list(reversed(readings)), meals[::-1], doses, sensors, now=NOW)

        assert first.model_dump() == second.model_dump()

    def test_overrides_apply_per_call(self, readings: list[GlucoseReading]) -> None:
        report = analyze(readings, overrides={"ranges": {"high": 220, "very_high": 260}})

        assert isinstance(report.summary, GlucoseSummary)
        assert report.summary.ranges[RangeBucket.HIGH].count == 0
        assert report.summary.time_in_range_percentage == 100.0

    def test_invalid_overrides_raise(self) -> None:
        with pytest.raises(ValueError):
            analyze(overrides={"meal_windows": {"peak_window_start_minutes": 500}})

    def test_no_reference_time_skips_time_dependent_output(
        self, doses: list[InsulinDose], sensors: list[SensorRecord]
    ) -> None:
        report = analyze(doses=doses, sensors=sensors)

        assert report.insulin_on_board is None
        assert isinstance(report.lifecycle_summary, LifecycleSummary)
        assert report.lifecycle_summary.expirations == []

    def test_report_serializes(self, readings: list[GlucoseReading]) -> None:
        payload = json.loads(analyze(readings, config=AnalysisConfig()).model_dump_json())

        assert payload["summary"]["ranges"]["in_range"]["count"] == 84
        assert payload["overall_severity"] is None


class TestAnalyzeRows:
    def test_malformed_rows_are_counted(self) -> None:
        report = analyze_rows(
            glucose_rows=[
                {"system_time": "2024-03-04T08:00:00Z", "value": 120},
                {"system_time": "not a time", "value": 120},
            ],
            meal_rows=[{"logged_at": "2024-03-04T08:00:00Z", "product_name": "Toast"}],
            insulin_rows=[
                {"taken_at": "2024-03-04T08:00:00Z", "units": "x"},
                {"taken_at": "2024-03-04T08:00:00Z", "units": -3},
            ],
            sensor_rows=[],
        )

        assert report.skipped_rows == {"glucose": 1, "meals": 0, "insulin": 1, "sensors": 0}
        assert isinstance(report.summary, GlucoseSummary)
        assert report.summary.count == 1
        # The negative dose parses but is rejected by the insulin analyzer
        assert isinstance(report.dose_summary, NoData)
        assert report.dose_summary.skipped == 1

    def test_non_mapping_rows_do_not_abort_the_run(self) -> None:
        good = {"system_time": "2024-03-04T08:00:00Z", "value": 120}
        report = analyze_rows(
            glucose_rows=[None, good],  # type: ignore[list-item]
            meal_rows=["oops"],  # type: ignore[list-item]
        )

        assert report.skipped_rows == {"glucose": 1, "meals": 1, "insulin": 0, "sensors": 0}
        assert isinstance(report.summary, GlucoseSummary)
        assert report.summary.count == 1

    def test_report_is_frozen(self) -> None:
        report = analyze_rows()
        assert isinstance(report, AnalysisReport)
        with pytest.raises(ValueError, match="frozen"):
            report.insights = []  # type: ignore


class TestCommandLine:
    @pytest.fixture(autouse=True)
    def fresh_config(self) -> None:
        get_config.cache_clear()

    def test_json_report(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        export = tmp_path / "export.json"
        export.write_text(
            json.dumps(
                {
                    "glucose": [
                        {"system_time": "2024-03-04T08:00:00Z", "value": 240},
                        {"system_time": "2024-03-04T08:05:00Z", "value": 250},
                    ],
                    "insulin": [{"taken_at": "2024-03-04T08:00:00Z", "units": 4}],
                }
            )
        )

        assert main([str(export), "--json", "--now", "2024-03-04T09:00:00+00:00"]) == 0

        payload = json.loads(capsys.readouterr().out)
        assert payload["summary"]["count"] == 2
        assert payload["overall_severity"] == "warning"
        assert payload["insulin_on_board"]["active_doses"] == 1

    def test_missing_export_file(self, tmp_path: Path) -> None:
        assert main([str(tmp_path / "nope.json")]) == 1

    def test_export_argument_required(self) -> None:
        assert main([]) == 2

    def test_show_config(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["--show-config", "--timezone", "Europe/Paris"]) == 0
        assert "Timezone: Europe/Paris" in capsys.readouterr().out

    def test_bad_timezone(self) -> None:
        assert main(["--show-config", "--timezone", "Nowhere/Special"]) == 2

    def test_bad_timezone_in_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CGM_TIMEZONE", "Nowhere/Special")
        assert main(["--show-config"]) == 2

    def test_inverted_peak_window_in_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CGM_PEAK_WINDOW_START_MINUTES", "200")
        monkeypatch.setenv("CGM_PEAK_WINDOW_END_MINUTES", "60")
        assert main(["--show-config"]) == 2

"""
Configuration management with environment variable support and validation.

Design principles:
- Every threshold and window lives in one injectable AnalysisConfig
- Validation at construction (fail fast on bad windows or thresholds)
- Type safety with Pydantic
- Per-call overrides without touching process-wide defaults
"""

import logging
import os
from collections.abc import Mapping
from datetime import datetime
from functools import lru_cache
from typing import Any, Literal, cast
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Load environment variables from .env file
load_dotenv()


class RangeThresholds(BaseModel):
    """Glucose range boundaries in mg/dL."""

    model_config = ConfigDict(frozen=True)

    very_low: int = Field(default=54, gt=0, description="Readings below this are very low")
    low: int = Field(default=70, gt=0, description="Readings below this are low")
    high: int = Field(default=180, gt=0, description="Readings above this are high")
    very_high: int = Field(default=250, gt=0, description="Readings above this are very high")

    @model_validator(mode="after")
    def boundaries_ascend(self) -> "RangeThresholds":
        if not self.very_low < self.low < self.high < self.very_high:
            raise ValueError(
                "range thresholds must satisfy very_low < low < high < very_high, got "
                f"{self.very_low}/{self.low}/{self.high}/{self.very_high}"
            )
        return self


class TimeBucket(BaseModel):
    """Half-open span of local hours, [start_hour, end_hour)."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    start_hour: int = Field(ge=0, le=23)
    end_hour: int = Field(ge=1, le=24)

    @model_validator(mode="after")
    def start_before_end(self) -> "TimeBucket":
        if self.start_hour >= self.end_hour:
            raise ValueError(f"time bucket {self.name!r} must start before it ends")
        return self

    def contains(self, hour: int) -> bool:
        return self.start_hour <= hour < self.end_hour


def _check_buckets(buckets: list[TimeBucket], label: str) -> list[TimeBucket]:
    names = [b.name for b in buckets]
    if len(set(names)) != len(names):
        raise ValueError(f"{label} names must be unique: {names}")
    ordered = sorted(buckets, key=lambda b: b.start_hour)
    for previous, current in zip(ordered, ordered[1:]):
        if current.start_hour < previous.end_hour:
            raise ValueError(f"{label} {previous.name!r} and {current.name!r} overlap")
    return buckets


def default_time_buckets() -> list[TimeBucket]:
    return [
        TimeBucket(name="night", start_hour=0, end_hour=6),
        TimeBucket(name="morning", start_hour=6, end_hour=12),
        TimeBucket(name="afternoon", start_hour=12, end_hour=18),
        TimeBucket(name="evening", start_hour=18, end_hour=24),
    ]


def default_meal_slots() -> list[TimeBucket]:
    return [
        TimeBucket(name="breakfast", start_hour=6, end_hour=11),
        TimeBucket(name="lunch", start_hour=11, end_hour=15),
        TimeBucket(name="dinner", start_hour=17, end_hour=22),
    ]


class MealWindowConfig(BaseModel):
    """Windows used to join meals with glucose readings."""

    model_config = ConfigDict(frozen=True)

    pre_window_minutes: float = Field(
        default=30.0, gt=0.0, description="Baseline window length before the meal"
    )
    peak_window_start_minutes: float = Field(
        default=60.0, ge=0.0, description="Peak window start, minutes after the meal"
    )
    peak_window_end_minutes: float = Field(
        default=180.0, gt=0.0, description="Peak window end, minutes after the meal"
    )

    @model_validator(mode="after")
    def peak_window_ordered(self) -> "MealWindowConfig":
        if self.peak_window_start_minutes > self.peak_window_end_minutes:
            raise ValueError("peak window start must not be after its end")
        return self


class FoodImpactConfig(BaseModel):
    """Food ranking and classification thresholds (mg/dL rise, grams)."""

    model_config = ConfigDict(frozen=True)

    low_spike_threshold: float = Field(default=30.0, description="avg rise below this is low")
    moderate_spike_threshold: float = Field(default=40.0)
    severe_spike_threshold: float = Field(default=60.0)
    min_occurrences: int = Field(default=1, ge=1, description="Foods seen fewer times are dropped")
    top_spikers_limit: int = Field(default=5, gt=0)
    frequent_foods_limit: int = Field(default=3, gt=0)
    high_carb_meal_grams: float = Field(default=80.0, gt=0.0)
    meal_slots: list[TimeBucket] = Field(default_factory=default_meal_slots)
    fallback_slot: str = Field(default="snack", min_length=1)

    @field_validator("meal_slots")
    @classmethod
    def slots_disjoint(cls, v: list[TimeBucket]) -> list[TimeBucket]:
        return _check_buckets(v, "meal slot")

    @model_validator(mode="after")
    def spike_thresholds_ordered(self) -> "FoodImpactConfig":
        if self.moderate_spike_threshold >= self.severe_spike_threshold:
            raise ValueError("moderate spike threshold must be below the severe one")
        return self


class InsulinConfig(BaseModel):
    """Insulin dosing pattern thresholds."""

    model_config = ConfigDict(frozen=True)

    stacking_window_hours: float = Field(default=2.0, gt=0.0)
    stacking_unit_threshold: float = Field(default=2.0, ge=0.0)
    high_daily_total_units: float = Field(default=100.0, gt=0.0)
    low_daily_total_units: float = Field(default=20.0, ge=0.0)
    large_dose_units: float = Field(default=15.0, gt=0.0)
    bolus_action_hours: float = Field(default=4.0, gt=0.0, description="Rapid-acting duration")
    basal_action_hours: float = Field(default=24.0, gt=0.0, description="Long-acting duration")


def default_wear_days() -> dict[str, int]:
    return {"dexcom-g6": 10, "dexcom-g7": 10, "freestyle-libre": 14}


class SensorConfig(BaseModel):
    """Sensor wear-time catalog and expiration thresholds."""

    model_config = ConfigDict(frozen=True)

    wear_days: dict[str, int] = Field(default_factory=default_wear_days)
    default_wear_days: int = Field(default=10, gt=0)
    warning_days_left: int = Field(default=3, ge=0)
    critical_days_left: int = Field(default=1, ge=0)

    @field_validator("wear_days")
    @classmethod
    def wear_days_positive(cls, v: dict[str, int]) -> dict[str, int]:
        for model, days in v.items():
            if days <= 0:
                raise ValueError(f"wear days for {model!r} must be positive")
        return {model.strip().lower(): days for model, days in v.items()}

    def wear_days_for(self, model: str | None) -> int:
        if model is None:
            return self.default_wear_days
        return self.wear_days.get(model.strip().lower(), self.default_wear_days)


class InsightThresholds(BaseModel):
    """Thresholds applied by the insight rules."""

    model_config = ConfigDict(frozen=True)

    time_in_range_target: float = Field(default=70.0, ge=0.0, le=100.0)
    variability_cv_threshold: float = Field(default=36.0, gt=0.0)
    time_of_day_high: float = Field(default=180.0, gt=0.0)
    nocturnal_low: float = Field(default=70.0, gt=0.0)
    night_bucket: str = Field(default="night", min_length=1)


class AnalysisConfig(BaseModel):
    """All knobs for one engine invocation, with documented defaults."""

    model_config = ConfigDict(frozen=True)

    timezone: str = Field(default="UTC", description="IANA zone used for local hours and days")
    ranges: RangeThresholds = Field(default_factory=RangeThresholds)
    time_buckets: list[TimeBucket] = Field(default_factory=default_time_buckets)
    meal_windows: MealWindowConfig = Field(default_factory=MealWindowConfig)
    food: FoodImpactConfig = Field(default_factory=FoodImpactConfig)
    insulin: InsulinConfig = Field(default_factory=InsulinConfig)
    sensors: SensorConfig = Field(default_factory=SensorConfig)
    insights: InsightThresholds = Field(default_factory=InsightThresholds)

    @field_validator("timezone")
    @classmethod
    def known_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown timezone {v!r}") from e
        return v

    @field_validator("time_buckets")
    @classmethod
    def buckets_disjoint(cls, v: list[TimeBucket]) -> list[TimeBucket]:
        return _check_buckets(v, "time bucket")

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def localize(self, timestamp: datetime) -> datetime:
        """Express a timestamp in the configured local zone."""
        return timestamp.astimezone(self.tzinfo)

    def bucket_for(self, timestamp: datetime) -> str | None:
        """Name of the time bucket holding the local hour, None if uncovered."""
        hour = self.localize(timestamp).hour
        for bucket in self.time_buckets:
            if bucket.contains(hour):
                return bucket.name
        return None

    def with_overrides(self, overrides: Mapping[str, Any]) -> "AnalysisConfig":
        """Return a validated copy with nested overrides merged in."""

        def _merge(base: dict[str, Any], extra: Mapping[str, Any]) -> dict[str, Any]:
            merged = dict(base)
            for key, value in extra.items():
                if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
                    merged[key] = _merge(merged[key], value)
                else:
                    merged[key] = value
            return merged

        return AnalysisConfig.model_validate(_merge(self.model_dump(), overrides))


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
        v = val.strip().lower()
        if v in {"dev", "development"}:
            return "development"
        if v in {"stage", "staging"}:
            return "staging"
        return "production"

    def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
        v = val.strip().upper()
        return cast(
            Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
        )

    def _overrides(mapping: dict[str, str]) -> dict[str, str]:
        # Only variables that are actually set; pydantic coerces the strings
        return {field: os.environ[var] for var, field in mapping.items() if os.getenv(var)}

    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    analysis = AnalysisConfig(
        timezone=os.getenv("CGM_TIMEZONE", "UTC"),
        ranges=RangeThresholds.model_validate(
            _overrides(
                {
                    "CGM_VERY_LOW_THRESHOLD": "very_low",
                    "CGM_LOW_THRESHOLD": "low",
                    "CGM_HIGH_THRESHOLD": "high",
                    "CGM_VERY_HIGH_THRESHOLD": "very_high",
                }
            )
        ),
        meal_windows=MealWindowConfig.model_validate(
            _overrides(
                {
                    "CGM_PRE_MEAL_WINDOW_MINUTES": "pre_window_minutes",
                    "CGM_PEAK_WINDOW_START_MINUTES": "peak_window_start_minutes",
                    "CGM_PEAK_WINDOW_END_MINUTES": "peak_window_end_minutes",
                }
            )
        ),
        food=FoodImpactConfig.model_validate(
            _overrides(
                {
                    "CGM_LOW_SPIKE_THRESHOLD": "low_spike_threshold",
                    "CGM_MIN_FOOD_OCCURRENCES": "min_occurrences",
                }
            )
        ),
        insulin=InsulinConfig.model_validate(
            _overrides(
                {
                    "CGM_STACKING_WINDOW_HOURS": "stacking_window_hours",
                    "CGM_STACKING_UNIT_THRESHOLD": "stacking_unit_threshold",
                    "CGM_HIGH_DAILY_TOTAL_UNITS": "high_daily_total_units",
                }
            )
        ),
    )

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    return AppConfig(
        environment=environment,
        debug=debug,
        analysis=analysis,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


def configure_logging(config: LoggingConfig | None = None) -> None:
    """Configure structlog for the chosen level and renderer."""
    config = config or get_config().logging
    logging.basicConfig(format="%(message)s", level=getattr(logging, config.level))

    renderer = (
        structlog.dev.ConsoleRenderer()
        if config.format == "console"
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def print_config_summary(config: AnalysisConfig | None = None) -> None:
    """Print configuration summary for debugging."""
    config = config or get_config().analysis

    print("\nANALYSIS CONFIGURATION")
    print(f"Timezone: {config.timezone}")
    r = config.ranges
    print(f"Ranges (mg/dL): <{r.very_low} / <{r.low} / >{r.high} / >{r.very_high}")
    print(
        "Time buckets: "
        + ", ".join(f"{b.name} {b.start_hour:02d}-{b.end_hour:02d}" for b in config.time_buckets)
    )

    w = config.meal_windows
    print("\nMEAL WINDOWS")
    print(f"Baseline: {w.pre_window_minutes:g} min before")
    print(f"Peak: {w.peak_window_start_minutes:g}-{w.peak_window_end_minutes:g} min after")
    print(f"Low spike threshold: {config.food.low_spike_threshold:g} mg/dL")

    i = config.insulin
    print("\nINSULIN")
    print(f"Stacking: >{i.stacking_unit_threshold:g}U within {i.stacking_window_hours:g}h")
    print(f"High daily total: >{i.high_daily_total_units:g}U")


if __name__ == "__main__":
    print_config_summary()

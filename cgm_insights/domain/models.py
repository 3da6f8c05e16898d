"""
Domain models for glucose, meal, insulin and sensor pattern analysis.

These models represent the event streams the engine consumes and the records it
derives from them. They are framework-agnostic and immutable: every analyzer is
a pure function over a snapshot of these objects.
"""

import math
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, computed_field

UNKNOWN_FOOD = "unknown food"


def assume_utc(value: datetime) -> datetime:
    """Naive timestamps are taken as UTC so all streams stay comparable."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


Timestamp = Annotated[datetime, AfterValidator(assume_utc)]


def normalize_food_name(name: str) -> str:
    """Grouping key for a food: trimmed and case-folded."""
    key = name.strip().casefold()
    return key or UNKNOWN_FOOD


class InsulinKind(str, Enum):
    """Rapid-acting (meal-time) vs long-acting (background) insulin."""

    BOLUS = "bolus"
    BASAL = "basal"


class Severity(str, Enum):
    """Severity attached to an insight."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class RangeBucket(str, Enum):
    """Glucose ranges; together they partition every possible reading."""

    VERY_LOW = "very_low"
    LOW = "low"
    IN_RANGE = "in_range"
    HIGH = "high"
    VERY_HIGH = "very_high"


class SpikeLevel(str, Enum):
    SEVERE = "severe"
    MODERATE = "moderate"
    MILD = "mild"


class ExpirationStatus(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"


class InsightCategory(str, Enum):
    """Kinds of findings the insight composer can emit."""

    GLYCEMIC_CONTROL = "glycemic_control"
    VARIABILITY = "variability"
    TIME_OF_DAY_PATTERN = "time_of_day_pattern"
    NOCTURNAL_HYPOGLYCEMIA_RISK = "nocturnal_hypoglycemia_risk"
    FOOD_IMPACT = "food_impact"
    INSULIN_STACKING = "insulin_stacking"
    HIGH_INSULIN_USE = "high_insulin_use"
    LARGE_DOSE = "large_dose"
    LOW_INSULIN_USE = "low_insulin_use"
    HIGH_CARB_MEAL = "high_carb_meal"
    SENSOR_EXPIRATION = "sensor_expiration"


# Input streams


class GlucoseReading(BaseModel):
    """Single CGM or fingerstick reading."""

    model_config = ConfigDict(frozen=True)

    timestamp: Timestamp
    value: int = Field(ge=0, description="Glucose in mg/dL")


class MealEvent(BaseModel):
    """Logged meal with its carbohydrate content."""

    model_config = ConfigDict(frozen=True)

    timestamp: Timestamp
    food_name: str
    carb_grams: float = Field(default=0.0, ge=0.0, allow_inf_nan=False)

    @property
    def food_key(self) -> str:
        return normalize_food_name(self.food_name)


class InsulinDose(BaseModel):
    """
    Logged insulin dose.

    ``units`` is unconstrained here: the insulin analyzer excludes
    non-finite or negative doses and reports how many it skipped.
    """

    model_config = ConfigDict(frozen=True)

    timestamp: Timestamp
    units: float
    kind: InsulinKind = InsulinKind.BOLUS

    @property
    def is_valid(self) -> bool:
        return math.isfinite(self.units) and self.units >= 0


class SensorRecord(BaseModel):
    """Physical CGM sensor; a missing ``removed_at`` means it is still worn."""

    model_config = ConfigDict(frozen=True)

    inserted_at: Timestamp
    removed_at: Timestamp | None = None
    model: str | None = Field(default=None, description="Sensor model id, e.g. dexcom-g7")

    @property
    def is_active(self) -> bool:
        return self.removed_at is None


# Derived records


class MealImpact(BaseModel):
    """Glycemic impact of one meal: baseline mean before it, peak after it."""

    model_config = ConfigDict(frozen=True)

    meal: MealEvent
    baseline: float
    peak: float

    @computed_field(return_type=float)
    def rise(self) -> float:
        """Peak minus baseline; negative when glucose fell after the meal."""
        return self.peak - self.baseline


class FoodProfile(BaseModel):
    """Aggregated impact of every logged occurrence of one food."""

    model_config = ConfigDict(frozen=True)

    food_name: str
    avg_rise: float
    max_rise: float
    min_rise: float
    avg_baseline: float = Field(description="Mean pre-meal glucose across occurrences")
    avg_peak: float = Field(description="Mean post-meal peak across occurrences")
    avg_carbs: float
    sample_count: int = Field(gt=0)
    spike_per_carb: float | None = Field(
        default=None, description="avg_rise / avg_carbs, absent when no carbs were logged"
    )
    consistency_score: int | None = Field(
        default=None, ge=0, le=100, description="100 means every occurrence spiked the same"
    )


class StackingEvent(BaseModel):
    """Two adjacent doses close enough in time for their action to overlap."""

    model_config = ConfigDict(frozen=True)

    earlier: InsulinDose
    later: InsulinDose
    hours_apart: float = Field(ge=0.0)


class Insight(BaseModel):
    """Structured, severity-tagged finding for the presentation layer."""

    model_config = ConfigDict(frozen=True)

    category: InsightCategory
    severity: Severity
    metrics: dict[str, float] = Field(default_factory=dict)
    subject: str | None = Field(
        default=None, description="Time bucket, food or sensor the finding is about"
    )


class NoData(BaseModel):
    """Insufficient data for an analyzer; a normal outcome, not an error."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["no_data"] = "no_data"
    reason: str
    skipped: int = Field(default=0, ge=0)

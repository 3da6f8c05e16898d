"""
Input boundary: turn raw storage rows into typed events.

The storage layer hands back loosely typed rows (dicts keyed by column name).
Each row is parsed on its own. A row with an unparseable timestamp or a
non-numeric field is skipped and counted, as is an entry that is not a
mapping at all, so one bad record never aborts the batch.
"""

from collections.abc import Callable, Iterable, Mapping
from typing import Any, Generic, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, Field

from cgm_insights.domain.models import (
    GlucoseReading,
    InsulinDose,
    InsulinKind,
    MealEvent,
    SensorRecord,
)

logger = structlog.get_logger(__name__)

Row = Mapping[str, Any]

# Generic Result type for explicit error handling
ValueT = TypeVar("ValueT")
ErrorT = TypeVar("ErrorT", bound=BaseException)
EventT = TypeVar("EventT", bound=BaseModel)


class Result(Generic[ValueT, ErrorT]):
    """
    Explicit error handling without exceptions for expected failures.

    A malformed row is expected data-quality noise, not an exceptional
    condition, so row parsers return a Result instead of raising.
    """

    def __init__(self, value: ValueT | None = None, error: ErrorT | None = None) -> None:
        if value is not None and error is not None:
            raise ValueError("Result cannot have both value and error")
        if value is None and error is None:
            raise ValueError("Result must have either value or error")
        self._value: ValueT | None = value
        self._error: ErrorT | None = error

    @classmethod
    def ok(cls, value: ValueT) -> "Result[ValueT, ErrorT]":
        return cls(value=value)

    @classmethod
    def err(cls, error: ErrorT) -> "Result[ValueT, ErrorT]":
        return cls(error=error)

    def is_ok(self) -> bool:
        return self._error is None

    def is_err(self) -> bool:
        return self._error is not None

    def unwrap(self) -> ValueT:
        if self._error is not None:
            raise self._error
        return self._value  # type: ignore

    def unwrap_err(self) -> ErrorT:
        if self._error is None:
            raise ValueError("Called unwrap_err() on an Ok value")
        return self._error


class ParsedBatch(BaseModel, Generic[EventT]):
    """Events that parsed cleanly plus the number of rows that did not."""

    model_config = ConfigDict(frozen=True)

    items: list[EventT] = Field(default_factory=list)
    skipped: int = Field(default=0, ge=0)


def _first(row: Row, *keys: str) -> Any:
    """Value of the first present, non-null key."""
    for key in keys:
        value = row.get(key)
        if value is not None:
            return value
    raise KeyError(f"none of {', '.join(keys)} present")


def _food_name(row: Row) -> str:
    """Resolve a display name: joined product, then free-text, then meal type."""
    item = row.get("food_items")
    if isinstance(item, Mapping) and item.get("product_name"):
        name = str(item["product_name"])
        brand = item.get("brand")
        if brand and str(brand).lower() not in name.lower():
            name = f"{brand} {name}"
        return name
    if row.get("product_name"):
        return str(row["product_name"])
    if row.get("custom_food_name"):
        return str(row["custom_food_name"])
    if row.get("meal_type"):
        return f"{row['meal_type']} meal"
    return "Unknown food"


def _insulin_kind(raw: Any) -> InsulinKind:
    label = str(raw or "").lower()
    if "basal" in label or "long" in label:
        return InsulinKind.BASAL
    return InsulinKind.BOLUS


def parse_glucose_row(row: Row) -> Result[GlucoseReading, ValueError]:
    try:
        return Result.ok(
            GlucoseReading(
                timestamp=_first(row, "system_time", "reading_time", "timestamp"),
                value=_first(row, "value"),
            )
        )
    except (KeyError, TypeError, ValueError) as e:
        return Result.err(ValueError(f"bad glucose row: {e}"))


def parse_meal_row(row: Row) -> Result[MealEvent, ValueError]:
    try:
        return Result.ok(
            MealEvent(
                timestamp=_first(row, "logged_at", "timestamp"),
                food_name=_food_name(row),
                carb_grams=row.get("total_carbs_g") or 0.0,
            )
        )
    except (KeyError, TypeError, ValueError) as e:
        return Result.err(ValueError(f"bad meal row: {e}"))


def parse_insulin_row(row: Row) -> Result[InsulinDose, ValueError]:
    try:
        return Result.ok(
            InsulinDose(
                timestamp=_first(row, "taken_at", "timestamp"),
                units=_first(row, "units"),
                kind=_insulin_kind(row.get("insulin_type") or row.get("kind")),
            )
        )
    except (KeyError, TypeError, ValueError) as e:
        return Result.err(ValueError(f"bad insulin row: {e}"))


def parse_sensor_row(row: Row) -> Result[SensorRecord, ValueError]:
    try:
        return Result.ok(
            SensorRecord(
                inserted_at=_first(row, "inserted_at", "date_added"),
                removed_at=row.get("removed_at"),
                model=row.get("sensor_model") or row.get("model"),
            )
        )
    except (KeyError, TypeError, ValueError) as e:
        return Result.err(ValueError(f"bad sensor row: {e}"))


def _collect(
    rows: Iterable[Row],
    parser: Callable[[Row], Result[EventT, ValueError]],
    stream: str,
) -> tuple[list[EventT], int]:
    items: list[EventT] = []
    skipped = 0
    for index, row in enumerate(rows):
        if isinstance(row, Mapping):
            result = parser(row)
        else:
            result = Result.err(ValueError(f"row is not a mapping: {type(row).__name__}"))
        if result.is_ok():
            items.append(result.unwrap())
        else:
            skipped += 1
            logger.warning(
                "row_skipped", stream=stream, index=index, error=str(result.unwrap_err())
            )

    if skipped:
        logger.info("rows_parsed", stream=stream, parsed=len(items), skipped=skipped)
    return items, skipped


def parse_glucose_rows(rows: Iterable[Row]) -> ParsedBatch[GlucoseReading]:
    items, skipped = _collect(rows, parse_glucose_row, "glucose")
    return ParsedBatch[GlucoseReading](items=items, skipped=skipped)


def parse_meal_rows(rows: Iterable[Row]) -> ParsedBatch[MealEvent]:
    items, skipped = _collect(rows, parse_meal_row, "meals")
    return ParsedBatch[MealEvent](items=items, skipped=skipped)


def parse_insulin_rows(rows: Iterable[Row]) -> ParsedBatch[InsulinDose]:
    items, skipped = _collect(rows, parse_insulin_row, "insulin")
    return ParsedBatch[InsulinDose](items=items, skipped=skipped)


def parse_sensor_rows(rows: Iterable[Row]) -> ParsedBatch[SensorRecord]:
    items, skipped = _collect(rows, parse_sensor_row, "sensors")
    return ParsedBatch[SensorRecord](items=items, skipped=skipped)

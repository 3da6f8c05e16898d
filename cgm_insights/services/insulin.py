"""
Insulin dosing statistics, dose-stacking detection and insulin on board.

Stacking means two doses close enough together that their action overlaps.
Detection compares each dose with the next one in time, so doses are always
sorted by timestamp first: adjacency in arrival order means nothing.
"""

import math
from collections import Counter
from collections.abc import Sequence
from datetime import datetime
from statistics import fmean

import structlog
from pydantic import BaseModel, ConfigDict, Field

from cgm_insights.config import AnalysisConfig, InsulinConfig
from cgm_insights.domain.models import (
    InsulinDose,
    InsulinKind,
    NoData,
    StackingEvent,
    assume_utc,
)
from cgm_insights.services.statistics import BucketStat, bucket_means

logger = structlog.get_logger(__name__)

SECONDS_PER_HOUR = 3600.0


class DoseSummary(BaseModel):
    """Dosing statistics over the valid doses of a batch."""

    model_config = ConfigDict(frozen=True)

    count: int = Field(gt=0, description="Doses included in the statistics")
    skipped: int = Field(default=0, ge=0, description="Non-finite or negative doses")
    total_units: float
    mean_units: float
    min_units: float
    max_units: float
    largest_dose: InsulinDose
    by_kind: dict[InsulinKind, int]
    time_of_day: dict[str, BucketStat]
    days_with_doses: int = Field(gt=0)
    estimated_daily_total: float
    stacking_events: list[StackingEvent] = Field(default_factory=list)


class InsulinOnBoard(BaseModel):
    """Insulin still expected to be acting at ``at``."""

    model_config = ConfigDict(frozen=True)

    at: datetime
    total_units: float = Field(ge=0.0, description="Valid units considered")
    active_units: float = Field(ge=0.0)
    expired_units: float = Field(ge=0.0)
    active_doses: int = Field(ge=0)


def detect_stacking(
    doses: Sequence[InsulinDose],
    window_hours: float = 2.0,
    unit_threshold: float = 2.0,
) -> list[StackingEvent]:
    """
    Adjacent dose pairs closer than ``window_hours`` where both exceed
    ``unit_threshold`` units.
    """
    ordered = sorted(doses, key=lambda d: d.timestamp)
    events = []
    for earlier, later in zip(ordered, ordered[1:]):
        hours_apart = (later.timestamp - earlier.timestamp).total_seconds() / SECONDS_PER_HOUR
        if (
            hours_apart < window_hours
            and earlier.units > unit_threshold
            and later.units > unit_threshold
        ):
            events.append(StackingEvent(earlier=earlier, later=later, hours_apart=hours_apart))
    return events


def analyze_doses(
    doses: Sequence[InsulinDose], config: AnalysisConfig | None = None
) -> DoseSummary | NoData:
    """Summarize dosing; invalid doses are skipped and counted, never fatal."""
    config = config or AnalysisConfig()
    insulin = config.insulin

    valid = [d for d in doses if d.is_valid]
    skipped = len(doses) - len(valid)
    if skipped:
        logger.warning("invalid_doses_skipped", skipped=skipped, total=len(doses))

    if not valid:
        return NoData(reason="no valid insulin doses", skipped=skipped)

    units = [d.units for d in valid]
    total = math.fsum(units)
    days = {config.localize(d.timestamp).date() for d in valid}
    kinds = Counter(d.kind for d in valid)
    stacking = detect_stacking(
        valid, insulin.stacking_window_hours, insulin.stacking_unit_threshold
    )

    if stacking:
        logger.info("insulin_stacking_detected", events=len(stacking))

    return DoseSummary(
        count=len(valid),
        skipped=skipped,
        total_units=total,
        mean_units=fmean(units),
        min_units=min(units),
        max_units=max(units),
        largest_dose=min(valid, key=lambda d: (-d.units, d.timestamp)),
        by_kind={kind: kinds[kind] for kind in InsulinKind},
        time_of_day=bucket_means(((d.timestamp, d.units) for d in valid), config),
        days_with_doses=len(days),
        estimated_daily_total=total / max(1, len(days)),
        stacking_events=stacking,
    )


def decay_factor(hours_elapsed: float, duration_hours: float) -> float:
    """Fraction of a dose still acting after ``hours_elapsed``."""
    if hours_elapsed < 0:
        raise ValueError("hours elapsed cannot be negative")
    if duration_hours <= 0:
        raise ValueError("duration must be positive")

    if hours_elapsed >= duration_hours:
        return 0.0
    if hours_elapsed == 0:
        return 1.0
    return max(0.0, min(1.0, math.exp(-(4 / duration_hours) * hours_elapsed)))


def action_hours(kind: InsulinKind, config: InsulinConfig) -> float:
    if kind is InsulinKind.BASAL:
        return config.basal_action_hours
    return config.bolus_action_hours


def insulin_on_board(
    doses: Sequence[InsulinDose], now: datetime, config: AnalysisConfig | None = None
) -> InsulinOnBoard:
    """
    Units still acting at ``now`` under an exponential decay model.

    Doses logged after ``now`` count as fully active. Invalid doses are ignored.
    """
    config = config or AnalysisConfig()
    now = assume_utc(now)

    total = 0.0
    active = 0.0
    expired = 0.0
    active_doses = 0
    for dose in doses:
        if not dose.is_valid:
            continue
        total += dose.units
        elapsed = max(0.0, (now - dose.timestamp).total_seconds() / SECONDS_PER_HOUR)
        remaining = dose.units * decay_factor(elapsed, action_hours(dose.kind, config.insulin))
        if remaining > 0:
            active += remaining
            active_doses += 1
        else:
            expired += dose.units

    return InsulinOnBoard(
        at=now,
        total_units=round(total, 2),
        active_units=round(active, 2),
        expired_units=round(expired, 2),
        active_doses=active_doses,
    )

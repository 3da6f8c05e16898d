"""
Sensor longevity statistics and wear-time expiration for active sensors.
"""

import math
from collections.abc import Sequence
from datetime import datetime, timedelta
from statistics import fmean

import structlog
from pydantic import BaseModel, ConfigDict, Field

from cgm_insights.config import AnalysisConfig, SensorConfig
from cgm_insights.domain.models import ExpirationStatus, NoData, SensorRecord, assume_utc

logger = structlog.get_logger(__name__)

MILLISECONDS_PER_DAY = 86_400_000
ONE_DAY = timedelta(milliseconds=MILLISECONDS_PER_DAY)


class SensorExpiration(BaseModel):
    """Where an active sensor stands against its labelled wear time."""

    model_config = ConfigDict(frozen=True)

    inserted_at: datetime
    model: str | None = None
    expires_at: datetime
    days_left: int = Field(description="Whole days until expiry, rounded up; negative once expired")
    status: ExpirationStatus

    @property
    def is_expired(self) -> bool:
        return self.days_left < 0


class LifecycleSummary(BaseModel):
    """Active and completed sensor counts and completed-sensor durations."""

    model_config = ConfigDict(frozen=True)

    total: int = Field(gt=0)
    active_count: int = Field(ge=0)
    completed_count: int = Field(ge=0, description="Completed sensors with a valid duration")
    malformed_count: int = Field(ge=0, description="Removed at or before insertion")
    mean_duration_days: float | None = None
    min_duration_days: float | None = None
    max_duration_days: float | None = None
    expirations: list[SensorExpiration] = Field(default_factory=list)


def duration_days(sensor: SensorRecord) -> float | None:
    """Wear time of a removed sensor; None if still active or malformed."""
    if sensor.removed_at is None or sensor.removed_at <= sensor.inserted_at:
        return None
    return (sensor.removed_at - sensor.inserted_at) / ONE_DAY


def expiration_for(sensor: SensorRecord, now: datetime, config: SensorConfig) -> SensorExpiration:
    expires_at = sensor.inserted_at + timedelta(days=config.wear_days_for(sensor.model))
    days_left = math.ceil((expires_at - now) / ONE_DAY)

    if days_left <= config.critical_days_left:
        status = ExpirationStatus.CRITICAL
    elif days_left <= config.warning_days_left:
        status = ExpirationStatus.WARNING
    else:
        status = ExpirationStatus.NORMAL

    return SensorExpiration(
        inserted_at=sensor.inserted_at,
        model=sensor.model,
        expires_at=expires_at,
        days_left=days_left,
        status=status,
    )


def analyze_sensors(
    sensors: Sequence[SensorRecord],
    config: AnalysisConfig | None = None,
    now: datetime | None = None,
) -> LifecycleSummary | NoData:
    """
    Partition sensors into active and completed and summarize wear time.

    Expiration is only computed when ``now`` is given; the analyzer never reads
    the clock itself.
    """
    config = config or AnalysisConfig()

    if not sensors:
        return NoData(reason="no sensors tracked")

    active = [s for s in sensors if s.is_active]
    removed = [s for s in sensors if not s.is_active]
    durations = [d for d in map(duration_days, removed) if d is not None]
    malformed = len(removed) - len(durations)

    if malformed:
        logger.warning("malformed_sensors_skipped", malformed=malformed, total=len(sensors))

    expirations: list[SensorExpiration] = []
    if now is not None:
        now = assume_utc(now)
        expirations = sorted(
            (expiration_for(s, now, config.sensors) for s in active),
            key=lambda e: (e.expires_at, e.inserted_at),
        )

    return LifecycleSummary(
        total=len(sensors),
        active_count=len(active),
        completed_count=len(durations),
        malformed_count=malformed,
        mean_duration_days=fmean(durations) if durations else None,
        min_duration_days=min(durations) if durations else None,
        max_duration_days=max(durations) if durations else None,
        expirations=expirations,
    )

"""
Distributional and time-of-day summaries over a set of glucose readings.
"""

from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import datetime
from statistics import fmean, pstdev

import structlog
from pydantic import BaseModel, ConfigDict, Field, computed_field

from cgm_insights.config import AnalysisConfig, RangeThresholds
from cgm_insights.domain.models import GlucoseReading, NoData, RangeBucket

logger = structlog.get_logger(__name__)


class RangeStat(BaseModel):
    model_config = ConfigDict(frozen=True)

    count: int = Field(ge=0)
    percentage: float = Field(ge=0.0, le=100.0)


class BucketStat(BaseModel):
    """Mean of a time-of-day bucket; only built for buckets with readings."""

    model_config = ConfigDict(frozen=True)

    count: int = Field(gt=0)
    mean: float


class ExtremeReading(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: int
    timestamp: datetime


class GlucoseSummary(BaseModel):
    """Statistical summary of a glucose reading set."""

    model_config = ConfigDict(frozen=True)

    count: int = Field(gt=0)
    mean: float
    std_dev: float = Field(ge=0.0, description="Population standard deviation")
    coefficient_of_variation: float | None = Field(
        default=None, description="std_dev / mean * 100, absent when the mean is zero"
    )
    minimum: ExtremeReading
    maximum: ExtremeReading
    ranges: dict[RangeBucket, RangeStat]
    time_of_day: dict[str, BucketStat] = Field(default_factory=dict)

    @computed_field(return_type=float)
    def time_in_range_percentage(self) -> float:
        return self.ranges[RangeBucket.IN_RANGE].percentage


def classify_range(value: float, thresholds: RangeThresholds) -> RangeBucket:
    """Place a reading in exactly one of the five range buckets."""
    if value < thresholds.very_low:
        return RangeBucket.VERY_LOW
    if value < thresholds.low:
        return RangeBucket.LOW
    if value > thresholds.very_high:
        return RangeBucket.VERY_HIGH
    if value > thresholds.high:
        return RangeBucket.HIGH
    return RangeBucket.IN_RANGE


def bucket_means(
    samples: Iterable[tuple[datetime, float]], config: AnalysisConfig
) -> dict[str, BucketStat]:
    """
    Mean value per time-of-day bucket.

    Buckets are returned in configuration order and buckets without samples
    are left out, so a mean is present exactly when its count is positive.
    Hours not covered by any bucket are ignored.
    """
    grouped: defaultdict[str, list[float]] = defaultdict(list)
    for timestamp, value in samples:
        name = config.bucket_for(timestamp)
        if name is not None:
            grouped[name].append(value)

    return {
        bucket.name: BucketStat(count=len(grouped[bucket.name]), mean=fmean(grouped[bucket.name]))
        for bucket in config.time_buckets
        if grouped.get(bucket.name)
    }


def summarize(
    readings: Sequence[GlucoseReading], config: AnalysisConfig | None = None
) -> GlucoseSummary | NoData:
    """Summarize a reading set; NoData when it is empty."""
    config = config or AnalysisConfig()

    if not readings:
        logger.info("glucose_summary_no_data")
        return NoData(reason="no glucose readings")

    values = [r.value for r in readings]
    count = len(values)
    mean = fmean(values)
    std_dev = pstdev(values, mu=mean)

    range_counts: defaultdict[RangeBucket, int] = defaultdict(int)
    for value in values:
        range_counts[classify_range(value, config.ranges)] += 1

    # Ties on value go to the earliest reading
    maximum = min(readings, key=lambda r: (-r.value, r.timestamp))
    minimum = min(readings, key=lambda r: (r.value, r.timestamp))

    summary = GlucoseSummary(
        count=count,
        mean=mean,
        std_dev=std_dev,
        coefficient_of_variation=std_dev / mean * 100 if mean != 0 else None,
        minimum=ExtremeReading(value=minimum.value, timestamp=minimum.timestamp),
        maximum=ExtremeReading(value=maximum.value, timestamp=maximum.timestamp),
        ranges={
            bucket: RangeStat(
                count=range_counts[bucket], percentage=range_counts[bucket] / count * 100
            )
            for bucket in RangeBucket
        },
        time_of_day=bucket_means(((r.timestamp, r.value) for r in readings), config),
    )

    logger.debug(
        "glucose_summary_computed",
        count=count,
        mean=round(mean, 1),
        time_in_range=round(summary.time_in_range_percentage, 1),
    )
    return summary

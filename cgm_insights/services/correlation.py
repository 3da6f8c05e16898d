"""
Windowed join between meal events and glucose readings.

For every meal the baseline is the mean of the readings in
``[meal - pre_window, meal)`` and the peak is the highest reading in
``[meal + peak_start, meal + peak_end]``. Meals missing either window are
dropped: partial overlap between logs and CGM data is normal.

Readings are sorted once and meals are visited in time order. Every window
edge only ever moves forward, so each edge is a pointer advanced
incrementally; a prefix-sum array gives the baseline mean and a monotonic
deque gives the sliding peak maximum. The join is O(n log n + m log m)
instead of O(n * m).
"""

from collections import deque
from collections.abc import Sequence
from datetime import datetime, timedelta
from itertools import accumulate

import structlog

from cgm_insights.config import MealWindowConfig
from cgm_insights.domain.models import GlucoseReading, MealEvent, MealImpact

logger = structlog.get_logger(__name__)


class _Edge:
    """Forward-only pointer over sorted timestamps."""

    def __init__(self, times: Sequence[datetime], inclusive: bool) -> None:
        self._times = times
        # inclusive: first index with time > bound; otherwise first with time >= bound
        self._inclusive = inclusive
        self.index = 0

    def advance_to(self, bound: datetime) -> int:
        times = self._times
        if self._inclusive:
            while self.index < len(times) and times[self.index] <= bound:
                self.index += 1
        else:
            while self.index < len(times) and times[self.index] < bound:
                self.index += 1
        return self.index


def correlate(
    meals: Sequence[MealEvent],
    readings: Sequence[GlucoseReading],
    pre_window_minutes: float = 30,
    peak_window_minutes: tuple[float, float] = (60, 180),
) -> list[MealImpact]:
    """
    Join meals with the readings around them.

    Returns one MealImpact per meal with readings in both windows, ordered by
    meal time. Raises ValueError for negative or inverted windows.
    """
    peak_start, peak_end = peak_window_minutes
    windows = MealWindowConfig(
        pre_window_minutes=pre_window_minutes,
        peak_window_start_minutes=peak_start,
        peak_window_end_minutes=peak_end,
    )
    return correlate_with(meals, readings, windows)


def correlate_with(
    meals: Sequence[MealEvent],
    readings: Sequence[GlucoseReading],
    windows: MealWindowConfig,
) -> list[MealImpact]:
    """Same as correlate(), with windows from an already-validated config."""
    if not meals or not readings:
        return []

    ordered = sorted(readings, key=lambda r: r.timestamp)
    times = [r.timestamp for r in ordered]
    values = [r.value for r in ordered]
    prefix = [0, *accumulate(values)]

    pre = timedelta(minutes=windows.pre_window_minutes)
    peak_from = timedelta(minutes=windows.peak_window_start_minutes)
    peak_to = timedelta(minutes=windows.peak_window_end_minutes)

    baseline_lo = _Edge(times, inclusive=False)
    baseline_hi = _Edge(times, inclusive=False)
    peak_lo = _Edge(times, inclusive=False)
    peak_hi = _Edge(times, inclusive=True)

    # Indices of candidate peak maxima, values strictly decreasing front to back
    candidates: deque[int] = deque()
    pushed = 0

    impacts: list[MealImpact] = []
    for meal in sorted(meals, key=lambda m: m.timestamp):
        t = meal.timestamp

        lo = baseline_lo.advance_to(t - pre)
        hi = baseline_hi.advance_to(t)

        start = peak_lo.advance_to(t + peak_from)
        end = peak_hi.advance_to(t + peak_to)
        while pushed < end:
            while candidates and values[candidates[-1]] <= values[pushed]:
                candidates.pop()
            candidates.append(pushed)
            pushed += 1
        while candidates and candidates[0] < start:
            candidates.popleft()

        if hi == lo or not candidates:
            continue

        impacts.append(
            MealImpact(
                meal=meal,
                baseline=(prefix[hi] - prefix[lo]) / (hi - lo),
                peak=float(values[candidates[0]]),
            )
        )

    logger.debug(
        "meals_correlated",
        meals=len(meals),
        readings=len(readings),
        impacts=len(impacts),
        dropped=len(meals) - len(impacts),
    )
    return impacts


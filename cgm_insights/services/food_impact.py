"""
Per-food glycemic impact, food risk ranking and meal carbohydrate patterns.
"""

from collections import Counter, defaultdict
from collections.abc import Sequence
from statistics import fmean, pstdev

import structlog
from pydantic import BaseModel, ConfigDict, Field

from cgm_insights.config import AnalysisConfig, FoodImpactConfig
from cgm_insights.domain.models import FoodProfile, MealEvent, MealImpact, NoData, SpikeLevel

logger = structlog.get_logger(__name__)


def ranking_key(profile: FoodProfile) -> tuple[float, float, str]:
    """Top-spiker order: avg rise desc, then max rise desc, then name asc."""
    return (-profile.avg_rise, -profile.max_rise, profile.food_name)


def _profile(food_name: str, impacts: list[MealImpact]) -> FoodProfile:
    rises = [i.rise for i in impacts]
    avg_rise = fmean(rises)
    avg_carbs = fmean(i.meal.carb_grams for i in impacts)

    consistency = None
    if avg_rise > 0:
        consistency = round(max(0.0, 100 - pstdev(rises, mu=avg_rise) / avg_rise * 100))

    return FoodProfile(
        food_name=food_name,
        avg_rise=avg_rise,
        max_rise=max(rises),
        min_rise=min(rises),
        avg_baseline=fmean(i.baseline for i in impacts),
        avg_peak=fmean(i.peak for i in impacts),
        avg_carbs=avg_carbs,
        sample_count=len(impacts),
        spike_per_carb=avg_rise / avg_carbs if avg_carbs > 0 else None,
        consistency_score=consistency,
    )


def aggregate(impacts: Sequence[MealImpact], min_occurrences: int = 1) -> list[FoodProfile]:
    """
    Group meal impacts by normalized food name.

    Foods seen fewer than ``min_occurrences`` times are dropped. The result is
    in top-spiker order and is identical for identical input.
    """
    if min_occurrences < 1:
        raise ValueError(f"min_occurrences must be at least 1, got {min_occurrences}")

    groups: defaultdict[str, list[MealImpact]] = defaultdict(list)
    for impact in impacts:
        groups[impact.meal.food_key].append(impact)

    profiles = [
        _profile(name, group) for name, group in groups.items() if len(group) >= min_occurrences
    ]
    profiles.sort(key=ranking_key)

    logger.debug("foods_aggregated", impacts=len(impacts), foods=len(profiles))
    return profiles


def top_spikers(profiles: Sequence[FoodProfile], limit: int = 5) -> list[FoodProfile]:
    return sorted(profiles, key=ranking_key)[:limit]


def low_spikers(
    profiles: Sequence[FoodProfile], threshold: float = 30, limit: int | None = None
) -> list[FoodProfile]:
    """Foods whose average rise stays under ``threshold``, gentlest first."""
    gentle = sorted(
        (p for p in profiles if p.avg_rise < threshold), key=lambda p: (p.avg_rise, p.food_name)
    )
    return gentle if limit is None else gentle[:limit]


def classify_spike(avg_rise: float, config: FoodImpactConfig | None = None) -> SpikeLevel:
    config = config or FoodImpactConfig()
    if avg_rise > config.severe_spike_threshold:
        return SpikeLevel.SEVERE
    if avg_rise > config.moderate_spike_threshold:
        return SpikeLevel.MODERATE
    return SpikeLevel.MILD


class SlotStat(BaseModel):
    model_config = ConfigDict(frozen=True)

    count: int = Field(gt=0)
    mean_carbs: float


class FoodFrequency(BaseModel):
    model_config = ConfigDict(frozen=True)

    food_name: str
    count: int = Field(gt=0)


class MealPatternSummary(BaseModel):
    """When meals happen and how carb-heavy they are."""

    model_config = ConfigDict(frozen=True)

    count: int = Field(gt=0)
    total_carbs: float
    mean_carbs: float
    max_carbs: float
    min_positive_carbs: float | None = Field(
        default=None, description="Smallest non-zero carb count, absent if all are zero"
    )
    slots: dict[str, SlotStat]
    frequent_foods: list[FoodFrequency]
    highest_carb_meal: MealEvent


def summarize_meals(
    meals: Sequence[MealEvent], config: AnalysisConfig | None = None
) -> MealPatternSummary | NoData:
    """Meal-slot breakdown and carbohydrate statistics; NoData for no meals."""
    config = config or AnalysisConfig()
    food = config.food

    if not meals:
        return NoData(reason="no meals logged")

    by_slot: defaultdict[str, list[float]] = defaultdict(list)
    for meal in meals:
        hour = config.localize(meal.timestamp).hour
        slot = next((s.name for s in food.meal_slots if s.contains(hour)), food.fallback_slot)
        by_slot[slot].append(meal.carb_grams)

    slot_order = [s.name for s in food.meal_slots] + [food.fallback_slot]
    carbs = [m.carb_grams for m in meals]
    positive = [c for c in carbs if c > 0]

    counts = Counter(m.food_key for m in meals)
    frequent = sorted(counts.items(), key=lambda item: (-item[1], item[0]))

    return MealPatternSummary(
        count=len(meals),
        total_carbs=sum(carbs),
        mean_carbs=fmean(carbs),
        max_carbs=max(carbs),
        min_positive_carbs=min(positive) if positive else None,
        slots={
            name: SlotStat(count=len(by_slot[name]), mean_carbs=fmean(by_slot[name]))
            for name in slot_order
            if by_slot.get(name)
        },
        frequent_foods=[
            FoodFrequency(food_name=name, count=count)
            for name, count in frequent[: food.frequent_foods_limit]
        ],
        highest_carb_meal=min(meals, key=lambda m: (-m.carb_grams, m.timestamp)),
    )

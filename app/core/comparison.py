"""Period-over-period comparison."""

import enum
import logging
from typing import Dict, Iterable, Mapping, Optional

from pydantic.alias_generators import to_camel

from app.config import settings

logger = logging.getLogger(__name__)


class Polarity(str, enum.Enum):
    """Which direction of change is an improvement for a metric."""

    HIGHER_IS_BETTER = "higher"
    LOWER_IS_BETTER = "lower"
    NEUTRAL = "neutral"


# Keyed by artifact (camelCase) metric name; anything missing is higher-is-better.
DEFAULT_POLARITY = {
    "bounceRate": Polarity.LOWER_IS_BETTER,
    "averageCpc": Polarity.LOWER_IS_BETTER,
    "position": Polarity.LOWER_IS_BETTER,
    "cost": Polarity.NEUTRAL,
}


def percent_change(current: float, previous: float) -> float:
    """
    Percentage change from previous to current, rounded to 2 decimals.

    A zero base reports 100 for any increase and 0 when both are zero,
    instead of an infinite ratio.
    """
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return round((current - previous) / previous * 100, 2)


def compute_changes(current: Mapping[str, float], previous: Mapping[str, float], tracked_metrics: Iterable[str]) -> Dict[str, float]:
    """Per-metric percentage change keyed by artifact metric name."""
    return {
        to_camel(metric): percent_change(float(current[metric]), float(previous[metric]))
        for metric in tracked_metrics
    }


def resolve_polarity(metric: str, overrides: Optional[Mapping[str, str]] = None) -> Polarity:
    """Polarity for a camelCase metric name, honouring configured overrides."""
    if overrides is None:
        overrides = settings.metric_polarity_map
    if metric in overrides:
        try:
            return Polarity(overrides[metric])
        except ValueError:
            logger.warning(f"Ignoring unknown polarity {overrides[metric]!r} for {metric}")
    return DEFAULT_POLARITY.get(metric, Polarity.HIGHER_IS_BETTER)


def change_direction(metric: str, change: float, overrides: Optional[Mapping[str, str]] = None) -> str:
    """Presentation label for a change: improved, declined, unchanged or neutral."""
    if change == 0:
        return "unchanged"
    polarity = resolve_polarity(metric, overrides)
    if polarity == Polarity.NEUTRAL:
        return "neutral"
    went_up = change > 0
    if polarity == Polarity.HIGHER_IS_BETTER:
        return "improved" if went_up else "declined"
    return "declined" if went_up else "improved"

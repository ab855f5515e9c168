"""
Module to score trending topics
"""
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable


@dataclass(frozen=True)
class ScoringWeights:
    volume: float = 0.3
    recency: float = 0.3
    engagement: float = 0.2
    sentiment: float = 0.2


DEFAULT_WEIGHTS = ScoringWeights()


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    if value != value:  # NaN
        return low
    return max(low, min(high, value))


def volume_score(count: int, total: int) -> float:
    """Share of the analysed corpus that belongs to the topic."""
    if total <= 0:
        return 0.0
    return clamp(count / total)


def recency_score(
    timestamps: Iterable[datetime],
    now: datetime,
    half_life_hours: float = 72.0,
) -> float:
    """
    Mean exponential decay of item ages. An item half_life_hours old
    contributes 0.5; future timestamps count as age zero.
    """
    decays = []
    for ts in timestamps:
        age_hours = max(0.0, (now - ts).total_seconds() / 3600.0)
        decays.append(math.exp(-math.log(2) * age_hours / half_life_hours))
    if not decays:
        return 0.0
    return clamp(sum(decays) / len(decays))


def engagement_score(avg_engagement: float, saturation: float = 100.0) -> float:
    """Average likes+shares+comments per conversation, saturating at 1."""
    if avg_engagement <= 0 or saturation <= 0:
        return 0.0
    return clamp(avg_engagement / saturation)


def sentiment_score(positive: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return clamp(positive / total)


def relevance_score(
    volume: float,
    recency: float,
    engagement: float,
    sentiment: float,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> float:
    """
    Weighted combination of the component scores, bounded to [0, 1].
    """
    weight_sum = weights.volume + weights.recency + weights.engagement + weights.sentiment
    if weight_sum <= 0:
        return 0.0
    combined = (
        clamp(volume) * weights.volume
        + clamp(recency) * weights.recency
        + clamp(engagement) * weights.engagement
        + clamp(sentiment) * weights.sentiment
    )
    return round(clamp(combined / weight_sum), 6)

"""
Map provider sentiment encodings onto positive / negative / neutral.

Providers report sentiment as signed scores in different ranges, as
0-100 percentages or as tone strings. The neutral bands are configurable
because providers do not document where their cut-offs lie.
"""
from typing import Any, Optional

from pydantic import BaseModel, Field

POSITIVE = "positive"
NEGATIVE = "negative"
NEUTRAL = "neutral"
SENTIMENTS = (POSITIVE, NEGATIVE, NEUTRAL)

_LABELS = {
    "positive": POSITIVE,
    "pos": POSITIVE,
    "good": POSITIVE,
    "favorable": POSITIVE,
    "negative": NEGATIVE,
    "neg": NEGATIVE,
    "bad": NEGATIVE,
    "unfavorable": NEGATIVE,
    "neutral": NEUTRAL,
    "mixed": NEUTRAL,
}


class SentimentThresholds(BaseModel):
    unit_neutral_band: float = Field(0.1, ge=0.0, le=1.0)  # scores in [-1, 1]
    five_point_neutral_band: float = Field(1.0, ge=0.0, le=5.0)  # scores in [-5, 5]
    percent_negative_below: float = Field(40.0, ge=0.0, le=100.0)
    percent_positive_above: float = Field(60.0, ge=0.0, le=100.0)


DEFAULT_THRESHOLDS = SentimentThresholds()


def _as_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if result != result:  # NaN
        return None
    return result


def _banded(score: Optional[float], band: float) -> str:
    if score is None:
        return NEUTRAL
    if score > band:
        return POSITIVE
    if score < -band:
        return NEGATIVE
    return NEUTRAL


def from_unit_score(score: Any, thresholds: SentimentThresholds = DEFAULT_THRESHOLDS) -> str:
    return _banded(_as_float(score), thresholds.unit_neutral_band)


def from_five_point_score(score: Any, thresholds: SentimentThresholds = DEFAULT_THRESHOLDS) -> str:
    return _banded(_as_float(score), thresholds.five_point_neutral_band)


def from_percent_score(score: Any, thresholds: SentimentThresholds = DEFAULT_THRESHOLDS) -> str:
    value = _as_float(score)
    if value is None:
        return NEUTRAL
    if value > thresholds.percent_positive_above:
        return POSITIVE
    if value < thresholds.percent_negative_below:
        return NEGATIVE
    return NEUTRAL


def from_label(label: Any) -> str:
    if not isinstance(label, str):
        return NEUTRAL
    return _LABELS.get(label.strip().lower(), NEUTRAL)


def polarity(sentiment: Optional[str]) -> int:
    """+1 for positive, -1 for negative, 0 otherwise."""
    if sentiment == POSITIVE:
        return 1
    if sentiment == NEGATIVE:
        return -1
    return 0


def from_star_rating(rating: Any, scale: float = 5.0) -> str:
    """Review stars: the top two fifths are positive, the bottom two fifths negative."""
    value = _as_float(rating)
    if value is None or value <= 0 or scale <= 0:
        return NEUTRAL
    ratio = value / scale
    if ratio >= 0.8:
        return POSITIVE
    if ratio <= 0.4:
        return NEGATIVE
    return NEUTRAL

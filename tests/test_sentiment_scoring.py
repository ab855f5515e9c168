from datetime import timedelta

import pytest

from conftest import NOW
from core.scoring import ScoringWeights, engagement_score, recency_score, relevance_score
from core.sentiment import (
    SentimentThresholds,
    from_five_point_score,
    from_label,
    from_percent_score,
    from_star_rating,
    from_unit_score,
    polarity,
)


class TestSentimentMapping:
    @pytest.mark.parametrize(
        "score, expected",
        [(0.5, "positive"), (0.1, "neutral"), (0.0, "neutral"), (-0.1, "neutral"), (-0.4, "negative"), (None, "neutral"), ("junk", "neutral")],
    )
    def test_unit_scores(self, score, expected):
        assert from_unit_score(score) == expected

    @pytest.mark.parametrize("score, expected", [(3, "positive"), (1, "neutral"), (-1, "neutral"), (-2.5, "negative")])
    def test_five_point_scores(self, score, expected):
        assert from_five_point_score(score) == expected

    @pytest.mark.parametrize("score, expected", [(75, "positive"), (60, "neutral"), (40, "neutral"), (12, "negative")])
    def test_percent_scores(self, score, expected):
        assert from_percent_score(score) == expected

    def test_thresholds_are_configurable(self):
        wide = SentimentThresholds(unit_neutral_band=0.5)
        assert from_unit_score(0.4) == "positive"
        assert from_unit_score(0.4, wide) == "neutral"

    def test_labels(self):
        assert from_label("POSITIVE") == "positive"
        assert from_label(" neg ") == "negative"
        assert from_label("mixed") == "neutral"
        assert from_label(3) == "neutral"

    def test_star_ratings(self):
        assert from_star_rating(5) == "positive"
        assert from_star_rating(3) == "neutral"
        assert from_star_rating(2) == "negative"
        assert from_star_rating(8, scale=10) == "positive"

    def test_polarity(self):
        assert [polarity(s) for s in ("positive", "negative", "neutral", None)] == [1, -1, 0, 0]


class TestScoring:
    def test_more_engagement_never_scores_lower(self):
        scores = [
            relevance_score(0.4, 0.5, engagement_score(avg), 0.5)
            for avg in (0, 5, 50, 100, 1_000, 1_000_000)
        ]
        assert scores == sorted(scores)

    def test_older_never_scores_higher(self):
        ages = [0, 1, 12, 48, 200, 2_000]
        scores = [
            relevance_score(0.4, recency_score([NOW - timedelta(hours=h)], NOW), 0.5, 0.5)
            for h in ages
        ]
        assert scores == sorted(scores, reverse=True)

    def test_future_timestamps_count_as_now(self):
        assert recency_score([NOW + timedelta(hours=5)], NOW) == 1.0

    def test_bounds(self):
        assert relevance_score(5, 5, 5, 5) == 1.0
        assert relevance_score(-1, -1, -1, -1) == 0.0
        assert relevance_score(0.5, 0.5, 0.5, 0.5, ScoringWeights(0, 0, 0, 0)) == 0.0

    def test_empty_recency(self):
        assert recency_score([], NOW) == 0.0

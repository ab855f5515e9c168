from datetime import timedelta

import pytest
import pytest_asyncio

from conftest import NOW, make_conversation
from core.errors import PersistenceError, ValidationError
from core.schemas import TrendAnalysisOptions
from core.scoring import ScoringWeights
from processing.clustering import jaccard, key_phrases, merge_overlapping
from processing.trends import TrendAnalysisService, correlation_strength, sentiment_evolution, temporal_overlap
from services.database import Database

ALL = {"min_conversation_count": 5, "min_relevance_score": 0.0}


def _dataset():
    conversations = []
    # a burst of complaints over the last few hours
    for i in range(6):
        conversations.append(make_conversation(
            f"recall-{i}",
            platform="twitter" if i % 2 == 0 else "reddit",
            content="acme recall announced for faulty widgets",
            timestamp=NOW - timedelta(hours=i + 1),
            keywords=["acme", "recall"],
            sentiment="negative",
        ))
    # earlier in the week, positive launch coverage
    for i in range(5):
        conversations.append(make_conversation(
            f"launch-{i}",
            platform="news",
            content="acme launch event draws crowds",
            timestamp=NOW - timedelta(days=5, hours=i),
            keywords=["acme", "launch"],
            sentiment="positive",
        ))
    for i in range(2):
        conversations.append(make_conversation(
            f"weather-{i}",
            platform="reddit",
            content="weather is nice",
            timestamp=NOW - timedelta(days=2),
            keywords=["weather"],
        ))
    return conversations


@pytest_asyncio.fixture
async def seeded(db):
    await db.upsert_conversations(_dataset())
    return db


def _service(db, **kwargs):
    return TrendAnalysisService(db, clock=lambda: NOW, **kwargs)


class TestTrendingTopics:
    @pytest.mark.asyncio
    async def test_topics_ranked_by_relevance(self, seeded):
        topics = await _service(seeded).get_trending_topics("tenant-1", ALL)

        assert [t.id for t in topics] == ["trend_acme", "trend_recall", "trend_launch"]
        scores = [t.relevance_score for t in topics]
        assert scores == sorted(scores, reverse=True)
        assert all(0.0 <= s <= 1.0 for s in scores)
        assert all(t.conversation_count >= 5 for t in topics)

    @pytest.mark.asyncio
    async def test_topic_details(self, seeded):
        topics = {t.theme: t for t in await _service(seeded).get_trending_topics("tenant-1", ALL)}

        recall = topics["recall"]
        assert recall.keywords == ["recall", "acme"]
        assert recall.conversation_count == 6
        assert recall.platforms == ["reddit", "twitter"]
        assert recall.sentiment_distribution.negative == 6
        assert recall.trend_direction == "rising"
        assert recall.emerging_trend is True
        assert recall.time_range.start == NOW - timedelta(hours=6)
        assert recall.time_range.end == NOW - timedelta(hours=1)
        assert recall.peak_timestamp == NOW - timedelta(hours=6)

        launch = topics["launch"]
        assert launch.trend_direction == "falling"
        assert launch.emerging_trend is False

        acme = topics["acme"]
        assert acme.trend_direction == "stable"
        assert acme.conversation_count == 11
        assert acme.platforms == ["news", "reddit", "twitter"]

    @pytest.mark.asyncio
    async def test_min_conversation_count(self, seeded):
        topics = await _service(seeded).get_trending_topics("tenant-1", {**ALL, "min_conversation_count": 6})
        assert [t.theme for t in topics] == ["acme", "recall"]

    @pytest.mark.asyncio
    async def test_min_relevance(self, seeded):
        service = _service(seeded)
        everything = await service.get_trending_topics("tenant-1", ALL)
        cutoff = everything[1].relevance_score

        topics = await service.get_trending_topics("tenant-1", {**ALL, "min_relevance_score": cutoff})

        assert [t.theme for t in topics] == ["acme", "recall"]
        assert all(t.relevance_score >= cutoff for t in topics)

    @pytest.mark.asyncio
    async def test_max_results(self, seeded):
        topics = await _service(seeded).get_trending_topics("tenant-1", {**ALL, "max_results": 1})
        assert [t.theme for t in topics] == ["acme"]

    @pytest.mark.asyncio
    async def test_platform_and_keyword_filters(self, seeded):
        service = _service(seeded)

        news_only = await service.get_trending_topics("tenant-1", {**ALL, "platforms": ["news"]})
        assert sorted(t.theme for t in news_only) == ["acme", "launch"]

        recall_only = await service.get_trending_topics("tenant-1", {**ALL, "keywords": ["Recall"]})
        assert sorted(t.theme for t in recall_only) == ["acme", "recall"]
        assert all(t.conversation_count == 6 for t in recall_only)

    @pytest.mark.asyncio
    async def test_window(self, seeded):
        options = TrendAnalysisOptions(start=NOW - timedelta(days=1), end=NOW, **ALL)
        topics = await _service(seeded).get_trending_topics("tenant-1", options)
        assert sorted(t.theme for t in topics) == ["acme", "recall"]

    @pytest.mark.asyncio
    async def test_default_window(self, seeded):
        service = _service(seeded, default_window=timedelta(days=1))
        topics = await service.get_trending_topics("tenant-1", ALL)
        assert sorted(t.theme for t in topics) == ["acme", "recall"]

    @pytest.mark.asyncio
    async def test_custom_weights(self, seeded):
        service = _service(seeded, weights=ScoringWeights(volume=1.0, recency=0.0, engagement=0.0, sentiment=0.0))
        topics = await service.get_trending_topics("tenant-1", ALL)
        assert topics[0].relevance_score == pytest.approx(11 / 13, abs=1e-6)


class TestAnalyzeTrends:
    @pytest.mark.asyncio
    async def test_full_report(self, seeded):
        result = await _service(seeded).analyze_trends("tenant-1", ALL)

        assert len(result.trending_topics) == 3

        emerging = result.emerging_themes
        assert [e.theme for e in emerging] == ["recall"]
        assert emerging[0].conversation_count == 6
        assert emerging[0].growth_rate == 6.0
        assert emerging[0].first_seen == NOW - timedelta(hours=6)

        declining = result.declining_sentiments
        assert [d.theme for d in declining] == ["acme"]
        assert declining[0].previous_score == 1.0
        assert declining[0].current_score == -1.0
        assert declining[0].sentiment_change == -2.0

        insights = result.cross_platform_insights
        assert [i.theme for i in insights] == ["recall", "acme"]
        assert insights[0].correlation_strength == 1.0
        for insight in insights:
            assert len(insight.platforms) >= 2
            assert insight.correlation_strength > 0.3

    @pytest.mark.asyncio
    async def test_emerging_can_be_disabled(self, seeded):
        result = await _service(seeded).analyze_trends("tenant-1", {**ALL, "include_emerging_trends": False})
        assert result.emerging_themes == []
        assert result.trending_topics

    @pytest.mark.asyncio
    async def test_no_conversations(self, seeded):
        result = await _service(seeded).analyze_trends("tenant-2")
        assert result.trending_topics == []
        assert result.story_clusters == []
        assert result.emerging_themes == []
        assert result.declining_sentiments == []
        assert result.cross_platform_insights == []

    @pytest.mark.asyncio
    async def test_invalid_window(self, seeded):
        service = _service(seeded)
        with pytest.raises(ValidationError):
            await service.analyze_trends("tenant-1", {"start": NOW, "end": NOW - timedelta(days=1)})
        with pytest.raises(ValidationError):
            await service.analyze_trends("tenant-1", {"start": NOW + timedelta(days=1)})
        with pytest.raises(ValidationError):
            await service.analyze_trends("tenant-1", {"max_results": 0})

    @pytest.mark.asyncio
    async def test_store_failure(self, tmp_path):
        service = _service(Database(str(tmp_path / "uninitialized.db")))
        with pytest.raises(PersistenceError):
            await service.analyze_trends("tenant-1")


class TestStoryClusters:
    @pytest.mark.asyncio
    async def test_overlapping_topics_merge(self, seeded):
        clusters = await _service(seeded).get_story_clusters("tenant-1", ALL)

        assert len(clusters) == 1
        cluster = clusters[0]
        assert cluster.id == "story_acme"
        assert cluster.title == "acme / recall / launch"
        assert cluster.main_theme == "acme"
        assert cluster.sub_themes == ["recall", "launch"]
        assert len(cluster.conversation_ids) == 11
        assert cluster.platforms == ["news", "reddit", "twitter"]
        assert cluster.summary == (
            "11 conversations about acme across news, reddit, twitter with predominantly negative sentiment"
        )
        assert cluster.key_phrases[0] == "acme recall"
        assert cluster.time_span.start == NOW - timedelta(days=5, hours=4)

        evolution = [(p.timestamp, p.sentiment, p.count) for p in cluster.sentiment_evolution]
        assert evolution == [
            (NOW - timedelta(days=5), "positive", 5),
            (NOW, "negative", 6),
        ]

        links = {link.platforms: link for link in cluster.cross_platform_links}
        assert links[("reddit", "twitter")].shared_keywords == ["acme", "recall"]
        assert links[("reddit", "twitter")].strength == 1.0
        assert links[("news", "reddit")].strength == 0.0

    @pytest.mark.asyncio
    async def test_small_groups_are_not_clusters(self, db):
        await db.upsert_conversations([
            make_conversation("a", keywords=["solo"], timestamp=NOW - timedelta(hours=1)),
            make_conversation("b", keywords=["solo"], timestamp=NOW - timedelta(hours=2)),
        ])
        options = {"min_conversation_count": 1, "min_relevance_score": 0.0}
        service = _service(db)

        assert len(await service.get_trending_topics("tenant-1", options)) == 1
        assert await service.get_story_clusters("tenant-1", options) == []


class TestHelpers:
    def test_jaccard(self):
        assert jaccard({"a", "b"}, {"b", "c"}) == pytest.approx(1 / 3)
        assert jaccard(set(), set()) == 0.0

    def test_merge_is_transitive(self):
        groups = {
            "x": {"1", "2", "3"},
            "y": {"3", "4"},
            "z": {"4", "5"},
            "w": {"9"},
        }
        assert merge_overlapping(groups, threshold=0.25) == [["x", "y", "z"], ["w"]]

    def test_key_phrases(self):
        phrases = key_phrases([
            "Battery life is great",
            "great battery life, truly",
            "battery life again",
            "the screen cracked",
        ])
        assert phrases[0] == "battery life"
        assert "the screen" not in phrases
        assert "screen cracked" in phrases

    def test_temporal_overlap(self):
        left = [NOW, NOW - timedelta(days=3)]
        right = [NOW - timedelta(hours=2)]
        assert temporal_overlap(left, right) == pytest.approx(2 / 3)
        assert temporal_overlap(left, []) == 0.0

    def test_correlation_needs_two_platforms(self):
        single = [make_conversation("a", platform="reddit"), make_conversation("b", platform="reddit")]
        assert correlation_strength(single) == 0.0

    def test_sentiment_evolution_buckets_by_day(self):
        points = sentiment_evolution([
            make_conversation("a", timestamp=NOW.replace(hour=1), sentiment="positive"),
            make_conversation("b", timestamp=NOW.replace(hour=23), sentiment="positive"),
            make_conversation("c", timestamp=NOW.replace(hour=5), sentiment="mixed"),
        ])
        assert [(p.sentiment, p.count) for p in points] == [("neutral", 1), ("positive", 2)]
        assert all(p.timestamp == NOW for p in points)

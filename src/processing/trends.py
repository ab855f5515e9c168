"""
Trend analysis over stored conversations.

Topics are keyword-centred: every extracted keyword shared by enough
conversations becomes a candidate topic. Topics are scored with
core.scoring, classified by comparing the two halves of the analysis
window, and merged into story clusters when their conversation sets
overlap.
"""
import logging
from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from itertools import combinations
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from core.entities import (
    Conversation,
    CrossPlatformInsight,
    CrossPlatformLink,
    DecliningSentiment,
    EmergingTheme,
    SentimentDistribution,
    SentimentPoint,
    StoryCluster,
    TimeRange,
    TrendAnalysisResult,
    TrendingTopic,
)
from core.errors import ValidationError
from core.schemas import TrendAnalysisOptions
from core.scoring import (
    DEFAULT_WEIGHTS,
    ScoringWeights,
    clamp,
    engagement_score,
    recency_score,
    relevance_score,
    sentiment_score,
    volume_score,
)
from core.sentiment import NEGATIVE, NEUTRAL, POSITIVE, polarity
from core.timeutils import ensure_utc, utcnow
from processing.clustering import key_phrases, merge_overlapping
from services.database import Database

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = timedelta(days=7)
EMERGING_LOOKBACK = timedelta(hours=24)
EMERGING_SHARE = 0.7
RISING_FACTOR = 1.2
FALLING_FACTOR = 0.8
SENTIMENT_CHANGE_THRESHOLD = 0.1
CORRELATION_WINDOW = timedelta(hours=24)
MIN_CORRELATION = 0.3
CLUSTER_OVERLAP = 0.3
MIN_CLUSTER_SIZE = 3
MAX_TOPIC_KEYWORDS = 5


@dataclass
class _Topic:
    """A scored topic and the conversations behind it."""
    topic: TrendingTopic
    conversations: List[Conversation]


def _sentiment(conversation: Conversation) -> str:
    return conversation.sentiment if conversation.sentiment in (POSITIVE, NEGATIVE) else NEUTRAL


def _distribution(conversations: Sequence[Conversation]) -> SentimentDistribution:
    dist = SentimentDistribution()
    for c in conversations:
        label = _sentiment(c)
        setattr(dist, label, getattr(dist, label) + 1)
    return dist


def _mean_polarity(conversations: Sequence[Conversation]) -> float:
    if not conversations:
        return 0.0
    return sum(polarity(c.sentiment) for c in conversations) / len(conversations)


def temporal_overlap(left: Sequence[datetime], right: Sequence[datetime], window: timedelta = CORRELATION_WINDOW) -> float:
    """
    Share of timestamps on either side that have a counterpart on the
    other side within window. 0 when either side is empty.
    """
    if not left or not right:
        return 0.0

    def matched(source, other) -> int:
        return sum(1 for ts in source if any(abs(ts - o) <= window for o in other))

    total = len(left) + len(right)
    return clamp((matched(left, right) + matched(right, left)) / total)


def _platform_times(conversations: Sequence[Conversation]) -> Dict[str, List[datetime]]:
    by_platform: Dict[str, List[datetime]] = defaultdict(list)
    for c in conversations:
        by_platform[c.platform].append(c.timestamp)
    return by_platform


def correlation_strength(conversations: Sequence[Conversation]) -> float:
    """Mean pairwise temporal overlap across the platforms present."""
    by_platform = _platform_times(conversations)
    pairs = list(combinations(sorted(by_platform), 2))
    if not pairs:
        return 0.0
    return round(clamp(sum(temporal_overlap(by_platform[a], by_platform[b]) for a, b in pairs) / len(pairs)), 6)


def sentiment_evolution(conversations: Sequence[Conversation]) -> List[SentimentPoint]:
    """Daily buckets (stamped at 12:00 UTC); only non-empty buckets are emitted."""
    buckets: Counter = Counter()
    for c in conversations:
        day = ensure_utc(c.timestamp).replace(hour=12, minute=0, second=0, microsecond=0)
        buckets[(day, _sentiment(c))] += 1
    return [
        SentimentPoint(timestamp=day, sentiment=label, count=count)
        for (day, label), count in sorted(buckets.items())
        if count > 0
    ]


def _peak(conversations: Sequence[Conversation]) -> Optional[datetime]:
    hours = Counter(ensure_utc(c.timestamp).replace(minute=0, second=0, microsecond=0) for c in conversations)
    if not hours:
        return None
    return min(hours, key=lambda hour: (-hours[hour], hour))


class TrendAnalysisService:
    def __init__(
        self,
        db: Database,
        weights: ScoringWeights = DEFAULT_WEIGHTS,
        default_window: timedelta = DEFAULT_WINDOW,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.weights = weights
        self.default_window = default_window
        self._clock = clock

    def _resolve_options(
        self,
        options: Union[TrendAnalysisOptions, Mapping[str, Any], None],
    ) -> Tuple[TrendAnalysisOptions, datetime, datetime]:
        if options is None:
            opts = TrendAnalysisOptions()
        elif isinstance(options, TrendAnalysisOptions):
            opts = options
        else:
            try:
                opts = TrendAnalysisOptions(**options)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid trend analysis options: {e}") from e

        end = ensure_utc(opts.end) if opts.end else self._clock()
        start = ensure_utc(opts.start) if opts.start else end - self.default_window
        if start >= end:
            raise ValidationError("start must be before end")
        return opts, start, end

    async def analyze_trends(
        self,
        tenant_id: str,
        options: Union[TrendAnalysisOptions, Mapping[str, Any], None] = None,
    ) -> TrendAnalysisResult:
        """
        Full report for the window. A store failure raises PersistenceError;
        no conversations yields an empty report.
        """
        opts, start, end = self._resolve_options(options)
        conversations = await self.db.get_conversations(tenant_id, start, end, platforms=opts.platforms)
        conversations = self._filter_keywords(conversations, opts.keywords)

        if not conversations:
            logger.info(f"No conversations to analyze for tenant {tenant_id}", extra={"tenant_id": tenant_id})
            return TrendAnalysisResult()

        topics = self._build_topics(conversations, opts, start, end)
        result = TrendAnalysisResult(
            trending_topics=[t.topic for t in topics],
            story_clusters=self._build_clusters(topics, opts.max_results),
            emerging_themes=self._emerging_themes(topics, start, end) if opts.include_emerging_trends else [],
            declining_sentiments=self._sentiment_changes(topics, start, end),
            cross_platform_insights=self._cross_platform_insights(topics),
        )
        logger.info(
            f"Trend analysis for tenant {tenant_id}: {len(conversations)} conversations, "
            f"{len(result.trending_topics)} topics, {len(result.story_clusters)} clusters",
            extra={"tenant_id": tenant_id},
        )
        return result

    async def get_trending_topics(
        self,
        tenant_id: str,
        options: Union[TrendAnalysisOptions, Mapping[str, Any], None] = None,
    ) -> List[TrendingTopic]:
        opts, start, end = self._resolve_options(options)
        conversations = await self.db.get_conversations(tenant_id, start, end, platforms=opts.platforms)
        conversations = self._filter_keywords(conversations, opts.keywords)
        if not conversations:
            return []
        return [t.topic for t in self._build_topics(conversations, opts, start, end)]

    async def get_story_clusters(
        self,
        tenant_id: str,
        options: Union[TrendAnalysisOptions, Mapping[str, Any], None] = None,
    ) -> List[StoryCluster]:
        opts, start, end = self._resolve_options(options)
        conversations = await self.db.get_conversations(tenant_id, start, end, platforms=opts.platforms)
        conversations = self._filter_keywords(conversations, opts.keywords)
        if not conversations:
            return []
        return self._build_clusters(self._build_topics(conversations, opts, start, end), opts.max_results)

    @staticmethod
    def _filter_keywords(conversations: List[Conversation], keywords: Optional[List[str]]) -> List[Conversation]:
        if not keywords:
            return conversations
        wanted = [k.lower() for k in keywords if k]
        return [
            c for c in conversations
            if any(k in c.keywords or k in c.content.lower() for k in wanted)
        ]

    def _build_topics(
        self,
        conversations: List[Conversation],
        opts: TrendAnalysisOptions,
        start: datetime,
        end: datetime,
    ) -> List[_Topic]:
        members: Dict[str, List[Conversation]] = defaultdict(list)
        for c in conversations:
            for term in dict.fromkeys(c.keywords):
                members[term].append(c)

        midpoint = start + (end - start) / 2
        recent_cutoff = end - EMERGING_LOOKBACK
        total = len(conversations)
        topics: List[_Topic] = []

        for term, group in members.items():
            if len(group) < opts.min_conversation_count:
                continue

            dist = _distribution(group)
            timestamps = [ensure_utc(c.timestamp) for c in group]
            avg_engagement = sum(c.engagement.total for c in group) / len(group)
            score = relevance_score(
                volume_score(len(group), total),
                recency_score(timestamps, end),
                engagement_score(avg_engagement),
                sentiment_score(dist.positive, len(group)),
                self.weights,
            )
            if score < opts.min_relevance_score:
                continue

            early = sum(1 for ts in timestamps if ts < midpoint)
            late = len(timestamps) - early
            recent = sum(1 for ts in timestamps if ts >= recent_cutoff)

            topics.append(_Topic(
                topic=TrendingTopic(
                    id=f"trend_{term}",
                    theme=term,
                    keywords=self._topic_keywords(term, group),
                    relevance_score=score,
                    conversation_count=len(group),
                    sentiment_distribution=dist,
                    platforms=sorted({c.platform for c in group}),
                    time_range=TimeRange(start=min(timestamps), end=max(timestamps)),
                    trend_direction=self._direction(early, late),
                    emerging_trend=recent / len(group) > EMERGING_SHARE,
                    peak_timestamp=_peak(group),
                    conversation_ids=[c.id for c in group],
                ),
                conversations=group,
            ))

        topics.sort(key=lambda t: (-t.topic.relevance_score, t.topic.id))
        return topics[:opts.max_results]

    @staticmethod
    def _topic_keywords(term: str, group: List[Conversation]) -> List[str]:
        """The topic term plus the terms appearing in at least half of its conversations."""
        counts = Counter(k for c in group for k in dict.fromkeys(c.keywords) if k != term)
        frequent = sorted(
            (k for k, n in counts.items() if n * 2 >= len(group)),
            key=lambda k: (-counts[k], k),
        )
        return [term] + frequent[:MAX_TOPIC_KEYWORDS - 1]

    @staticmethod
    def _direction(early: int, late: int) -> str:
        if late > early * RISING_FACTOR:
            return "rising"
        if late < early * FALLING_FACTOR:
            return "falling"
        return "stable"

    def _build_clusters(self, topics: List[_Topic], max_results: int) -> List[StoryCluster]:
        by_id = {t.topic.id: t for t in topics}
        groups = {t.topic.id: set(t.topic.conversation_ids) for t in topics}

        clusters = []
        for topic_ids in merge_overlapping(groups, CLUSTER_OVERLAP):
            members = [by_id[topic_id] for topic_id in topic_ids]
            conversations: Dict[str, Conversation] = {}
            for member in members:
                for c in member.conversations:
                    conversations.setdefault(c.id, c)
            if len(conversations) < MIN_CLUSTER_SIZE:
                continue
            clusters.append(self._cluster(members, list(conversations.values())))

        clusters.sort(key=lambda c: (-len(c.conversation_ids), c.id))
        return clusters[:max_results]

    @staticmethod
    def _cluster(members: List[_Topic], conversations: List[Conversation]) -> StoryCluster:
        # members arrive in score order, so the first is the main theme
        themes = [m.topic.theme for m in members]
        main_theme = themes[0]
        platforms = sorted({c.platform for c in conversations})
        timestamps = [ensure_utc(c.timestamp) for c in conversations]
        dominant = _distribution(conversations).dominant()

        return StoryCluster(
            id=f"story_{main_theme}",
            title=" / ".join(themes[:3]),
            summary=(
                f"{len(conversations)} conversations about {main_theme} across "
                f"{', '.join(platforms)} with predominantly {dominant} sentiment"
            ),
            main_theme=main_theme,
            sub_themes=themes[1:],
            conversation_ids=sorted(c.id for c in conversations),
            platforms=platforms,
            time_span=TimeRange(start=min(timestamps), end=max(timestamps)),
            sentiment_evolution=sentiment_evolution(conversations),
            key_phrases=key_phrases(c.content for c in conversations),
            cross_platform_links=cross_platform_links(conversations),
        )

    @staticmethod
    def _emerging_themes(topics: List[_Topic], start: datetime, end: datetime) -> List[EmergingTheme]:
        midpoint = start + (end - start) / 2
        recent_cutoff = end - EMERGING_LOOKBACK
        themes = []
        for t in topics:
            if not t.topic.emerging_trend:
                continue
            timestamps = [ensure_utc(c.timestamp) for c in t.conversations]
            early = sum(1 for ts in timestamps if ts < midpoint)
            late = len(timestamps) - early
            themes.append(EmergingTheme(
                theme=t.topic.theme,
                keywords=t.topic.keywords,
                conversation_count=sum(1 for ts in timestamps if ts >= recent_cutoff),
                growth_rate=round((late - early) / max(early, 1), 6),
                platforms=t.topic.platforms,
                first_seen=min(timestamps),
            ))
        themes.sort(key=lambda e: (-e.growth_rate, e.theme))
        return themes

    @staticmethod
    def _sentiment_changes(topics: List[_Topic], start: datetime, end: datetime) -> List[DecliningSentiment]:
        """
        Compare mean polarity (-1..1) of the earlier and later halves of the
        window. Changes larger than the threshold in either direction are
        reported, largest decline first.
        """
        midpoint = start + (end - start) / 2
        timeframe = f"{start:%Y-%m-%d}..{midpoint:%Y-%m-%d} vs {midpoint:%Y-%m-%d}..{end:%Y-%m-%d}"
        changes = []
        for t in topics:
            early = [c for c in t.conversations if ensure_utc(c.timestamp) < midpoint]
            late = [c for c in t.conversations if ensure_utc(c.timestamp) >= midpoint]
            if not early or not late:
                continue
            previous = _mean_polarity(early)
            current = _mean_polarity(late)
            change = current - previous
            if abs(change) <= SENTIMENT_CHANGE_THRESHOLD:
                continue
            changes.append(DecliningSentiment(
                theme=t.topic.theme,
                sentiment_change=round(change, 6),
                previous_score=round(previous, 6),
                current_score=round(current, 6),
                timeframe=timeframe,
                conversation_count=len(t.conversations),
            ))
        changes.sort(key=lambda d: (d.sentiment_change, d.theme))
        return changes

    @staticmethod
    def _cross_platform_insights(topics: List[_Topic]) -> List[CrossPlatformInsight]:
        insights = []
        for t in topics:
            if len(t.topic.platforms) < 2:
                continue
            strength = correlation_strength(t.conversations)
            if strength <= MIN_CORRELATION:
                continue
            insights.append(CrossPlatformInsight(
                theme=t.topic.theme,
                platforms=t.topic.platforms,
                correlation_strength=strength,
                conversation_count=len(t.conversations),
            ))
        insights.sort(key=lambda i: (-i.correlation_strength, i.theme))
        return insights


def cross_platform_links(conversations: Sequence[Conversation], max_keywords: int = 10) -> List[CrossPlatformLink]:
    """One link per platform pair that shares at least one keyword."""
    by_platform: Dict[str, List[Conversation]] = defaultdict(list)
    for c in conversations:
        by_platform[c.platform].append(c)

    links = []
    for left, right in combinations(sorted(by_platform), 2):
        left_counts = Counter(k for c in by_platform[left] for k in dict.fromkeys(c.keywords))
        right_counts = Counter(k for c in by_platform[right] for k in dict.fromkeys(c.keywords))
        shared = sorted(
            set(left_counts) & set(right_counts),
            key=lambda k: (-(left_counts[k] + right_counts[k]), k),
        )
        if not shared:
            continue
        strength = temporal_overlap(
            [c.timestamp for c in by_platform[left]],
            [c.timestamp for c in by_platform[right]],
        )
        links.append(CrossPlatformLink(
            platforms=(left, right),
            shared_keywords=shared[:max_keywords],
            strength=round(strength, 6),
        ))
    return links

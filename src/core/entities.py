from __future__ import annotations

from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from core.timeutils import to_iso


@dataclass(frozen=True)
class Engagement:
    likes: int = 0
    shares: int = 0
    comments: int = 0

    @property
    def total(self) -> int:
        return self.likes + self.shares + self.comments


@dataclass(frozen=True)
class NormalizedContent:
    """
    Canonical representation of one piece of monitored content.
    """
    id: str
    content: str
    author: str
    platform: str
    url: str
    timestamp: str
    engagement: Engagement
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Conversation:
    """
    A normalized mention as persisted for a tenant.
    """
    id: str
    tenant_id: str
    keyword_id: Optional[str]
    platform: str
    content: str
    author: str
    url: str
    timestamp: datetime
    engagement: Engagement = field(default_factory=Engagement)
    metadata: Dict[str, Any] = field(default_factory=dict)
    keywords: List[str] = field(default_factory=list)
    sentiment: Optional[str] = None
    tags: List[str] = field(default_factory=list)


@dataclass
class Keyword:
    id: str
    tenant_id: str
    term: str
    platforms: List[str] = field(default_factory=list)
    monitoring_frequency: str = "hourly"
    is_active: bool = False


@dataclass
class MonitoringJob:
    keyword_id: str
    tenant_id: str
    platforms: List[str]
    frequency: str
    is_active: bool = True
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    last_error: Optional[str] = None


@dataclass
class ScanResult:
    platform: str
    mentions: List[NormalizedContent] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class MonitoringStatus:
    keyword_id: str
    keyword: str
    is_active: bool
    last_scan: Optional[datetime]
    platforms: List[str]
    next_scan: Optional[datetime]


@dataclass(frozen=True)
class TimeRange:
    start: datetime
    end: datetime


@dataclass
class SentimentDistribution:
    positive: int = 0
    negative: int = 0
    neutral: int = 0

    @property
    def total(self) -> int:
        return self.positive + self.negative + self.neutral

    def dominant(self) -> str:
        counts = {"positive": self.positive, "negative": self.negative, "neutral": self.neutral}
        # ties resolve towards neutral
        return max(("neutral", "positive", "negative"), key=lambda label: counts[label])


@dataclass
class TrendingTopic:
    id: str
    theme: str
    keywords: List[str]
    relevance_score: float
    conversation_count: int
    sentiment_distribution: SentimentDistribution
    platforms: List[str]
    time_range: TimeRange
    trend_direction: str
    emerging_trend: bool
    peak_timestamp: Optional[datetime] = None
    conversation_ids: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class SentimentPoint:
    timestamp: datetime
    sentiment: str
    count: int


@dataclass(frozen=True)
class CrossPlatformLink:
    platforms: Tuple[str, str]
    shared_keywords: List[str]
    strength: float


@dataclass
class StoryCluster:
    """
    Narrative grouping of related trending topics.
    """
    id: str
    title: str
    summary: str
    main_theme: str
    sub_themes: List[str]
    conversation_ids: List[str]
    platforms: List[str]
    time_span: TimeRange
    sentiment_evolution: List[SentimentPoint] = field(default_factory=list)
    key_phrases: List[str] = field(default_factory=list)
    cross_platform_links: List[CrossPlatformLink] = field(default_factory=list)


@dataclass(frozen=True)
class EmergingTheme:
    theme: str
    keywords: List[str]
    conversation_count: int
    growth_rate: float
    platforms: List[str]
    first_seen: datetime


@dataclass(frozen=True)
class DecliningSentiment:
    theme: str
    sentiment_change: float
    previous_score: float
    current_score: float
    timeframe: str
    conversation_count: int


@dataclass(frozen=True)
class CrossPlatformInsight:
    theme: str
    platforms: List[str]
    correlation_strength: float
    conversation_count: int


@dataclass
class TrendAnalysisResult:
    trending_topics: List[TrendingTopic] = field(default_factory=list)
    story_clusters: List[StoryCluster] = field(default_factory=list)
    emerging_themes: List[EmergingTheme] = field(default_factory=list)
    declining_sentiments: List[DecliningSentiment] = field(default_factory=list)
    cross_platform_insights: List[CrossPlatformInsight] = field(default_factory=list)


@dataclass(frozen=True)
class ProcessingJob:
    """
    A unit of asynchronous conversation processing work.
    """
    id: str
    type: str
    status: str
    created_at: datetime
    priority: int = 0
    processing_time_ms: Optional[float] = None
    tenant_id: Optional[str] = None


def to_dict(value: Any) -> Any:
    """
    Recursively convert entities into JSON-ready structures.
    """
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_dict(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, datetime):
        return to_iso(value)
    if isinstance(value, dict):
        return {k: to_dict(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_dict(v) for v in value]
    return value

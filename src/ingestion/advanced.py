"""
Adapters for third-party monitoring services.

These providers return richer records (reach, sentiment, titles) than the
plain search sources. They implement AdvancedPlatformAdapter and are
exposed to the monitoring service through AdvancedAdapterWrapper.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from core.errors import MonitoringError, RateLimitExceeded
from core.schemas import SearchOptions
from core.sentiment import DEFAULT_THRESHOLDS, NEUTRAL, SentimentThresholds
from core.timeutils import ensure_utc, parse_timestamp, to_iso
from ingestion.base import PlatformAdapter, ProviderClient, RawContent, sanitize_keyword
from services.rate_limiter import RateLimitConfig, RateLimiter

logger = logging.getLogger(__name__)


@dataclass
class ConversationEngagement:
    reach: int = 0
    likes: int = 0
    shares: int = 0
    comments: int = 0


@dataclass
class ConversationData:
    id: str
    content: str
    author: str
    platform: str
    url: str
    published_at: Optional[datetime]
    engagement: ConversationEngagement = field(default_factory=ConversationEngagement)
    sentiment: str = NEUTRAL
    title: Optional[str] = None
    author_url: Optional[str] = None
    platform_specific: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)


class AdvancedPlatformAdapter(ProviderClient, ABC):
    """
    Base for monitoring-service providers. Requests are paced by a private
    per-minute limiter in addition to the orchestrator's hourly one.
    """

    rate_limit_per_minute: int = 60

    def __init__(
        self,
        rate_limit_per_minute: Optional[int] = None,
        sentiment_thresholds: SentimentThresholds = DEFAULT_THRESHOLDS,
        **kwargs,
    ):
        super().__init__(**kwargs)
        if rate_limit_per_minute:
            self.rate_limit_per_minute = rate_limit_per_minute
        self.thresholds = sentiment_thresholds
        self._limiter = RateLimiter({
            self.platform_name: RateLimitConfig(
                requests_per_hour=self.rate_limit_per_minute,
                window_size_minutes=1,
            ),
        })

    @abstractmethod
    async def monitor(self, keywords: List[str]) -> List[ConversationData]:
        raise NotImplementedError

    def has_credentials(self) -> bool:
        return True

    def _throttle(self) -> None:
        status = self._limiter.acquire(self.platform_name, "provider")
        if not status.allowed:
            raise RateLimitExceeded(
                f"Rate limit exceeded for {self.platform_name}",
                platform=self.platform_name,
                retry_after=status.retry_after,
            )

    async def _get(self, url: str, *, context: str, **kwargs):
        self._throttle()
        resp = await self._authorized_request("GET", url, context=context, **kwargs)
        return self._json(resp, context)

    async def _post(self, url: str, *, context: str, **kwargs):
        self._throttle()
        resp = await self._authorized_request("POST", url, context=context, **kwargs)
        return self._json(resp, context)

    @staticmethod
    def _clean_keywords(keywords: List[str]) -> List[str]:
        cleaned = []
        for keyword in keywords:
            value = sanitize_keyword(keyword)
            if value and value not in cleaned:
                cleaned.append(value)
        return cleaned

    async def _collect(
        self,
        keywords: List[str],
        fetch: Callable[[str], Awaitable[List[ConversationData]]],
    ) -> List[ConversationData]:
        """
        Run fetch for every sanitized keyword. Failing keywords are logged and
        skipped; when all of them fail the last error is raised.
        """
        cleaned = self._clean_keywords(keywords)
        results: List[ConversationData] = []
        errors: List[MonitoringError] = []

        for keyword in cleaned:
            try:
                results.extend(await fetch(keyword))
            except MonitoringError as e:
                errors.append(e)
                logger.error(f"Error monitoring keyword '{keyword}' on {self.platform_name}: {e}")

        if errors and len(errors) == len(cleaned):
            raise errors[-1]
        return results

    @staticmethod
    def format_date(value: datetime) -> str:
        return ensure_utc(value).strftime("%Y-%m-%d")

    @staticmethod
    def parse_date(value: Any) -> Optional[datetime]:
        return parse_timestamp(value)

    @staticmethod
    def count(value: Any) -> int:
        if value is None or isinstance(value, bool):
            return 0
        try:
            return max(0, int(float(value)))
        except (TypeError, ValueError, OverflowError):
            return 0


class AdvancedAdapterWrapper(PlatformAdapter):
    """
    Expose an AdvancedPlatformAdapter through the PlatformAdapter contract.
    """

    def __init__(self, advanced: AdvancedPlatformAdapter, requires_auth: bool = True):
        super().__init__(timeout=advanced.timeout)
        self.advanced = advanced
        self.platform_name = advanced.platform_name
        self.rate_limit_per_hour = advanced.rate_limit_per_minute * 60
        self.requires_auth = requires_auth

    def has_credentials(self) -> bool:
        return self.advanced.has_credentials()

    async def search(
        self,
        keyword: str,
        options: Union[SearchOptions, Mapping[str, Any], None] = None,
    ) -> List[RawContent]:
        clean, opts = self._prepare(keyword, options)
        try:
            conversations = await self.advanced.monitor([clean])
        except MonitoringError:
            raise
        except Exception as e:
            raise self.handle_error(None, str(e), "search") from e

        if opts.since:
            since = ensure_utc(opts.since)
            conversations = [c for c in conversations if c.published_at is None or ensure_utc(c.published_at) >= since]
        if opts.until:
            until = ensure_utc(opts.until)
            conversations = [c for c in conversations if c.published_at is None or ensure_utc(c.published_at) <= until]
        if opts.sort_by == "date":
            oldest = datetime.min.replace(tzinfo=timezone.utc)
            conversations = sorted(
                conversations,
                key=lambda c: ensure_utc(c.published_at) if c.published_at else oldest,
                reverse=True,
            )

        return [self._to_raw(c) for c in conversations[:opts.limit]]

    async def validate_configuration(self) -> bool:
        if not self.has_credentials():
            return False
        try:
            await self.advanced.monitor(["test"])
            return True
        except Exception as e:
            logger.warning(f"{self.platform_name} configuration check failed: {e}")
            return False

    @staticmethod
    def _to_raw(conversation: ConversationData) -> RawContent:
        metadata = dict(conversation.metadata)
        metadata.update(
            platform=conversation.platform,
            sentiment=conversation.sentiment,
            platform_specific=conversation.platform_specific,
        )
        if conversation.title:
            metadata["title"] = conversation.title
        if conversation.author_url:
            metadata["author_url"] = conversation.author_url

        return RawContent(
            id=conversation.id,
            content=conversation.content,
            author=conversation.author,
            url=conversation.url,
            timestamp=to_iso(conversation.published_at) if conversation.published_at else None,
            engagement={
                "likes": conversation.engagement.likes,
                "shares": conversation.engagement.shares,
                "comments": conversation.engagement.comments,
                "views": conversation.engagement.reach,
            },
            metadata=metadata,
        )

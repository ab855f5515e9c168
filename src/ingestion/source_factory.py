"""
Source Factory - Creates platform adapters from configuration.
"""
import logging
from typing import Dict, Optional

import httpx

from ingestion.advanced import AdvancedAdapterWrapper
from ingestion.base import PlatformAdapter
from ingestion.bing_news import BingNewsAdapter
from ingestion.brand24 import Brand24Adapter
from ingestion.brandwatch import BrandwatchAdapter
from ingestion.buzzsumo import BuzzSumoAdapter
from ingestion.forum import ForumAdapter, ForumSite
from ingestion.google_alerts import GoogleAlertsAdapter
from ingestion.google_trends import GoogleTrendsAdapter
from ingestion.hootsuite import HootsuiteAdapter
from ingestion.mention import MentionAdapter
from ingestion.news import NewsAdapter
from ingestion.reddit import RedditAdapter
from ingestion.reviews import ReviewAdapter, ReviewSite
from ingestion.rss import FeedSource, RSSAdapter
from ingestion.sprout_social import SproutSocialAdapter
from ingestion.twitter import TwitterAdapter
from ingestion.youtube import YouTubeAdapter
from services.config import Config, PlatformConfig, get_enabled_platforms
from services.scraper import ScrapingOptions, WebScraper

logger = logging.getLogger(__name__)


def _scraper(config: Config, transport: Optional[httpx.AsyncBaseTransport]) -> WebScraper:
    return WebScraper(ScrapingOptions(**config.scraper.model_dump()), transport=transport)


def create_platform_adapter(
    platform_config: PlatformConfig,
    config: Config,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> PlatformAdapter:
    """
    Create a platform adapter from configuration.

    Args:
        platform_config: Configuration for the platform
        config: Full configuration, for credentials and shared settings
        transport: Optional httpx transport shared by every client (tests)

    Returns:
        Configured PlatformAdapter instance

    Raises:
        ValueError: If the platform type is unknown
    """
    kind = platform_config.type.lower()
    options = platform_config.options
    common = {"timeout": platform_config.timeout, "transport": transport}
    advanced = {**common, "sentiment_thresholds": config.sentiment}
    if options.get("rate_limit_per_minute"):
        advanced["rate_limit_per_minute"] = int(options["rate_limit_per_minute"])

    if kind == "reddit":
        return RedditAdapter(
            client_id=config.REDDIT_CLIENT_ID,
            client_secret=config.REDDIT_CLIENT_SECRET,
            subreddit=options.get("subreddit"),
            **common,
        )

    elif kind == "twitter":
        return TwitterAdapter(bearer_token=config.TWITTER_BEARER_TOKEN, **common)

    elif kind == "news":
        return NewsAdapter(api_key=config.NEWS_API_KEY, language=options.get("language", "en"), **common)

    elif kind == "bing-news":
        return BingNewsAdapter(api_key=config.BING_NEWS_API_KEY, market=options.get("market", "en-US"), **common)

    elif kind == "youtube":
        return YouTubeAdapter(api_key=config.YOUTUBE_API_KEY, **common)

    elif kind == "rss":
        feeds = [FeedSource(url, options.get("name") or "rss") for url in options.get("feeds") or []]
        return RSSAdapter(feeds=feeds or None, **common)

    elif kind == "google-alerts":
        return GoogleAlertsAdapter(alert_feeds=options.get("feeds"), **common)

    elif kind == "forum":
        sites = options.get("sites")
        return ForumAdapter(
            sites=[ForumSite(**site) for site in sites] if sites is not None else None,
            include_hackernews=options.get("include_hackernews", True),
            scraper=_scraper(config, transport),
            **common,
        )

    elif kind == "reviews":
        sites = options.get("sites")
        return ReviewAdapter(
            sites=[ReviewSite(**site) for site in sites] if sites is not None else None,
            scraper=_scraper(config, transport),
            **common,
        )

    elif kind == "mention":
        return AdvancedAdapterWrapper(MentionAdapter(
            api_token=config.MENTION_API_TOKEN,
            alert_id=options.get("alert_id"),
            **advanced,
        ))

    elif kind == "brand24":
        return AdvancedAdapterWrapper(Brand24Adapter(api_token=config.BRAND24_API_TOKEN, **advanced))

    elif kind == "brandwatch":
        return AdvancedAdapterWrapper(BrandwatchAdapter(
            username=config.BRANDWATCH_USERNAME,
            password=config.BRANDWATCH_PASSWORD,
            client_id=config.BRANDWATCH_CLIENT_ID,
            client_secret=config.BRANDWATCH_CLIENT_SECRET,
            project_id=options.get("project_id"),
            **advanced,
        ))

    elif kind == "hootsuite":
        return AdvancedAdapterWrapper(HootsuiteAdapter(
            access_token=config.HOOTSUITE_ACCESS_TOKEN,
            refresh_token=config.HOOTSUITE_REFRESH_TOKEN,
            client_id=config.HOOTSUITE_CLIENT_ID,
            client_secret=config.HOOTSUITE_CLIENT_SECRET,
            **advanced,
        ))

    elif kind == "sprout-social":
        return AdvancedAdapterWrapper(SproutSocialAdapter(
            access_token=config.SPROUT_SOCIAL_ACCESS_TOKEN,
            customer_id=config.SPROUT_SOCIAL_CUSTOMER_ID,
            **advanced,
        ))

    elif kind == "buzzsumo":
        return AdvancedAdapterWrapper(BuzzSumoAdapter(api_key=config.BUZZSUMO_API_KEY, **advanced))

    elif kind == "google-trends":
        return AdvancedAdapterWrapper(
            GoogleTrendsAdapter(geo=options.get("geo", "US"), **advanced),
            requires_auth=False,
        )

    else:
        raise ValueError(f"Unknown platform type: {kind}")


def create_adapters_from_config(
    config: Config,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, PlatformAdapter]:
    """
    Create all enabled platform adapters, keyed by configured platform name.
    Adapters that fail to build are logged and left out.
    """
    adapters: Dict[str, PlatformAdapter] = {}

    for platform_config in get_enabled_platforms(config):
        try:
            adapter = create_platform_adapter(platform_config, config, transport)
            adapter.platform_name = platform_config.name
            adapters[platform_config.name] = adapter
            logger.info(f"Created {platform_config.type} adapter: {platform_config.name}")
        except Exception as e:
            logger.error(f"Failed to create adapter for {platform_config.type}: {e}")

    return adapters

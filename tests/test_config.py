import logging
from datetime import timedelta

import pytest
from pydantic import ValidationError

from cli.run import build_trend_service
from core.scoring import ScoringWeights
from ingestion.advanced import AdvancedAdapterWrapper
from ingestion.google_trends import GoogleTrendsAdapter
from ingestion.news import NewsAdapter
from ingestion.reddit import RedditAdapter
from ingestion.rss import RSSAdapter
from ingestion.source_factory import create_adapters_from_config, create_platform_adapter
from ingestion.twitter import TwitterAdapter
from services.config import PlatformConfig, get_enabled_platforms, load_config, parse_config


def _config(platforms=None, env=None, **extra):
    return parse_config({"DATABASE_PATH": "data/test.db", "platforms": platforms or {}, **extra}, env=env or {})


class TestParseConfig:
    def test_defaults(self):
        config = parse_config({"DATABASE_PATH": "x.db"}, env={})

        assert config.DATABASE_PATH == "x.db"
        assert config.LOG_LEVEL == "INFO"
        assert config.LOG_JSON is False
        assert config.platforms == []
        assert config.monitoring.max_concurrency == 4
        assert config.trends.min_conversation_count == 5
        assert config.trends.weights == ScoringWeights()
        assert config.scraper.respect_robots_txt is True
        assert config.TWITTER_BEARER_TOKEN is None

    def test_secrets_come_from_env(self):
        config = parse_config(
            {"DATABASE_PATH": "x.db"},
            env={"TWITTER_BEARER_TOKEN": "tok", "NEWS_API_KEY": "", "UNRELATED": "ignored"},
        )

        assert config.TWITTER_BEARER_TOKEN == "tok"
        # empty values count as unset
        assert config.NEWS_API_KEY is None

    def test_sections(self):
        config = _config(
            LOG_LEVEL="debug",
            LOG_JSON="yes",
            monitoring={"search_limit": 25, "lookback_hours": 6},
            trends={"max_results": 5, "weights": {"volume": 0.4, "recency": 0.2, "engagement": 0.2, "sentiment": 0.2}},
            sentiment={"unit_neutral_band": 0.2},
            scraper={"user_agent": "TestBot/2.0", "delay": 0},
        )

        assert config.LOG_LEVEL == "DEBUG"
        assert config.LOG_JSON is True
        assert config.monitoring.search_limit == 25
        assert config.monitoring.lookback_hours == 6
        assert config.trends.max_results == 5
        assert config.trends.weights.volume == 0.4
        assert config.sentiment.unit_neutral_band == 0.2
        assert config.scraper.user_agent == "TestBot/2.0"

    def test_out_of_range_section_rejected(self):
        with pytest.raises(ValidationError):
            _config(monitoring={"search_limit": 0})

    def test_platforms(self):
        config = _config({
            "twitter": {"requests_per_hour": 300, "burst_limit": 10},
            "tech-news": {"type": "rss", "enabled": "false", "options": {"feeds": ["https://example.com/feed"]}},
            "reddit": None,
        })

        by_name = {p.name: p for p in config.platforms}
        assert by_name["twitter"].type == "twitter"
        assert by_name["twitter"].requests_per_hour == 300
        assert by_name["twitter"].burst_limit == 10
        assert by_name["tech-news"].type == "rss"
        assert by_name["tech-news"].enabled is False
        assert by_name["tech-news"].options == {"feeds": ["https://example.com/feed"]}
        assert by_name["reddit"].enabled is True
        assert by_name["reddit"].timeout == 30.0

    def test_malformed_platform_skipped(self, caplog):
        with caplog.at_level(logging.ERROR):
            config = _config({"twitter": {"timeout": "soon"}, "reddit": {}})

        assert [p.name for p in config.platforms] == ["reddit"]
        assert "Failed to parse platform 'twitter'" in caplog.text

    def test_enabled_platforms(self):
        config = _config({"reddit": {}, "twitter": {"enabled": False}, "news": {"enabled": "0"}})

        assert [p.name for p in get_enabled_platforms(config)] == ["reddit"]

    def test_load_config_from_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("YOUTUBE_API_KEY", "yt-key")
        path = tmp_path / "config.yml"
        path.write_text("DATABASE_PATH: data/file.db\nplatforms:\n  youtube:\n    timeout: 5\n")

        config = load_config(str(path))

        assert config.DATABASE_PATH == "data/file.db"
        assert config.platforms[0].timeout == 5.0
        assert config.YOUTUBE_API_KEY == "yt-key"


class TestSourceFactory:
    def test_basic_adapters(self):
        config = _config(env={"TWITTER_BEARER_TOKEN": "tok", "NEWS_API_KEY": "key"})

        reddit = create_platform_adapter(PlatformConfig(name="r", type="reddit", options={"subreddit": "python"}), config)
        twitter = create_platform_adapter(PlatformConfig(name="t", type="twitter"), config)
        news = create_platform_adapter(PlatformConfig(name="n", type="News", options={"language": "de"}), config)

        assert isinstance(reddit, RedditAdapter)
        assert reddit.subreddit == "python"
        assert isinstance(twitter, TwitterAdapter)
        assert twitter.has_credentials()
        assert isinstance(news, NewsAdapter)
        assert news.language == "de"

    def test_rss_feeds_from_options(self):
        platform = PlatformConfig(name="feeds", type="rss", options={"feeds": ["https://a.example/rss"], "name": "A"})

        adapter = create_platform_adapter(platform, _config())

        assert isinstance(adapter, RSSAdapter)
        assert [(f.url, f.title) for f in adapter.feeds] == [("https://a.example/rss", "A")]

    def test_advanced_types_are_wrapped(self):
        config = _config(env={"MENTION_API_TOKEN": "m"})

        mention = create_platform_adapter(
            PlatformConfig(name="mention", type="mention", options={"rate_limit_per_minute": 10}),
            config,
        )
        trends = create_platform_adapter(PlatformConfig(name="trends", type="google-trends", options={"geo": "GB"}), config)

        assert isinstance(mention, AdvancedAdapterWrapper)
        assert mention.requires_auth is True
        assert mention.has_credentials()
        assert mention.rate_limit_per_hour == 600
        assert isinstance(trends.advanced, GoogleTrendsAdapter)
        assert trends.advanced.geo == "GB"
        assert trends.requires_auth is False

    def test_unknown_type(self):
        with pytest.raises(ValueError, match="Unknown platform type: myspace"):
            create_platform_adapter(PlatformConfig(name="x", type="myspace"), _config())

    def test_adapters_keyed_by_configured_name(self):
        config = _config({
            "social": {"type": "twitter"},
            "reddit": {},
            "disabled-news": {"type": "news", "enabled": False},
        })

        adapters = create_adapters_from_config(config)

        assert set(adapters) == {"social", "reddit"}
        assert adapters["social"].platform_name == "social"
        assert isinstance(adapters["social"], TwitterAdapter)

    def test_broken_adapter_logged_and_skipped(self, caplog):
        config = _config({
            "myspace": {},
            "forum": {"options": {"sites": [{"name": "only-a-name"}]}},
            "reddit": {},
        })

        with caplog.at_level(logging.ERROR):
            adapters = create_adapters_from_config(config)

        assert list(adapters) == ["reddit"]
        assert "Failed to create adapter for myspace" in caplog.text
        assert "Failed to create adapter for forum" in caplog.text


class TestTrendSettings:
    def test_window_days_reaches_trend_service(self):
        config = _config(trends={"window_days": 3, "weights": {"volume": 1.0, "recency": 0.0, "engagement": 0.0, "sentiment": 0.0}})

        service = build_trend_service(config, db=None)

        assert service.default_window == timedelta(days=3)
        assert service.weights.volume == 1.0

    def test_default_window(self):
        assert build_trend_service(_config(), db=None).default_window == timedelta(days=7)

"""
Loads and handles config from config.yml
Provider credentials (tokens, keys, passwords) are loaded from .env for security
"""
import logging
import os
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from core.sentiment import SentimentThresholds
from core.scoring import ScoringWeights

logger = logging.getLogger(__name__)


class PlatformConfig(BaseModel):
    """Configuration for a single platform adapter."""
    name: str
    type: str  # reddit, twitter, news, forum, rss, mention, brand24, ...
    enabled: bool = True
    requests_per_hour: Optional[int] = None  # overrides the limiter default
    burst_limit: Optional[int] = None
    timeout: float = 30.0
    options: Dict[str, Any] = {}  # adapter-specific: feeds, subreddit, geo, ...


class ScraperConfig(BaseModel):
    respect_robots_txt: bool = True
    user_agent: str = "ConversationMonitor-Bot/1.0"
    delay: float = 1.0
    max_retries: int = 3
    timeout: float = 10.0


class MonitoringConfig(BaseModel):
    max_concurrency: int = Field(4, ge=1)
    search_limit: int = Field(50, ge=1, le=500)
    lookback_hours: int = Field(24, ge=1)
    due_jobs_limit: int = Field(50, ge=1)


class TrendsConfig(BaseModel):
    window_days: int = Field(7, ge=1)
    min_conversation_count: int = Field(5, ge=1)
    min_relevance_score: float = Field(0.3, ge=0.0, le=1.0)
    max_results: int = Field(20, ge=1, le=200)
    weights: ScoringWeights = ScoringWeights()


class Config(BaseModel):
    # Core
    DATABASE_PATH: str
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    platforms: List[PlatformConfig] = []
    scraper: ScraperConfig = ScraperConfig()
    monitoring: MonitoringConfig = MonitoringConfig()
    trends: TrendsConfig = TrendsConfig()
    sentiment: SentimentThresholds = SentimentThresholds()

    # Credentials (from .env)
    REDDIT_CLIENT_ID: Optional[str] = None
    REDDIT_CLIENT_SECRET: Optional[str] = None
    TWITTER_BEARER_TOKEN: Optional[str] = None
    NEWS_API_KEY: Optional[str] = None
    BING_NEWS_API_KEY: Optional[str] = None
    YOUTUBE_API_KEY: Optional[str] = None
    MENTION_API_TOKEN: Optional[str] = None
    BRAND24_API_TOKEN: Optional[str] = None
    BRANDWATCH_USERNAME: Optional[str] = None
    BRANDWATCH_PASSWORD: Optional[str] = None
    BRANDWATCH_CLIENT_ID: Optional[str] = None
    BRANDWATCH_CLIENT_SECRET: Optional[str] = None
    HOOTSUITE_ACCESS_TOKEN: Optional[str] = None
    HOOTSUITE_REFRESH_TOKEN: Optional[str] = None
    HOOTSUITE_CLIENT_ID: Optional[str] = None
    HOOTSUITE_CLIENT_SECRET: Optional[str] = None
    SPROUT_SOCIAL_ACCESS_TOKEN: Optional[str] = None
    SPROUT_SOCIAL_CUSTOMER_ID: Optional[str] = None
    BUZZSUMO_API_KEY: Optional[str] = None


SECRET_KEYS = [
    "REDDIT_CLIENT_ID",
    "REDDIT_CLIENT_SECRET",
    "TWITTER_BEARER_TOKEN",
    "NEWS_API_KEY",
    "BING_NEWS_API_KEY",
    "YOUTUBE_API_KEY",
    "MENTION_API_TOKEN",
    "BRAND24_API_TOKEN",
    "BRANDWATCH_USERNAME",
    "BRANDWATCH_PASSWORD",
    "BRANDWATCH_CLIENT_ID",
    "BRANDWATCH_CLIENT_SECRET",
    "HOOTSUITE_ACCESS_TOKEN",
    "HOOTSUITE_REFRESH_TOKEN",
    "HOOTSUITE_CLIENT_ID",
    "HOOTSUITE_CLIENT_SECRET",
    "SPROUT_SOCIAL_ACCESS_TOKEN",
    "SPROUT_SOCIAL_CUSTOMER_ID",
    "BUZZSUMO_API_KEY",
]


def _bool(value: str | bool) -> bool:
    """Convert string or bool to boolean."""
    if isinstance(value, bool):
        return value
    return str(value).lower() in ("1", "true", "yes", "on")


def _get_config_path() -> str:
    """Get the path to config.yml, handling different working directories."""
    env_path = os.getenv("CONVERSATION_MONITOR_CONFIG")
    if env_path:
        if os.path.exists(env_path):
            return env_path
        raise FileNotFoundError(f"Cannot find {env_path}")

    # Try relative path first
    if os.path.exists('resources/config.yml'):
        return 'resources/config.yml'

    # Try from project root
    project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    config_path = os.path.join(project_root, 'resources', 'config.yml')
    if os.path.exists(config_path):
        return config_path

    raise FileNotFoundError("Cannot find resources/config.yml")


def _parse_platforms(data: Dict[str, Any]) -> List[PlatformConfig]:
    """Parse the platforms mapping; a malformed entry is logged and skipped."""
    platforms = []
    for name, entry in (data or {}).items():
        entry = entry or {}
        try:
            platforms.append(PlatformConfig(
                name=name,
                type=entry.get("type", name),
                enabled=_bool(entry.get("enabled", True)),
                requests_per_hour=entry.get("requests_per_hour"),
                burst_limit=entry.get("burst_limit"),
                timeout=float(entry.get("timeout", 30.0)),
                options=entry.get("options") or {},
            ))
        except (ValueError, TypeError) as e:
            logger.error(f"Failed to parse platform '{name}': {e}")
    return platforms


def parse_config(config: Dict[str, Any], env: Optional[Dict[str, Optional[str]]] = None) -> Config:
    """Build a Config from parsed YAML plus secrets taken from env (default os.environ)."""
    env = os.environ if env is None else env
    config = config or {}
    secrets = {key: env.get(key) or None for key in SECRET_KEYS}

    return Config(
        DATABASE_PATH=config.get("DATABASE_PATH", "data/monitor.db"),
        LOG_LEVEL=str(config.get("LOG_LEVEL", "INFO")).upper(),
        LOG_JSON=_bool(config.get("LOG_JSON", False)),

        platforms=_parse_platforms(config.get("platforms", {})),
        scraper=ScraperConfig(**(config.get("scraper") or {})),
        monitoring=MonitoringConfig(**(config.get("monitoring") or {})),
        trends=TrendsConfig(**(config.get("trends") or {})),
        sentiment=SentimentThresholds(**(config.get("sentiment") or {})),

        **secrets,
    )


def load_config(path: Optional[str] = None) -> Config:
    """Load configuration from config.yml and provider credentials from .env."""
    # Load .env for sensitive credentials
    load_dotenv()

    config_path = path or _get_config_path()

    with open(config_path, 'r') as file:
        config = yaml.safe_load(file)

    return parse_config(config)


def get_enabled_platforms(config: Config) -> List[PlatformConfig]:
    """Get only enabled platforms from the config."""
    return [p for p in config.platforms if p.enabled]

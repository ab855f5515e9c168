"""
Normalize raw platform content into NormalizedContent.

Every step falls back to a safe default so normalize never raises, and the
same input (with the same ingested_at) always yields the same output.
"""
import json
import math
import re
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Union
from urllib.parse import urlsplit, urlunsplit

from core.entities import Engagement, NormalizedContent
from core.timeutils import parse_timestamp, to_iso, utcnow
from ingestion.base import RawContent

MAX_SAFE_INTEGER = 2 ** 53 - 1
MAX_CONTENT_LENGTH = 10_000
MAX_AUTHOR_LENGTH = 100
MAX_URL_LENGTH = 500
MAX_METADATA_STRING = 1000
MAX_METADATA_JSON = 5000
MAX_KEYWORDS = 20

STOP_WORDS = frozenset("""
the and or but in on at to for of with by from up about into through during
before after above below between among this that these those i me my myself
we our ours ourselves you your yours yourself yourselves he him his himself
she her hers herself it its itself they them their theirs themselves what
which who whom whose am is are was were be been being have has had having
do does did doing will would could should may might must can shall
""".split())

_WHITESPACE = re.compile(r"\s+")
_CONTROL = re.compile(r"[\x00-\x1F\x7F]")
_AUTHOR_DISALLOWED = re.compile(r"[^\w\s@._-]")
_PUNCTUATION = re.compile(r"[^\w\s]")

_ENGAGEMENT_SYNONYMS = {
    "likes": ("likes", "upvotes", "reactions"),
    "shares": ("shares", "retweets", "reposts"),
    "comments": ("comments", "replies"),
}


def _field(raw: Union[RawContent, Mapping[str, Any]], name: str) -> Any:
    if isinstance(raw, Mapping):
        return raw.get(name)
    return getattr(raw, name, None)


def normalize_id(external_id: Any, platform: str) -> str:
    value = "" if external_id is None else str(external_id)
    prefix = f"{platform}_"
    return value if value.startswith(prefix) else prefix + value


def clean_content(content: Any) -> str:
    if not isinstance(content, str):
        content = "" if content is None else str(content)
    text = _WHITESPACE.sub(" ", content)
    text = _CONTROL.sub("", text)
    return text.strip()[:MAX_CONTENT_LENGTH]


def clean_author(author: Any) -> str:
    if author is None or author == "":
        return "unknown"
    text = _AUTHOR_DISALLOWED.sub("", str(author)).strip()[:MAX_AUTHOR_LENGTH].strip()
    return text or "unknown"


def normalize_url(url: Any) -> str:
    if not isinstance(url, str):
        url = "" if url is None else str(url)
    trimmed = url.strip()
    try:
        parts = urlsplit(trimmed)
        if parts.scheme.lower() in ("http", "https") and parts.hostname:
            normalized = urlunsplit((
                parts.scheme.lower(),
                parts.netloc.lower(),
                parts.path or "/",
                parts.query,
                parts.fragment,
            ))
            return normalized[:MAX_URL_LENGTH]
    except ValueError:
        pass
    return trimmed[:MAX_URL_LENGTH]


def normalize_timestamp(value: Any, fallback: datetime) -> str:
    parsed = parse_timestamp(value)
    return to_iso(parsed if parsed is not None else fallback)


def to_count(value: Any) -> int:
    """Coerce to a non-negative integer no larger than MAX_SAFE_INTEGER; junk becomes 0."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return 0
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0
    if math.isnan(number) or number <= 0:
        return 0
    if number >= MAX_SAFE_INTEGER:
        return MAX_SAFE_INTEGER
    return int(number)


def to_ratio(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0.0
    if math.isnan(number):
        return 0.0
    return max(0.0, min(1.0, number))


def normalize_engagement(engagement: Any) -> Engagement:
    if not isinstance(engagement, Mapping):
        return Engagement()

    values = {}
    for canonical, synonyms in _ENGAGEMENT_SYNONYMS.items():
        raw = next((engagement[k] for k in synonyms if engagement.get(k) is not None), None)
        values[canonical] = to_count(raw)
    return Engagement(**values)


def _platform_metadata(platform: str, metadata: Mapping[str, Any]) -> Dict[str, Any]:
    fields: Dict[str, Any] = {}

    def put(key: str, value: Any) -> None:
        if value is not None:
            fields[key] = value

    if platform == "reddit":
        put("subreddit", metadata.get("subreddit"))
        if metadata.get("score") is not None:
            fields["score"] = to_count(metadata["score"])
        if metadata.get("upvote_ratio") is not None:
            fields["upvote_ratio"] = to_ratio(metadata["upvote_ratio"])
        put("flair", metadata.get("flair"))

    elif platform == "twitter":
        put("language", metadata.get("language"))
        if metadata.get("verified") is not None:
            fields["verified"] = bool(metadata["verified"])
        if isinstance(metadata.get("context_annotations"), list):
            fields["context_annotations"] = metadata["context_annotations"]
        if metadata.get("quote_count") is not None:
            fields["quote_count"] = to_count(metadata["quote_count"])

    elif platform == "news":
        put("source", metadata.get("source"))
        put("source_id", metadata.get("source_id"))
        put("image_url", metadata.get("image_url") or metadata.get("url_to_image"))

    elif platform == "forum":
        tags = metadata.get("tags")
        if isinstance(tags, list):
            fields["tags"] = [str(t) for t in tags]
        if metadata.get("question_score") is not None:
            fields["question_score"] = to_count(metadata["question_score"])
        if metadata.get("answer_count") is not None:
            fields["answer_count"] = to_count(metadata["answer_count"])

    return fields


def is_valid_metadata_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return len(value) <= MAX_METADATA_STRING
    try:
        return len(json.dumps(value, sort_keys=True)) <= MAX_METADATA_JSON
    except (TypeError, ValueError):
        return False


def normalize_metadata(
    platform: str,
    metadata: Any,
    ingested_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    result: Dict[str, Any] = {"platform": platform}
    if ingested_at is not None:
        result["normalized_at"] = to_iso(ingested_at)
    if not isinstance(metadata, Mapping):
        return result

    result.update(_platform_metadata(platform, metadata))
    for key, value in metadata.items():
        key = str(key)
        if key in result or not is_valid_metadata_value(value):
            continue
        result[key] = value
    return result


class ContentNormalizer:
    """
    Pure transformation of RawContent into NormalizedContent.

    ingested_at substitutes for a missing or unparseable timestamp and is
    recorded as metadata["normalized_at"]. When omitted, a bad timestamp
    falls back to the current time and normalized_at is not recorded.
    """

    def normalize(
        self,
        raw: Union[RawContent, Mapping[str, Any]],
        platform: str,
        *,
        ingested_at: Optional[datetime] = None,
    ) -> NormalizedContent:
        fallback = ingested_at or utcnow()
        return NormalizedContent(
            id=normalize_id(_field(raw, "id"), platform),
            content=clean_content(_field(raw, "content")),
            author=clean_author(_field(raw, "author")),
            platform=platform,
            url=normalize_url(_field(raw, "url")),
            timestamp=normalize_timestamp(_field(raw, "timestamp"), fallback),
            engagement=normalize_engagement(_field(raw, "engagement")),
            metadata=normalize_metadata(platform, _field(raw, "metadata"), ingested_at),
        )

    def normalize_batch(
        self,
        items: List[Union[RawContent, Mapping[str, Any]]],
        platform: str,
        *,
        ingested_at: Optional[datetime] = None,
    ) -> List[NormalizedContent]:
        return [self.normalize(item, platform, ingested_at=ingested_at) for item in items]

    @staticmethod
    def extract_keywords(text: Any) -> List[str]:
        return extract_keywords(text)


def extract_keywords(text: Any) -> List[str]:
    """
    Lowercased words longer than three characters that are not stop words,
    de-duplicated in order of appearance, at most 20.
    """
    if not isinstance(text, str):
        return []
    words = _PUNCTUATION.sub(" ", text.lower()).split()
    keywords: List[str] = []
    for word in words:
        if len(word) <= 3 or word in STOP_WORDS or word in keywords:
            continue
        keywords.append(word)
        if len(keywords) == MAX_KEYWORDS:
            break
    return keywords

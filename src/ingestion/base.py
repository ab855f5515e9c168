"""
Base classes for Ingestion
"""
import hashlib
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

import httpx
from pydantic import ValidationError as PydanticValidationError

from core.errors import (
    AuthenticationFailed,
    ProviderError,
    ProviderUnavailable,
    RateLimitExceeded,
    ValidationError,
)
from core.schemas import SearchOptions
from services.rate_limiter import RateLimitConfig

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "ConversationMonitor/1.0"
MAX_KEYWORD_LENGTH = 100

_KEYWORD_DISALLOWED = re.compile(r"[^\w\s-]")
_WHITESPACE = re.compile(r"\s+")


@dataclass
class RawContent:
    """
    Provider-shaped item before normalization. Engagement keys are loose
    (likes, upvotes, retweets, views, ...).
    """
    id: str
    content: str
    author: str
    url: str
    timestamp: Any
    engagement: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)


def sanitize_keyword(keyword: str) -> str:
    """
    Trim, drop characters other than word characters, whitespace and
    hyphens, collapse whitespace and cap the length.
    """
    cleaned = _KEYWORD_DISALLOWED.sub("", (keyword or "").strip())
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    return cleaned[:MAX_KEYWORD_LENGTH].strip()


def resolve_search_options(options: Union[SearchOptions, Mapping[str, Any], None]) -> SearchOptions:
    if options is None:
        return SearchOptions()
    if isinstance(options, SearchOptions):
        return options
    try:
        return SearchOptions(**options)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid search options: {e}") from e


def stable_id(*parts: str) -> str:
    """Short deterministic id for providers that do not expose one."""
    digest = hashlib.sha1("|".join(parts).encode("utf-8")).hexdigest()
    return digest[:16]


def retry_after_seconds(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class ProviderClient:
    """
    HTTP plumbing shared by every adapter: error mapping, bearer tokens
    with one refresh-and-retry, JSON decoding.
    """

    platform_name: str = ""

    def __init__(
        self,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        token_provider=None,
    ):
        self.timeout = timeout
        self._transport = transport
        self.token_provider = token_provider

    def _client(self, headers: Optional[Dict[str, str]] = None) -> httpx.AsyncClient:
        merged = {"User-Agent": DEFAULT_USER_AGENT}
        if headers:
            merged.update(headers)
        return httpx.AsyncClient(
            timeout=self.timeout,
            headers=merged,
            transport=self._transport,
            follow_redirects=True,
        )

    def handle_error(
        self,
        status: Optional[int],
        message: str,
        context: str,
        retry_after: Optional[float] = None,
    ) -> ProviderError:
        """
        Translate a provider failure into the shared error taxonomy.
        """
        logger.warning(f"{self.platform_name} adapter error in {context}: status={status} {message}")
        platform = self.platform_name

        if status == 429:
            return RateLimitExceeded(
                f"Rate limit exceeded for {platform}",
                platform=platform,
                retry_after=retry_after,
            )
        if status in (401, 403):
            return AuthenticationFailed(f"Authentication failed for {platform}", platform=platform, status=status)
        if status is not None and status >= 500:
            return ProviderUnavailable(f"{platform} service unavailable", platform=platform, status=status)
        return ProviderError(f"{platform} error: {message or 'Unknown error'}", platform=platform, status=status)

    async def _request(
        self,
        method: str,
        url: str,
        *,
        context: str = "request",
        allow_not_found: bool = False,
        headers: Optional[Dict[str, str]] = None,
        **kwargs,
    ) -> Optional[httpx.Response]:
        """
        Send one request. Non-2xx responses raise through handle_error;
        with allow_not_found a 404 returns None instead.
        """
        try:
            async with self._client(headers) as client:
                resp = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise self.handle_error(None, f"timeout: {e}", context) from e
        except httpx.HTTPError as e:
            raise self.handle_error(None, str(e) or type(e).__name__, context) from e

        if resp.status_code == 404 and allow_not_found:
            return None
        if resp.status_code >= 400:
            raise self.handle_error(
                resp.status_code,
                f"HTTP {resp.status_code}: {resp.reason_phrase}",
                context,
                retry_after=retry_after_seconds(resp),
            )
        return resp

    async def _authorized_request(
        self,
        method: str,
        url: str,
        *,
        context: str = "request",
        allow_not_found: bool = False,
        headers: Optional[Dict[str, str]] = None,
        **kwargs,
    ) -> Optional[httpx.Response]:
        """
        Like _request with a bearer token. A 401/403 triggers one token
        refresh and retry when the token provider supports refreshing.
        """
        if self.token_provider is None:
            return await self._request(method, url, context=context, allow_not_found=allow_not_found, headers=headers, **kwargs)

        token = await self.token_provider.get_token()
        try:
            return await self._request(
                method,
                url,
                context=context,
                allow_not_found=allow_not_found,
                headers={**(headers or {}), "Authorization": f"Bearer {token}"},
                **kwargs,
            )
        except AuthenticationFailed:
            if not self.token_provider.can_refresh:
                raise
            logger.info(f"Refreshing {self.platform_name} token after authentication failure")

        token = await self.token_provider.refresh()
        return await self._request(
            method,
            url,
            context=context,
            allow_not_found=allow_not_found,
            headers={**(headers or {}), "Authorization": f"Bearer {token}"},
            **kwargs,
        )

    def _json(self, resp: httpx.Response, context: str = "response") -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise self.handle_error(resp.status_code, f"invalid JSON: {e}", context) from e


class PlatformAdapter(ProviderClient, ABC):
    """
    Base interface for all platform sources.

    Subclasses supply the provider-specific query building and response
    parsing; keyword sanitising, HTTP error mapping and token refresh are
    inherited.
    """

    rate_limit_per_hour: int = 100
    requires_auth: bool = False
    max_results: int = 100

    @abstractmethod
    async def search(
        self,
        keyword: str,
        options: Union[SearchOptions, Mapping[str, Any], None] = None,
    ) -> List[RawContent]:
        """
        Search for content containing the keyword.
        Raises a ProviderError subclass on provider failure.
        """
        raise NotImplementedError

    async def get_content(self, content_id: str) -> Optional[RawContent]:
        """
        Look up one item by id. None when unsupported or not found.
        """
        return None

    async def validate_configuration(self) -> bool:
        """
        One cheap provider call. Never raises.
        """
        if not self.has_credentials():
            logger.warning(f"{self.platform_name} adapter is missing credentials")
            return False
        try:
            await self.search("test", SearchOptions(limit=1))
            return True
        except Exception as e:
            logger.warning(f"{self.platform_name} configuration check failed: {e}")
            return False

    def has_credentials(self) -> bool:
        return True

    async def monitor(self, keywords: List[str]) -> List[RawContent]:
        """
        Search every keyword, skipping keywords that fail.
        """
        results: List[RawContent] = []
        for keyword in keywords:
            try:
                results.extend(await self.search(keyword, SearchOptions(limit=50)))
            except Exception as e:
                logger.error(f"Error monitoring keyword '{keyword}' on {self.platform_name}: {e}")
        return results

    def get_rate_limit(self) -> RateLimitConfig:
        return RateLimitConfig(
            requests_per_hour=self.rate_limit_per_hour,
            burst_limit=max(1, self.rate_limit_per_hour // 4),
        )

    def _prepare(
        self,
        keyword: str,
        options: Union[SearchOptions, Mapping[str, Any], None],
    ) -> tuple[str, SearchOptions]:
        opts = resolve_search_options(options)
        clean = sanitize_keyword(keyword)
        if not clean:
            raise ValidationError(f"Keyword is empty after sanitizing: {keyword!r}")
        return clean, opts

    def _clamp_limit(self, limit: int) -> int:
        return max(1, min(limit, self.max_results))

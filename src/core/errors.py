"""
Error taxonomy shared by adapters, the store and the monitoring service
"""
from typing import Optional


class MonitoringError(Exception):
    """Base class for every error raised by this package."""


class ProviderError(MonitoringError):
    """
    Provider reported a failure that does not fit a narrower category.
    """

    def __init__(self, message: str, platform: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.platform = platform
        self.status = status


class RateLimitExceeded(ProviderError):
    def __init__(
        self,
        message: str,
        platform: Optional[str] = None,
        status: Optional[int] = 429,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, platform=platform, status=status)
        self.retry_after = retry_after


class AuthenticationFailed(ProviderError):
    pass


class ProviderUnavailable(ProviderError):
    pass


class ConfigurationMissing(MonitoringError):
    """A required credential or setting is absent."""


class ValidationError(MonitoringError):
    """Malformed caller input."""


class KeywordNotFound(ValidationError):
    def __init__(self, keyword_id: str, tenant_id: str):
        super().__init__("Keyword not found")
        self.keyword_id = keyword_id
        self.tenant_id = tenant_id


class PersistenceError(MonitoringError):
    """Conversation or job store read/write failure."""

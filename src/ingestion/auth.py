"""
Token providers used by authenticated adapters
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

import httpx

from core.errors import AuthenticationFailed, ConfigurationMissing, ProviderError, ProviderUnavailable
from core.timeutils import utcnow

logger = logging.getLogger(__name__)


class TokenProvider(ABC):
    can_refresh: bool = False

    @abstractmethod
    async def get_token(self) -> str:
        raise NotImplementedError

    async def refresh(self) -> str:
        raise AuthenticationFailed("Token cannot be refreshed")


class StaticBearer(TokenProvider):
    """A fixed API token or bearer key."""

    def __init__(self, token: Optional[str], platform: str = ""):
        self.token = token
        self.platform = platform

    async def get_token(self) -> str:
        if not self.token:
            raise ConfigurationMissing(f"{self.platform} API token is not configured")
        return self.token


class OAuth2TokenExchange(TokenProvider):
    """
    Exchange credentials for a bearer token and cache it until shortly
    before it expires.

    Supports the client_credentials, password and refresh_token grants.
    With use_basic_auth the client id/secret are sent as HTTP basic auth
    instead of form fields.
    """

    can_refresh = True

    def __init__(
        self,
        token_url: str,
        grant_type: str = "client_credentials",
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        refresh_token: Optional[str] = None,
        access_token: Optional[str] = None,
        scope: Optional[str] = None,
        use_basic_auth: bool = False,
        platform: str = "",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = utcnow,
        expiry_margin: timedelta = timedelta(seconds=60),
    ):
        self.token_url = token_url
        self.grant_type = grant_type
        self.client_id = client_id
        self.client_secret = client_secret
        self.username = username
        self.password = password
        self.refresh_token = refresh_token
        self.scope = scope
        self.use_basic_auth = use_basic_auth
        self.platform = platform
        self.timeout = timeout
        self._transport = transport
        self._clock = clock
        self._margin = expiry_margin
        self._lock = asyncio.Lock()

        self._access_token = access_token
        # a token handed in up front has unknown expiry; trust it until a 401
        self._expires_at: Optional[datetime] = None

    def _required(self) -> Dict[str, Optional[str]]:
        if self.grant_type == "password":
            return {"client_id": self.client_id, "username": self.username, "password": self.password}
        if self.grant_type == "refresh_token":
            return {"refresh_token": self.refresh_token}
        return {"client_id": self.client_id, "client_secret": self.client_secret}

    def _valid(self) -> bool:
        if not self._access_token:
            return False
        return self._expires_at is None or self._clock() < self._expires_at - self._margin

    async def get_token(self) -> str:
        if self._valid():
            return self._access_token
        return await self.refresh()

    async def refresh(self) -> str:
        async with self._lock:
            missing = [name for name, value in self._required().items() if not value]
            if missing:
                raise ConfigurationMissing(f"{self.platform} credentials missing: {', '.join(missing)}")

            form = {"grant_type": self.grant_type}
            if self.grant_type == "password":
                form.update(username=self.username, password=self.password)
            elif self.grant_type == "refresh_token":
                form["refresh_token"] = self.refresh_token
            if self.scope:
                form["scope"] = self.scope

            auth = None
            if self.use_basic_auth and self.client_id:
                auth = httpx.BasicAuth(self.client_id, self.client_secret or "")
            elif self.client_id:
                form["client_id"] = self.client_id
                if self.client_secret:
                    form["client_secret"] = self.client_secret

            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    resp = await client.post(self.token_url, data=form, auth=auth)
            except httpx.HTTPError as e:
                raise ProviderError(f"{self.platform} token request failed: {e}", platform=self.platform) from e

            if resp.status_code in (400, 401, 403):
                self._access_token = None
                raise AuthenticationFailed(
                    f"Authentication failed for {self.platform}",
                    platform=self.platform,
                    status=resp.status_code,
                )
            if resp.status_code >= 500:
                raise ProviderUnavailable(f"{self.platform} service unavailable", platform=self.platform, status=resp.status_code)
            if resp.status_code >= 300:
                raise ProviderError(f"{self.platform} error: token endpoint returned {resp.status_code}", platform=self.platform, status=resp.status_code)

            try:
                payload = resp.json()
            except ValueError as e:
                raise ProviderError(f"{self.platform} error: invalid token response", platform=self.platform) from e

            token = payload.get("access_token")
            if not token:
                raise AuthenticationFailed(f"Authentication failed for {self.platform}", platform=self.platform)

            expires_in = payload.get("expires_in") or 3600
            try:
                expires_in = float(expires_in)
            except (TypeError, ValueError):
                expires_in = 3600.0

            self._access_token = token
            self._expires_at = self._clock() + timedelta(seconds=expires_in)
            if payload.get("refresh_token"):
                self.refresh_token = payload["refresh_token"]

            logger.info(f"Obtained {self.platform} access token valid for {int(expires_in)}s")
            return token

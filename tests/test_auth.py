from urllib.parse import parse_qs

import pytest

from conftest import FakeClock, Recorder, json_response
from core.errors import AuthenticationFailed, ConfigurationMissing, ProviderUnavailable
from ingestion.auth import OAuth2TokenExchange, StaticBearer
from ingestion.hootsuite import HootsuiteAdapter

TOKEN_URL = "https://auth.example/token"


def _form(request) -> dict:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


class TestStaticBearer:
    @pytest.mark.asyncio
    async def test_returns_token(self):
        assert await StaticBearer("abc", platform="demo").get_token() == "abc"

    @pytest.mark.asyncio
    async def test_missing_token(self):
        with pytest.raises(ConfigurationMissing, match="demo"):
            await StaticBearer(None, platform="demo").get_token()

    @pytest.mark.asyncio
    async def test_cannot_refresh(self):
        provider = StaticBearer("abc")
        assert provider.can_refresh is False
        with pytest.raises(AuthenticationFailed):
            await provider.refresh()


class TestOAuth2TokenExchange:
    @pytest.mark.asyncio
    async def test_token_is_cached_until_expiry(self):
        tokens = iter(["first", "second"])
        recorder = Recorder(lambda request: json_response({"access_token": next(tokens), "expires_in": 600}))
        clock = FakeClock()
        provider = OAuth2TokenExchange(
            TOKEN_URL, client_id="id", client_secret="secret", platform="demo",
            transport=recorder.transport, clock=clock,
        )

        assert await provider.get_token() == "first"
        clock.advance(minutes=5)
        assert await provider.get_token() == "first"
        # refreshed inside the safety margin before expiry
        clock.advance(minutes=4, seconds=30)
        assert await provider.get_token() == "second"
        assert len(recorder.requests) == 2

    @pytest.mark.asyncio
    async def test_client_credentials_form(self):
        recorder = Recorder(lambda request: json_response({"access_token": "t"}))
        provider = OAuth2TokenExchange(
            TOKEN_URL, client_id="id", client_secret="secret", scope="read",
            transport=recorder.transport,
        )
        await provider.get_token()

        form = _form(recorder.requests[0])
        assert form == {"grant_type": "client_credentials", "scope": "read", "client_id": "id", "client_secret": "secret"}

    @pytest.mark.asyncio
    async def test_basic_auth(self):
        recorder = Recorder(lambda request: json_response({"access_token": "t"}))
        provider = OAuth2TokenExchange(
            TOKEN_URL, client_id="id", client_secret="secret", use_basic_auth=True,
            transport=recorder.transport,
        )
        await provider.get_token()

        request = recorder.requests[0]
        assert request.headers["Authorization"].startswith("Basic ")
        assert "client_id" not in _form(request)

    @pytest.mark.asyncio
    async def test_password_grant(self):
        recorder = Recorder(lambda request: json_response({"access_token": "t", "refresh_token": "r2"}))
        provider = OAuth2TokenExchange(
            TOKEN_URL, grant_type="password", client_id="id", username="me", password="pw",
            transport=recorder.transport,
        )
        await provider.get_token()

        form = _form(recorder.requests[0])
        assert form["grant_type"] == "password"
        assert form["username"] == "me"
        assert form["password"] == "pw"
        assert provider.refresh_token == "r2"

    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        recorder = Recorder(lambda request: json_response({}))
        provider = OAuth2TokenExchange(TOKEN_URL, client_id="id", platform="demo", transport=recorder.transport)

        with pytest.raises(ConfigurationMissing, match="client_secret"):
            await provider.get_token()
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_rejected_credentials(self):
        provider = OAuth2TokenExchange(
            TOKEN_URL, client_id="id", client_secret="bad",
            transport=Recorder(lambda r: json_response({"error": "invalid_client"}, status=400)).transport,
        )
        with pytest.raises(AuthenticationFailed):
            await provider.get_token()

    @pytest.mark.asyncio
    async def test_token_endpoint_down(self):
        provider = OAuth2TokenExchange(
            TOKEN_URL, client_id="id", client_secret="secret",
            transport=Recorder(lambda r: json_response({}, status=503)).transport,
        )
        with pytest.raises(ProviderUnavailable):
            await provider.get_token()


class TestRefreshOnUnauthorized:
    @pytest.mark.asyncio
    async def test_expired_token_is_refreshed_once(self):
        def handler(request):
            if request.url.path == "/oauth2/token":
                return json_response({"access_token": "fresh", "expires_in": 3600})
            if request.headers["Authorization"] != "Bearer fresh":
                return json_response({"error": "expired"}, status=401)
            return json_response({"data": [{"id": "s1", "query": "acme"}]})

        recorder = Recorder(handler)
        adapter = HootsuiteAdapter(
            access_token="stale", refresh_token="r1", client_id="id", client_secret="secret",
            transport=recorder.transport,
        )

        streams = await adapter.get_streams()

        assert streams == [{"id": "s1", "query": "acme"}]
        paths = [r.url.path for r in recorder.requests]
        assert paths == ["/v1/streams", "/oauth2/token", "/v1/streams"]
        assert _form(recorder.requests[1])["refresh_token"] == "r1"

    @pytest.mark.asyncio
    async def test_second_rejection_propagates(self):
        def handler(request):
            if request.url.path == "/oauth2/token":
                return json_response({"access_token": "fresh"})
            return json_response({}, status=401)

        recorder = Recorder(handler)
        adapter = HootsuiteAdapter(access_token="stale", refresh_token="r1", transport=recorder.transport)

        with pytest.raises(AuthenticationFailed):
            await adapter.get_streams()
        assert len(recorder.requests) == 3

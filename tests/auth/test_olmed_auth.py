"""Tests for the Olmed login, refresh and logout flows."""

import asyncio
from typing import Callable, List

import httpx
import pytest

from olmed_gateway.auth.olmed_auth import OlmedAuthClient
from olmed_gateway.auth.token_store import TokenInfo, TokenStore
from olmed_gateway.config import OlmedConfig

from tests.helpers import FakeClock

BASE_URL = "https://erp.grupaolmed.pl"


def _config(**overrides) -> OlmedConfig:
    values = {"base_url": BASE_URL, "username": "gateway", "password": "secret"}
    values.update(overrides)
    return OlmedConfig(**values)


def _token_response(token: str, expires_in: int = 3600) -> httpx.Response:
    return httpx.Response(200, json={"access_token": token, "expires_in": expires_in})


def _make_client(
    handler: Callable[[httpx.Request], httpx.Response],
    clock: FakeClock,
    config: OlmedConfig = None,
):
    """Build an auth client whose HTTP calls go to ``handler``."""
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    store = TokenStore(clock=clock)
    auth = OlmedAuthClient(http_client, store, config or _config(), clock=clock)
    return auth, store, http_client


class TestLogin:
    """Tests for OlmedAuthClient.login()."""

    @pytest.mark.asyncio
    async def test_login_stores_token(self) -> None:
        """Test a successful login stores the issued token."""
        clock = FakeClock()
        requests: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return _token_response("tok-1", 3600)

        auth, store, http_client = _make_client(handler, clock)
        async with http_client:
            result = await auth.login()

        assert result.success is True
        assert result.token == "tok-1"
        assert result.expires_in == 3600
        assert result.status_code == 200
        assert store.get().token == "tok-1"

        request = requests[0]
        assert request.method == "POST"
        assert request.url.path == "/erp-api/auth/login"
        assert request.url.params["username"] == "gateway"
        assert request.url.params["password"] == "secret"
        assert request.headers["accept"] == "application/json"

    @pytest.mark.asyncio
    async def test_login_accepts_alternative_keys(self) -> None:
        """Test that token/expiresIn response keys are understood."""
        clock = FakeClock()

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"token": "tok-2", "expiresIn": 120})

        auth, store, http_client = _make_client(handler, clock)
        async with http_client:
            result = await auth.login()

        assert result.success is True
        assert store.get().remaining_seconds(clock.now) == 120

    @pytest.mark.asyncio
    async def test_login_defaults_missing_expiry(self) -> None:
        """Test that a missing expires_in falls back to the configured default."""
        clock = FakeClock()

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"access_token": "tok"})

        auth, store, http_client = _make_client(handler, clock, _config(default_expires_in=900))
        async with http_client:
            await auth.login()

        assert store.get().remaining_seconds(clock.now) == 900

    @pytest.mark.asyncio
    async def test_login_rejected(self) -> None:
        """Test that a rejected login leaves the store empty."""
        clock = FakeClock()

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, text="bad credentials")

        auth, store, http_client = _make_client(handler, clock)
        async with http_client:
            result = await auth.login()

        assert result.success is False
        assert result.status_code == 401
        assert "bad credentials" in result.message
        assert store.get() is None

    @pytest.mark.asyncio
    async def test_login_invalid_body(self) -> None:
        """Test that a 200 without a token is a failure."""
        clock = FakeClock()

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>maintenance</html>")

        auth, store, http_client = _make_client(handler, clock)
        async with http_client:
            result = await auth.login()

        assert result.success is False
        assert result.message == "Invalid login response"

    @pytest.mark.asyncio
    async def test_login_huge_lifetime_is_invalid(self) -> None:
        """Test that an unrepresentable token lifetime fails instead of raising."""
        clock = FakeClock()

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"token": "t", "expires_in": 10**12})

        auth, store, http_client = _make_client(handler, clock)
        async with http_client:
            result = await auth.login()
            token = await auth.ensure_token()

        assert result.success is False
        assert result.message == "Invalid login response"
        assert token is None
        assert store.peek() is None

    @pytest.mark.asyncio
    async def test_login_transport_error(self) -> None:
        """Test that transport errors are reported, not raised."""
        clock = FakeClock()

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        auth, _, http_client = _make_client(handler, clock)
        async with http_client:
            result = await auth.login()

        assert result.success is False
        assert "connection refused" in result.message

    @pytest.mark.asyncio
    async def test_login_without_credentials(self) -> None:
        """Test that no request is made without credentials."""
        clock = FakeClock()
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return _token_response("tok")

        auth, _, http_client = _make_client(handler, clock, _config(username="", password=""))
        async with http_client:
            result = await auth.login()

        assert result.success is False
        assert calls == []


class TestRefresh:
    """Tests for refresh() and refresh_if_needed()."""

    @pytest.mark.asyncio
    async def test_fresh_token_makes_no_request(self) -> None:
        """Test that a fresh token is returned as-is."""
        clock = FakeClock()
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return _token_response("new")

        auth, store, http_client = _make_client(handler, clock)
        store.set("olmed", TokenInfo.issue("current", 3600, now=clock.now))

        async with http_client:
            result = await auth.refresh_if_needed()

        assert result.success is True
        assert result.token == "current"
        assert calls == []

    @pytest.mark.asyncio
    async def test_near_expiry_token_is_refreshed(self) -> None:
        """Test that a token with 60s left is refreshed with itself as credential."""
        clock = FakeClock()
        requests: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return _token_response("refreshed", 3600)

        auth, store, http_client = _make_client(handler, clock)
        store.set("olmed", TokenInfo.issue("current", 3600, now=clock.now))
        clock.advance(3600 - 60)

        async with http_client:
            result = await auth.refresh_if_needed()

        assert result.success is True
        assert result.token == "refreshed"
        assert store.get().token == "refreshed"
        assert len(requests) == 1
        assert requests[0].url.path == "/erp-api/auth/refresh"
        assert requests[0].headers["Authorization"] == "Bearer current"

    @pytest.mark.asyncio
    async def test_failed_refresh_falls_back_to_login(self) -> None:
        """Test that a rejected refresh triggers a full login."""
        clock = FakeClock()
        paths: List[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            if request.url.path.endswith("/refresh"):
                return httpx.Response(401)
            return _token_response("logged-in")

        auth, store, http_client = _make_client(handler, clock)
        store.set("olmed", TokenInfo.issue("current", 600, now=clock.now))
        clock.advance(700)

        async with http_client:
            result = await auth.refresh_if_needed()

        assert result.success is True
        assert store.get().token == "logged-in"
        assert paths == ["/erp-api/auth/refresh", "/erp-api/auth/login"]

    @pytest.mark.asyncio
    async def test_absent_token_logs_in(self) -> None:
        """Test that an empty store goes straight to login."""
        clock = FakeClock()
        paths: List[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return _token_response("logged-in")

        auth, _, http_client = _make_client(handler, clock)
        async with http_client:
            result = await auth.refresh_if_needed()

        assert result.success is True
        assert paths == ["/erp-api/auth/login"]

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_login(self) -> None:
        """Test that a burst of callers triggers a single login."""
        clock = FakeClock()
        calls = []

        async def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            await asyncio.sleep(0.01)
            return _token_response("shared")

        auth, _, http_client = _make_client(handler, clock)
        async with http_client:
            results = await asyncio.gather(*(auth.refresh_if_needed() for _ in range(5)))

        assert len(calls) == 1
        assert all(r.success and r.token == "shared" for r in results)

    @pytest.mark.asyncio
    async def test_forced_refresh_without_token(self) -> None:
        """Test that refresh() fails when nothing was ever stored."""
        clock = FakeClock()
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return _token_response("tok")

        auth, _, http_client = _make_client(handler, clock)
        async with http_client:
            result = await auth.refresh()

        assert result.success is False
        assert calls == []

    @pytest.mark.asyncio
    async def test_ensure_token(self) -> None:
        """Test that ensure_token returns the bearer value."""
        clock = FakeClock()

        def handler(request: httpx.Request) -> httpx.Response:
            return _token_response("tok")

        auth, _, http_client = _make_client(handler, clock)
        async with http_client:
            assert await auth.ensure_token() == "tok"

    @pytest.mark.asyncio
    async def test_ensure_token_failure(self) -> None:
        """Test that ensure_token returns None when no token can be obtained."""
        clock = FakeClock()

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        auth, _, http_client = _make_client(handler, clock)
        async with http_client:
            assert await auth.ensure_token() is None


class TestLogout:
    """Tests for OlmedAuthClient.logout()."""

    @pytest.mark.asyncio
    async def test_logout(self) -> None:
        """Test logging out sends the token and clears the store."""
        clock = FakeClock()
        requests: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"message": "ok"})

        auth, store, http_client = _make_client(handler, clock)
        store.set("olmed", TokenInfo.issue("current", 3600, now=clock.now))

        async with http_client:
            result = await auth.logout()

        assert result.success is True
        assert store.get() is None
        assert requests[0].url.path == "/erp-api/auth/logout"
        assert requests[0].headers["Authorization"] == "Bearer current"

    @pytest.mark.asyncio
    async def test_logout_server_error_still_clears_token(self) -> None:
        """Test that a 500 from logout still removes the local token."""
        clock = FakeClock()

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="boom")

        auth, store, http_client = _make_client(handler, clock)
        store.set("olmed", TokenInfo.issue("current", 3600, now=clock.now))

        async with http_client:
            result = await auth.logout()

        assert result.success is False
        assert result.status_code == 500
        assert store.get() is None

    @pytest.mark.asyncio
    async def test_logout_transport_error_still_clears_token(self) -> None:
        """Test that a network failure during logout still removes the token."""
        clock = FakeClock()

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        auth, store, http_client = _make_client(handler, clock)
        store.set("olmed", TokenInfo.issue("current", 3600, now=clock.now))

        async with http_client:
            result = await auth.logout()

        assert result.success is False
        assert store.get() is None

    @pytest.mark.asyncio
    async def test_logout_without_token(self) -> None:
        """Test that logging out without a token is a successful no-op."""
        clock = FakeClock()
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200)

        auth, _, http_client = _make_client(handler, clock)
        async with http_client:
            result = await auth.logout()

        assert result.success is True
        assert calls == []


class TestSharedToken:
    """Tests for shared_token()."""

    def test_shared_token(self) -> None:
        """Test reading the stored token without network I/O."""
        clock = FakeClock()
        auth, store, _ = _make_client(lambda request: httpx.Response(500), clock)

        assert auth.shared_token().success is False

        store.set("olmed", TokenInfo.issue("tok", 3600, now=clock.now))
        result = auth.shared_token()
        assert result.success is True
        assert result.token == "tok"

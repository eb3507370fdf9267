"""Tests for the job executor."""

import json
from pathlib import Path
from typing import List
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from olmed_gateway.auth.token_store import TokenInfo, TokenStore
from olmed_gateway.event_log import EventLog
from olmed_gateway.scheduler.job_executor import JobExecutor
from olmed_gateway.scheduler.schedule import RequestTemplate

from tests.helpers import FakeClock

ERP_URL = "https://erp.grupaolmed.pl/erp-api/sync/products"


class Recorder:
    """MockTransport handler that records requests and replays one response."""

    def __init__(self, response: httpx.Response = None) -> None:
        self.requests: List[httpx.Request] = []
        self.response = response or httpx.Response(200, json={"ok": True})

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response


def _executor(handler, clock: FakeClock, token: str = None, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    store = TokenStore(clock=clock)
    if token:
        store.set("olmed", TokenInfo.issue(token, 3600, now=clock.now))
    return JobExecutor(client, store, clock=clock, **kwargs), client


class TestAuthDomain:
    """Tests for JobExecutor.targets_auth_domain()."""

    @pytest.mark.parametrize(
        "url, expected",
        [
            ("https://grupaolmed.pl/x", True),
            ("https://erp.grupaolmed.pl/x", True),
            ("https://ERP.GrupaOlmed.pl/x", True),
            ("https://notgrupaolmed.pl/x", False),
            ("https://grupaolmed.pl.evil.com/x", False),
            ("https://example.com/?next=grupaolmed.pl", False),
        ],
    )
    def test_targets_auth_domain(self, url, expected) -> None:
        """Test that only the domain and its subdomains match."""
        executor, _ = _executor(Recorder(), FakeClock())
        assert executor.targets_auth_domain(url) is expected


class TestBuildRequest:
    """Tests for JobExecutor.build_request()."""

    def test_get_drops_body(self) -> None:
        """Test that GET requests never carry a body."""
        executor, _ = _executor(Recorder(), FakeClock())
        request = executor.build_request(
            RequestTemplate(method="GET", url="https://example.com", body='{"a": 1}')
        )
        assert request.content == b""
        assert "Content-Type" not in request.headers

    def test_post_body_with_default_content_type(self) -> None:
        """Test that POST bodies default to JSON."""
        executor, _ = _executor(Recorder(), FakeClock())
        request = executor.build_request(
            RequestTemplate(method="POST", url="https://example.com", body='{"a": 1}')
        )
        assert request.content == b'{"a": 1}'
        assert request.headers["Content-Type"] == "application/json"

    def test_custom_content_type_follows_body(self) -> None:
        """Test that a caller Content-Type is applied with the body."""
        executor, _ = _executor(Recorder(), FakeClock())
        request = executor.build_request(
            RequestTemplate(
                method="PUT",
                url="https://example.com",
                headers={"content-type": "text/plain", "X-Trace": "1"},
                body="hello",
            )
        )
        assert request.headers["Content-Type"] == "text/plain"
        assert request.headers["X-Trace"] == "1"

    def test_empty_body_not_attached(self) -> None:
        """Test that an empty body is not sent."""
        executor, _ = _executor(Recorder(), FakeClock())
        request = executor.build_request(
            RequestTemplate(method="POST", url="https://example.com", body="")
        )
        assert request.content == b""
        assert "Content-Type" not in request.headers

    def test_bearer(self) -> None:
        """Test that a bearer token becomes an Authorization header."""
        executor, _ = _executor(Recorder(), FakeClock())
        request = executor.build_request(RequestTemplate(url="https://example.com"), bearer="tok")
        assert request.headers["Authorization"] == "Bearer tok"


class TestExecute:
    """Tests for JobExecutor.execute()."""

    @pytest.mark.asyncio
    async def test_success(self) -> None:
        """Test a 2xx response becomes a successful outcome."""
        clock = FakeClock()
        recorder = Recorder(httpx.Response(200, text="done"))
        executor, client = _executor(recorder, clock)

        async with client:
            outcome = await executor.execute(RequestTemplate(url="https://example.com/ping"), job_id="ping")

        assert outcome.success is True
        assert outcome.status_code == 200
        assert outcome.response_body == "done"
        assert outcome.executed_at == clock.now
        assert outcome.error is None
        assert outcome.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_http_error_status(self) -> None:
        """Test a non-2xx response becomes a failed outcome with its status."""
        recorder = Recorder(httpx.Response(503, text="unavailable"))
        executor, client = _executor(recorder, FakeClock())

        async with client:
            outcome = await executor.execute(RequestTemplate(url="https://example.com/ping"))

        assert outcome.success is False
        assert outcome.status_code == 503
        assert outcome.response_body == "unavailable"
        assert outcome.error == "HTTP 503"

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        """Test that connection failures report status 0 instead of raising."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        executor, client = _executor(handler, FakeClock())

        async with client:
            outcome = await executor.execute(RequestTemplate(url="https://example.com/ping"))

        assert outcome.success is False
        assert outcome.status_code == 0
        assert "connection refused" in outcome.error

    @pytest.mark.asyncio
    async def test_shared_auth_attached_for_erp_domain(self) -> None:
        """Test that the stored token is sent to the ERP domain."""
        recorder = Recorder()
        executor, client = _executor(recorder, FakeClock(), token="shared")

        async with client:
            await executor.execute(RequestTemplate(url=ERP_URL, use_shared_auth=True))

        assert recorder.requests[0].headers["Authorization"] == "Bearer shared"

    @pytest.mark.asyncio
    async def test_shared_auth_not_sent_elsewhere(self) -> None:
        """Test that the token never leaves the ERP domain."""
        recorder = Recorder()
        executor, client = _executor(recorder, FakeClock(), token="shared")

        async with client:
            await executor.execute(RequestTemplate(url="https://example.com/hook", use_shared_auth=True))

        assert "Authorization" not in recorder.requests[0].headers

    @pytest.mark.asyncio
    async def test_shared_auth_requires_flag(self) -> None:
        """Test that jobs without the flag are sent as-is."""
        recorder = Recorder()
        executor, client = _executor(recorder, FakeClock(), token="shared")

        async with client:
            await executor.execute(RequestTemplate(url=ERP_URL))

        assert "Authorization" not in recorder.requests[0].headers

    @pytest.mark.asyncio
    async def test_missing_token_sends_without_authorization(self) -> None:
        """Test that a missing token does not block the request."""
        recorder = Recorder()
        executor, client = _executor(recorder, FakeClock())

        async with client:
            outcome = await executor.execute(RequestTemplate(url=ERP_URL, use_shared_auth=True))

        assert outcome.success is True
        assert "Authorization" not in recorder.requests[0].headers

    @pytest.mark.asyncio
    async def test_auth_client_refreshes_token(self) -> None:
        """Test that the auth client is asked for a token before sending."""
        recorder = Recorder()
        auth_client = MagicMock()
        auth_client.ensure_token = AsyncMock(return_value="refreshed")
        executor, client = _executor(recorder, FakeClock(), auth_client=auth_client)

        async with client:
            await executor.execute(RequestTemplate(url=ERP_URL, use_shared_auth=True))

        auth_client.ensure_token.assert_awaited_once()
        assert recorder.requests[0].headers["Authorization"] == "Bearer refreshed"

    @pytest.mark.asyncio
    async def test_already_completed_response_is_logged(self, tmp_path: Path) -> None:
        """Test that 'request already completed' responses are recorded."""
        clock = FakeClock()
        body = {
            "message": "Request already completed! Use GUID below to fetch results",
            "requestGUID": "abc-123",
        }
        recorder = Recorder(httpx.Response(409, json=body))
        event_log = EventLog(tmp_path, clock=clock)
        executor, client = _executor(recorder, clock, event_log=event_log)

        async with client:
            outcome = await executor.execute(RequestTemplate(url="https://example.com"), job_id="sync")

        assert outcome.success is False
        lines = event_log.path_for("job_events").read_text(encoding="utf-8").splitlines()
        entry = json.loads(lines[0])
        assert entry["event_type"] == "REQUEST_ALREADY_COMPLETED"
        assert entry["job_id"] == "sync"
        assert entry["additional_data"]["request_guid"] == "abc-123"
        assert entry["additional_data"]["is_success"] is False

    @pytest.mark.asyncio
    async def test_plain_response_not_logged(self, tmp_path: Path) -> None:
        """Test that ordinary responses write no job events."""
        clock = FakeClock()
        event_log = EventLog(tmp_path, clock=clock)
        executor, client = _executor(Recorder(httpx.Response(200, text="not json")), clock, event_log=event_log)

        async with client:
            await executor.execute(RequestTemplate(url="https://example.com"), job_id="sync")

        assert not event_log.path_for("job_events").exists()

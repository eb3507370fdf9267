"""Tests for jobs CLI command."""

import json
from unittest.mock import patch

import httpx
import pytest
from typer.testing import CliRunner

from olmed_gateway.cli.exit_codes import ExitCode
from olmed_gateway.cli.error_handler import ValidationError
from olmed_gateway.cli.jobs import _parse_headers, app
from olmed_gateway.config import GatewayConfig, set_config


runner = CliRunner()


@pytest.fixture
def config(tmp_path):
    """Global configuration rooted in tmp_path."""
    config = GatewayConfig(config_dir=tmp_path / "config", data_dir=tmp_path / "data")
    set_config(config)
    return config


def _mock_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestParseHeaders:
    """Tests for _parse_headers."""

    def test_parse(self):
        """Test parsing Name: value pairs."""
        assert _parse_headers(["Accept: application/json", "X-Empty:"]) == {
            "Accept": "application/json",
            "X-Empty": "",
        }

    def test_invalid(self):
        """Test that values without a colon are rejected."""
        with pytest.raises(ValidationError):
            _parse_headers(["no-colon"])


class TestPreviewCommand:
    """Tests for jobs preview."""

    def test_preview_default_jobs(self, config):
        """Test that the default sync jobs are listed."""
        result = runner.invoke(app, ["preview"])

        assert result.exit_code == 0
        assert "olmed-sync-products" in result.output
        assert "olmed-sync-orders" in result.output

    def test_preview_without_active_jobs(self, config):
        """Test the message when every definition is inactive."""
        for path in (config.sync.product_config_file, config.sync.order_config_file):
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps({"configurations": []}), encoding="utf-8")

        result = runner.invoke(app, ["preview"])

        assert result.exit_code == 0
        assert "No active sync configurations" in result.output


class TestValidateCommand:
    """Tests for jobs validate."""

    def test_valid_schedule(self):
        """Test a valid schedule prints its description."""
        definition = json.dumps(
            {"kind": "daily", "hour": 8, "minute": 0, "request": {"url": "https://example.com/report"}}
        )

        result = runner.invoke(app, ["validate", definition])

        assert result.exit_code == 0
        assert "daily at 08:00 UTC" in result.output
        assert "Next run" in result.output

    def test_valid_schedule_from_file(self, tmp_path):
        """Test reading the schedule from a file."""
        path = tmp_path / "job.json"
        path.write_text(
            json.dumps({"kind": "interval", "interval_seconds": 30, "request": {"url": "https://example.com"}}),
            encoding="utf-8",
        )

        result = runner.invoke(app, ["validate", "--file", str(path)])

        assert result.exit_code == 0
        assert "every 30s" in result.output

    def test_invalid_weekly(self):
        """Test that a weekly schedule without a day is rejected with its field."""
        definition = json.dumps({"kind": "weekly", "hour": 8, "minute": 0, "request": {"url": "https://example.com"}})

        result = runner.invoke(app, ["validate", definition])

        assert result.exit_code == ExitCode.INVALID_ARGUMENT
        assert "day_of_week" in result.output

    @pytest.mark.parametrize("definition", ["{not json", "[1, 2]"])
    def test_malformed_input(self, definition):
        """Test that malformed JSON is rejected."""
        result = runner.invoke(app, ["validate", definition])

        assert result.exit_code == ExitCode.INVALID_ARGUMENT

    def test_missing_input(self):
        """Test that a definition is required."""
        result = runner.invoke(app, ["validate"])

        assert result.exit_code == ExitCode.INVALID_ARGUMENT


class TestExecuteCommand:
    """Tests for jobs execute."""

    def test_execute_success(self, config):
        """Test sending a one-off request."""
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, text="pong")

        with patch("olmed_gateway.daemon.service.create_http_client", return_value=_mock_client(handler)):
            result = runner.invoke(
                app,
                ["execute", "--url", "https://example.com/ping", "-X", "post", "-H", "X-Trace: 1", "-d", "{}"],
            )

        assert result.exit_code == 0
        assert "200" in result.output
        assert "pong" in result.output
        assert requests[0].method == "POST"
        assert requests[0].headers["X-Trace"] == "1"
        assert requests[0].content == b"{}"

    def test_execute_http_error(self, config):
        """Test that a non-2xx status exits with 1."""
        with patch(
            "olmed_gateway.daemon.service.create_http_client",
            return_value=_mock_client(lambda request: httpx.Response(500, text="boom")),
        ):
            result = runner.invoke(app, ["execute", "--url", "https://example.com/ping"])

        assert result.exit_code == 1
        assert "500" in result.output

    def test_execute_network_error(self, config):
        """Test that transport failures exit with the network error code."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with patch("olmed_gateway.daemon.service.create_http_client", return_value=_mock_client(handler)):
            result = runner.invoke(app, ["execute", "--url", "https://example.com/ping"])

        assert result.exit_code == ExitCode.NETWORK_ERROR
        assert "connection refused" in result.output

    def test_execute_invalid_url(self, config):
        """Test that invalid URLs are rejected before sending."""
        result = runner.invoke(app, ["execute", "--url", "not-a-url"])

        assert result.exit_code == ExitCode.INVALID_ARGUMENT

"""Tests for run CLI command."""

import logging
import os
import signal
from unittest.mock import AsyncMock, patch

import pytest
from typer.testing import CliRunner

from olmed_gateway.cli.exit_codes import ExitCode
from olmed_gateway.cli.run import _setup_logging, app
from olmed_gateway.daemon.pid import PIDFile


runner = CliRunner()


@pytest.fixture
def gateway_env(tmp_path, monkeypatch):
    """Point configuration and data directories at tmp_path."""
    monkeypatch.setenv("OLMED_GATEWAY_CONFIG_DIR", str(tmp_path / "config"))
    monkeypatch.setenv("OLMED_GATEWAY_DATA_DIR", str(tmp_path / "data"))
    return tmp_path


class TestSetupLogging:
    """Tests for _setup_logging function."""

    def test_setup_logging_verbose(self, tmp_path):
        """Test logging setup with verbose mode."""
        _setup_logging(verbose=True, log_file=tmp_path / "gateway.log")

        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_setup_logging_level_from_config(self):
        """Test that the configured level applies when not verbose."""
        _setup_logging(verbose=False, level="error")

        assert logging.getLogger().level == logging.ERROR

    def test_setup_logging_creates_log_directory(self, tmp_path):
        """Test that log setup creates directory for log file."""
        log_file = tmp_path / "subdir" / "gateway.log"

        _setup_logging(verbose=False, log_file=log_file)

        assert log_file.parent.exists()


class TestRunCommand:
    """Tests for starting the gateway."""

    def test_run_starts_daemon(self, gateway_env):
        """Test that run writes a PID file and runs the daemon."""
        mock_run = AsyncMock()

        with patch("olmed_gateway.daemon.service.run_daemon", mock_run), patch("atexit.register"):
            result = runner.invoke(app, [])

        assert result.exit_code == 0
        assert "Starting Olmed gateway" in result.output
        mock_run.assert_awaited_once()
        config = mock_run.call_args.args[0]
        assert config.data_dir == gateway_env / "data"
        assert PIDFile(config.pid_file).read() == os.getpid()

    def test_run_refuses_second_instance(self, gateway_env):
        """Test that a live PID file blocks a second start."""
        PIDFile(gateway_env / "data" / "olmed-gateway.pid").create()
        mock_run = AsyncMock()

        with patch("olmed_gateway.daemon.service.run_daemon", mock_run):
            result = runner.invoke(app, [])

        assert result.exit_code == ExitCode.GENERAL_ERROR
        assert "already running" in result.output
        mock_run.assert_not_called()

    def test_run_reports_daemon_failure(self, gateway_env):
        """Test that daemon errors exit with a general error."""
        mock_run = AsyncMock(side_effect=RuntimeError("boom"))

        with patch("olmed_gateway.daemon.service.run_daemon", mock_run), patch("atexit.register"):
            result = runner.invoke(app, [])

        assert result.exit_code == ExitCode.GENERAL_ERROR
        assert "boom" in result.output


class TestStatusCommand:
    """Tests for run status."""

    def test_status_not_running(self, gateway_env):
        """Test status without a PID file."""
        result = runner.invoke(app, ["status"])

        assert result.exit_code == 0
        assert "not running" in result.output

    def test_status_running(self, gateway_env):
        """Test status with a live PID file."""
        PIDFile(gateway_env / "data" / "olmed-gateway.pid").create()

        result = runner.invoke(app, ["status"])

        assert result.exit_code == 0
        assert "Gateway is running" in result.output


class TestStopAndReload:
    """Tests for run stop and run reload."""

    def test_stop_without_pid_file(self, gateway_env):
        """Test stop when the gateway was never started."""
        result = runner.invoke(app, ["stop"])

        assert result.exit_code == 0
        assert "no PID file" in result.output

    def test_stop_sends_sigterm(self, gateway_env):
        """Test that stop signals the recorded process."""
        pid_path = gateway_env / "data" / "olmed-gateway.pid"
        pid_path.parent.mkdir(parents=True)
        pid_path.write_text("4242")

        with patch("olmed_gateway.daemon.pid.PIDFile.terminate", return_value=4242) as mock_terminate:
            result = runner.invoke(app, ["stop"])

        assert result.exit_code == 0
        assert "4242" in result.output
        mock_terminate.assert_called_once_with()

    def test_stop_stale_pid_file(self, gateway_env):
        """Test that a stale PID file is removed."""
        pid_path = gateway_env / "data" / "olmed-gateway.pid"
        pid_path.parent.mkdir(parents=True)
        pid_path.write_text("4242")

        with patch("olmed_gateway.daemon.pid.PIDFile.terminate", return_value=None):
            result = runner.invoke(app, ["stop"])

        assert result.exit_code == 0
        assert "stale" in result.output
        assert not pid_path.exists()

    def test_reload_sends_sighup(self, gateway_env):
        """Test that reload signals SIGHUP."""
        with patch("olmed_gateway.daemon.pid.PIDFile.terminate", return_value=4242) as mock_terminate:
            result = runner.invoke(app, ["reload"])

        assert result.exit_code == 0
        assert "Reload signal sent" in result.output
        mock_terminate.assert_called_once_with(signal.SIGHUP)

    def test_reload_not_running(self, gateway_env):
        """Test reload without a running gateway."""
        result = runner.invoke(app, ["reload"])

        assert result.exit_code == ExitCode.GENERAL_ERROR
        assert "not running" in result.output

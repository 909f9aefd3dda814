"""
Unit tests for the CLI commands.

Tests watch, config and state commands with CliRunner.
"""

import json
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
import yaml
from click.testing import CliRunner

from servicefinder_sync.models import Notification, NotificationType, Role


@pytest.fixture
def cli_runner():
    """Create a Click CLI runner."""
    return CliRunner()


@pytest.fixture
def config_env(client_config_file, monkeypatch, clean_environment):
    """Point the CLI at the temporary config file."""
    monkeypatch.setenv("SERVICEFINDER_CONFIG_PATH", str(client_config_file))
    return client_config_file


@pytest.fixture
def data_env(tmp_path, monkeypatch):
    """Point the CLI at a temporary data directory."""
    monkeypatch.setenv("SERVICEFINDER_DATA_DIR", str(tmp_path))
    return tmp_path


class TestWatchCommand:
    """Tests for the watch command."""

    def test_watch_uses_config_session(self, cli_runner, config_env):
        from cli.main import cli

        with patch("cli.watch.run_session", return_value=0) as mock_run:
            result = cli_runner.invoke(cli, ["watch"])

        assert result.exit_code == 0
        assert "Watching user 42 (SERVICE_PROVIDER)" in result.output
        session = mock_run.call_args.args[0]
        assert session.user_id == 42
        assert session.role == Role.SERVICE_PROVIDER

    def test_watch_options_override_config(self, cli_runner, config_env):
        from cli.main import cli

        with patch("cli.watch.run_session", return_value=0) as mock_run:
            result = cli_runner.invoke(cli, ["watch", "--user-id", "9", "--role", "customer"])

        assert result.exit_code == 0
        session = mock_run.call_args.args[0]
        assert session.user_id == 9
        assert session.role == Role.CUSTOMER

    def test_watch_exit_code_propagates(self, cli_runner, config_env):
        from cli.main import cli

        with patch("cli.watch.run_session", return_value=1):
            result = cli_runner.invoke(cli, ["watch"])

        assert result.exit_code == 1

    def test_watch_requires_server_url(self, cli_runner, temp_config_dir, monkeypatch, clean_environment):
        from cli.main import cli

        monkeypatch.setenv("SERVICEFINDER_CONFIG_PATH", str(temp_config_dir / "missing.yaml"))

        result = cli_runner.invoke(cli, ["watch"])

        assert result.exit_code == 1
        assert "not configured" in result.output

    def test_watch_requires_user(self, cli_runner, temp_config_dir, monkeypatch, clean_environment):
        from cli.main import cli

        monkeypatch.setenv("SERVICEFINDER_CONFIG_PATH", str(temp_config_dir / "missing.yaml"))
        monkeypatch.setenv("SERVICEFINDER_SERVER_URL", "http://localhost:8080")

        result = cli_runner.invoke(cli, ["watch"])

        assert result.exit_code == 1
        assert "No user to watch" in result.output

    def test_format_notification(self):
        from cli.watch import format_notification

        notification = Notification(
            id="ntf_1",
            type=NotificationType.NEW_BOOKING_REQUEST,
            title="New Booking Request",
            message='Ada requested "Deep Clean"',
            created_at=datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc),
        )

        line = format_notification(notification)

        assert "New Booking Request" in line
        assert line.endswith('Ada requested "Deep Clean"')


class TestConfigCommands:
    """Tests for the config commands."""

    def test_show_masks_token(self, cli_runner, config_env):
        from cli.main import cli

        result = cli_runner.invoke(cli, ["config", "show"])

        assert result.exit_code == 0
        assert "server_url: http://localhost:8080" in result.output
        assert "tok_test_1234567890abcdef" not in result.output
        assert "user_id: 42" in result.output

    def test_show_token_flag(self, cli_runner, config_env):
        from cli.main import cli

        result = cli_runner.invoke(cli, ["config", "show", "--show-token"])

        assert "tok_test_1234567890abcdef" in result.output

    def test_set_persists_value(self, cli_runner, config_env):
        from cli.main import cli

        result = cli_runner.invoke(cli, ["config", "set", "rating_poll_interval_seconds", "30"])

        assert result.exit_code == 0
        saved = yaml.safe_load(config_env.read_text())
        assert saved["rating_poll_interval_seconds"] == 30.0

    def test_set_rejects_invalid_value(self, cli_runner, config_env):
        from cli.main import cli

        result = cli_runner.invoke(cli, ["config", "set", "role", "SUPERUSER"])

        assert result.exit_code == 1
        assert "Invalid value" in result.output
        saved = yaml.safe_load(config_env.read_text())
        assert saved["role"] == "SERVICE_PROVIDER"

    def test_set_rejects_unknown_key(self, cli_runner, config_env):
        from cli.main import cli

        result = cli_runner.invoke(cli, ["config", "set", "colour", "blue"])

        assert result.exit_code == 1
        assert "Unknown key" in result.output


class TestStateCommands:
    """Tests for the state commands."""

    def _seed(self, data_dir):
        state_dir = data_dir / "state"
        state_dir.mkdir()
        (state_dir / "notified-bookings-42.json").write_text("[1, 2]")
        (state_dir / "customer-last-statuses-42.json").write_text('[[5, "CONFIRMED"]]')

    def test_show_json(self, cli_runner, data_env):
        from cli.main import cli

        self._seed(data_env)

        result = cli_runner.invoke(cli, ["state", "show", "42", "--json"])

        assert result.exit_code == 0
        summary = json.loads(result.output)
        assert summary["provider-new-bookings"]["seen_booking_ids"] == [1, 2]
        assert summary["customer-status-changes"]["last_status_by_booking_id"] == {"5": "CONFIRMED"}

    def test_show_summary(self, cli_runner, data_env):
        from cli.main import cli

        self._seed(data_env)

        result = cli_runner.invoke(cli, ["state", "show", "42"])

        assert "seen_booking_ids: 2 entries" in result.output

    def test_clear_with_yes(self, cli_runner, data_env):
        from cli.main import cli

        self._seed(data_env)

        result = cli_runner.invoke(cli, ["state", "clear", "42", "--yes"])

        assert result.exit_code == 0
        assert list((data_env / "state").glob("*.json")) == []

    def test_clear_aborted(self, cli_runner, data_env):
        from cli.main import cli

        self._seed(data_env)

        result = cli_runner.invoke(cli, ["state", "clear", "42"], input="n\n")

        assert result.exit_code == 1
        assert (data_env / "state" / "notified-bookings-42.json").exists()

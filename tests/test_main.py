"""Tests for main module."""

from unittest.mock import AsyncMock, Mock, patch

import pytest

from aide.__main__ import build_parser, dispatch, main


class TestParser:
    """Argument parsing for the terminal commands."""

    def test_server_defaults(self):
        args = build_parser().parse_args(["server"])
        assert (args.host, args.port) == ("127.0.0.1", 8000)

    def test_settings_flags(self):
        args = build_parser().parse_args(["settings", "--voice", "lily", "--notifications", "off"])
        assert args.voice == "lily"
        assert args.notifications is False

    def test_bad_on_off_value(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["settings", "--notifications", "maybe"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestDispatch:
    """Commands are routed to the matching CLI method."""

    @pytest.mark.asyncio
    async def test_tasks_add(self):
        cli = Mock()
        cli.add_task = AsyncMock(return_value=True)
        args = build_parser().parse_args(["tasks", "add", "Call mom", "--due", "2026-10-20T09:00:00Z"])
        assert await dispatch(cli, args)
        cli.add_task.assert_awaited_once_with("Call mom", None, "2026-10-20T09:00:00Z")

    @pytest.mark.asyncio
    async def test_settings_only_passes_given_values(self):
        cli = Mock()
        cli.update_settings = AsyncMock(return_value=True)
        args = build_parser().parse_args(["settings", "--theme", "light"])
        assert await dispatch(cli, args)
        cli.update_settings.assert_awaited_once_with(theme="light")
        cli.show_settings.assert_called_once()

    @pytest.mark.asyncio
    async def test_settings_without_changes_only_shows(self):
        cli = Mock()
        cli.update_settings = AsyncMock()
        assert await dispatch(cli, build_parser().parse_args(["settings"]))
        cli.update_settings.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_export_failure_is_reported(self):
        cli = Mock()
        cli.export = AsyncMock(return_value=None)
        assert not await dispatch(cli, build_parser().parse_args(["export", "--dir", "/tmp/out"]))
        cli.export.assert_awaited_once_with("/tmp/out")


class TestMain:
    """Test cases for main function."""

    @patch("aide.__main__.run_server")
    def test_main_server(self, mock_run_server):
        """The server command starts uvicorn with the given address."""
        assert main(["server", "--host", "0.0.0.0", "--port", "9000"]) == 0
        mock_run_server.assert_called_once_with(host="0.0.0.0", port=9000)

    @patch("aide.__main__.run_command", new_callable=AsyncMock, return_value=1)
    def test_main_returns_command_status(self, mock_run_command):
        assert main(["logout"]) == 1
        mock_run_command.assert_awaited_once()

    @patch("aide.__main__.run_command", new_callable=AsyncMock, side_effect=ValueError("Unknown account"))
    def test_main_value_error(self, mock_run_command, capsys):
        assert main(["accounts"]) == 1
        assert "Unknown account" in capsys.readouterr().out

"""Tests for the mcp-server-roam-import command and python -m entry."""

import contextlib
import logging
import runpy
from importlib.metadata import entry_points
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

import mcp_server_roam_import
from mcp_server_roam_import import main

SERVE_PATH = "mcp_server_roam_import.serve"


class TestMainCommand:
    """Tests for the click command behind the console script."""

    @pytest.mark.parametrize(
        ("args", "level"),
        [
            ([], logging.WARN),
            (["-v"], logging.INFO),
            (["--verbose"], logging.INFO),
            (["-vv"], logging.DEBUG),
            (["-vvv"], logging.DEBUG),
        ],
    )
    def test_verbosity_sets_log_level(self, args: list[str], level: int) -> None:
        """Test that each -v raises the log level, capped at DEBUG."""
        with (
            patch(SERVE_PATH, new=MagicMock()),
            patch("asyncio.run"),
            patch.object(logging, "basicConfig") as mock_basic_config,
        ):
            result = CliRunner().invoke(main, args)

        assert result.exit_code == 0
        mock_basic_config.assert_called_once()
        call_kwargs = mock_basic_config.call_args[1]
        assert call_kwargs["level"] == level
        # stdout is reserved for the MCP stdio channel
        assert "stream" in call_kwargs

    def test_runs_server(self) -> None:
        """Test that the command runs serve() under asyncio."""
        mock_coro = MagicMock()
        mock_serve = MagicMock(return_value=mock_coro)

        with (
            patch(SERVE_PATH, new=mock_serve),
            patch("asyncio.run") as mock_run,
            patch.object(logging, "basicConfig"),
        ):
            result = CliRunner().invoke(main)

        assert result.exit_code == 0
        mock_serve.assert_called_once_with()
        mock_run.assert_called_once_with(mock_coro)

    def test_help(self) -> None:
        """Test that --help describes the server without starting it."""
        with patch("asyncio.run") as mock_run:
            result = CliRunner().invoke(main, ["--help"])

        assert result.exit_code == 0
        assert "Run the MCP Roam Import Server." in result.output
        assert "--verbose" in result.output
        mock_run.assert_not_called()

    def test_unknown_option(self) -> None:
        """Test that a bad option is a usage error."""
        with patch("asyncio.run") as mock_run:
            result = CliRunner().invoke(main, ["--graph", "x"])

        assert result.exit_code == 2
        mock_run.assert_not_called()


class TestEntryPoints:
    """Tests for the installed script and the package __main__."""

    def test_console_script(self) -> None:
        """Test that mcp-server-roam-import resolves to main."""
        scripts = entry_points(group="console_scripts", name="mcp-server-roam-import")
        if not scripts:
            pytest.skip("package is not installed")

        (script,) = scripts
        assert script.value == "mcp_server_roam_import:main"
        assert script.load() is main

    def test_dunder_main(self) -> None:
        """Test that python -m mcp_server_roam_import calls main."""
        with patch.object(mcp_server_roam_import, "main") as mock_main:
            with contextlib.suppress(SystemExit):
                runpy.run_module("mcp_server_roam_import", run_name="__main__")

        mock_main.assert_called_once_with()

"""Tests for the levered-agent command line."""

from pathlib import Path
from unittest.mock import patch

import pytest

from levered_agent import cli
from levered_agent.launcher import DETACHED_ENV, LaunchResult


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Run each command from an empty directory with no LEVERED_ overrides."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv(DETACHED_ENV, raising=False)
    for name in ("LEVERED_PORT", "LEVERED_HOST", "LEVERED_CLAUDE_PATH", "LEVERED_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


class TestParser:
    """Tests for argument parsing."""

    def test_listen_options(self, tmp_path):
        args = cli.build_parser().parse_args([
            "listen", "--port", "4000", "--host", "0.0.0.0", "--claude-path", "/bin/claude",
            "--directory", str(tmp_path), "--log-level", "debug", "--timeout", "60",
        ])

        settings = cli.settings_from_args(args)

        assert settings.port == 4000
        assert settings.host == "0.0.0.0"
        assert settings.claude_path == "/bin/claude"
        assert settings.working_directory == tmp_path
        assert settings.log_level == "debug"
        assert settings.timeout == 60

    def test_unset_options_use_defaults(self):
        args = cli.build_parser().parse_args(["listen"])

        settings = cli.settings_from_args(args)

        assert settings.port == 3100
        assert settings.host == "localhost"
        assert not args.detached

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])

    def test_forwarded_args_drop_detached(self):
        """Test the detached child gets the same options without --detached."""
        args = cli.build_parser().parse_args(["listen", "-p", "4000", "--detached", "--timeout", "0"])

        forwarded = cli.forwarded_args(args)

        assert forwarded == ["listen", "--port", "4000", "--timeout", "0"]
        assert cli.build_parser().parse_args(forwarded).port == 4000


class TestListen:
    """Tests for the listen command."""

    @pytest.mark.parametrize("port", ["0", "70000"])
    def test_invalid_port_exits_1(self, port, capsys):
        with patch("levered_agent.cli.uvicorn.run") as run:
            code = cli.main(["listen", "--port", port])

        assert code == 1
        run.assert_not_called()
        assert "invalid configuration" in capsys.readouterr().err

    def test_foreground_runs_server(self, tmp_path, capsys):
        with patch("levered_agent.cli.uvicorn.run") as run, \
                patch("levered_agent.cli.setup_logging") as setup:
            code = cli.main(["listen", "--port", "4321", "--directory", str(tmp_path)])

        assert code == 0
        run.assert_called_once()
        assert run.call_args.kwargs["host"] == "localhost"
        assert run.call_args.kwargs["port"] == 4321
        assert setup.call_args.kwargs["console"] is True
        out = capsys.readouterr().out
        assert "http://localhost:4321" in out
        assert "POST http://localhost:4321/chat" in out

    def test_detached_child_logs_to_file_only(self, monkeypatch, tmp_path, capsys):
        """Test the re-spawned child runs the server without console output."""
        monkeypatch.setenv(DETACHED_ENV, "1")
        with patch("levered_agent.cli.uvicorn.run") as run, \
                patch("levered_agent.cli.setup_logging") as setup, \
                patch("levered_agent.cli.launch_detached") as launch:
            code = cli.main(["listen", "--detached", "--directory", str(tmp_path)])

        assert code == 0
        launch.assert_not_called()
        run.assert_called_once()
        assert setup.call_args.kwargs["console"] is False
        assert capsys.readouterr().out == ""

    def test_detached_launch(self, capsys):
        result = LaunchResult(pid=4242, log_file=Path(".levered/agent.log"), exit_code=None)
        with patch("levered_agent.cli.launch_detached", return_value=result) as launch, \
                patch("levered_agent.cli.uvicorn.run") as run:
            code = cli.main(["listen", "--detached", "--port", "4000"])

        assert code == 0
        run.assert_not_called()
        cli_args, log_file = launch.call_args.args
        assert cli_args == ["listen", "--port", "4000"]
        assert log_file == Path(".levered") / "agent.log"
        assert "PID: 4242" in capsys.readouterr().out

    def test_detached_launch_failure(self, capsys):
        result = LaunchResult(pid=4242, log_file=Path(".levered/agent.log"), exit_code=1)
        with patch("levered_agent.cli.launch_detached", return_value=result):
            code = cli.main(["listen", "--detached"])

        assert code == 1
        assert "Failed to start" in capsys.readouterr().err

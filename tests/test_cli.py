"""Tests for CLI argument parsing and the check-config sub-command."""

from __future__ import annotations

from mcp_lookup_bridge.cli import _parse_args, main


class TestParseArgs:
    def test_serve_is_default(self):
        args = _parse_args([])
        assert args.command == "serve"
        assert args.transport is None
        assert args.log_level == "INFO"

    def test_options_without_subcommand(self):
        args = _parse_args(["--transport", "http", "--port", "9300"])
        assert args.command == "serve"
        assert args.transport == "http"
        assert args.port == 9300

    def test_check_config(self):
        args = _parse_args(["check-config", "--config", "x.yaml"])
        assert args.command == "check-config"
        assert args.config == "x.yaml"


class TestCheckConfig:
    def test_valid(self, tmp_path, capsys):
        path = tmp_path / "config.yaml"
        path.write_text("version: '1'\nservers:\n  weather:\n    package: '@acme/weather-mcp'\n")
        assert main(["check-config", "--config", str(path)]) == 0
        out = capsys.readouterr().out
        assert "Configuration valid" in out
        assert "weather" in out

    def test_invalid(self, tmp_path, capsys):
        path = tmp_path / "config.yaml"
        path.write_text("version: '9'\n")
        assert main(["check-config", "--config", str(path)]) == 2
        assert "Unsupported config version" in capsys.readouterr().err

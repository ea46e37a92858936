"""Tests for the command line entry point."""

import json
from unittest.mock import patch

import pytest

from office_lifecycle.__main__ import EXIT_CONFIG, EXIT_OK, build_parser, main


@pytest.fixture(autouse=True)
def restore_environment(monkeypatch):
    """main() exports its settings; monkeypatch puts the old values back."""
    monkeypatch.setenv("LOG_LEVEL", "INFO")
    monkeypatch.setenv("LOG_FORMAT", "json")
    monkeypatch.delenv("PORT", raising=False)


class TestArgumentParsing:
    def test_serve_defaults(self):
        args = build_parser().parse_args(["serve"])

        assert args.port == 8080
        assert args.log_level == "INFO"
        assert not args.reload

    def test_log_level_case_insensitive(self):
        assert build_parser().parse_args(["serve", "--log-level", "debug"]).log_level == "DEBUG"


class TestCheckConfig:
    def test_prints_effective_settings(self, isolated_config, capsys):
        exit_code = main(["check-config", "--config", str(isolated_config), "--log-format", "console"])

        assert exit_code == EXIT_OK
        settings = json.loads(capsys.readouterr().out)
        assert settings["plan"]["price_minor_units"] == 7500
        assert settings["reminders"]["bucket_days"] == [60, 30, 7]
        # secrets are reported as set, never printed
        assert settings["security"]["webhook_secret"] is True
        assert settings["security"]["cron_secret"] is True

    def test_missing_file(self, tmp_path):
        assert main(["check-config", "--config", str(tmp_path / "absent.yaml")]) == EXIT_CONFIG


class TestServe:
    @patch("uvicorn.run")
    def test_serve_is_default_command(self, mock_run, isolated_config):
        exit_code = main(["--config", str(isolated_config), "--port", "9000"])

        assert exit_code == EXIT_OK
        args, kwargs = mock_run.call_args
        assert args == ("office_lifecycle.main:app",)
        assert kwargs["port"] == 9000
        assert kwargs["log_config"] is None

    @patch("uvicorn.run")
    def test_invalid_config_does_not_start(self, mock_run, tmp_path):
        broken = tmp_path / "lifecycle.yaml"
        broken.write_text("reminders:\n  bucket_days: [0]\n")

        assert main(["serve", "--config", str(broken)]) == EXIT_CONFIG
        mock_run.assert_not_called()

#!/usr/bin/env python3
"""
Integration tests for CLI Main Entry Point

Tests CLI command execution through click's test runner.
"""

import json

import pytest
from click.testing import CliRunner

from bookmatch.cli.main import main


@pytest.mark.integration
class TestCLIMainIntegration:
    """Test main CLI entry point with real command execution."""

    def setup_method(self):
        """Set up test environment."""
        self.runner = CliRunner()

    def test_help_command_lists_subcommands(self):
        result = self.runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        assert "Bank Transaction to Document Reconciliation" in result.output
        for command in ["version", "config", "run"]:
            assert command in result.output

    def test_version_command_shows_version_info(self):
        result = self.runner.invoke(main, ["version"])

        assert result.exit_code == 0
        assert "bookmatch v0.1.0" in result.output
        assert "Author:" in result.output

    def test_config_command_shows_configuration(self):
        result = self.runner.invoke(main, ["config"])

        assert result.exit_code == 0
        assert "Current Configuration:" in result.output
        assert "Environment: test" in result.output
        assert "Data Directory:" in result.output
        assert "Output Directory:" in result.output
        assert "Amount Tolerance: 2 cents / 10 bps" in result.output
        assert "Date Window: 30 days (+7 grace)" in result.output

    def test_config_matching_prints_tunables_as_json(self):
        result = self.runner.invoke(main, ["config", "--matching"])

        assert result.exit_code == 0
        json_text = result.output[result.output.index("{"):]
        tunables = json.loads(json_text)
        assert tunables["amount_tolerance_bps"] == 10
        assert tunables["prepass"]["require_uniqueness"] is True

    def test_invalid_command_shows_error(self):
        result = self.runner.invoke(main, ["invalid-command"])

        assert result.exit_code != 0
        assert "No such command" in result.output

    def test_verbose_flag_prints_environment(self):
        result = self.runner.invoke(main, ["--verbose", "config"])

        assert result.exit_code == 0
        assert "Data directory:" in result.output
        assert "Current Configuration:" in result.output

    def test_config_env_override(self):
        result = self.runner.invoke(main, ["--config-env", "test", "config"])

        assert result.exit_code == 0
        assert "Environment: test" in result.output

    def test_run_help(self):
        result = self.runner.invoke(main, ["run", "--help"])

        assert result.exit_code == 0
        assert "--dry-run" in result.output
        assert "--event-type" in result.output

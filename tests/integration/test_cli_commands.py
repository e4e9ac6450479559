"""
Tests for CLI commands.

These tests verify the command-line interface functionality including:
- analyze command output, options and CSV export
- config path/show/set/unset commands
"""

import csv
import json

import pytest

from click.testing import CliRunner

from gasp.cli import cli
from gasp.config import load_config, save_config
from gasp.constants import CLI_CONSOLE_LOG_FORMAT
from gasp.worker import AnalyticsWorker


@pytest.fixture
def cli_runner():
    """Create a Click CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    """Keep the CLI from installing log handlers during tests."""
    monkeypatch.setattr("gasp.cli.setup_logging", lambda **kwargs: None)


class TestAnalyzeCommand:
    """Test the analyze command."""

    def test_summary(self, cli_runner, night_csv):
        result = cli_runner.invoke(cli, ["analyze", str(night_csv), "--in-process"])

        assert result.exit_code == 0, result.output
        assert "2025-06-15 01:00:00  2025-06-15 01:03:00" in result.output
        assert "Obstructive Apnea: 2" in result.output
        assert "Potential false negatives: 1" in result.output
        assert "peak FLG 0.97" in result.output

    def test_json_output(self, cli_runner, night_csv):
        result = cli_runner.invoke(
            cli, ["analyze", str(night_csv), "--in-process", "--json"]
        )

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert len(data["clusters"]) == 1
        assert data["clusters"][0]["count"] == 4
        assert data["clusters"][0]["start"] == 1_749_949_200_000
        assert data["falseNegatives"][0]["confidence"] == pytest.approx(0.97)

    def test_export(self, cli_runner, night_csv, tmp_path):
        output = tmp_path / "clusters.csv"

        result = cli_runner.invoke(
            cli,
            ["analyze", str(night_csv), "--in-process", "--export", str(output)],
        )

        assert result.exit_code == 0, result.output
        assert f"Exported 1 clusters to {output}" in result.output
        with open(output, newline="") as f:
            rows = list(csv.DictReader(f))
        assert rows[0]["count"] == "4"
        assert rows[0]["severity"] == "3.86"

    def test_cluster_option_overrides(self, cli_runner, night_csv):
        result = cli_runner.invoke(
            cli, ["analyze", str(night_csv), "--in-process", "--min-count", "5"]
        )

        assert result.exit_code == 0, result.output
        assert "No apnea clusters found" in result.output

    def test_invalid_override(self, cli_runner, night_csv):
        result = cli_runner.invoke(
            cli, ["analyze", str(night_csv), "--in-process", "--gap-sec", "-1"]
        )

        assert result.exit_code == 2
        assert "Invalid value" in result.output

    def test_fn_preset(self, cli_runner, night_csv):
        result = cli_runner.invoke(
            cli, ["analyze", str(night_csv), "--in-process", "--fn-preset", "strict"]
        )

        assert result.exit_code == 0, result.output
        assert "No potential false negatives" in result.output

    def test_unknown_fn_preset(self, cli_runner, night_csv):
        result = cli_runner.invoke(
            cli, ["analyze", str(night_csv), "--fn-preset", "paranoid"]
        )
        assert result.exit_code == 2

    def test_configured_settings_apply(self, cli_runner, night_csv):
        save_config({"clustering": {"min_count": 5}, "worker": {"in_process": True}})

        result = cli_runner.invoke(cli, ["analyze", str(night_csv)])

        assert result.exit_code == 0, result.output
        assert "No apnea clusters found" in result.output

    def test_invalid_config_reported(self, cli_runner, night_csv):
        save_config({"clustering": {"gap_sec": -10}})

        result = cli_runner.invoke(cli, ["analyze", str(night_csv), "--in-process"])

        assert result.exit_code == 1
        assert "Invalid settings in config section [clustering]" in result.output

    def test_date_without_rows(self, cli_runner, night_csv):
        result = cli_runner.invoke(
            cli, ["analyze", str(night_csv), "--in-process", "--date", "2024-01-01"]
        )

        assert result.exit_code == 0, result.output
        assert "No detail rows to analyze" in result.output
        assert "No apnea clusters found" in result.output

    def test_missing_file(self, cli_runner, tmp_path):
        result = cli_runner.invoke(cli, ["analyze", str(tmp_path / "nope.csv")])
        assert result.exit_code == 2

    def test_analysis_failure(self, cli_runner, night_csv, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr("gasp.worker.protocol.analyze_details", explode)

        result = cli_runner.invoke(cli, ["analyze", str(night_csv), "--in-process"])

        assert result.exit_code == 1
        assert "Analysis failed (analysis_failed)" in result.output
        assert "boom" not in result.output.split("Analysis failed")[-1]

    def test_worker_logs_in_cli_format(self, cli_runner, night_csv, monkeypatch):
        logging_calls = []
        worker_options = []

        class RecordingWorker(AnalyticsWorker):
            def __init__(self, **kwargs):
                worker_options.append(kwargs)
                super().__init__(**kwargs)

        monkeypatch.setattr(
            "gasp.cli.setup_logging", lambda **kwargs: logging_calls.append(kwargs)
        )
        monkeypatch.setattr("gasp.cli.AnalyticsWorker", RecordingWorker)

        result = cli_runner.invoke(
            cli, ["--verbose", "analyze", str(night_csv), "--in-process"]
        )

        assert result.exit_code == 0, result.output
        assert logging_calls == [
            {"verbose": True, "console_format": CLI_CONSOLE_LOG_FORMAT}
        ]
        (options,) = worker_options
        assert options["configure_logging"] is True
        assert options["verbose"] is True
        assert options["console_format"] == CLI_CONSOLE_LOG_FORMAT

    def test_version(self, cli_runner):
        result = cli_runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert result.output.startswith("gasp, version ")


class TestConfigCommands:
    """Test config management commands."""

    def test_path(self, cli_runner, config_path):
        result = cli_runner.invoke(cli, ["config", "path"])
        assert result.output.strip() == str(config_path)

    def test_show_without_file(self, cli_runner):
        result = cli_runner.invoke(cli, ["config", "show"])
        assert result.exit_code == 0
        assert "No config file" in result.output

    def test_set_show_unset(self, cli_runner):
        set_result = cli_runner.invoke(cli, ["config", "set", "clustering.gap_sec", "90"])
        preset_result = cli_runner.invoke(
            cli, ["config", "set", "false_negatives.preset", "lenient"]
        )

        assert set_result.exit_code == 0, set_result.output
        assert "✓ clustering.gap_sec = 90" in set_result.output
        assert preset_result.exit_code == 0
        assert load_config() == {
            "clustering": {"gap_sec": 90},
            "false_negatives": {"preset": "lenient"},
        }

        show_result = cli_runner.invoke(cli, ["config", "show"])
        assert "[clustering]" in show_result.output
        assert "gap_sec = 90" in show_result.output
        assert 'preset = "lenient"' in show_result.output

        unset_result = cli_runner.invoke(cli, ["config", "unset", "clustering.gap_sec"])
        assert "✓ Removed clustering.gap_sec" in unset_result.output
        assert load_config() == {"false_negatives": {"preset": "lenient"}}

        again = cli_runner.invoke(cli, ["config", "unset", "clustering.gap_sec"])
        assert "clustering.gap_sec was not set." in again.output

    def test_set_invalid_key(self, cli_runner):
        result = cli_runner.invoke(cli, ["config", "set", "database.path", "x"])

        assert result.exit_code == 2
        assert "Unknown config section" in result.output
        assert load_config() == {}

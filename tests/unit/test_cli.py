"""Unit tests for CLI interface."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from listing_monitor.models.config import MonitorConfig
from listing_monitor.models.data_models import (
    CycleOutcome,
    CycleReport,
    CycleStatus,
    CycleSummary,
    TargetSummary,
    utc_now,
)
from listing_monitor.pipeline.main import main
from tests.fixtures.fakes import sig


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("MONITOR_URLS", raising=False)


@pytest.fixture
def mock_report():
    """Create a cycle report with one new listing and one error."""
    return CycleReport(
        cycle_id="20250101T000000Z-abc123",
        started_at=utc_now(),
        summary=CycleSummary(
            total_targets=2,
            succeeded=1,
            errors=1,
            new_listings=1,
            duration_seconds=3.21,
            success_rate=0.5,
        ),
        targets=[
            TargetSummary("alpha", "https://listings.test/alpha", CycleStatus.NEW_LISTINGS, 1, 1200.0),
            TargetSummary("beta", "https://listings.test/beta", CycleStatus.ERROR, 0, 300.0, error="HTTP 503"),
        ],
        outcomes=[
            CycleOutcome("alpha", "https://listings.test/alpha", CycleStatus.NEW_LISTINGS,
                         new_listings=[sig("A", "1000万円")]),
            CycleOutcome("beta", "https://listings.test/beta", CycleStatus.ERROR, error="HTTP 503"),
        ],
    )


@pytest.fixture
def monitor_config(tmp_path):
    return MonitorConfig(
        targets=[{"id": "alpha", "url": "https://listings.test/alpha"}],
        output_directory=str(tmp_path / "out"),
        data_dir=str(tmp_path / "data"),
    )


def mock_orchestrator_class(report):
    orchestrator = MagicMock()
    orchestrator.run_cycle = AsyncMock(return_value=report)
    orchestrator.__aenter__.return_value = orchestrator
    orchestrator_class = MagicMock()
    orchestrator_class.from_config.return_value = orchestrator
    return orchestrator_class, orchestrator


def test_cli_help():
    """Test that CLI help message works."""
    runner = CliRunner()
    result = runner.invoke(main, ["--help"])

    assert result.exit_code == 0
    assert "Listing Monitor" in result.output
    assert "--once" in result.output
    assert "--interval" in result.output
    assert "--no-progress" in result.output


def test_cli_version():
    """Test that version flag works."""
    runner = CliRunner()
    result = runner.invoke(main, ["--version"])

    assert result.exit_code == 0
    assert "1.0.0" in result.output


def test_cli_without_targets_fails(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("# no targets\n", encoding="utf-8")

    result = CliRunner().invoke(main, ["--config", str(config_file), "--once", "--no-progress"])

    assert result.exit_code == 1
    assert "No targets configured" in result.output


@patch("listing_monitor.pipeline.main.ConfigManager")
@patch("listing_monitor.pipeline.main.JSONOutputFormatter")
def test_cli_once_runs_single_cycle(mock_formatter_class, mock_config_manager_class,
                                    mock_report, monitor_config):
    mock_config_manager_class.return_value.load_config.return_value = monitor_config
    orchestrator_class, orchestrator = mock_orchestrator_class(mock_report)

    with patch("listing_monitor.pipeline.main.MonitorOrchestrator", orchestrator_class):
        result = CliRunner().invoke(main, ["--once", "--no-progress"])

    assert result.exit_code == 0, result.output
    orchestrator.run_cycle.assert_awaited_once()
    targets = orchestrator.run_cycle.await_args.args[0]
    assert [t.id for t in targets] == ["alpha"]
    save_args = mock_formatter_class.return_value.save.call_args.args
    assert save_args[0] is mock_report
    assert save_args[1] == str(monitor_config.output_path)
    assert "1/2 ok, 1 new listing(s)" in result.output


@patch("listing_monitor.pipeline.main.ConfigManager")
def test_cli_applies_overrides(mock_config_manager_class, mock_report, monitor_config, tmp_path):
    mock_config_manager_class.return_value.load_config.return_value = monitor_config
    orchestrator_class, _ = mock_orchestrator_class(mock_report)
    output = tmp_path / "report.json"

    with patch("listing_monitor.pipeline.main.MonitorOrchestrator", orchestrator_class):
        result = CliRunner().invoke(main, [
            "--once",
            "--interval", "*/10 * * * *",
            "--data-dir", str(tmp_path / "state"),
            "--log-level", "debug",
            "--output", str(output),
        ])

    assert result.exit_code == 0, result.output
    cli_overrides = mock_config_manager_class.return_value.load_config.call_args.args[0]
    assert cli_overrides["monitoring_cron"] == "*/10 * * * *"
    assert cli_overrides["data_dir"] == str(tmp_path / "state")
    assert cli_overrides["log_level"] == "DEBUG"

    saved = json.loads(output.read_text(encoding="utf-8"))
    assert saved["summary"]["new_listings"] == 1
    assert saved["new_listings"][0]["signature"] == "A:1000万円:"
    assert "Cycle Complete" in result.output


@patch("listing_monitor.pipeline.main.ConfigManager")
def test_cli_skipped_cycle_is_an_error(mock_config_manager_class, monitor_config):
    mock_config_manager_class.return_value.load_config.return_value = monitor_config
    orchestrator_class, _ = mock_orchestrator_class(None)

    with patch("listing_monitor.pipeline.main.MonitorOrchestrator", orchestrator_class):
        result = CliRunner().invoke(main, ["--once", "--no-progress"])

    assert result.exit_code == 1
    assert "Cycle skipped" in result.output


@patch("listing_monitor.pipeline.main._run_daemon", new_callable=AsyncMock)
@patch("listing_monitor.pipeline.main.ConfigManager")
def test_cli_daemon_mode(mock_config_manager_class, mock_run_daemon, monitor_config):
    mock_config_manager_class.return_value.load_config.return_value = monitor_config

    result = CliRunner().invoke(main, ["--no-progress"])

    assert result.exit_code == 0
    mock_run_daemon.assert_awaited_once()
    assert "Monitor stopped" in result.output


@patch("listing_monitor.pipeline.main.ConfigManager")
def test_cli_handles_config_error(mock_config_manager_class):
    """Test CLI handles configuration errors gracefully."""
    mock_config_manager_class.return_value.load_config.side_effect = ValueError("Invalid configuration")

    result = CliRunner().invoke(main, ["--no-progress"])

    assert result.exit_code == 1
    assert "Invalid configuration" in result.output


@patch("listing_monitor.pipeline.main.ConfigManager")
def test_cli_summary_needs_chat_id_for_telegram(mock_config_manager_class, mock_report, monitor_config):
    config = monitor_config.model_copy(update={"telegram_bot_token": "123:abc"})
    mock_config_manager_class.return_value.load_config.return_value = config
    orchestrator_class, _ = mock_orchestrator_class(mock_report)

    with patch("listing_monitor.pipeline.main.MonitorOrchestrator", orchestrator_class):
        result = CliRunner().invoke(main, ["--once"])

    assert result.exit_code == 0, result.output
    assert "Notifier: log" in result.output

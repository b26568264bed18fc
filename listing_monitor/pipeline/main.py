"""CLI entry point for the listing monitor.

Runs the monitoring daemon (scheduled cycles until SIGINT/SIGTERM) or a
single cycle with a summary table and a JSON report.
"""

import asyncio
import signal
import sys
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from listing_monitor import __version__
from listing_monitor.models.config import ConfigManager, MonitorConfig
from listing_monitor.models.data_models import CycleReport, CycleStatus, Target
from listing_monitor.monitoring.logger import StructuredLogger
from listing_monitor.pipeline.orchestrator import MonitorOrchestrator
from listing_monitor.pipeline.output import JSONOutputFormatter


console = Console()


@click.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(dir_okay=False, path_type=Path),
    default="config/config.yaml",
    help="Path to configuration YAML file (optional)",
)
@click.option(
    "--once",
    is_flag=True,
    help="Run a single monitoring cycle and exit",
)
@click.option(
    "--interval",
    "-i",
    type=str,
    help="Monitoring cron expression, e.g. '*/5 * * * *' (overrides config)",
)
@click.option(
    "--data-dir",
    "-d",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory for persisted state (overrides config)",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Cycle report JSON path for --once (overrides config)",
)
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level (overrides config)",
)
@click.option(
    "--no-progress",
    is_flag=True,
    help="Disable spinners and tables (useful for CI/CD)",
)
@click.version_option(version=__version__, prog_name="listing-monitor")
def main(
    config: Path,
    once: bool,
    interval: Optional[str],
    data_dir: Optional[Path],
    output: Optional[Path],
    log_level: Optional[str],
    no_progress: bool,
) -> None:
    """
    Listing Monitor - watch listing pages and report new listings.

    Examples:

        # Run the daemon with config/config.yaml
        $ listing-monitor

        # One cycle against URLs from the environment
        $ MONITOR_URLS="https://example.com/list" listing-monitor --once

        # Check every 10 minutes, keep state elsewhere
        $ listing-monitor --interval "*/10 * * * *" --data-dir /var/lib/listing-monitor
    """
    try:
        cli_overrides = {
            "monitoring_cron": interval,
            "data_dir": str(data_dir) if data_dir is not None else None,
            "log_level": log_level.upper() if log_level else None,
        }
        monitor_config = ConfigManager(config).load_config(cli_overrides)
        targets = monitor_config.build_targets()
        if not targets:
            raise click.UsageError("No targets configured. Add targets to the config file or set MONITOR_URLS.")

        _display_config_summary(monitor_config, targets, no_progress)

        if once:
            report = asyncio.run(_run_once(monitor_config, targets, no_progress))
            output_path = output if output else monitor_config.output_path
            JSONOutputFormatter().save(report, str(output_path))
            _display_results(report, output_path, no_progress)
        else:
            asyncio.run(_run_daemon(monitor_config, targets))
            console.print("[yellow]Monitor stopped[/yellow]")

        sys.exit(0)

    except KeyboardInterrupt:
        console.print("\n[yellow]Monitor interrupted by user[/yellow]")
        sys.exit(130)  # Standard exit code for SIGINT
    except click.UsageError as e:
        console.print(f"\n[red]Error:[/red] {e.message}", style="bold red")
        sys.exit(1)
    except Exception as e:
        console.print(f"\n[red]Error:[/red] {e}", style="bold red")
        sys.exit(1)


async def _run_once(config: MonitorConfig, targets: List[Target], no_progress: bool) -> CycleReport:
    """Run a single cycle inside the orchestrator's resource scope."""
    logger = StructuredLogger(level=config.log_level)
    async with MonitorOrchestrator.from_config(config, logger=logger) as orchestrator:
        if no_progress:
            console.print("[cyan]Running monitoring cycle...[/cyan]")
            report = await orchestrator.run_cycle(targets)
        else:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                TimeElapsedColumn(),
                console=console,
            ) as progress:
                task_id = progress.add_task(f"[cyan]Checking {len(targets)} target(s)...", total=None)
                report = await orchestrator.run_cycle(targets)
                progress.update(task_id, completed=True)

    if report is None:
        raise RuntimeError("Cycle skipped (outside operating hours)")
    return report


async def _run_daemon(config: MonitorConfig, targets: List[Target]) -> None:
    """Start scheduled monitoring and wait for SIGINT/SIGTERM."""
    logger = StructuredLogger(level=config.log_level)
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C raises KeyboardInterrupt
            pass

    async with MonitorOrchestrator.from_config(config, logger=logger) as orchestrator:
        await orchestrator.start(targets)
        await stop_event.wait()
        logger.log("shutdown_signal_received")


def _display_config_summary(config: MonitorConfig, targets: List[Target], no_progress: bool) -> None:
    """Display configuration summary before running."""
    if no_progress:
        return

    console.print("\n[bold cyan]Monitor Configuration[/bold cyan]")
    console.print(f"  Targets: {len(targets)}")
    console.print(f"  Schedule: {config.monitoring_cron}")
    console.print(f"  Browser fallback: {'on' if config.browser_enabled else 'off'}")
    console.print(f"  Data dir: {config.data_dir}")
    console.print(f"  Notifier: {'telegram' if config.telegram_enabled else 'log'}")
    console.print()


def _display_results(report: CycleReport, output_path: Path, no_progress: bool) -> None:
    """Display final results summary."""
    summary = report.summary
    if no_progress:
        console.print(
            f"✓ Cycle complete: {summary.succeeded}/{summary.total_targets} ok, "
            f"{summary.new_listings} new listing(s)"
        )
        console.print(f"✓ Output saved to: {output_path}")
        return

    console.print("\n[bold green]Cycle Complete![/bold green]\n")

    summary_table = Table(title="Cycle Summary", show_header=False)
    summary_table.add_column("Metric", style="cyan")
    summary_table.add_column("Value", style="green")
    summary_table.add_row("Targets", str(summary.total_targets))
    summary_table.add_row("Duration", f"{summary.duration_seconds:.2f}s")
    summary_table.add_row("Success Rate", f"{summary.success_rate * 100:.1f}%")
    summary_table.add_row("New Listings", str(summary.new_listings))
    summary_table.add_row("Errors", str(summary.errors))
    console.print(summary_table)
    console.print()

    target_table = Table(title="Per-Target Results")
    target_table.add_column("Target", style="cyan")
    target_table.add_column("Status")
    target_table.add_column("New", justify="right", style="green")
    target_table.add_column("Time", justify="right", style="magenta")
    target_table.add_column("Error", style="yellow")

    styles = {
        CycleStatus.NEW_LISTINGS: "bold green",
        CycleStatus.UNCHANGED: "white",
        CycleStatus.ERROR: "red",
    }
    for target in report.targets:
        target_table.add_row(
            target.target_id,
            f"[{styles[target.status]}]{target.status.value}[/]",
            str(target.new_listings),
            f"{target.execution_time_ms / 1000:.1f}s",
            target.error or "",
        )
    console.print(target_table)
    console.print()

    console.print(f"[bold]Output saved to:[/bold] {output_path}")
    console.print()


if __name__ == "__main__":
    main()

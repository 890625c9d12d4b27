import threading

import typer
from rich.console import Console
from rich.table import Table

from encoder_ops.features.aid.coordinator import AidCoordinator
from encoder_ops.features.statistics.errors import StatisticsError
from encoder_ops.features.statistics.service import StatisticsAggregator
from encoder_ops.platform.logging_config import configure_logging
from encoder_ops.platform.settings import load_settings
from encoder_ops.platform.storage_factory import open_storage

app = typer.Typer(help="Encoder fleet job store operations.")
console = Console()


def _fmt(value) -> str:
    if value is None:
        return "-"
    if hasattr(value, "strftime"):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    return str(value)


@app.callback()
def main():
    """Configure logging before any command runs."""
    configure_logging(load_settings().log_level)


@app.command()
def queue():
    """List unclaimed jobs, oldest first."""
    with open_storage() as storage:
        jobs = AidCoordinator(storage.jobs).list_available()

    if not jobs:
        console.print("[yellow]No unclaimed jobs.[/yellow]")
        return

    table = Table(title=f"Unclaimed jobs ({len(jobs)})")
    table.add_column("No", style="dim")
    table.add_column("Job", style="cyan")
    table.add_column("Owner", style="magenta")
    table.add_column("Permlink")
    table.add_column("Created", style="green")
    for idx, job in enumerate(jobs, 1):
        table.add_row(
            str(idx),
            job.id,
            job.metadata.video_owner,
            job.metadata.video_permlink,
            _fmt(job.created_at),
        )
    console.print(table)


@app.command()
def job(job_id: str):
    """Show a single job."""
    with open_storage() as storage:
        found = storage.jobs.find_by_id(job_id)

    if found is None:
        console.print(f"[red]Job {job_id} not found.[/red]")
        raise typer.Exit(code=1)

    console.print_json(found.model_dump_json())


@app.command()
def sweep(
    once: bool = typer.Option(False, "--once", help="Run a single sweep and exit"),
    interval: int = typer.Option(
        None, "--interval", "-i", help="Seconds between sweeps (default: AID_SWEEP_INTERVAL)"
    ),
):
    """Release Aid claims that stopped pinging."""
    settings = load_settings()
    with open_storage(settings) as storage:
        coordinator = AidCoordinator(storage.jobs)
        if once:
            released = coordinator.release_timed_out()
            console.print(f"Released [bold]{released}[/bold] timed-out job(s).")
            return

        stop = threading.Event()
        try:
            coordinator.run_sweeper(stop, interval or settings.aid_sweep_interval)
        except KeyboardInterrupt:
            stop.set()


@app.command("daily-stats")
def daily_stats(
    days: int = typer.Option(30, "--days", "-d", help="Trailing window in days"),
):
    """Show per-day encoding statistics."""
    with open_storage() as storage:
        try:
            stats = StatisticsAggregator(storage.statistics).daily_rollup(days)
        except StatisticsError as e:
            console.print(f"[red]Statistics unavailable: {e}[/red]")
            raise typer.Exit(code=1)

    table = Table(title=f"Daily statistics (last {days} days)")
    table.add_column("Date", style="cyan")
    table.add_column("Encoded", justify="right")
    table.add_column("Completed", style="green", justify="right")
    table.add_column("Failed", style="red", justify="right")
    table.add_column("Avg time (s)", justify="right")
    table.add_column("Success", justify="right")
    for day in stats:
        table.add_row(
            day.date,
            str(day.videos_encoded),
            str(day.completed),
            str(day.failed),
            f"{day.average_encoding_time:.0f}",
            f"{day.success_rate:.1%}",
        )
    console.print(table)


@app.command()
def encoders(
    days: int = typer.Option(7, "--days", "-d", help="Trailing window in days"),
    encoder: str = typer.Option(None, "--encoder", "-e", help="Only this encoder"),
):
    """Show per-encoder performance."""
    with open_storage() as storage:
        try:
            rows = StatisticsAggregator(storage.statistics).encoder_performance(days, encoder)
        except StatisticsError as e:
            console.print(f"[red]Statistics unavailable: {e}[/red]")
            raise typer.Exit(code=1)

    table = Table(title=f"Encoder performance (last {days} days)")
    table.add_column("Encoder", style="cyan")
    table.add_column("Completed", style="green", justify="right")
    table.add_column("Failed", style="red", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("Avg time (s)", justify="right")
    table.add_column("Success", justify="right")
    for row in rows:
        table.add_row(
            row.encoder_id,
            str(row.jobs_completed),
            str(row.jobs_failed),
            str(row.total_jobs),
            f"{row.average_encoding_time:.0f}",
            f"{row.success_rate:.1%}",
        )
    console.print(table)


@app.command()
def health():
    """Check that the job store is reachable."""
    with open_storage() as storage:
        ok = storage.health_check()

    if ok:
        console.print("[green]Job store reachable.[/green]")
        return
    console.print("[red]Job store unreachable.[/red]")
    raise typer.Exit(code=1)


if __name__ == "__main__":
    app()

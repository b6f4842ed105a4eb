"""
healthsync jobs - Inspect sync jobs in the state store.
"""

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from healthsync.config import load_config
from healthsync.core.state import StateStore
from healthsync.core.types import JobStatus, SyncJob
from healthsync.exceptions import HealthSyncError

app = typer.Typer(name="jobs", help="Inspect sync jobs")
console = Console()

_STATUS_STYLES = {
    JobStatus.IDLE: "dim",
    JobStatus.RUNNING: "cyan",
    JobStatus.PAUSED: "yellow",
    JobStatus.COMPLETED: "green",
    JobStatus.FAILED: "red",
}


def _open_store(project_dir: Path) -> StateStore:
    try:
        config = load_config(project_dir, validate=False)
    except HealthSyncError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=2) from None
    if not config.get("state.url"):
        console.print("[red]No state store configured (set DATABASE_URL)[/red]")
        raise typer.Exit(code=2)
    return StateStore(config.data)


def _fmt(value) -> str:
    if value is None:
        return "-"
    if hasattr(value, "strftime"):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    return str(value)


def _status(job: SyncJob) -> str:
    style = _STATUS_STYLES.get(job.status, "")
    return f"[{style}]{job.status.value}[/{style}]" if style else job.status.value


@app.command("list")
def list_jobs(
    status: str | None = typer.Option(None, "--status", "-s", help="Filter by status"),
    partner: str | None = typer.Option(None, "--partner", "-p", help="Filter by partner id"),
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum number of jobs"),
    project_dir: Path = typer.Option(Path.cwd(), "--project-dir", "-d", help="Directory holding healthsync.yaml"),
) -> None:
    """List sync jobs, newest first."""
    if status is not None and status.lower() not in {s.value for s in JobStatus}:
        console.print(f"[red]Unknown status '{status}'[/red]")
        raise typer.Exit(code=2)

    store = _open_store(project_dir)
    try:
        jobs = store.list_jobs(status=status.lower() if status else None, partner_id=partner, limit=limit)
    except HealthSyncError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1) from None
    finally:
        store.close()

    if not jobs:
        console.print("[dim]No sync jobs found[/dim]")
        return

    table = Table(title=f"Sync jobs ({len(jobs)})", show_header=True)
    table.add_column("Job", style="bold")
    table.add_column("Partner")
    table.add_column("Status")
    table.add_column("Entity")
    table.add_column("Records", justify="right")
    table.add_column("Slot", justify="right")
    table.add_column("Created")
    for job in jobs:
        table.add_row(
            job.id,
            job.partner_id,
            _status(job),
            job.current_entity or "-",
            str(job.processed_records),
            _fmt(job.slot),
            _fmt(job.created_at),
        )
    console.print(table)


@app.command("show")
def show_job(
    job_id: str = typer.Argument(..., help="Job id"),
    project_dir: Path = typer.Option(Path.cwd(), "--project-dir", "-d", help="Directory holding healthsync.yaml"),
) -> None:
    """Show one job and its checkpoints."""
    store = _open_store(project_dir)
    try:
        job = store.get_job(job_id)
        checkpoints = store.get_checkpoints(job_id) if job else []
    except HealthSyncError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1) from None
    finally:
        store.close()

    if job is None:
        console.print(f"[red]Sync job not found: {job_id}[/red]")
        raise typer.Exit(code=1)

    console.print(f"\n[bold blue]{job.id}[/bold blue]  partner [bold]{job.partner_id}[/bold]  {_status(job)}")
    console.print(
        f"[dim]created {_fmt(job.created_at)} | started {_fmt(job.started_at)} | "
        f"paused {_fmt(job.paused_at)} | completed {_fmt(job.completed_at)}[/dim]"
    )
    if job.last_error:
        err = job.last_error
        console.print(
            f"[red]Last error:[/red] {err.get('error_type')} on {err.get('entity_type')} "
            f"at cursor {err.get('cursor')!r} after {err.get('attempts')} attempt(s): {err.get('message')}"
        )
    console.print()

    if not checkpoints:
        console.print("[dim]No checkpoints committed[/dim]")
        return

    table = Table(title="Checkpoints", show_header=True)
    table.add_column("Entity", style="bold")
    table.add_column("Batches", justify="right")
    table.add_column("Records", justify="right")
    table.add_column("Exhausted")
    table.add_column("Cursor")
    table.add_column("Updated")
    for cp in checkpoints:
        table.add_row(
            cp.entity_type,
            str(cp.batches),
            str(cp.records),
            "[green]yes[/green]" if cp.exhausted else "no",
            cp.cursor or "-",
            _fmt(cp.updated_at),
        )
    console.print(table)

"""
healthsync serve - Long-running service.

Runs the sync lifecycle API:
- POST /sync/init, /sync/jobs/{id}/pause|resume|restart
- GET /sync/jobs, /sync/jobs/{id}, /sync/stats
- GET /health
"""

from pathlib import Path

import typer

from healthsync.exceptions import ConfigurationError
from healthsync.service.server import run_service

app = typer.Typer(name="serve", help="Run HealthSync as a long-running service", invoke_without_command=True)


@app.callback()
def serve(
    ctx: typer.Context,
    host: str | None = typer.Option(None, help="Host to bind to (default: APP_HOST or 0.0.0.0)"),
    port: int | None = typer.Option(None, help="Port to bind to (default: APP_PORT or 3000)"),
    project_dir: Path = typer.Option(Path.cwd(), "--project-dir", "-d", help="Directory holding healthsync.yaml"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """
    Run HealthSync as a long-running service.

    Jobs left running by a previous process are resumed on start-up.
    """
    if ctx.invoked_subcommand is None:
        try:
            run_service(project_dir=project_dir, host=host, port=port, verbose=verbose)
        except ConfigurationError as e:
            typer.echo(f"Configuration error: {e.message}", err=True)
            raise typer.Exit(code=2) from None

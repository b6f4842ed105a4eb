"""
``healthsync`` command line.
"""

import typer

from healthsync import __version__
from healthsync.cli import jobs, serve

app = typer.Typer(
    name="healthsync",
    help="Resumable clinical record synchronization between partner systems.",
    add_completion=True,
)
app.add_typer(serve.app, name="serve")
app.add_typer(jobs.app, name="jobs")


def _print_version(value: bool):
    if not value:
        return
    typer.echo(f"healthsync version {__version__}")
    raise typer.Exit()


@app.callback(invoke_without_command=True)
def entrypoint(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", "-V", callback=_print_version, help="Print the version and exit."),
):
    """
    Run the sync service or inspect sync jobs.

    See 'healthsync <command> --help' for the options of each command.
    """
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def main():
    app()


if __name__ == "__main__":
    main()
